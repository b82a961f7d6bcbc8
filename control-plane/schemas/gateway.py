# control-plane/schemas/gateway.py
"""
Gateway-related Pydantic schemas
"""

from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List
from datetime import datetime
import ipaddress


# === Request Schemas ===

class EgressGatewayRequest(BaseModel):
    """
    Request to make a node an egress gateway

    Empty ranges/interface are rejected by the gateway manager, not here,
    so the same rule applies to non-HTTP callers.
    """
    node_id: str = Field(default="", description="Filled from the URL path")
    net_id: str = Field(default="", description="Filled from the URL path")
    ranges: List[str] = Field(
        default_factory=list,
        description="External CIDRs routed through this gateway",
        examples=[["192.168.1.0/24", "10.20.0.0/16"]]
    )
    interface: str = Field(
        default="",
        max_length=15,
        description="Outbound interface traffic is masqueraded behind",
        examples=["eth0"]
    )
    nat_enabled: Optional[bool] = Field(
        None,
        description="Masquerade egress traffic (defaults to true)"
    )
    post_up: Optional[str] = Field(None, description="Replaces the generated activation commands")
    post_down: Optional[str] = Field(None, description="Replaces the generated deactivation commands")

    @field_validator('ranges')
    @classmethod
    def validate_ranges(cls, v: List[str]) -> List[str]:
        """Normalize each range to CIDR notation"""
        normalized = []
        for item in v:
            try:
                normalized.append(str(ipaddress.ip_network(item.strip(), strict=False)))
            except ValueError:
                raise ValueError(f'Invalid IP range: {item}')
        return normalized

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "ranges": ["192.168.1.0/24"],
                "interface": "eth0",
                "nat_enabled": True
            }
        }
    )


class ExtClientCreate(BaseModel):
    """Schema for attaching an external client to an ingress gateway"""
    client_id: str = Field(..., min_length=1, max_length=63, examples=["laptop-alice"])
    ingress_gateway_id: str = Field(..., max_length=36)
    address: Optional[str] = Field(None, examples=["10.10.10.200"])
    public_key: Optional[str] = Field(None, max_length=44)

    @field_validator('address')
    @classmethod
    def validate_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            return str(ipaddress.ip_address(v.strip()))
        except ValueError:
            raise ValueError(f'Invalid address: {v}')


# === Response Schemas ===

class ExtClientResponse(BaseModel):
    """External client details"""
    client_id: str
    network: str
    ingress_gateway_id: str
    address: Optional[str] = None
    public_key: Optional[str] = None
    enabled: bool
    last_modified: datetime

    model_config = ConfigDict(from_attributes=True)


class ExtClientListResponse(BaseModel):
    """Response for listing external clients"""
    clients: List[ExtClientResponse]
    total: int
