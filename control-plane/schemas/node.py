# control-plane/schemas/node.py
"""
Network and node Pydantic schemas
"""

from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum
import ipaddress
import re


class OperatingSystem(str, Enum):
    """Operating systems an agent may report"""
    LINUX = "linux"        # iptables or nftables
    FREEBSD = "freebsd"    # ipfw, egress only
    DARWIN = "darwin"      # no gateway roles
    WINDOWS = "windows"    # no gateway roles


_NAME_PATTERN = r'^[a-z0-9]([a-z0-9\-]{0,30}[a-z0-9])?$'


# === Request Schemas ===

class NetworkCreate(BaseModel):
    """Schema for creating an overlay network"""
    netid: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Network identifier",
        examples=["skynet"]
    )
    address_range: str = Field(
        ...,
        description="Overlay address range (CIDR)",
        examples=["10.10.10.0/24"]
    )
    default_udp_hole_punch: Optional[bool] = Field(
        None,
        description="Hole-punch policy for nodes (server default when omitted)"
    )

    @field_validator('netid')
    @classmethod
    def validate_netid(cls, v: str) -> str:
        """Lowercase alphanumeric with inner hyphens"""
        v = v.lower().strip()
        if not re.match(_NAME_PATTERN, v):
            raise ValueError('Network id must be lowercase alphanumeric with optional hyphens')
        return v

    @field_validator('address_range')
    @classmethod
    def validate_address_range(cls, v: str) -> str:
        try:
            return str(ipaddress.ip_network(v.strip(), strict=False))
        except ValueError:
            raise ValueError(f'Invalid address range: {v}')


class NodeCreate(BaseModel):
    """
    Schema for registering a node in a network
    Host facts (os, interface, nftables) are reported by the agent
    """
    name: str = Field(
        ...,
        min_length=1,
        max_length=63,
        examples=["gw-eu-01"]
    )
    node_id: Optional[str] = Field(
        None,
        max_length=36,
        description="Node identifier (generated when omitted)"
    )
    os: OperatingSystem = Field(
        default=OperatingSystem.LINUX,
        description="Operating system of the node"
    )
    interface: Optional[str] = Field(
        None,
        max_length=15,
        description="Overlay interface name",
        examples=["nm-skynet"]
    )
    is_nftables_present: bool = Field(
        default=False,
        description="Agent detected nftables on the host"
    )
    post_up: str = Field(default="", description="Commands run when the interface comes up")
    post_down: str = Field(default="", description="Commands run when the interface goes down")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "gw-eu-01",
                "os": "linux",
                "interface": "nm-skynet",
                "is_nftables_present": True
            }
        }
    )


# === Response Schemas ===

class NetworkResponse(BaseModel):
    """Network details"""
    netid: str
    address_range: str
    default_udp_hole_punch: bool
    nodes_last_modified: datetime
    network_last_modified: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NodeResponse(BaseModel):
    """
    Standard node response
    Includes gateway role state and the generated rule text
    """
    id: str
    name: str
    network: str
    os: str
    interface: str
    is_nftables_present: bool

    is_egress_gateway: bool
    egress_gateway_nat_enabled: bool
    egress_gateway_ranges: List[str] = []
    egress_gateway_interface: Optional[str] = None

    is_ingress_gateway: bool
    ingress_gateway_range: Optional[str] = None

    post_up: str = ""
    post_down: str = ""
    udp_hole_punch: bool

    pull_changes: bool
    config_version: int
    last_modified: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "6f1c5c1e-4a43-4c4e-9c3f-0c5b2a9e1d11",
                "name": "gw-eu-01",
                "network": "skynet",
                "os": "linux",
                "interface": "nm-skynet",
                "is_nftables_present": False,
                "is_egress_gateway": True,
                "egress_gateway_nat_enabled": True,
                "egress_gateway_ranges": ["192.168.1.0/24"],
                "egress_gateway_interface": "eth0",
                "is_ingress_gateway": False,
                "ingress_gateway_range": None,
                "post_up": "iptables -A FORWARD -i nm-skynet -j ACCEPT; "
                           "iptables -A FORWARD -o nm-skynet -j ACCEPT; "
                           "iptables -t nat -A POSTROUTING -o eth0 -j MASQUERADE",
                "post_down": "iptables -D FORWARD -i nm-skynet -j ACCEPT; "
                             "iptables -D FORWARD -o nm-skynet -j ACCEPT; "
                             "iptables -t nat -D POSTROUTING -o eth0 -j MASQUERADE",
                "udp_hole_punch": True,
                "pull_changes": True,
                "config_version": 2,
                "last_modified": "2026-10-19T10:00:00Z"
            }
        }
    )

    @classmethod
    def from_node(cls, node) -> "NodeResponse":
        return cls(
            id=node.id,
            name=node.name,
            network=node.network,
            os=node.os,
            interface=node.interface,
            is_nftables_present=node.is_nftables_present,
            is_egress_gateway=node.is_egress_gateway,
            egress_gateway_nat_enabled=node.egress_gateway_nat_enabled,
            egress_gateway_ranges=node.egress_ranges,
            egress_gateway_interface=node.egress_gateway_interface,
            is_ingress_gateway=node.is_ingress_gateway,
            ingress_gateway_range=node.ingress_gateway_range,
            post_up=node.post_up or "",
            post_down=node.post_down or "",
            udp_hole_punch=node.udp_hole_punch,
            pull_changes=node.pull_changes,
            config_version=node.config_version,
            last_modified=node.last_modified
        )


class NodeListResponse(BaseModel):
    """Response for listing multiple nodes"""
    nodes: List[NodeResponse]
    total: int

    model_config = ConfigDict(from_attributes=True)


class NodeConfigResponse(BaseModel):
    """
    Config an agent pulls for its node
    The agent applies post_up/post_down verbatim
    """
    node_id: str
    network: str
    interface: str
    post_up: str
    post_down: str
    udp_hole_punch: bool
    config_version: int
    pull_changes: bool = Field(..., description="Whether the pull found pending changes")
    nodes_last_modified: datetime
