# control-plane/schemas/base.py
"""
Base schemas for API responses
"""

from pydantic import BaseModel, Field
from typing import Dict, TypeVar, Generic, Optional
from datetime import datetime

T = TypeVar("T")


class BaseResponse(BaseModel, Generic[T]):
    """
    Standard API response wrapper
    All API responses should follow this format
    """
    success: bool = True
    message: str = "Operation successful"
    data: Optional[T] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        from_attributes = True


class ErrorResponse(BaseModel):
    """
    Standard error response
    Used for 4xx and 5xx responses
    """
    success: bool = False
    error: str
    error_code: str
    details: Optional[dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "freebsd is unsupported for ingress gateways",
                "error_code": "UNSUPPORTED_OS",
                "details": {"os": "freebsd"},
                "timestamp": "2026-10-19T10:00:00Z"
            }
        }


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = "healthy"
    service: str = "control-plane"
    version: str = "1.0.0"
    database: str = "connected"
    counts: Dict[str, int] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
