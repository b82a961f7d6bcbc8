# control-plane/schemas/__init__.py
"""
Pydantic Schemas for the Mesh Gateway Control Plane API
Organized by domain: nodes, gateways, acls
"""

from .base import BaseResponse, ErrorResponse, HealthResponse
from .node import (
    OperatingSystem,
    NetworkCreate,
    NetworkResponse,
    NodeCreate,
    NodeResponse,
    NodeListResponse,
    NodeConfigResponse,
)
from .gateway import (
    EgressGatewayRequest,
    ExtClientCreate,
    ExtClientResponse,
    ExtClientListResponse,
)
from .acl import AclValue, ACLContainer

__all__ = [
    # Base
    "BaseResponse",
    "ErrorResponse",
    "HealthResponse",
    # Node
    "OperatingSystem",
    "NetworkCreate",
    "NetworkResponse",
    "NodeCreate",
    "NodeResponse",
    "NodeListResponse",
    "NodeConfigResponse",
    # Gateway
    "EgressGatewayRequest",
    "ExtClientCreate",
    "ExtClientResponse",
    "ExtClientListResponse",
    # ACL
    "AclValue",
    "ACLContainer",
]
