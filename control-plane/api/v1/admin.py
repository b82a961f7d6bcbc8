# control-plane/api/v1/admin.py
"""
Admin API Endpoints
RESTful API for administrators to manage networks, nodes and gateway roles
"""

from fastapi import APIRouter, Depends, HTTPException, Header, status
from sqlalchemy.orm import Session
import logging

from database.session import get_db
from schemas.node import (
    NetworkCreate,
    NetworkResponse,
    NodeCreate,
    NodeResponse,
    NodeListResponse,
)
from schemas.gateway import (
    EgressGatewayRequest,
    ExtClientCreate,
    ExtClientResponse,
    ExtClientListResponse,
)
from schemas.acl import ACLContainer
from schemas.base import BaseResponse, ErrorResponse
from core.exceptions import ControlPlaneError
from core.directory import node_directory
from core.gateway_manager import gateway_manager
from core.ext_clients import ext_client_manager
from core.acls import acl_manager
from config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

GATEWAY_RESPONSES = {
    400: {"description": "Invalid request or unsupported OS", "model": ErrorResponse},
    404: {"description": "Node or network not found", "model": ErrorResponse},
    500: {"description": "Persistence or cascade failure", "model": ErrorResponse},
}


# === Authentication Dependency ===

async def verify_admin_token(x_admin_token: str = Header(..., alias="X-Admin-Token")):
    """
    Verify admin authentication token

    In production, replace with proper JWT/OAuth2 authentication
    """
    if x_admin_token != settings.ADMIN_SECRET:
        logger.warning("Invalid admin token attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Invalid or missing admin token",
                "error_code": "UNAUTHORIZED"
            },
            headers={"WWW-Authenticate": "Bearer"}
        )
    return True


def _http_error(e: ControlPlaneError) -> HTTPException:
    """Map a domain error to the API error body"""
    return HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.message,
            "error_code": e.error_code,
            "details": e.details
        }
    )


# === Network Endpoints ===

@router.post(
    "/networks",
    response_model=NetworkResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Network exists", "model": ErrorResponse}},
    summary="Create network"
)
async def create_network(
    network_in: NetworkCreate,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    """Create an overlay network"""
    try:
        network = node_directory.create_network(
            db,
            netid=network_in.netid,
            address_range=network_in.address_range,
            default_udp_hole_punch=network_in.default_udp_hole_punch
        )
    except ControlPlaneError as e:
        raise _http_error(e)
    return NetworkResponse.model_validate(network)


@router.get(
    "/networks/{netid}",
    response_model=NetworkResponse,
    responses={404: {"description": "Network not found", "model": ErrorResponse}},
    summary="Get network"
)
async def get_network(
    netid: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        network = node_directory.get_parent_network(db, netid)
    except ControlPlaneError as e:
        raise _http_error(e)
    return NetworkResponse.model_validate(network)


# === Node Endpoints ===

@router.post(
    "/networks/{netid}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Node exists", "model": ErrorResponse},
        404: {"description": "Network not found", "model": ErrorResponse},
    },
    summary="Register node"
)
async def create_node(
    netid: str,
    node_in: NodeCreate,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    """Register a node with the host facts its agent reported"""
    try:
        node = node_directory.create_node(
            db,
            netid=netid,
            name=node_in.name,
            os=node_in.os.value,
            interface=node_in.interface,
            is_nftables_present=node_in.is_nftables_present,
            node_id=node_in.node_id,
            post_up=node_in.post_up,
            post_down=node_in.post_down
        )
    except ControlPlaneError as e:
        raise _http_error(e)
    return NodeResponse.from_node(node)


@router.get(
    "/networks/{netid}/nodes",
    response_model=NodeListResponse,
    responses={404: {"description": "Network not found", "model": ErrorResponse}},
    summary="List nodes"
)
async def list_nodes(
    netid: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        node_directory.get_parent_network(db, netid)
    except ControlPlaneError as e:
        raise _http_error(e)
    nodes = node_directory.get_network_nodes(db, netid)
    return NodeListResponse(
        nodes=[NodeResponse.from_node(node) for node in nodes],
        total=len(nodes)
    )


@router.get(
    "/networks/{netid}/nodes/{node_id}",
    response_model=NodeResponse,
    responses={404: {"description": "Node not found", "model": ErrorResponse}},
    summary="Get node"
)
async def get_node(
    netid: str,
    node_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        node = node_directory.get_node_by_id(db, node_id)
    except ControlPlaneError as e:
        raise _http_error(e)
    if node.network != netid:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": f"Node {node_id} not found in network {netid}",
                "error_code": "NOT_FOUND"
            }
        )
    return NodeResponse.from_node(node)


# === Gateway Endpoints ===

@router.post(
    "/networks/{netid}/nodes/{node_id}/egress",
    response_model=BaseResponse[NodeResponse],
    responses=GATEWAY_RESPONSES,
    summary="Create egress gateway",
    description="""
    Make the node route mesh traffic to external ranges.

    Generated rules depend on the node OS and backend:
    nftables or iptables on linux, ipfw on freebsd.
    Explicit `post_up`/`post_down` replace the generated commands.
    """
)
async def create_egress_gateway(
    netid: str,
    node_id: str,
    gateway: EgressGatewayRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    gateway = gateway.model_copy(update={"node_id": node_id, "net_id": netid})
    try:
        node = gateway_manager.create_egress_gateway(db, gateway, admin_id="admin")
    except ControlPlaneError as e:
        logger.warning(f"Egress gateway creation failed for {node_id}: {e}")
        raise _http_error(e)
    return BaseResponse(
        message=f"Node {node.name} is now an egress gateway",
        data=NodeResponse.from_node(node)
    )


@router.delete(
    "/networks/{netid}/nodes/{node_id}/egress",
    response_model=BaseResponse[NodeResponse],
    responses=GATEWAY_RESPONSES,
    summary="Delete egress gateway"
)
async def delete_egress_gateway(
    netid: str,
    node_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        node = gateway_manager.delete_egress_gateway(db, netid, node_id, admin_id="admin")
    except ControlPlaneError as e:
        logger.warning(f"Egress gateway deletion failed for {node_id}: {e}")
        raise _http_error(e)
    return BaseResponse(
        message=f"Egress gateway removed from {node.name}",
        data=NodeResponse.from_node(node)
    )


@router.post(
    "/networks/{netid}/nodes/{node_id}/ingress",
    response_model=BaseResponse[NodeResponse],
    responses=GATEWAY_RESPONSES,
    summary="Create ingress gateway",
    description="Make the node accept external clients into the network (linux only)."
)
async def create_ingress_gateway(
    netid: str,
    node_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        node = gateway_manager.create_ingress_gateway(db, netid, node_id, admin_id="admin")
    except ControlPlaneError as e:
        logger.warning(f"Ingress gateway creation failed for {node_id}: {e}")
        raise _http_error(e)
    return BaseResponse(
        message=f"Node {node.name} is now an ingress gateway",
        data=NodeResponse.from_node(node)
    )


@router.delete(
    "/networks/{netid}/nodes/{node_id}/ingress",
    response_model=BaseResponse[NodeResponse],
    responses=GATEWAY_RESPONSES,
    summary="Delete ingress gateway",
    description="Remove the ingress role and every external client attached to it."
)
async def delete_ingress_gateway(
    netid: str,
    node_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        node = gateway_manager.delete_ingress_gateway(db, netid, node_id, admin_id="admin")
    except ControlPlaneError as e:
        logger.warning(f"Ingress gateway deletion failed for {node_id}: {e}")
        raise _http_error(e)
    return BaseResponse(
        message=f"Ingress gateway removed from {node.name}",
        data=NodeResponse.from_node(node)
    )


# === External Client Endpoints ===

@router.post(
    "/networks/{netid}/extclients",
    response_model=ExtClientResponse,
    status_code=status.HTTP_201_CREATED,
    responses=GATEWAY_RESPONSES,
    summary="Create external client"
)
async def create_ext_client(
    netid: str,
    client_in: ExtClientCreate,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        client = ext_client_manager.create_ext_client(
            db,
            netid=netid,
            client_id=client_in.client_id,
            ingress_gateway_id=client_in.ingress_gateway_id,
            address=client_in.address,
            public_key=client_in.public_key
        )
    except ControlPlaneError as e:
        raise _http_error(e)
    return ExtClientResponse.model_validate(client)


@router.get(
    "/networks/{netid}/extclients",
    response_model=ExtClientListResponse,
    summary="List external clients"
)
async def list_ext_clients(
    netid: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        clients = ext_client_manager.get_network_ext_clients(db, netid)
    except ControlPlaneError as e:
        raise _http_error(e)
    return ExtClientListResponse(
        clients=[ExtClientResponse.model_validate(c) for c in clients],
        total=len(clients)
    )


# === ACL Endpoints ===

@router.get(
    "/networks/{netid}/acls",
    response_model=ACLContainer,
    responses={404: {"description": "Network not found", "model": ErrorResponse}},
    summary="Get network ACLs"
)
async def get_acls(
    netid: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    try:
        return ACLContainer(acl_manager.get_acls(db, netid))
    except ControlPlaneError as e:
        raise _http_error(e)


@router.put(
    "/networks/{netid}/acls",
    response_model=ACLContainer,
    responses={
        400: {"description": "Unknown node in ACL", "model": ErrorResponse},
        404: {"description": "Network not found", "model": ErrorResponse},
    },
    summary="Update network ACLs"
)
async def update_acls(
    netid: str,
    container: ACLContainer,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_admin_token)
):
    payload = container.model_dump(mode="json")
    try:
        return ACLContainer(acl_manager.update_acls(db, netid, payload))
    except ControlPlaneError as e:
        raise _http_error(e)
