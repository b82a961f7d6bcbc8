# control-plane/api/v1/agent.py
"""
Agent API Endpoints
Agents pull the PostUp/PostDown text computed for their node
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from database.session import get_db
from schemas.node import NodeConfigResponse
from schemas.base import ErrorResponse
from core.exceptions import ControlPlaneError
from core.directory import node_directory
from core.propagation import change_propagator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/nodes/{node_id}/config",
    response_model=NodeConfigResponse,
    responses={
        200: {"description": "Configuration retrieved successfully"},
        404: {"description": "Node not found", "model": ErrorResponse},
    },
    summary="Get node configuration",
    description="""
    Retrieve the current gateway configuration for a node.

    Agents poll this endpoint and re-apply `post_up`/`post_down` when
    `pull_changes` is true or `nodes_last_modified` moved since the last pull.
    The pull flag is cleared by this call.
    """
)
async def get_node_config(
    node_id: str,
    db: Session = Depends(get_db)
):
    """Get configuration for an Agent"""
    try:
        node = node_directory.get_node_by_id(db, node_id)
        network = node_directory.get_parent_network(db, node.network)
        pending = change_propagator.acknowledge_pull(db, node)
    except ControlPlaneError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={
                "error": e.message,
                "error_code": e.error_code
            }
        )

    if pending:
        logger.info(f"Node {node.name} pulled config version {node.config_version}")

    return NodeConfigResponse(
        node_id=node.id,
        network=node.network,
        interface=node.interface,
        post_up=node.post_up or "",
        post_down=node.post_down or "",
        udp_hole_punch=node.udp_hole_punch,
        config_version=node.config_version,
        pull_changes=pending,
        nodes_last_modified=network.nodes_last_modified
    )
