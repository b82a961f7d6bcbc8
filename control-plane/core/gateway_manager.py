# control-plane/core/gateway_manager.py
"""
Gateway Manager - ingress/egress gateway role provisioning

Each operation is one read-modify-persist-propagate sequence on a single
node, run while holding that node's lock. Rule text comes from the role
state transition in core.rules; this module owns validation order,
record mutation, persistence and the revision bump agents pull on.

Concurrency: node locks are per process. Deployments running more than
one control plane process against the same database must serialize
gateway requests per node upstream.
"""

from typing import Optional
from sqlalchemy.orm import Session
import json
import logging

from database.models import Node, AuditLog, OperatingSystem
from config import settings
from schemas.gateway import EgressGatewayRequest
from .directory import node_directory
from .exceptions import ControlPlaneError, NotFoundError, UnsupportedOSError
from .ext_clients import ext_client_manager
from .locks import NodeLockRegistry, node_locks
from .propagation import change_propagator
from .rules import RoleChange, RoleState, Transition, transition, validate_egress_gateway
from .store import save

logger = logging.getLogger(__name__)

EGRESS_OPERATING_SYSTEMS = (OperatingSystem.LINUX.value, OperatingSystem.FREEBSD.value)
INGRESS_OPERATING_SYSTEMS = (OperatingSystem.LINUX.value,)


class GatewayManager:
    """
    Gateway Manager for ingress/egress role changes

    Responsibilities:
    1. Validate gateway requests against the node
    2. Apply role state transitions (flags + PostUp/PostDown)
    3. Persist the node and mark the network for agents to resync
    4. Remove external clients of a deleted ingress gateway
    """

    def __init__(self, locks: Optional[NodeLockRegistry] = None):
        self.locks = locks or node_locks

    # === Egress ===

    def create_egress_gateway(
        self,
        db: Session,
        gateway: EgressGatewayRequest,
        admin_id: Optional[str] = None
    ) -> Node:
        """
        Make a node an egress gateway

        Raises:
            NotFoundError: If the node does not exist (in the given network)
            UnsupportedOSError: If the node is not linux or freebsd
            ValidationError: If ranges or interface are empty
            PersistenceError: If the node cannot be saved
        """
        with self.locks.hold(gateway.node_id):
            node = self._load_node(db, gateway.node_id, gateway.net_id)
            if node.os not in EGRESS_OPERATING_SYSTEMS:
                raise UnsupportedOSError(
                    f"{node.os} is unsupported for egress gateways",
                    details={"node_id": node.id, "os": node.os}
                )
            if gateway.nat_enabled is None:
                gateway = gateway.model_copy(update={"nat_enabled": True})
            validate_egress_gateway(gateway)

            result = transition(node, RoleChange.CREATE_EGRESS, gateway)

            node.egress_ranges = gateway.ranges
            node.egress_gateway_nat_enabled = gateway.nat_enabled
            node.egress_gateway_interface = gateway.interface
            self._apply(node, result)

            self._persist(db, node, node.network, pull_changes=True)
            logger.info(
                f"Egress gateway created on {node.name} ({node.id}): "
                f"ranges={gateway.ranges}, nat={gateway.nat_enabled}"
            )
            self._log_event(db, "egress_gateway", "create", admin_id, node, result)
            return node

    def delete_egress_gateway(
        self,
        db: Session,
        netid: str,
        node_id: str,
        admin_id: Optional[str] = None
    ) -> Node:
        """
        Remove the egress role from a node

        Rule text is rebuilt for the ingress role when the node keeps it,
        otherwise cleared.
        """
        with self.locks.hold(node_id):
            node = self._load_node(db, node_id, netid)

            result = transition(node, RoleChange.DELETE_EGRESS)
            self._warn_dropped(node, RoleChange.DELETE_EGRESS, result)

            node.egress_ranges = []
            node.egress_gateway_interface = None
            self._apply(node, result)

            self._persist(db, node, netid, pull_changes=True)
            logger.info(f"Egress gateway deleted on {node.name} ({node.id})")
            self._log_event(db, "egress_gateway", "delete", admin_id, node, result)
            return node

    # === Ingress ===

    def create_ingress_gateway(
        self,
        db: Session,
        netid: str,
        node_id: str,
        admin_id: Optional[str] = None
    ) -> Node:
        """
        Make a node an ingress gateway for its network

        Ingress uses a fixed rendezvous path, so UDP hole punching is
        turned off on the node.
        """
        with self.locks.hold(node_id):
            node = self._load_node(db, node_id, netid)
            if node.os not in INGRESS_OPERATING_SYSTEMS:
                raise UnsupportedOSError(
                    f"{node.os} is unsupported for ingress gateways",
                    details={"node_id": node.id, "os": node.os}
                )
            network = node_directory.get_parent_network(db, netid)

            result = transition(node, RoleChange.CREATE_INGRESS)

            node.ingress_gateway_range = network.address_range
            node.udp_hole_punch = False
            self._apply(node, result)

            self._persist(db, node, netid, pull_changes=False)
            logger.info(f"Ingress gateway created on {node.name} ({node.id}) for {network.address_range}")
            self._log_event(db, "ingress_gateway", "create", admin_id, node, result)
            return node

    def delete_ingress_gateway(
        self,
        db: Session,
        netid: str,
        node_id: str,
        admin_id: Optional[str] = None
    ) -> Node:
        """
        Remove the ingress role from a node

        External clients attached to the gateway are deleted first; the
        node gets the network's default hole-punch policy back.

        Raises:
            CascadeError: If the gateway's external clients cannot be listed
        """
        with self.locks.hold(node_id):
            node = self._load_node(db, node_id, netid)
            network = node_directory.get_parent_network(db, netid)

            ext_client_manager.delete_gateway_ext_clients(db, node.id, netid)
            logger.debug(f"Deleting ingress gateway on {node.id}")

            result = transition(node, RoleChange.DELETE_INGRESS)
            self._warn_dropped(node, RoleChange.DELETE_INGRESS, result)

            node.udp_hole_punch = network.default_udp_hole_punch
            node.ingress_gateway_range = None
            self._apply(node, result)

            self._persist(db, node, netid, pull_changes=False)
            logger.info(f"Ingress gateway deleted on {node.name} ({node.id})")
            self._log_event(db, "ingress_gateway", "delete", admin_id, node, result)
            return node

    # === Helpers ===

    def _load_node(self, db: Session, node_id: str, netid: Optional[str] = None) -> Node:
        node = node_directory.get_node_by_id(db, node_id)
        if netid and node.network != netid:
            raise NotFoundError(
                f"Node {node_id} not found in network {netid}",
                details={"node_id": node_id, "netid": netid}
            )
        return node

    def _apply(self, node: Node, result: Transition) -> None:
        """Write the transition's role flags and rule text onto the node"""
        node.is_ingress_gateway = bool(result.state & RoleState.INGRESS)
        node.is_egress_gateway = bool(result.state & RoleState.EGRESS)
        node.post_up = result.post_up
        node.post_down = result.post_down

    def _persist(self, db: Session, node: Node, netid: str, pull_changes: bool) -> None:
        """
        Stamp, stage the propagation marker and commit in one transaction

        Any failure rolls the session back, discarding the in-memory edits.
        """
        node.set_last_modified()
        try:
            if pull_changes:
                change_propagator.network_nodes_update_pull_changes(db, netid, commit=False)
            else:
                change_propagator.set_network_nodes_last_modified(db, netid, commit=False)
        except ControlPlaneError:
            db.rollback()
            raise
        save(db, node, action=f"save node {node.id}")
        db.refresh(node)

    def _warn_dropped(self, node: Node, change: RoleChange, result: Transition) -> None:
        if result.dropped:
            logger.warning(
                f"Node {node.id}: {change.value} discards {len(result.dropped)} "
                f"non-gateway PostUp clauses: {list(result.dropped)}"
            )

    def _log_event(
        self,
        db: Session,
        event_type: str,
        event_action: str,
        actor_id: Optional[str],
        node: Node,
        result: Transition
    ):
        """Log an audit event"""
        if not settings.ENABLE_AUDIT_LOG:
            return

        try:
            log = AuditLog(
                event_type=event_type,
                event_action=event_action,
                actor_type="admin" if actor_id else "system",
                actor_id=actor_id,
                target_type="node",
                target_id=node.id,
                status="success",
                details=json.dumps({
                    "network": node.network,
                    "role_state": result.state.name,
                    "dropped_clauses": list(result.dropped),
                })
            )
            db.add(log)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to create audit log: {e}")


# Singleton instance
gateway_manager = GatewayManager()
