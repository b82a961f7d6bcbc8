# control-plane/core/acls.py
"""
Network ACL pass-through
Stores and returns the access-control container of a network
"""

from typing import Dict
from sqlalchemy.orm import Session
import json
import logging

from database.models import Node
from .directory import node_directory
from .exceptions import ValidationError
from .propagation import change_propagator
from .store import save

logger = logging.getLogger(__name__)

ALLOWED = "allowed"
NOT_ALLOWED = "not-allowed"


class ACLManager:
    """Read/update the ACL container stored on a network"""

    def get_acls(self, db: Session, netid: str) -> Dict[str, Dict[str, str]]:
        network = node_directory.get_parent_network(db, netid)
        if not network.acls:
            return {}
        return json.loads(network.acls)

    def update_acls(
        self,
        db: Session,
        netid: str,
        container: Dict[str, Dict[str, str]]
    ) -> Dict[str, Dict[str, str]]:
        """
        Replace the network's ACL container

        Every node id must belong to the network and every value must be
        allowed/not-allowed. The network and its nodes are marked modified.

        Raises:
            NotFoundError: If the network does not exist
            ValidationError: If the container references unknown nodes
        """
        network = node_directory.get_parent_network(db, netid)
        node_ids = {
            node_id for (node_id,) in db.query(Node.id).filter(Node.network == netid).all()
        }

        unknown = set()
        for node_id, peers in container.items():
            if node_id not in node_ids:
                unknown.add(node_id)
            for peer_id, value in peers.items():
                if peer_id not in node_ids:
                    unknown.add(peer_id)
                if value not in (ALLOWED, NOT_ALLOWED):
                    raise ValidationError(
                        f"Invalid ACL value {value!r} for {node_id} -> {peer_id}",
                        details={"node_id": node_id, "peer_id": peer_id}
                    )
        if unknown:
            raise ValidationError(
                f"ACL references nodes outside network {netid}",
                details={"node_ids": sorted(unknown)}
            )

        network.acls = json.dumps(container, sort_keys=True)
        change_propagator.set_network_last_modified(db, netid, commit=False)
        change_propagator.set_network_nodes_last_modified(db, netid, commit=False)
        save(db, network, action=f"update ACLs of network {netid}")

        logger.info(f"ACLs updated for network {netid} ({len(container)} nodes)")
        return container


# Singleton instance
acl_manager = ACLManager()
