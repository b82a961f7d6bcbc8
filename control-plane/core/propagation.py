# control-plane/core/propagation.py
"""
Change Propagation - revision markers agents poll for

Nothing is pushed to agents. Marking a network changes the revision data
agents compare against on their next config pull.
"""

from sqlalchemy.orm import Session
from datetime import datetime
import logging

from database.models import Network, Node
from .exceptions import NotFoundError
from .store import save

logger = logging.getLogger(__name__)


class ChangePropagator:
    """
    Marks nodes/networks as having a newer revision

    Both operations accept commit=False so callers can stage the markers in
    the same transaction as the record change that caused them.
    """

    def _get_network(self, db: Session, netid: str) -> Network:
        network = db.get(Network, netid)
        if network is None:
            raise NotFoundError(f"Network {netid} not found", details={"netid": netid})
        return network

    def network_nodes_update_pull_changes(self, db: Session, netid: str, commit: bool = True) -> int:
        """
        Flag every node of a network to pull a new config

        Returns:
            Number of nodes flagged
        """
        network = self._get_network(db, netid)
        nodes = db.query(Node).filter(Node.network == netid).all()
        for node in nodes:
            node.pull_changes = True
            node.config_version = (node.config_version or 0) + 1
        network.nodes_last_modified = datetime.utcnow()

        if commit:
            save(db, network, *nodes, action=f"propagate changes for network {netid}")
        logger.info(f"Network {netid}: {len(nodes)} nodes flagged to pull changes")
        return len(nodes)

    def set_network_nodes_last_modified(self, db: Session, netid: str, commit: bool = True) -> None:
        """Bump the network's node revision timestamp"""
        network = self._get_network(db, netid)
        network.nodes_last_modified = datetime.utcnow()

        if commit:
            save(db, network, action=f"mark network {netid} nodes modified")
        logger.debug(f"Network {netid}: nodes marked modified")

    def set_network_last_modified(self, db: Session, netid: str, commit: bool = True) -> None:
        """Bump the revision timestamp of the network's own settings"""
        network = self._get_network(db, netid)
        network.network_last_modified = datetime.utcnow()

        if commit:
            save(db, network, action=f"mark network {netid} modified")
        logger.debug(f"Network {netid}: settings marked modified")

    def acknowledge_pull(self, db: Session, node: Node) -> bool:
        """
        Clear a node's pull flag once its agent fetched the config

        Returns:
            Whether changes were pending
        """
        pending = bool(node.pull_changes)
        if pending:
            node.pull_changes = False
            save(db, node, action=f"acknowledge pull for node {node.id}")
        return pending


# Singleton instance
change_propagator = ChangePropagator()
