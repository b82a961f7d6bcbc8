# control-plane/core/directory.py
"""
Node Directory - lookup and registration of networks and nodes
"""

from typing import List, Optional
from sqlalchemy.orm import Session
import ipaddress
import logging
import uuid

from database.models import Network, Node, OperatingSystem
from config import settings
from .exceptions import NotFoundError, ValidationError
from .store import save

logger = logging.getLogger(__name__)


class NodeDirectory:
    """
    Read accessors used by the gateway manager, plus the minimal
    create/list operations the admin API needs to set up a network
    """

    def get_node_by_id(self, db: Session, node_id: str) -> Node:
        """
        Get node by ID

        Raises:
            NotFoundError: If no node has this id
        """
        node = db.get(Node, node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} not found", details={"node_id": node_id})
        return node

    def get_parent_network(self, db: Session, netid: str) -> Network:
        """
        Get network by ID

        Raises:
            NotFoundError: If the network does not exist
        """
        network = db.get(Network, netid)
        if network is None:
            raise NotFoundError(f"Network {netid} not found", details={"netid": netid})
        return network

    def get_network_nodes(self, db: Session, netid: str) -> List[Node]:
        """All nodes in a network, oldest first"""
        return db.query(Node).filter(Node.network == netid).order_by(Node.created_at).all()

    def create_network(
        self,
        db: Session,
        netid: str,
        address_range: str,
        default_udp_hole_punch: Optional[bool] = None
    ) -> Network:
        """
        Create a network

        Raises:
            ValidationError: If the id is taken or the range is not a CIDR
        """
        if db.get(Network, netid) is not None:
            raise ValidationError(f"Network {netid} already exists", details={"netid": netid})
        try:
            address_range = str(ipaddress.ip_network(address_range, strict=False))
        except ValueError as e:
            raise ValidationError(f"Invalid address range: {address_range}") from e

        if default_udp_hole_punch is None:
            default_udp_hole_punch = settings.DEFAULT_UDP_HOLE_PUNCH

        network = Network(
            netid=netid,
            address_range=address_range,
            default_udp_hole_punch=default_udp_hole_punch,
        )
        save(db, network, action=f"create network {netid}")
        db.refresh(network)

        logger.info(f"Network created: {netid} ({address_range})")
        return network

    def create_node(
        self,
        db: Session,
        netid: str,
        name: str,
        os: str = OperatingSystem.LINUX.value,
        interface: Optional[str] = None,
        is_nftables_present: bool = False,
        node_id: Optional[str] = None,
        post_up: str = "",
        post_down: str = ""
    ) -> Node:
        """
        Register a node in a network

        The node starts with no gateway role and the network's default
        hole-punch policy.
        """
        network = self.get_parent_network(db, netid)
        node_id = node_id or str(uuid.uuid4())
        if db.get(Node, node_id) is not None:
            raise ValidationError(f"Node {node_id} already exists", details={"node_id": node_id})

        node = Node(
            id=node_id,
            name=name,
            network=network.netid,
            os=os,
            interface=interface or settings.DEFAULT_INTERFACE,
            is_nftables_present=is_nftables_present,
            is_egress_gateway=False,
            egress_gateway_nat_enabled=True,
            is_ingress_gateway=False,
            post_up=post_up or "",
            post_down=post_down or "",
            udp_hole_punch=network.default_udp_hole_punch,
            pull_changes=False,
            config_version=1,
        )
        node.egress_ranges = []
        node.set_last_modified()
        save(db, node, action=f"create node {node_id}")
        db.refresh(node)

        logger.info(f"Node registered: {name} ({node_id}) in {netid}, os={os}")
        return node


# Singleton instance
node_directory = NodeDirectory()
