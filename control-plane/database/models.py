# control-plane/database/models.py
"""
SQLAlchemy Database Models for the Mesh Gateway Control Plane
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text,
    Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime
from typing import List
import enum
import json

Base = declarative_base()


class OperatingSystem(str, enum.Enum):
    """Operating systems reported by node agents"""
    LINUX = "linux"
    FREEBSD = "freebsd"
    DARWIN = "darwin"
    WINDOWS = "windows"


class Network(Base):
    """
    Network table - one overlay network (address range + defaults)
    Nodes and external clients belong to exactly one network
    """
    __tablename__ = "networks"

    netid = Column(String(32), primary_key=True,
                   comment="Network identifier (name)")
    address_range = Column(String(43), nullable=False,
                           comment="Overlay address range in CIDR notation")
    default_udp_hole_punch = Column(Boolean, default=True, nullable=False,
                                    comment="Hole-punch policy applied to nodes by default")

    # Access control container (node id -> peer id -> allowed/not-allowed)
    acls = Column(Text, nullable=True,
                  comment="JSON-encoded ACL container")

    # Revision markers consumed by agents
    nodes_last_modified = Column(DateTime, default=datetime.utcnow, nullable=False)
    network_last_modified = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Network(netid={self.netid}, address_range={self.address_range})>"


class Node(Base):
    """
    Node table - one record per managed overlay endpoint, keyed by node id
    Gateway role flags and rule text are owned by the gateway manager
    """
    __tablename__ = "nodes"

    # Identity
    id = Column(String(36), primary_key=True,
                comment="Node identifier")
    name = Column(String(63), nullable=False,
                  comment="Human-readable node name")
    network = Column(String(32), nullable=False, index=True,
                     comment="Owning network id")

    # Host facts reported by the agent
    os = Column(String(20), default=OperatingSystem.LINUX.value, nullable=False,
                comment="Operating system: linux, freebsd, darwin, windows")
    interface = Column(String(15), nullable=False,
                       comment="Overlay interface name on the node")
    is_nftables_present = Column(Boolean, default=False, nullable=False,
                                 comment="Agent detected nftables on the host")

    # Egress role
    is_egress_gateway = Column(Boolean, default=False, nullable=False)
    egress_gateway_nat_enabled = Column(Boolean, default=True, nullable=False)
    egress_gateway_ranges = Column(Text, nullable=True,
                                   comment="JSON-encoded list of external CIDRs")
    egress_gateway_interface = Column(String(15), nullable=True,
                                      comment="Outbound interface for egress traffic")

    # Ingress role
    is_ingress_gateway = Column(Boolean, default=False, nullable=False)
    ingress_gateway_range = Column(String(43), nullable=True)

    # Commands executed by the agent when the interface comes up / goes down
    post_up = Column(Text, default="", nullable=False)
    post_down = Column(Text, default="", nullable=False)

    udp_hole_punch = Column(Boolean, default=True, nullable=False)

    # Change propagation
    pull_changes = Column(Boolean, default=False, nullable=False,
                          comment="Agent must fetch a newer revision")
    config_version = Column(Integer, default=1, nullable=False,
                            comment="Incremented when config changes")

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_modified = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('ix_nodes_network_egress', 'network', 'is_egress_gateway'),
        Index('ix_nodes_network_ingress', 'network', 'is_ingress_gateway'),
    )

    def __repr__(self):
        return f"<Node(id={self.id}, name={self.name}, network={self.network}, os={self.os})>"

    @property
    def egress_ranges(self) -> List[str]:
        """Decoded egress ranges"""
        if not self.egress_gateway_ranges:
            return []
        return json.loads(self.egress_gateway_ranges)

    @egress_ranges.setter
    def egress_ranges(self, ranges: List[str]) -> None:
        self.egress_gateway_ranges = json.dumps(list(ranges))

    def set_last_modified(self) -> None:
        self.last_modified = datetime.utcnow()


class ExtClient(Base):
    """
    External Client table - peers that reach the mesh through one ingress gateway
    Only the fields the gateway manager needs are modelled here
    """
    __tablename__ = "ext_clients"

    client_id = Column(String(63), primary_key=True)
    network = Column(String(32), primary_key=True)

    ingress_gateway_id = Column(String(36), nullable=False, index=True,
                                comment="Node id of the owning ingress gateway")
    address = Column(String(43), nullable=True)
    public_key = Column(String(44), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)

    last_modified = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ExtClient(client_id={self.client_id}, network={self.network}, gateway={self.ingress_gateway_id})>"


class AuditLog(Base):
    """
    Audit Log table - records gateway role changes and other admin actions
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Event information
    event_type = Column(String(50), nullable=False, index=True,
                        comment="Event type: egress_gateway, ingress_gateway, acl")
    event_action = Column(String(20), nullable=False,
                          comment="Action: create, update, delete")

    # Actor
    actor_type = Column(String(20), nullable=False,
                        comment="Who performed: admin, system")
    actor_id = Column(String(100), nullable=True)

    # Target
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(100), nullable=True)

    details = Column(Text, nullable=True,
                     comment="JSON-encoded additional details")
    status = Column(String(20), default="success", nullable=False,
                    comment="Outcome: success, failure")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('ix_audit_event_created', 'event_type', 'created_at'),
    )
