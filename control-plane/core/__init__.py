# control-plane/core/__init__.py
"""
Core business logic modules
"""

from .exceptions import (
    ControlPlaneError,
    NotFoundError,
    ValidationError,
    UnsupportedOSError,
    PersistenceError,
    CascadeError,
)
from .rules import (
    Backend,
    RoleState,
    RoleChange,
    RuleClause,
    RuleSet,
    Transition,
    select_backend,
    forwarding_rules,
    merge_rule_text,
    validate_egress_gateway,
    compose_egress_rules,
    compose_ingress_rules,
    compose_overlap_preserving_rules,
    transition,
)
from .locks import node_locks, NodeLockRegistry
from .directory import node_directory, NodeDirectory
from .propagation import change_propagator, ChangePropagator
from .ext_clients import ext_client_manager, ExtClientManager
from .gateway_manager import gateway_manager, GatewayManager
from .acls import acl_manager, ACLManager

__all__ = [
    # Errors
    "ControlPlaneError",
    "NotFoundError",
    "ValidationError",
    "UnsupportedOSError",
    "PersistenceError",
    "CascadeError",
    # Rule Composer
    "Backend",
    "RoleState",
    "RoleChange",
    "RuleClause",
    "RuleSet",
    "Transition",
    "select_backend",
    "forwarding_rules",
    "merge_rule_text",
    "validate_egress_gateway",
    "compose_egress_rules",
    "compose_ingress_rules",
    "compose_overlap_preserving_rules",
    "transition",
    # Locks
    "node_locks",
    "NodeLockRegistry",
    # Node Directory
    "node_directory",
    "NodeDirectory",
    # Change Propagation
    "change_propagator",
    "ChangePropagator",
    # External Clients
    "ext_client_manager",
    "ExtClientManager",
    # Gateway Manager
    "gateway_manager",
    "GatewayManager",
    # ACLs
    "acl_manager",
    "ACLManager",
]
