# control-plane/schemas/acl.py
"""
Network ACL schemas
"""

from pydantic import RootModel
from typing import Dict
from enum import Enum


class AclValue(str, Enum):
    """Whether traffic between two nodes is permitted"""
    ALLOWED = "allowed"
    NOT_ALLOWED = "not-allowed"


class ACLContainer(RootModel[Dict[str, Dict[str, AclValue]]]):
    """
    Node id -> peer node id -> allowed/not-allowed

    Example: {"node-a": {"node-b": "allowed"}, "node-b": {"node-a": "allowed"}}
    """
