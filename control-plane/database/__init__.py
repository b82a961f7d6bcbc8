# control-plane/database/__init__.py
"""
Database modules
"""

from .session import get_db, init_db, db_manager, SessionLocal, engine
from .models import Base, Network, Node, ExtClient, AuditLog, OperatingSystem

__all__ = [
    # Session
    "get_db",
    "init_db",
    "db_manager",
    "SessionLocal",
    "engine",
    # Models
    "Base",
    "Network",
    "Node",
    "ExtClient",
    "AuditLog",
    "OperatingSystem",
]
