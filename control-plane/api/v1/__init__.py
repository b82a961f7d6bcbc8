"""
API v1 modules
"""

from . import agent, admin

__all__ = ["agent", "admin"]
