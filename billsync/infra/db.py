"""
Unified database infrastructure module.

All models and the entitlement store import the SQLAlchemy instance from here.
"""

from billsync.database import db

__all__ = ["db"]
