"""
Infrastructure package - unified entry points for core services.

This package provides standardized, centralized access to:
- Database (db)
- Authentication (require_user, current_user_id)
- Logging (configure_logging, init_logging, get_logger)
"""

from billsync.infra.db import db
from billsync.infra.auth import require_user, current_user_id
from billsync.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "db",
    "require_user",
    "current_user_id",
    "configure_logging",
    "init_logging",
    "get_logger",
]
