"""
Unified authentication infrastructure module.

Routes that act on behalf of a signed-in user import their decorators from here.
"""

from billsync.middleware.auth import require_user, current_user_id

__all__ = ["require_user", "current_user_id"]
