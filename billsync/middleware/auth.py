# -*- coding: utf-8 -*-
"""
Caller identity for user-facing billing endpoints.

The access token's identity is the application ``user_id``. Handlers read it
with ``current_user_id()`` and never trust a user id from the request body.
"""
from functools import wraps
from typing import Optional

from flask import g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from billsync.errors import AuthenticationRequired
from billsync.services.request_context import set_user_context
from billsync.services.structured_logging import get_logger

logger = get_logger('billsync.security')


def require_user(f):
    """Decorator to require a valid access token; 401 otherwise."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            verify_jwt_in_request()
        except (JWTExtendedException, PyJWTError) as e:
            logger.info(f"Rejected unauthenticated request: {e}")
            raise AuthenticationRequired()

        identity = get_jwt_identity()
        if not identity:
            raise AuthenticationRequired()
        set_user_context(str(identity))
        return f(*args, **kwargs)

    return decorated_function


def current_user_id() -> Optional[str]:
    return getattr(g, 'user_id', None)
