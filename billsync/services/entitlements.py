# -*- coding: utf-8 -*-
"""
Entitlement checks for the rest of the application.

Status is authoritative for gating; period dates are for display only.
"""
from functools import wraps
from typing import Any, Dict, Optional

from billsync.errors import AuthenticationRequired
from billsync.middleware.auth import current_user_id
from billsync.middleware.errors import create_subscription_required_response
from billsync.models.subscription import Subscription, SubscriptionStatus
from billsync.services.context import get_billing_context


def entitlement_summary(user_id: str, record: Optional[Subscription]) -> Dict[str, Any]:
    if record is None:
        return {
            'user_id': user_id,
            'status': SubscriptionStatus.NONE,
            'plan': None,
            'has_access': False,
            'cancel_at_period_end': False,
            'current_period_end': None,
        }
    summary = record.to_dict()
    return {
        'user_id': user_id,
        'status': record.status,
        'plan': record.plan_identifier,
        'has_access': record.has_access,
        'cancel_at_period_end': summary['cancel_at_period_end'],
        'current_period_end': summary['current_period_end'],
    }


def require_active_subscription(f):
    """
    Decorator gating a view on the caller's subscription; apply after require_user.

    Answers 402 ``subscription_required`` unless the record status is active.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = current_user_id()
        if not user_id:
            raise AuthenticationRequired()
        record = get_billing_context().store.get_by_user(user_id)
        if record is None or not record.has_access:
            return create_subscription_required_response(
                record.status if record else SubscriptionStatus.NONE)
        return f(*args, **kwargs)

    return decorated_function
