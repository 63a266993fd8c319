# -*- coding: utf-8 -*-
# billsync/models/subscription.py
from datetime import datetime, timezone
from typing import Optional

from billsync.infra.db import db


def utcnow() -> datetime:
    """Naive UTC now; all timestamps in the store are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.replace(tzinfo=timezone.utc).isoformat() if value else None


class SubscriptionStatus:
    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"

    ALL = (NONE, ACTIVE, PAST_DUE, CANCELED, INCOMPLETE)


class Subscription(db.Model):
    """
    One record per application user; the entitlement read path.

    Never hard-deleted: cancellation is a status transition.
    """
    __tablename__ = "subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    processor_customer_id = db.Column(db.String(64), nullable=True, index=True)
    processor_subscription_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=SubscriptionStatus.NONE)
    plan_identifier = db.Column(db.String(64), nullable=True)
    price_id = db.Column(db.String(64), nullable=True)

    current_period_start = db.Column(db.DateTime, nullable=True)
    current_period_end = db.Column(db.DateTime, nullable=True)
    trial_start = db.Column(db.DateTime, nullable=True)
    trial_end = db.Column(db.DateTime, nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    canceled_at = db.Column(db.DateTime, nullable=True)

    # --- provenance of the last applied processor event ---
    last_event_id = db.Column(db.String(255), nullable=True)
    last_event_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Subscription user={self.user_id} status={self.status}>"

    @property
    def has_access(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "processor_customer_id": self.processor_customer_id,
            "processor_subscription_id": self.processor_subscription_id,
            "status": self.status,
            "plan_identifier": self.plan_identifier,
            "price_id": self.price_id,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "trial_start": _iso(self.trial_start),
            "trial_end": _iso(self.trial_end),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "canceled_at": _iso(self.canceled_at),
            "updated_at": _iso(self.updated_at),
        }
