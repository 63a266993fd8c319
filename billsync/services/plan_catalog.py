# -*- coding: utf-8 -*-
"""
Plan catalog and processor status mapping.

The application stores its own plan identifiers rather than the processor's
raw price ids, so the price catalog can change without rewriting history.
"""
from typing import Dict, Optional

from billsync.infra.log import get_logger
from billsync.models.subscription import SubscriptionStatus

logger = get_logger('billsync.reconciliation')

PROCESSOR_STATUS_MAP = {
    'active': SubscriptionStatus.ACTIVE,
    'trialing': SubscriptionStatus.ACTIVE,
    'past_due': SubscriptionStatus.PAST_DUE,
    'unpaid': SubscriptionStatus.PAST_DUE,
    'paused': SubscriptionStatus.PAST_DUE,
    'canceled': SubscriptionStatus.CANCELED,
    'incomplete_expired': SubscriptionStatus.CANCELED,
    'incomplete': SubscriptionStatus.INCOMPLETE,
}


def map_processor_status(processor_status: Optional[str]) -> str:
    status = PROCESSOR_STATUS_MAP.get((processor_status or '').lower())
    if status is None:
        logger.warning(f"Unknown processor status: {processor_status}, treating as incomplete",
                       processor_status=processor_status)
        return SubscriptionStatus.INCOMPLETE
    return status


class PlanCatalog:
    """Maps processor price ids to application plan identifiers."""

    def __init__(self, prices: Optional[Dict[str, str]] = None, default_plan: str = 'premium'):
        self.prices = dict(prices or {})
        self.default_plan = default_plan

    @classmethod
    def from_config(cls, config) -> 'PlanCatalog':
        return cls(
            prices=config.get('BILLSYNC_PLAN_CATALOG') or {},
            default_plan=config.get('BILLSYNC_DEFAULT_PLAN') or 'premium',
        )

    def plan_for_price(self, price_id: Optional[str]) -> str:
        if price_id and price_id in self.prices:
            return self.prices[price_id]
        if price_id:
            logger.warning(f"Unknown price ID: {price_id}, defaulting to '{self.default_plan}'",
                           price_id=price_id)
        return self.default_plan

    def is_known_price(self, price_id: str) -> bool:
        """An empty catalog accepts any price; otherwise the price must be listed."""
        return not self.prices or price_id in self.prices
