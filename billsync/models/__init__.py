# -*- coding: utf-8 -*-
from billsync.infra.db import db

from .subscription import Subscription, SubscriptionStatus
from .webhook_event import ProcessedWebhookEvent

__all__ = ["db", "Subscription", "SubscriptionStatus", "ProcessedWebhookEvent"]
