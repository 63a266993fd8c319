# -*- coding: utf-8 -*-
"""Per-app billing collaborators, built once by the factory."""
from dataclasses import dataclass

from flask import current_app

from billsync.services.entitlement_store import SubscriptionStore
from billsync.services.plan_catalog import PlanCatalog
from billsync.services.reconciliation import ReconciliationEngine
from billsync.services.session_issuer import SessionIssuer
from billsync.services.webhook_gateway import WebhookGateway

EXTENSION_KEY = "billsync"


@dataclass
class BillingContext:
    store: SubscriptionStore
    processor: object
    catalog: PlanCatalog
    engine: ReconciliationEngine
    gateway: WebhookGateway
    sessions: SessionIssuer

    def use_processor(self, processor):
        """Swap the processor client everywhere it is referenced (tests use a fake)."""
        self.processor = processor
        self.engine.processor = processor
        self.sessions.processor = processor


def build_context(config, db, processor, metrics=None) -> BillingContext:
    store = SubscriptionStore(db)
    catalog = PlanCatalog.from_config(config)
    engine = ReconciliationEngine(
        store, processor, catalog,
        reject_stale_events=bool(config.get("BILLSYNC_REJECT_STALE_EVENTS")),
    )
    gateway = WebhookGateway(
        engine, store,
        secret=config.get("STRIPE_WEBHOOK_SECRET") or "",
        tolerance=int(config.get("STRIPE_WEBHOOK_TOLERANCE") or 300),
        metrics=metrics,
    )
    sessions = SessionIssuer.from_config(config, store, processor, catalog, metrics=metrics)
    return BillingContext(store, processor, catalog, engine, gateway, sessions)


def get_billing_context() -> BillingContext:
    return current_app.extensions[EXTENSION_KEY]
