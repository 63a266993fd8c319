# -*- coding: utf-8 -*-
"""
Reconciliation engine.

Translates one processor event into one idempotent mutation of the
entitlement store. Handlers only assert facts true as of the event payload;
every write is an unconditional field-level upsert/update keyed by a stable
identifier, so redelivered or concurrently processed events converge.

Transition table:
- checkout.session.completed: upsert the user's record (status=active)
- customer.subscription.created/updated/paused/resumed: status, period, flags
- customer.subscription.deleted: status=canceled (terminal for that subscription)
- invoice.payment_succeeded / invoice.paid: status=active
- invoice.payment_failed: status=past_due
- anything else: ignored
"""
from typing import Any, Dict, Optional

from billsync.errors import MalformedEvent, ProcessorResourceMissing
from billsync.infra.log import get_logger
from billsync.models.subscription import SubscriptionStatus, from_unix, utcnow
from billsync.schemas.events import (
    CheckoutCompletedEvent,
    CheckoutSessionObject,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    ProcessorEvent,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
    SubscriptionObject,
)
from billsync.services.plan_catalog import PlanCatalog, map_processor_status

logger = get_logger('billsync.reconciliation')

# Metadata keys attached at session creation, in lookup order.
USER_ID_METADATA_KEYS = ("supabaseUserId", "userId")

APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"
DROPPED = "dropped"


def resolve_session_user(session: CheckoutSessionObject) -> Optional[str]:
    """User id attached to a checkout session when it was created; never the email."""
    for key in USER_ID_METADATA_KEYS:
        value = session.metadata.get(key)
        if value:
            return str(value)
    return session.client_reference_id or None


def subscription_fields(sub: SubscriptionObject, catalog: PlanCatalog) -> Dict[str, Any]:
    """Store columns carried by a processor subscription object."""
    period_start, period_end = sub.period_bounds
    fields = {
        "processor_subscription_id": sub.id,
        "status": map_processor_status(sub.status),
        "current_period_start": from_unix(period_start),
        "current_period_end": from_unix(period_end),
        "trial_start": from_unix(sub.trial_start),
        "trial_end": from_unix(sub.trial_end),
        "cancel_at_period_end": bool(sub.cancel_at_period_end),
        "canceled_at": from_unix(sub.canceled_at),
    }
    if sub.price_id:
        fields["price_id"] = sub.price_id
        fields["plan_identifier"] = catalog.plan_for_price(sub.price_id)
    return fields


class ReconciliationEngine:
    """Event kind -> idempotent store mutation."""

    def __init__(self, store, processor, catalog: PlanCatalog, reject_stale_events: bool = False):
        self.store = store
        self.processor = processor
        self.catalog = catalog
        self.reject_stale_events = reject_stale_events
        self._handlers = {
            CheckoutCompletedEvent: self.handle_checkout_completed,
            SubscriptionChangedEvent: self.handle_subscription_changed,
            SubscriptionDeletedEvent: self.handle_subscription_deleted,
            InvoicePaidEvent: self.handle_invoice_paid,
            InvoicePaymentFailedEvent: self.handle_invoice_payment_failed,
        }

    def apply(self, event: ProcessorEvent) -> str:
        """Apply one event; returns its outcome. Does not commit."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.info(f"Unhandled event type: {event.type}", event_id=event.id)
            return IGNORED
        return handler(event)

    # --- helpers ---
    def _provenance(self, event: ProcessorEvent) -> Dict[str, Any]:
        return {
            "last_event_id": event.id,
            "last_event_at": from_unix(event.created) if event.created else utcnow(),
        }

    def _stale_cutoff(self, event: ProcessorEvent):
        if self.reject_stale_events and event.created:
            return from_unix(event.created)
        return None

    def _drop(self, event: ProcessorEvent, reason: str, **context) -> str:
        logger.warning(f"Dropping {event.type} {event.id}: {reason}", event_type='event_dropped',
                       event_id=event.id, processor_event_type=event.type,
                       reason=reason, **context)
        return DROPPED

    def _load_subscription(self, session: CheckoutSessionObject) -> SubscriptionObject:
        if isinstance(session.subscription, SubscriptionObject):
            return session.subscription
        payload = self.processor.retrieve_subscription(session.subscription_id)
        try:
            return SubscriptionObject.model_validate(payload)
        except ValueError as e:
            raise MalformedEvent(f"Processor returned an invalid subscription {session.subscription_id}",
                                 details=str(e))

    def _apply_update(self, event, user_id, subscription_id, fields, keep_canceled=True, honor_stale=True):
        rows = self.store.update_subscription_fields(
            user_id, subscription_id, dict(fields, **self._provenance(event)),
            keep_canceled=keep_canceled,
            not_after=self._stale_cutoff(event) if honor_stale else None,
        )
        if not rows:
            logger.info(f"{event.type} {event.id} left record unchanged "
                        f"(canceled, stale, or a different subscription)",
                        event_id=event.id, user_id=user_id, subscription_id=subscription_id)
            return SKIPPED
        logger.info(f"Updated subscription for user {user_id} from {event.type}", event_type='subscription_updated',
                    event_id=event.id, user_id=user_id, subscription_id=subscription_id,
                    status=fields.get("status"))
        return APPLIED

    # --- handlers ---
    def handle_checkout_completed(self, event: CheckoutCompletedEvent) -> str:
        session = event.session
        user_id = resolve_session_user(session)
        if not user_id:
            return self._drop(event, "checkout session has no user metadata", session_id=session.id)
        if not session.subscription_id:
            return self._drop(event, "checkout session has no subscription",
                              session_id=session.id, mode=session.mode)

        try:
            sub = self._load_subscription(session)
        except ProcessorResourceMissing:
            return self._drop(event, "subscription no longer exists at processor",
                              subscription_id=session.subscription_id)

        customer_id = session.customer or sub.customer
        existing = self.store.get_by_user(user_id)
        if existing and existing.processor_customer_id and existing.processor_customer_id != customer_id:
            logger.log_security_event(
                "customer_remap_refused",
                severity='warning',
                user_id=user_id,
                stored_customer_id=existing.processor_customer_id,
                event_customer_id=customer_id,
                event_id=event.id,
            )
            return self._drop(event, "checkout customer differs from the stored customer",
                              user_id=user_id, subscription_id=sub.id)

        fields = subscription_fields(sub, self.catalog)
        fields.update(
            processor_customer_id=customer_id,
            status=SubscriptionStatus.ACTIVE,
            **self._provenance(event),
        )
        rows = self.store.upsert_by_user(user_id, fields, not_after=self._stale_cutoff(event))
        if not rows:
            logger.info(f"{event.type} {event.id} left record unchanged "
                        f"(canceled, stale, or another customer)",
                        event_id=event.id, user_id=user_id, subscription_id=sub.id)
            return SKIPPED
        logger.info(f"Upserted subscription for user {user_id}", event_type='subscription_upserted',
                    event_id=event.id, user_id=user_id,
                    customer_id=customer_id, subscription_id=sub.id)
        return APPLIED

    def handle_subscription_changed(self, event: SubscriptionChangedEvent) -> str:
        sub = event.subscription
        user_id = self.store.find_user_id(subscription_id=sub.id, customer_id=sub.customer)
        if not user_id:
            return self._drop(event, "no local record for subscription/customer",
                              subscription_id=sub.id, customer_id=sub.customer)
        return self._apply_update(event, user_id, sub.id, subscription_fields(sub, self.catalog))

    def handle_subscription_deleted(self, event: SubscriptionDeletedEvent) -> str:
        sub = event.subscription
        user_id = self.store.find_user_id(subscription_id=sub.id, customer_id=sub.customer)
        if not user_id:
            return self._drop(event, "no local record for subscription/customer",
                              subscription_id=sub.id, customer_id=sub.customer)
        # cancellation is terminal and wins regardless of arrival order
        return self._apply_update(
            event, user_id, sub.id,
            {"status": SubscriptionStatus.CANCELED},
            keep_canceled=False, honor_stale=False,
        )

    def _handle_invoice(self, event, status: str) -> str:
        invoice = event.invoice
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info(f"Invoice {invoice.id} is not a subscription invoice; ignoring",
                        event_id=event.id)
            return IGNORED
        user_id = self.store.find_user_id(subscription_id=subscription_id, customer_id=invoice.customer)
        if not user_id:
            return self._drop(event, "no local record for subscription/customer",
                              subscription_id=subscription_id, customer_id=invoice.customer)
        # period bounds belong to the subscription events
        return self._apply_update(event, user_id, subscription_id, {"status": status})

    def handle_invoice_paid(self, event: InvoicePaidEvent) -> str:
        return self._handle_invoice(event, SubscriptionStatus.ACTIVE)

    def handle_invoice_payment_failed(self, event: InvoicePaymentFailedEvent) -> str:
        return self._handle_invoice(event, SubscriptionStatus.PAST_DUE)
