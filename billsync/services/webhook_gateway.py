# -*- coding: utf-8 -*-
"""
Event ingestion gateway for processor webhooks.

Verifies the signature over the exact raw body, parses the envelope into a
typed event, skips event ids already in the dedup ledger, dispatches to the
reconciliation engine and commits the mutation together with its ledger row.

Status policy (the processor retries on anything but 2xx):
- 400: signature missing or invalid, nothing written
- 500: webhook secret missing, or a recoverable store/processor failure
- 200: processed, duplicate, ignored, dropped or malformed
"""
import json
from typing import Any, Dict, NamedTuple, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from billsync.errors import (
    MalformedEvent,
    ProcessorNotConfigured,
    ProcessorUnavailable,
    SignatureInvalid,
    StoreUnavailable,
)
from billsync.infra.log import get_logger
from billsync.models.webhook_event import ProcessedWebhookEvent
from billsync.schemas.events import parse_event
from billsync.services.reconciliation import APPLIED, SKIPPED
from billsync.services.structured_logging import log_signature_failure

logger = get_logger('billsync.webhooks')

DUPLICATE = "duplicate"
MALFORMED = "malformed"
FAILED = "failed"

# Outcomes that make a redelivery pointless. Dropped events stay out of the
# ledger so a manual resend can apply them once the local record exists.
LEDGER_OUTCOMES = (APPLIED, SKIPPED)


class WebhookResult(NamedTuple):
    status_code: int
    body: Dict[str, Any]
    outcome: str
    event_type: Optional[str] = None


def _received(outcome: str, event_type: Optional[str] = None) -> WebhookResult:
    return WebhookResult(200, {"received": True}, outcome, event_type)


class WebhookGateway:
    """Stateless per request; all state lives in the store and the ledger."""

    def __init__(self, engine, store, secret: str, tolerance: int = 300, metrics=None):
        self.engine = engine
        self.store = store
        self.secret = secret
        self.tolerance = tolerance
        self.metrics = metrics

    # --- verification ---
    def verify(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Check the signature over the raw body and decode it."""
        if not self.secret:
            raise ProcessorNotConfigured("STRIPE_WEBHOOK_SECRET missing")
        if not sig_header:
            raise SignatureInvalid("Missing signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalid("Payload is not valid UTF-8")
        try:
            stripe.WebhookSignature.verify_header(body, sig_header, self.secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(str(e))
        try:
            return json.loads(body)
        except ValueError as e:
            raise MalformedEvent("Body is not valid JSON", details=str(e))

    # --- ledger ---
    def already_processed(self, event_id: str) -> bool:
        stmt = select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
        return self.store.session.execute(stmt).first() is not None

    def record(self, event_id: str, event_type: str, outcome: str):
        self.store.session.add(ProcessedWebhookEvent(
            event_id=event_id, event_type=event_type, outcome=outcome))

    # --- entry point ---
    def handle(self, payload: bytes, sig_header: Optional[str]) -> WebhookResult:
        try:
            envelope = self.verify(payload, sig_header)
        except ProcessorNotConfigured as e:
            logger.error(f"Webhook rejected: {e.message}")
            return WebhookResult(500, {"error": "webhook_not_configured",
                                       "message": "Webhook not configured"}, FAILED)
        except SignatureInvalid as e:
            log_signature_failure(e.message, path="/webhooks/stripe")
            if self.metrics:
                self.metrics.record_signature_failure()
            return WebhookResult(400, e.to_dict(), "signature_invalid")
        except MalformedEvent as e:
            return self._finish(_received(MALFORMED), reason=e.message)

        event_type = envelope.get("type") if isinstance(envelope, dict) else None
        logger.info("Webhook received", event_type='webhook_received',
                    event_id=envelope.get("id") if isinstance(envelope, dict) else None,
                    processor_event_type=event_type)
        try:
            event = parse_event(envelope)
        except MalformedEvent as e:
            return self._finish(_received(MALFORMED, event_type), reason=e.message,
                                details=e.details)

        return self._finish(self._dispatch(event), event_id=event.id)

    def _dispatch(self, event) -> WebhookResult:
        try:
            if self.already_processed(event.id):
                logger.info(f"Duplicate delivery of {event.id}", event_type='webhook_duplicate',
                            event_id=event.id)
                return _received(DUPLICATE, event.type)
            outcome = self.engine.apply(event)
            if outcome in LEDGER_OUTCOMES:
                self.record(event.id, event.type, outcome)
            self.store.commit()
            return _received(outcome, event.type)
        except IntegrityError:
            # a concurrent delivery of the same event committed first
            self.store.rollback()
            return _received(DUPLICATE, event.type)
        except MalformedEvent as e:
            self.store.rollback()
            logger.warning(f"Dropping {event.type} {event.id}: {e.message}", event_id=event.id)
            return _received(MALFORMED, event.type)
        except (StoreUnavailable, ProcessorUnavailable, ProcessorNotConfigured) as e:
            self.store.rollback()
            logger.error(f"Webhook {event.type} {event.id} failed, processor will retry: {e.message}",
                         event_id=event.id, error=e.code)
            return WebhookResult(500, {"error": e.code, "message": e.message}, FAILED, event.type)
        except SQLAlchemyError:
            self.store.rollback()
            logger.exception(f"Store error handling {event.type} {event.id}", event_id=event.id)
            return WebhookResult(500, {"error": "store_error",
                                       "message": "Webhook processing failed"}, FAILED, event.type)
        except Exception:
            self.store.rollback()
            logger.exception(f"Unexpected error handling {event.type} {event.id}", event_id=event.id)
            return WebhookResult(500, {"error": "webhook_error",
                                       "message": "Webhook processing failed"}, FAILED, event.type)

    def _finish(self, result: WebhookResult, **context) -> WebhookResult:
        event_type = result.event_type or "unknown"
        logger.log_webhook_event(result.outcome, event_type, **context)
        if self.metrics:
            self.metrics.record_webhook_event(event_type, result.outcome)
        return result
