# -*- coding: utf-8 -*-
"""
Checkout/portal session issuer and caller-initiated subscription operations.

Session issuance never writes the subscription record: the record only
changes once the corresponding processor event arrives. The caller's
identity always comes from the verified token, never from the request body.
"""
from typing import Any, Dict, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from billsync.errors import (
    OwnershipError,
    ProcessorRejected,
    ProcessorResourceMissing,
    SubscriptionNotFound,
    ValidationFailed,
)
from billsync.infra.log import get_logger
from billsync.models.subscription import Subscription, SubscriptionStatus, from_unix
from billsync.schemas.events import SubscriptionObject
from billsync.services.reconciliation import USER_ID_METADATA_KEYS, subscription_fields
from billsync.services.structured_logging import log_ownership_violation

logger = get_logger('billsync.sessions')

CHECKOUT = "checkout"
PORTAL = "portal"


def with_query(url: str, **params) -> str:
    """Append query parameters to ``url`` keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items())
    return urlunsplit(parts._replace(query=urlencode(query, safe="{}")))


class SessionIssuer:
    """Synchronous calls on behalf of an authenticated caller."""

    def __init__(self, store, processor, catalog, trial_period_days: int = 0,
                 checkout_return_url: str = '', portal_return_url: str = '', metrics=None):
        self.store = store
        self.processor = processor
        self.catalog = catalog
        self.trial_period_days = trial_period_days
        self.checkout_return_url = checkout_return_url
        self.portal_return_url = portal_return_url
        self.metrics = metrics

    @classmethod
    def from_config(cls, config, store, processor, catalog, metrics=None) -> 'SessionIssuer':
        return cls(
            store, processor, catalog,
            trial_period_days=int(config.get('BILLSYNC_TRIAL_PERIOD_DAYS') or 0),
            checkout_return_url=config.get('BILLSYNC_CHECKOUT_RETURN_URL') or '',
            portal_return_url=config.get('BILLSYNC_PORTAL_RETURN_URL') or '',
            metrics=metrics,
        )

    def _require_owner(self, caller_id: str, user_id: Optional[str], resource: str):
        if user_id is not None and user_id != caller_id:
            log_ownership_violation(caller_id, resource, requested_user_id=user_id)
            raise OwnershipError()

    def _record_session(self, kind: str, status: str):
        if self.metrics:
            self.metrics.record_session(kind, status)

    # --- checkout ---
    def create_checkout(self, caller_id: str, data: Dict[str, Any]) -> Dict[str, str]:
        """
        Create a hosted checkout session for the caller.

        ``data`` is a loaded CheckoutRequestSchema. Returns ``{url, sessionId}``.
        """
        self._require_owner(caller_id, data['user_id'], 'checkout')

        price_id = data['price_id']
        if not self.catalog.is_known_price(price_id):
            raise ValidationFailed(f"Unknown price: {price_id}", details={'priceId': ['Unknown price']})

        return_url = data.get('return_url') or self.checkout_return_url
        success_url = data.get('success_url') or (
            return_url and with_query(return_url, checkout='success', session_id='{CHECKOUT_SESSION_ID}'))
        cancel_url = data.get('cancel_url') or (return_url and with_query(return_url, checkout='canceled'))
        if not success_url or not cancel_url:
            raise ValidationFailed("returnUrl is required", details={'returnUrl': ['Missing data for required field.']})

        metadata = {USER_ID_METADATA_KEYS[0]: caller_id}
        params = {
            'mode': 'subscription',
            'line_items': [{'price': price_id, 'quantity': 1}],
            'success_url': success_url,
            'cancel_url': cancel_url,
            'client_reference_id': caller_id,
            'metadata': metadata,
            'subscription_data': {'metadata': dict(metadata)},
            'allow_promotion_codes': True,
        }
        if self.trial_period_days > 0:
            params['subscription_data']['trial_period_days'] = self.trial_period_days

        record = self.store.get_by_user(caller_id)
        if record and record.processor_customer_id:
            params['customer'] = record.processor_customer_id
        elif data.get('email'):
            params['customer_email'] = data['email']

        try:
            session = self.processor.create_checkout_session(params)
        except Exception:
            self._record_session(CHECKOUT, 'error')
            raise

        self._record_session(CHECKOUT, 'created')
        logger.info("Checkout session issued", event_type='session_issued', kind=CHECKOUT,
                    user_id=caller_id, session_id=session.get('id'), price_id=price_id)
        return {'url': session['url'], 'sessionId': session.get('id')}

    # --- portal ---
    def create_portal(self, caller_id: str, customer_id: Optional[str] = None,
                      return_url: Optional[str] = None) -> Dict[str, str]:
        record = self.store.get_by_user(caller_id)
        stored_customer = record.processor_customer_id if record else None
        if not stored_customer:
            raise SubscriptionNotFound("No billing account found for this user")
        if customer_id and customer_id != stored_customer:
            log_ownership_violation(caller_id, 'portal', requested_customer_id=customer_id)
            raise OwnershipError("You do not have access to this billing account")

        return_url = return_url or self.portal_return_url
        if not return_url:
            raise ValidationFailed("returnUrl is required", details={'returnUrl': ['Missing data for required field.']})

        try:
            session = self.processor.create_portal_session(stored_customer, return_url)
        except ProcessorResourceMissing:
            self._record_session(PORTAL, 'error')
            raise SubscriptionNotFound("Billing account no longer exists")
        except Exception:
            self._record_session(PORTAL, 'error')
            raise

        self._record_session(PORTAL, 'created')
        logger.info("Portal session issued", event_type='session_issued', kind=PORTAL,
                    user_id=caller_id, customer_id=stored_customer)
        return {'url': session['url']}

    # --- subscription record ---
    def _owned_record(self, caller_id: str, subscription_id: str) -> Subscription:
        record = self.store.get_by_user(caller_id)
        if record is None or record.processor_subscription_id != subscription_id:
            log_ownership_violation(caller_id, 'subscription', subscription_id=subscription_id)
            raise OwnershipError()
        return record

    def cancel(self, caller_id: str, subscription_id: str, user_id: str) -> Dict[str, Any]:
        """
        Relay a cancel-at-period-end request to the processor.

        Only the flag and period bounds returned by the processor are written
        locally; the status change arrives later as a processor event.
        """
        self._require_owner(caller_id, user_id, 'cancel')
        self._owned_record(caller_id, subscription_id)

        payload = self.processor.cancel_at_period_end(subscription_id)
        try:
            sub = SubscriptionObject.model_validate(payload)
        except ValueError:
            raise ProcessorRejected("Billing provider returned an unexpected response")

        period_start, period_end = sub.period_bounds
        fields = {'cancel_at_period_end': bool(sub.cancel_at_period_end)}
        if period_start is not None:
            fields['current_period_start'] = from_unix(period_start)
        if period_end is not None:
            fields['current_period_end'] = from_unix(period_end)
        self.store.update_subscription_fields(caller_id, subscription_id, fields)
        self.store.commit()

        logger.info("Subscription set to cancel at period end", user_id=caller_id,
                    subscription_id=subscription_id)
        return {'success': True, 'subscription': self.store.get_by_user(caller_id).to_dict()}

    def get_subscription(self, caller_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        self._require_owner(caller_id, user_id, 'subscription')
        record = self.store.get_by_user(caller_id)
        return record.to_dict() if record else None

    def sync(self, caller_id: str) -> Optional[Dict[str, Any]]:
        """Refresh the caller's record from the processor's current view."""
        record = self.store.get_by_user(caller_id)
        if record is None:
            return None
        subscription_id = record.processor_subscription_id
        if not subscription_id:
            return record.to_dict()

        try:
            payload = self.processor.retrieve_subscription(subscription_id)
        except ProcessorResourceMissing:
            logger.warning(f"Subscription {subscription_id} missing at processor, marking canceled",
                           user_id=caller_id, subscription_id=subscription_id)
            self.store.update_subscription_fields(
                caller_id, subscription_id, {'status': SubscriptionStatus.CANCELED}, keep_canceled=False)
            self.store.commit()
            return self.store.get_by_user(caller_id).to_dict()

        try:
            sub = SubscriptionObject.model_validate(payload)
        except ValueError:
            raise ProcessorRejected("Billing provider returned an unexpected response")

        rows = self.store.update_subscription_fields(
            caller_id, subscription_id, subscription_fields(sub, self.catalog))
        self.store.commit()
        logger.info("Subscription synced from processor", user_id=caller_id,
                    subscription_id=subscription_id, changed=bool(rows))
        return self.store.get_by_user(caller_id).to_dict()
