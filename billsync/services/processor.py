# -*- coding: utf-8 -*-
"""
Payment processor adapter (Stripe).

Wraps an explicitly constructed ``stripe.StripeClient`` with bounded network
timeouts and translates SDK errors into the billing error taxonomy. The
factory builds one per app and stores it on the BillingContext; tests swap in
a fake with the same methods.
"""
import json
from typing import Any, Dict, Optional

import stripe

from billsync.errors import (
    ProcessorNotConfigured,
    ProcessorRejected,
    ProcessorResourceMissing,
    ProcessorUnavailable,
)
from billsync.infra.log import get_logger

logger = get_logger('billsync.processor')


def as_dict(obj: Any) -> Optional[Dict[str, Any]]:
    """Plain dict view of a processor object (StripeObject renders as JSON)."""
    if obj is None:
        return None
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    if isinstance(obj, dict):
        return obj
    raise TypeError(f"Unexpected processor object: {type(obj)!r}")


class StripeProcessor:
    """Request/response calls to the processor; webhooks are verified elsewhere."""

    def __init__(self, api_key: str, timeout: int = 10, max_network_retries: int = 2,
                 client: Optional[stripe.StripeClient] = None):
        self.api_key = api_key
        self._client = client
        self.timeout = timeout
        self.max_network_retries = max_network_retries

    @classmethod
    def from_config(cls, config) -> 'StripeProcessor':
        return cls(
            api_key=config.get('STRIPE_SECRET_KEY') or '',
            timeout=int(config.get('STRIPE_API_TIMEOUT') or 10),
            max_network_retries=int(config.get('STRIPE_MAX_NETWORK_RETRIES') or 0),
        )

    @property
    def configured(self) -> bool:
        return bool(self._client or self.api_key)

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            if not self.api_key:
                raise ProcessorNotConfigured("STRIPE_SECRET_KEY missing")
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout),
                max_network_retries=self.max_network_retries,
            )
        return self._client

    def _call(self, operation: str, fn, *args, **kwargs) -> Dict[str, Any]:
        try:
            return as_dict(fn(*args, **kwargs))
        except stripe.InvalidRequestError as e:
            if getattr(e, 'code', None) == 'resource_missing':
                raise ProcessorResourceMissing(str(e.user_message or e))
            logger.warning(f"Processor rejected {operation}: {e}", operation=operation)
            raise ProcessorRejected(str(e.user_message or e))
        except stripe.CardError as e:
            raise ProcessorRejected(str(e.user_message or e))
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            logger.error(f"Processor authentication failed during {operation}: {e}",
                         operation=operation)
            raise ProcessorUnavailable("Billing service authentication failed")
        except stripe.StripeError as e:
            # APIConnectionError, RateLimitError, APIError and friends: transient
            logger.error(f"Processor error during {operation}: {e}", operation=operation)
            raise ProcessorUnavailable()

    # --- subscriptions ---
    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call('retrieve_subscription',
                          self.client.subscriptions.retrieve, subscription_id)

    def cancel_at_period_end(self, subscription_id: str) -> Dict[str, Any]:
        return self._call('cancel_at_period_end',
                          self.client.subscriptions.update, subscription_id,
                          params={'cancel_at_period_end': True})

    # --- hosted sessions ---
    def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._call('create_checkout_session',
                          self.client.checkout.sessions.create, params=params)

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        return self._call('create_portal_session',
                          self.client.billing_portal.sessions.create,
                          params={'customer': customer_id, 'return_url': return_url})
