# -*- coding: utf-8 -*-
"""
Stripe adapter tests.

The StripeClient is replaced by a MagicMock; no network access.
"""

from unittest.mock import MagicMock

import pytest
import stripe

from billsync.errors import (
    ProcessorNotConfigured,
    ProcessorRejected,
    ProcessorResourceMissing,
    ProcessorUnavailable,
)
from billsync.services.processor import StripeProcessor, as_dict


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def processor(client):
    return StripeProcessor(api_key="sk_test_dummy", client=client)


class TestStripeProcessorCalls:

    def test_retrieve_subscription(self, processor, client):
        client.subscriptions.retrieve.return_value = {"id": "sub_1", "status": "active"}

        assert processor.retrieve_subscription("sub_1") == {"id": "sub_1", "status": "active"}
        client.subscriptions.retrieve.assert_called_once_with("sub_1")

    def test_cancel_at_period_end(self, processor, client):
        """Test that cancellation is an update, never an immediate delete."""
        client.subscriptions.update.return_value = {"id": "sub_1", "cancel_at_period_end": True}

        processor.cancel_at_period_end("sub_1")

        client.subscriptions.update.assert_called_once_with("sub_1", params={"cancel_at_period_end": True})
        client.subscriptions.cancel.assert_not_called()

    def test_create_portal_session(self, processor, client):
        client.billing_portal.sessions.create.return_value = {"url": "https://billing.stripe.com/p/x"}

        result = processor.create_portal_session("cus_1", "https://app.example.com")

        assert result["url"] == "https://billing.stripe.com/p/x"
        client.billing_portal.sessions.create.assert_called_once_with(
            params={"customer": "cus_1", "return_url": "https://app.example.com"})

    def test_create_checkout_session(self, processor, client):
        client.checkout.sessions.create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/x"}

        result = processor.create_checkout_session({"mode": "subscription"})

        assert result["id"] == "cs_1"
        client.checkout.sessions.create.assert_called_once_with(params={"mode": "subscription"})


class TestStripeErrorMapping:
    """SDK errors are translated at the adapter boundary."""

    def test_resource_missing(self, processor, client):
        client.subscriptions.retrieve.side_effect = stripe.InvalidRequestError(
            "No such subscription: 'sub_x'", "id", code="resource_missing")

        with pytest.raises(ProcessorResourceMissing):
            processor.retrieve_subscription("sub_x")

    def test_invalid_request(self, processor, client):
        client.checkout.sessions.create.side_effect = stripe.InvalidRequestError(
            "No such price: 'price_x'", "line_items[0][price]")

        with pytest.raises(ProcessorRejected) as exc:
            processor.create_checkout_session({})
        assert not isinstance(exc.value, ProcessorResourceMissing)

    @pytest.mark.parametrize("error", [
        stripe.APIConnectionError("Network down"),
        stripe.RateLimitError("Too many requests"),
        stripe.APIError("Internal error"),
        stripe.AuthenticationError("Invalid API key"),
    ])
    def test_transient_errors(self, processor, client, error):
        """Test that connection, rate-limit, API and auth errors are 'try again'."""
        client.subscriptions.retrieve.side_effect = error

        with pytest.raises(ProcessorUnavailable):
            processor.retrieve_subscription("sub_1")


class TestStripeProcessorConfig:

    def test_missing_api_key(self):
        processor = StripeProcessor(api_key="")

        assert processor.configured is False
        with pytest.raises(ProcessorNotConfigured):
            processor.retrieve_subscription("sub_1")

    def test_client_built_lazily(self):
        processor = StripeProcessor.from_config({
            "STRIPE_SECRET_KEY": "sk_test_dummy",
            "STRIPE_API_TIMEOUT": 5,
            "STRIPE_MAX_NETWORK_RETRIES": 1,
        })

        assert processor.timeout == 5
        assert processor.max_network_retries == 1
        assert isinstance(processor.client, stripe.StripeClient)


def test_as_dict_from_stripe_object():
    obj = stripe.StripeObject(id="sub_1")
    obj["status"] = "active"

    assert as_dict(obj) == {"id": "sub_1", "status": "active"}
    assert as_dict(None) is None
