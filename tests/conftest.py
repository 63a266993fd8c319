import copy
import hashlib
import hmac
import json
import os
import tempfile
import time
import uuid

import pytest

from billsync.errors import ProcessorResourceMissing

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret-key-long-enough-for-hs256"
PERIOD_START = 1700000000
PERIOD_END = 1702592000


class FakeProcessor:
    """In-memory stand-in for StripeProcessor; records every call."""

    configured = True

    def __init__(self):
        self.subscriptions = {}
        self.calls = []
        self.fail_with = None

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]

    def retrieve_subscription(self, subscription_id):
        self._call("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise ProcessorResourceMissing(f"No such subscription: '{subscription_id}'")
        return copy.deepcopy(self.subscriptions[subscription_id])

    def cancel_at_period_end(self, subscription_id):
        self._call("cancel_at_period_end", subscription_id)
        if subscription_id not in self.subscriptions:
            raise ProcessorResourceMissing(f"No such subscription: '{subscription_id}'")
        self.subscriptions[subscription_id]["cancel_at_period_end"] = True
        return copy.deepcopy(self.subscriptions[subscription_id])

    def create_checkout_session(self, params):
        self._call("create_checkout_session", params)
        return {"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}

    def create_portal_session(self, customer_id, return_url):
        self._call("create_portal_session", customer_id, return_url)
        return {"id": "bps_test_123", "url": "https://billing.stripe.com/p/session/test_123"}


def build_subscription(sub_id="sub_1", customer="cus_1", status="active",
                       price="price_premium", cancel_at_period_end=False, **extra):
    payload = {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": PERIOD_START,
        "current_period_end": PERIOD_END,
        "cancel_at_period_end": cancel_at_period_end,
        "items": {"data": [{"price": {"id": price}}]},
        "metadata": {},
    }
    payload.update(extra)
    return payload


def build_event(event_type, obj, event_id=None, created=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Stripe-Signature header: t=<ts>,v1=hex(hmac_sha256(secret, "<ts>.<body>"))."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp()
    from billsync.factory import create_app
    from billsync.database import db
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "JWT_SECRET_KEY": JWT_SECRET,
        "STRIPE_SECRET_KEY": "sk_test_dummy_key_for_testing",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "BILLSYNC_PLAN_CATALOG": {"price_premium": "premium", "price_business": "business"},
        "BILLSYNC_CHECKOUT_RETURN_URL": "https://app.example.com/billing",
        "BILLSYNC_LOG_JSON": False,
    })
    app.extensions["billsync"].use_processor(FakeProcessor())
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def context(app):
    return app.extensions["billsync"]


@pytest.fixture
def processor(context):
    return context.processor


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers carrying a token for the given user id."""
    from flask_jwt_extended import create_access_token

    def _headers(user_id):
        with app.app_context():
            token = create_access_token(identity=user_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def post_event(client):
    """Sign and deliver an event envelope to the webhook endpoint."""

    def _post(event, secret=WEBHOOK_SECRET, signature=None):
        body = json.dumps(event).encode("utf-8")
        return client.post(
            "/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": signature or sign_payload(body, secret)},
        )

    return _post


@pytest.fixture
def record(store):
    """Fresh read of a user's subscription record."""

    def _record(user_id):
        store.rollback()
        return store.get_by_user(user_id)

    return _record


@pytest.fixture
def checkout_completed():
    """checkout.session.completed for user u1 / cus_1 / sub_1 unless overridden."""

    def _event(user_id="u1", customer="cus_1", subscription="sub_1", event_id=None,
               created=None, metadata_key="supabaseUserId"):
        session = {
            "id": f"cs_{uuid.uuid4().hex[:12]}",
            "object": "checkout.session",
            "mode": "subscription",
            "customer": customer,
            "subscription": subscription,
            "metadata": {metadata_key: user_id} if user_id else {},
        }
        return build_event("checkout.session.completed", session, event_id=event_id, created=created)

    return _event


@pytest.fixture
def make_subscription():
    return build_subscription


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def signer():
    return sign_payload
