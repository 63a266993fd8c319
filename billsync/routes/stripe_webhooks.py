# -*- coding: utf-8 -*-
"""
Stripe webhook endpoint.

The body is handed to the gateway unparsed; the signature covers the exact
bytes the processor sent.
"""
from flask import Blueprint, request, jsonify

from billsync.services.context import get_billing_context

stripe_webhooks_bp = Blueprint('stripe_webhooks', __name__)


@stripe_webhooks_bp.route('/webhooks/stripe', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe webhook events.

    Events handled:
    - checkout.session.completed: create/refresh the user's subscription record
    - customer.subscription.created/updated/paused/resumed: status, period, flags
    - customer.subscription.deleted: mark canceled
    - invoice.payment_succeeded / invoice.paid: mark active
    - invoice.payment_failed: mark past_due
    """
    result = get_billing_context().gateway.handle(
        request.get_data(cache=False),
        request.headers.get('Stripe-Signature'),
    )
    return jsonify(result.body), result.status_code
