# -*- coding: utf-8 -*-
"""
Billing session routes: hosted checkout, customer portal, cancellation.

None of these write the subscription status; it follows from processor events.
"""
from flask import Blueprint, jsonify, request

from billsync.infra.auth import current_user_id, require_user
from billsync.schemas.requests import (
    CancelRequestSchema,
    CheckoutRequestSchema,
    PortalRequestSchema,
    load_request,
)
from billsync.services.context import get_billing_context

billing_bp = Blueprint('billing', __name__, url_prefix='/api/billing')


def _json():
    """Safely parse JSON body or return empty dict."""
    return (request.get_json(silent=True) or {}) if request.data else {}


@billing_bp.route('/checkout', methods=['POST'])
@require_user
def create_checkout():
    """Create a hosted checkout session for the caller; returns {url, sessionId}."""
    data = load_request(CheckoutRequestSchema(), _json())
    return jsonify(get_billing_context().sessions.create_checkout(current_user_id(), data)), 200


@billing_bp.route('/portal', methods=['POST'])
@require_user
def create_portal():
    """Create a customer portal session for the caller's billing account."""
    data = load_request(PortalRequestSchema(), _json())
    result = get_billing_context().sessions.create_portal(
        current_user_id(), data.get('customer_id'), data.get('return_url'))
    return jsonify(result), 200


@billing_bp.route('/cancel', methods=['POST'])
@require_user
def cancel_subscription():
    data = load_request(CancelRequestSchema(), _json())
    result = get_billing_context().sessions.cancel(
        current_user_id(), data['subscription_id'], data['user_id'])
    return jsonify(result), 200
