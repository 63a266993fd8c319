# -*- coding: utf-8 -*-
"""Subscription read path for the signed-in user."""
from flask import Blueprint, jsonify, request

from billsync.infra.auth import current_user_id, require_user
from billsync.schemas.requests import SubscriptionQuerySchema, load_request
from billsync.services.context import get_billing_context
from billsync.services.entitlements import entitlement_summary

subscription_bp = Blueprint('subscription', __name__, url_prefix='/api/subscription')


@subscription_bp.route('', methods=['GET', 'POST'])
@require_user
def get_subscription():
    """Return {subscription: record | null}; an explicit userId must be the caller's."""
    if request.method == 'POST':
        raw = request.get_json(silent=True) or {}
    else:
        raw = request.args.to_dict()
    data = load_request(SubscriptionQuerySchema(), raw)
    record = get_billing_context().sessions.get_subscription(current_user_id(), data.get('user_id'))
    return jsonify({'subscription': record}), 200


@subscription_bp.route('/sync', methods=['POST'])
@require_user
def sync_subscription():
    """Refresh the caller's record from the processor."""
    record = get_billing_context().sessions.sync(current_user_id())
    return jsonify({'subscription': record}), 200


@subscription_bp.route('/entitlement', methods=['GET'])
@require_user
def get_entitlement():
    user_id = current_user_id()
    record = get_billing_context().store.get_by_user(user_id)
    return jsonify(entitlement_summary(user_id, record)), 200
