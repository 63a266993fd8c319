# -*- coding: utf-8 -*-

from flask import Blueprint, jsonify
import time

from billsync.services.context import get_billing_context

health_bp = Blueprint('health', __name__)

SERVICE_NAME = 'billsync'


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check (available at both /health and /healthz)."""
    return jsonify({
        'status': 'healthy',
        'service': SERVICE_NAME,
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check: the subscription store must answer."""
    context = get_billing_context()
    checks = {
        'database': context.store.ping(),
        'processor_configured': context.processor.configured,
    }
    ready = checks['database']
    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'service': SERVICE_NAME,
        'timestamp': time.time(),
        'checks': checks
    }), 200 if ready else 503
