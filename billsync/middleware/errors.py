"""
Error handling middleware.
Renders the billing error taxonomy and database failures as consistent JSON.
"""
from flask import jsonify
from sqlalchemy.exc import OperationalError, IntegrityError

from billsync.errors import BillingError
from billsync.infra.log import get_logger

logger = get_logger('billsync.errors')


def register_error_handlers(app):
    """Register JSON error handlers on the app"""

    @app.errorhandler(BillingError)
    def handle_billing_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.code}: {e.message}", error=e.code, details=e.details)
        else:
            logger.info(f"{e.code}: {e.message}", error=e.code)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, table not found, etc.)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error(f"Database table not found: {error_msg}")
            return jsonify({
                'error': 'store_not_ready',
                'message': 'Subscription store is not initialized. Please contact support.'
            }), 503

        logger.error(f"Database operational error: {error_msg}")
        return jsonify({
            'error': 'store_unavailable',
            'message': 'Subscription store unavailable, please try again'
        }), 503

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (unique constraint)"""
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database integrity error: {error_msg}")

        if 'unique' in error_msg.lower() or 'duplicate' in error_msg.lower():
            return jsonify({
                'error': 'duplicate_entry',
                'message': 'This entry already exists'
            }), 409

        return jsonify({
            'error': 'integrity_error',
            'message': 'Data integrity constraint violated'
        }), 400


def create_subscription_required_response(status: str = 'none'):
    """Response for callers without an active subscription"""
    return jsonify({
        'error': 'subscription_required',
        'message': 'An active subscription is required for this feature',
        'status': status
    }), 402
