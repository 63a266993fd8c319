# -*- coding: utf-8 -*-
"""
Error taxonomy for the billing core.

Every error carries an HTTP status and a machine-readable code so the
blueprints and the app-level error handlers can render a consistent
``{"error": code, "message": ...}`` body.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    status_code = 500
    code = "billing_error"
    message = "Billing operation failed"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationRequired(BillingError):
    status_code = 401
    code = "auth_required"
    message = "Authentication required"


class OwnershipError(BillingError):
    """Caller tried to act on a subscription/customer that is not theirs."""
    status_code = 403
    code = "forbidden"
    message = "You do not have access to this subscription"


class ValidationFailed(BillingError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request data"


class SubscriptionNotFound(BillingError):
    status_code = 404
    code = "not_found"
    message = "No subscription found"


class ProcessorNotConfigured(BillingError):
    status_code = 501
    code = "billing_not_configured"
    message = "Billing service not configured"


class ProcessorRejected(BillingError):
    """The processor refused the parameters (bad price, unknown customer...)."""
    status_code = 400
    code = "processor_rejected"
    message = "Billing provider rejected the request"


class ProcessorUnavailable(BillingError):
    """Transient processor failure; safe to retry."""
    status_code = 502
    code = "processor_unavailable"
    message = "Billing service temporarily unavailable, please try again"


class ProcessorResourceMissing(ProcessorRejected):
    code = "processor_resource_missing"
    message = "Billing provider has no such resource"


class StoreUnavailable(BillingError):
    status_code = 503
    code = "store_unavailable"
    message = "Subscription store unavailable, please try again"


class SignatureInvalid(BillingError):
    status_code = 400
    code = "invalid_signature"
    message = "Invalid webhook signature"


class MalformedEvent(BillingError):
    """Event payload is missing required fields; dropped, never retried."""
    status_code = 400
    code = "malformed_event"
    message = "Malformed event payload"
