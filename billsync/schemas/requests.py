# -*- coding: utf-8 -*-
# billsync/schemas/requests.py
from marshmallow import Schema, fields, validate, EXCLUDE, ValidationError

from billsync.errors import ValidationFailed


def _prefixed(prefix):
    return validate.Regexp(rf"^{prefix}[A-Za-z0-9_]+$", error=f"Must start with '{prefix}'")


class CheckoutRequestSchema(Schema):
    """Body of POST /api/billing/checkout."""

    class Meta:
        unknown = EXCLUDE

    price_id = fields.Str(required=True, data_key="priceId",
                          validate=validate.Length(min=1, max=255))
    user_id = fields.Str(required=True, data_key="userId",
                         validate=validate.Length(min=1, max=64))
    email = fields.Email(load_default=None)
    return_url = fields.Url(load_default=None, data_key="returnUrl", require_tld=False)
    success_url = fields.Url(load_default=None, data_key="successUrl", require_tld=False)
    cancel_url = fields.Url(load_default=None, data_key="cancelUrl", require_tld=False)


class PortalRequestSchema(Schema):
    """Body of POST /api/billing/portal."""

    class Meta:
        unknown = EXCLUDE

    customer_id = fields.Str(load_default=None, data_key="customerId", validate=_prefixed("cus_"))
    return_url = fields.Url(load_default=None, data_key="returnUrl", require_tld=False)


class CancelRequestSchema(Schema):
    """Body of POST /api/billing/cancel."""

    class Meta:
        unknown = EXCLUDE

    subscription_id = fields.Str(required=True, data_key="subscriptionId",
                                 validate=_prefixed("sub_"))
    user_id = fields.Str(required=True, data_key="userId",
                         validate=validate.Length(min=1, max=64))


class SubscriptionQuerySchema(Schema):
    """Query string / body of the subscription read endpoint."""

    class Meta:
        unknown = EXCLUDE

    user_id = fields.Str(load_default=None, data_key="userId",
                         validate=validate.Length(min=1, max=64))


def load_request(schema: Schema, data):
    """Validate ``data`` with ``schema``; field errors become a 400 ValidationFailed."""
    try:
        return schema.load(data or {})
    except ValidationError as e:
        raise ValidationFailed(details=e.messages)
