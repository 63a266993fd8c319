"""
Pydantic models for payment-processor webhook events.

The processor sends ``{id, type, created, data: {object: ...}}``. Known event
types are parsed into typed variants; everything else becomes an
``UnrecognizedEvent`` that the reconciliation engine ignores.

Validates:
- envelope: ``id`` and ``type`` are required, ``created`` is a unix timestamp
- expandable references (``customer``, ``subscription``) accept either an id
  or the expanded object and are normalized to the id
- extra processor fields are ignored, so API additions never break parsing
"""

from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from billsync.errors import MalformedEvent


def _ref_id(value: Any) -> Any:
    """Collapse an expanded processor object to its id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class _ProcessorObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SubscriptionObject(_ProcessorObject):
    id: str = Field(..., min_length=1)
    customer: str = Field(..., min_length=1)
    status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    canceled_at: Optional[int] = None
    items: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, v):
        return _ref_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, v):
        return v or {}

    def _first_item(self) -> Dict[str, Any]:
        data = (self.items or {}).get("data") or []
        return data[0] if data else {}

    @property
    def price_id(self) -> Optional[str]:
        price = self._first_item().get("price") or {}
        return price.get("id") if isinstance(price, dict) else price

    @property
    def period_bounds(self):
        # Newer API versions carry the billing period on the subscription item.
        start, end = self.current_period_start, self.current_period_end
        if start is None or end is None:
            item = self._first_item()
            start = start if start is not None else item.get("current_period_start")
            end = end if end is not None else item.get("current_period_end")
        return start, end


class CheckoutSessionObject(_ProcessorObject):
    id: str = Field(..., min_length=1)
    mode: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[Union[SubscriptionObject, str]] = None
    client_reference_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, v):
        return _ref_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, v):
        return v or {}

    @property
    def subscription_id(self) -> Optional[str]:
        if isinstance(self.subscription, SubscriptionObject):
            return self.subscription.id
        return self.subscription


class InvoiceObject(_ProcessorObject):
    id: str = Field(..., min_length=1)
    customer: Optional[str] = None
    subscription: Optional[str] = None
    parent: Optional[Dict[str, Any]] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def _ref(cls, v):
        return _ref_id(v)

    @property
    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        # 2025+ API versions moved the reference under parent.subscription_details
        details = (self.parent or {}).get("subscription_details") or {}
        return _ref_id(details.get("subscription"))


class ProcessorEvent(BaseModel):
    """Common envelope fields."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    created: Optional[int] = None


class CheckoutCompletedEvent(ProcessorEvent):
    session: CheckoutSessionObject


class SubscriptionChangedEvent(ProcessorEvent):
    """customer.subscription.created / updated / paused / resumed."""
    subscription: SubscriptionObject


class SubscriptionDeletedEvent(ProcessorEvent):
    subscription: SubscriptionObject


class InvoicePaidEvent(ProcessorEvent):
    invoice: InvoiceObject


class InvoicePaymentFailedEvent(ProcessorEvent):
    invoice: InvoiceObject


class UnrecognizedEvent(ProcessorEvent):
    pass


EVENT_TYPES: Dict[str, tuple] = {
    "checkout.session.completed": (CheckoutCompletedEvent, "session"),
    "customer.subscription.created": (SubscriptionChangedEvent, "subscription"),
    "customer.subscription.updated": (SubscriptionChangedEvent, "subscription"),
    "customer.subscription.paused": (SubscriptionChangedEvent, "subscription"),
    "customer.subscription.resumed": (SubscriptionChangedEvent, "subscription"),
    "customer.subscription.deleted": (SubscriptionDeletedEvent, "subscription"),
    "invoice.payment_succeeded": (InvoicePaidEvent, "invoice"),
    "invoice.paid": (InvoicePaidEvent, "invoice"),
    "invoice.payment_failed": (InvoicePaymentFailedEvent, "invoice"),
}


def parse_event(payload: Dict[str, Any]) -> ProcessorEvent:
    """
    Turn a decoded event envelope into its typed variant.

    Raises MalformedEvent when the envelope or a known payload is missing
    required fields.
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Event envelope must be a JSON object")

    try:
        envelope = ProcessorEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEvent("Invalid event envelope", details=e.errors(include_url=False))

    model: Type[ProcessorEvent]
    model, field = EVENT_TYPES.get(envelope.type, (UnrecognizedEvent, None))
    if field is None:
        return UnrecognizedEvent(id=envelope.id, type=envelope.type, created=envelope.created)

    data = payload.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    try:
        return model.model_validate({
            "id": envelope.id,
            "type": envelope.type,
            "created": envelope.created,
            field: obj,
        })
    except ValidationError as e:
        raise MalformedEvent(
            f"Invalid payload for {envelope.type}",
            details=e.errors(include_url=False),
        )
