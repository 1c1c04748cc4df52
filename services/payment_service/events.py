"""Typed gateway webhook events.

Every payload parses into exactly one variant of ``GatewayEvent``; types we
do not handle land in ``IgnoredEvent`` so they are acknowledged, never
rejected.
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Discriminator, Tag, TypeAdapter

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"

HANDLED_EVENT_TYPES = frozenset({
    CHECKOUT_SESSION_COMPLETED,
    CHECKOUT_SESSION_EXPIRED,
    PAYMENT_INTENT_SUCCEEDED,
    PAYMENT_INTENT_FAILED,
})


def parse_order_id(metadata: Optional[dict]) -> Optional[int]:
    """Order id from session metadata, or None when absent or not an integer."""
    if not metadata:
        return None
    raw = metadata.get("orderId")
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


class CheckoutSessionObject(BaseModel):
    id: str
    metadata: Optional[dict[str, Any]] = None
    payment_intent: Optional[str] = None
    payment_status: Optional[str] = None


class PaymentIntentObject(BaseModel):
    id: str
    last_payment_error: Optional[dict[str, Any]] = None


class CheckoutSessionData(BaseModel):
    object: CheckoutSessionObject


class PaymentIntentData(BaseModel):
    object: PaymentIntentObject


class _SessionEvent(BaseModel):
    id: str
    data: CheckoutSessionData

    @property
    def session(self) -> CheckoutSessionObject:
        return self.data.object

    @property
    def order_id(self) -> Optional[int]:
        return parse_order_id(self.session.metadata)


class _PaymentIntentEvent(BaseModel):
    id: str
    data: PaymentIntentData

    @property
    def payment_intent_id(self) -> str:
        return self.data.object.id


class CheckoutSessionCompleted(_SessionEvent):
    type: Literal["checkout.session.completed"]


class CheckoutSessionExpired(_SessionEvent):
    type: Literal["checkout.session.expired"]


class PaymentIntentSucceeded(_PaymentIntentEvent):
    type: Literal["payment_intent.succeeded"]


class PaymentIntentFailed(_PaymentIntentEvent):
    type: Literal["payment_intent.payment_failed"]

    @property
    def failure_message(self) -> Optional[str]:
        error = self.data.object.last_payment_error or {}
        return error.get("message")


class IgnoredEvent(BaseModel):
    id: Optional[str] = None
    type: str


def _event_tag(value: Any) -> str:
    event_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return event_type if event_type in HANDLED_EVENT_TYPES else "ignored"


GatewayEvent = Annotated[
    Union[
        Annotated[CheckoutSessionCompleted, Tag(CHECKOUT_SESSION_COMPLETED)],
        Annotated[CheckoutSessionExpired, Tag(CHECKOUT_SESSION_EXPIRED)],
        Annotated[PaymentIntentSucceeded, Tag(PAYMENT_INTENT_SUCCEEDED)],
        Annotated[PaymentIntentFailed, Tag(PAYMENT_INTENT_FAILED)],
        Annotated[IgnoredEvent, Tag("ignored")],
    ],
    Discriminator(_event_tag),
]

_event_adapter = TypeAdapter(GatewayEvent)


def parse_event(payload: Union[str, bytes]) -> GatewayEvent:
    """Parses a verified webhook body. Raises pydantic.ValidationError."""
    return _event_adapter.validate_json(payload)
