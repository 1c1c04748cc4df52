"""Payment gateway port and its Stripe adapter.

Routes depend on ``get_gateway`` so the adapter can be swapped (tests
override the dependency with an in-memory subclass of ``StripeGateway``).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import stripe
import structlog
from pydantic import ValidationError

from shared.config import settings
from shared.errors import GatewayError, InvalidInputError, SessionNotFoundError, SignatureError

from .events import GatewayEvent, parse_event, parse_order_id

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """Read-only view of a gateway checkout session."""

    id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    payment_intent: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def order_id(self) -> Optional[int]:
        return parse_order_id(self.metadata)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    async def create_checkout_session(self, params: dict) -> CheckoutSession:
        """Create a hosted checkout session. Raises GatewayError."""
        ...

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Fetch a session by id. Raises SessionNotFoundError or GatewayError."""
        ...

    @abstractmethod
    async def expire_checkout_session(self, session_id: str) -> None:
        """Close an open session so it can no longer be paid."""
        ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify a webhook signature and parse the event. Raises SignatureError."""
        ...


def to_checkout_session(obj: Any) -> CheckoutSession:
    customer_email = obj.get("customer_email")
    if not customer_email:
        details = obj.get("customer_details") or {}
        customer_email = details.get("email")

    payment_intent = obj.get("payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = payment_intent.get("id")

    return CheckoutSession(
        id=obj["id"],
        url=obj.get("url"),
        payment_status=obj.get("payment_status"),
        status=obj.get("status"),
        amount_total=obj.get("amount_total"),
        currency=obj.get("currency"),
        customer_email=customer_email,
        payment_intent=payment_intent,
        metadata=dict(obj.get("metadata") or {}),
    )


class StripeGateway(PaymentGateway):
    """Stripe Checkout over the SDK's async (httpx) client."""

    def __init__(self, api_key: str, webhook_secret: str, tolerance: int = 300) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    async def create_checkout_session(self, params: dict) -> CheckoutSession:
        try:
            session = await self._create_session(params)
        except stripe.StripeError as exc:
            logger.warning("stripe_create_session_failed", error=str(exc), code=exc.code)
            raise GatewayError(exc.user_message or str(exc)) from exc
        return to_checkout_session(session)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        try:
            session = await self._retrieve_session(session_id)
        except stripe.InvalidRequestError as exc:
            if exc.code == "resource_missing":
                raise SessionNotFoundError() from exc
            raise GatewayError(exc.user_message or str(exc)) from exc
        except stripe.StripeError as exc:
            logger.warning("stripe_retrieve_session_failed", session_id=session_id, error=str(exc))
            raise GatewayError(exc.user_message or str(exc)) from exc
        return to_checkout_session(session)

    async def expire_checkout_session(self, session_id: str) -> None:
        try:
            await self._expire_session(session_id)
        except stripe.StripeError as exc:
            # The session still lapses at its expires_at
            logger.warning("stripe_expire_session_failed", session_id=session_id, error=str(exc))

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureError("Invalid signature") from exc

        try:
            stripe.WebhookSignature.verify_header(
                text, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("webhook_signature_invalid", error=str(exc))
            raise SignatureError("Invalid signature") from exc

        try:
            return parse_event(text)
        except ValidationError as exc:
            raise InvalidInputError("Malformed event payload") from exc

    async def _create_session(self, params: dict):
        return await stripe.checkout.Session.create_async(api_key=self.api_key, **params)

    async def _retrieve_session(self, session_id: str):
        return await stripe.checkout.Session.retrieve_async(session_id, api_key=self.api_key)

    async def _expire_session(self, session_id: str):
        return await stripe.checkout.Session.expire_async(session_id, api_key=self.api_key)


_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """FastAPI dependency returning the process-wide gateway adapter."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = StripeGateway(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    return _current_gateway
