import time

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.order_service.models import Order, OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository
from shared.config import settings
from shared.errors import (
    AlreadyCompletedError,
    AuthorizationError,
    GatewayError,
    MissingOrderReferenceError,
    OrderNotFoundError,
    StorageError,
)
from shared.observability.metrics import ecomm_payment_sessions_total
from shared.security import CurrentUser

from .gateway import PaymentGateway

logger = structlog.get_logger(__name__)

PAYMENT_METHOD = "stripe"


def build_line_items(order: Order) -> list[dict]:
    """One gateway line item per order item, priced from the order's snapshot."""
    line_items = []
    for item in order.items:
        product_data = {"name": item.product.name}
        if item.product.description:
            product_data["description"] = item.product.description
        if item.product.image:
            product_data["images"] = [item.product.image]

        line_items.append({
            "price_data": {
                "currency": settings.STRIPE_CURRENCY,
                "product_data": product_data,
                "unit_amount": round(item.price * 100),
            },
            "quantity": item.quantity,
        })
    return line_items


def build_session_params(order: Order, user: CurrentUser, success_url=None, cancel_url=None) -> dict:
    return {
        "payment_method_types": settings.PAYMENT_METHOD_TYPES,
        "line_items": build_line_items(order),
        "mode": "payment",
        "success_url": success_url or settings.DEFAULT_SUCCESS_URL,
        "cancel_url": cancel_url or settings.DEFAULT_CANCEL_URL,
        "customer_email": user.email,
        "metadata": {"orderId": str(order.id), "userId": str(user.id)},
        "shipping_address_collection": {"allowed_countries": settings.SHIPPING_ALLOWED_COUNTRIES},
        "billing_address_collection": "required",
        "expires_at": int(time.time()) + settings.CHECKOUT_SESSION_TTL_MINUTES * 60,
    }


class PaymentService:
    @staticmethod
    async def create_checkout_session(
        db: AsyncSession,
        gateway: PaymentGateway,
        user: CurrentUser,
        order_id: int,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict:
        order = await OrderRepository.get_order_with_items(db, order_id)
        if not order:
            ecomm_payment_sessions_total.labels(status="rejected").inc()
            raise OrderNotFoundError()
        if order.user_id != user.id:
            ecomm_payment_sessions_total.labels(status="rejected").inc()
            raise AuthorizationError("Unauthorized")
        if (
            order.status == OrderStatus.COMPLETED.value
            or order.payment_status == PaymentStatus.PAID.value
        ):
            ecomm_payment_sessions_total.labels(status="rejected").inc()
            raise AlreadyCompletedError()

        params = build_session_params(order, user, success_url, cancel_url)

        # End the read transaction; nothing is held across the gateway call
        await db.commit()

        try:
            session = await gateway.create_checkout_session(params)
        except GatewayError:
            ecomm_payment_sessions_total.labels(status="gateway_error").inc()
            raise

        try:
            attached = await OrderRepository.attach_gateway_session(
                db, order.id, session.id, PAYMENT_METHOD
            )
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("checkout_session_attach_failed", order_id=order.id, error=str(exc))
            raise StorageError("Failed to record checkout session") from exc

        if not attached:
            # Paid or completed while the session was being created; the new
            # session must not stay payable
            await gateway.expire_checkout_session(session.id)
            logger.warning("checkout_session_discarded", order_id=order.id, session_id=session.id)
            ecomm_payment_sessions_total.labels(status="rejected").inc()
            raise AlreadyCompletedError()

        ecomm_payment_sessions_total.labels(status="created").inc()
        logger.info(
            "checkout_session_created",
            order_id=order.id,
            user_id=user.id,
            session_id=session.id,
        )
        return {"session_id": session.id, "url": session.url}

    @staticmethod
    async def verify_session(
        db: AsyncSession, gateway: PaymentGateway, user: CurrentUser, session_id: str
    ) -> dict:
        """Reports gateway truth next to the order's stored state.

        Read-only: the webhook processor is the single writer of payment status.
        """
        session = await gateway.retrieve_checkout_session(session_id)

        if not session.customer_email or session.customer_email.lower() != (user.email or "").lower():
            logger.warning("session_verify_email_mismatch", session_id=session_id, user_id=user.id)
            raise AuthorizationError("Unauthorized")

        order_id = session.order_id
        if order_id is None:
            raise MissingOrderReferenceError()

        order = await OrderRepository.get_order_with_items(db, order_id)
        if not order:
            raise OrderNotFoundError()

        logger.info(
            "checkout_session_verified",
            session_id=session_id,
            order_id=order_id,
            gateway_payment_status=session.payment_status,
            payment_status=order.payment_status,
        )
        return {"session": session, "order": order}
