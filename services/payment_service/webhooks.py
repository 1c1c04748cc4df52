from typing import Optional, assert_never

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.order_service.models import OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository
from shared.errors import StorageError
from shared.observability.metrics import ecomm_webhook_events_total

from .events import (
    CheckoutSessionCompleted,
    CheckoutSessionExpired,
    GatewayEvent,
    IgnoredEvent,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
)

logger = structlog.get_logger(__name__)


class WebhookService:
    """Applies verified gateway events to orders.

    Every transition is an idempotent compare-and-set: replays are no-ops
    and a PAID order is never moved back to FAILED or PENDING.
    """

    @staticmethod
    async def process(db: AsyncSession, event: GatewayEvent) -> str:
        """Returns the outcome: applied, skipped, no_order or ignored."""
        log = logger.bind(event_id=event.id, event_type=event.type)
        log.info("webhook_received")

        try:
            match event:
                case CheckoutSessionCompleted():
                    outcome = await WebhookService._transition(
                        db,
                        log,
                        order_id=event.order_id,
                        payment_status=PaymentStatus.PAID,
                        status=OrderStatus.CONFIRMED,
                        payment_intent_id=event.session.payment_intent,
                    )
                case CheckoutSessionExpired():
                    outcome = await WebhookService._transition(
                        db,
                        log,
                        order_id=event.order_id,
                        payment_status=PaymentStatus.FAILED,
                        status=OrderStatus.CANCELLED,
                        gateway_session_id=event.session.id,
                    )
                case PaymentIntentSucceeded():
                    order = await OrderRepository.find_by_payment_intent(db, event.payment_intent_id)
                    outcome = await WebhookService._transition(
                        db,
                        log,
                        order_id=order.id if order else None,
                        payment_status=PaymentStatus.PAID,
                        status=OrderStatus.CONFIRMED,
                    )
                case PaymentIntentFailed():
                    log = log.bind(failure_message=event.failure_message)
                    order = await OrderRepository.find_by_payment_intent(db, event.payment_intent_id)
                    outcome = await WebhookService._transition(
                        db,
                        log,
                        order_id=order.id if order else None,
                        payment_status=PaymentStatus.FAILED,
                        status=OrderStatus.CANCELLED,
                    )
                case IgnoredEvent():
                    log.info("webhook_event_ignored")
                    outcome = "ignored"
                case _:
                    assert_never(event)
        except SQLAlchemyError as exc:
            await db.rollback()
            ecomm_webhook_events_total.labels(event_type=event.type, outcome="storage_error").inc()
            log.error("webhook_storage_error", error=str(exc))
            raise StorageError("Failed to apply payment event") from exc

        ecomm_webhook_events_total.labels(event_type=event.type, outcome=outcome).inc()
        return outcome

    @staticmethod
    async def _transition(
        db: AsyncSession,
        log,
        order_id: Optional[int],
        payment_status: PaymentStatus,
        status: OrderStatus,
        payment_intent_id: Optional[str] = None,
        gateway_session_id: Optional[str] = None,
    ) -> str:
        if order_id is None:
            log.info("webhook_no_matching_order")
            return "no_order"

        applied = await OrderRepository.apply_payment_transition(
            db,
            order_id,
            payment_status=payment_status,
            status=status,
            payment_intent_id=payment_intent_id,
            gateway_session_id=gateway_session_id,
        )
        if applied:
            log.info(
                "payment_transition_applied",
                order_id=order_id,
                payment_status=payment_status.value,
                status=status.value,
            )
            return "applied"

        # Already in that state, already PAID, unknown order, or a stale session
        log.info(
            "payment_transition_skipped",
            order_id=order_id,
            target_payment_status=payment_status.value,
        )
        return "skipped"
