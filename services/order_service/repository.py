from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderStatus, PaymentStatus, utcnow


class OrderRepository:
    @staticmethod
    async def add_order(db: AsyncSession, order: Order) -> Order:
        """Stages the order and its items. The caller owns the transaction."""
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order_with_items(db: AsyncSession, order_id: int) -> Optional[Order]:
        result = await db.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def list_by_user(db: AsyncSession, user_id: int):
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return result.scalars().all()

    @staticmethod
    async def find_by_payment_intent(db: AsyncSession, payment_intent_id: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.payment_intent_id == payment_intent_id)
        )
        return result.scalars().first()

    @staticmethod
    async def attach_gateway_session(
        db: AsyncSession, order_id: int, session_id: str, payment_method: str
    ) -> bool:
        """Records a new checkout session and puts the order back to pending.

        Conditional on the order not being paid or completed; returns False
        when the guard rejected the write.
        """
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status != PaymentStatus.PAID.value,
                Order.status != OrderStatus.COMPLETED.value,
            )
            .values(
                gateway_session_id=session_id,
                payment_method=payment_method,
                status=OrderStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount == 1

    @staticmethod
    async def apply_payment_transition(
        db: AsyncSession,
        order_id: int,
        payment_status: PaymentStatus,
        status: OrderStatus,
        payment_intent_id: Optional[str] = None,
        gateway_session_id: Optional[str] = None,
    ) -> bool:
        """Compare-and-set of the payment fields in a single UPDATE.

        Never overwrites PAID, and re-applying the current target is a no-op.
        When ``gateway_session_id`` is given the order must still reference
        that session. Returns True if the row changed.
        """
        stmt = update(Order).where(
            Order.id == order_id,
            Order.payment_status.notin_([PaymentStatus.PAID.value, payment_status.value]),
        )
        if gateway_session_id is not None:
            stmt = stmt.where(Order.gateway_session_id == gateway_session_id)

        values = {
            "payment_status": payment_status.value,
            "status": status.value,
            "updated_at": utcnow(),
        }
        if payment_intent_id:
            values["payment_intent_id"] = payment_intent_id

        result = await db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1
