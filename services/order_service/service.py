import time

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.cart_service.repository import CartRepository
from shared.errors import AuthorizationError, EmptyCartError, OrderNotFoundError, StorageError
from shared.observability.metrics import (
    ecomm_active_carts,
    ecomm_checkout_duration_seconds,
    ecomm_checkout_total,
)

from .models import Order, OrderItem, OrderStatus, PaymentStatus
from .repository import OrderRepository
from .schemas import OrderCreate

logger = structlog.get_logger(__name__)

class OrderService:
    @staticmethod
    async def create_order_from_cart(db: AsyncSession, user_id: int, data: OrderCreate) -> Order:
        """Turns the user's cart into an order and empties the cart.

        Both writes share one transaction: either the order exists and the
        cart is empty, or nothing changed. Item prices are read from the
        products at this moment.
        """
        start = time.perf_counter()
        try:
            async with db.begin():
                # Row lock: a concurrent checkout of the same cart waits here
                cart = await CartRepository.get_cart_for_update(db, user_id)
                if not cart or not cart.items:
                    raise EmptyCartError()
                item_ids = [item.id for item in cart.items]

                order = Order(
                    user_id=user_id,
                    total=data.total,
                    shipping_address=data.shipping_address,
                    payment_method=data.payment_method,
                    status=OrderStatus.PENDING.value,
                    payment_status=PaymentStatus.PENDING.value,
                    items=[
                        OrderItem(
                            product_id=item.product_id,
                            quantity=item.quantity,
                            price=item.product.price,
                        )
                        for item in cart.items
                    ],
                )
                await OrderRepository.add_order(db, order)
                cleared = await CartRepository.clear_items(db, cart.id, item_ids)
                if cleared != len(item_ids):
                    # Another checkout converted these items first; roll back
                    raise EmptyCartError("Cart was already checked out")
        except EmptyCartError:
            ecomm_checkout_total.labels(status="empty_cart").inc()
            logger.info("checkout_rejected", user_id=user_id, reason="empty_cart")
            raise
        except SQLAlchemyError as exc:
            ecomm_checkout_total.labels(status="failed").inc()
            logger.error("checkout_failed", user_id=user_id, error=str(exc))
            raise StorageError("Failed to create order") from exc

        ecomm_checkout_total.labels(status="success").inc()
        ecomm_checkout_duration_seconds.observe(time.perf_counter() - start)
        ecomm_active_carts.dec()
        logger.info(
            "order_created",
            order_id=order.id,
            user_id=user_id,
            items=len(order.items),
            total=order.total,
        )
        return await OrderRepository.get_order_with_items(db, order.id)

    @staticmethod
    async def get_order(db: AsyncSession, order_id: int, user_id: int) -> Order:
        order = await OrderRepository.get_order_with_items(db, order_id)
        if not order:
            raise OrderNotFoundError()
        if order.user_id != user_id:
            raise AuthorizationError("Forbidden")
        return order

    @staticmethod
    async def list_orders(db: AsyncSession, user_id: int):
        return await OrderRepository.list_by_user(db, user_id)
