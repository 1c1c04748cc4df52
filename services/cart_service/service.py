import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.auth_service.repository import UserRepository
from services.product_service.repository import ProductRepository
from shared.errors import NotFoundError
from shared.observability.metrics import ecomm_active_carts

from .models import Cart, CartItem
from .repository import CartRepository
from .schemas import CartItemCreate, CartItemUpdate

logger = structlog.get_logger(__name__)

class CartService:
    @staticmethod
    async def get_items(db: AsyncSession, user_id: int):
        cart = await CartRepository.get_cart_by_user(db, user_id)
        if not cart:
            return []
        return cart.items

    @staticmethod
    async def add_item(db: AsyncSession, user_id: int, data: CartItemCreate):
        if not await UserRepository.get_by_id(db, user_id):
            raise NotFoundError("User not found")
        if not await ProductRepository.get_product_by_id(db, data.product_id):
            raise NotFoundError("Product not found")

        # Carts are created lazily on the first add
        cart = await CartRepository.get_cart_by_user(db, user_id)
        if not cart:
            try:
                cart = await CartRepository.create_cart(db, Cart(user_id=user_id))
            except IntegrityError:
                # A concurrent add created it first
                await db.rollback()
                cart = await CartRepository.get_cart_by_user(db, user_id)
        was_empty = not cart.items
        cart_id = cart.id

        try:
            await CartRepository.add_item(
                db,
                CartItem(cart_id=cart_id, product_id=data.product_id, quantity=data.quantity),
            )
        except IntegrityError:
            # Lost the race to insert this line; the retry increments it.
            # rollback expires loaded objects, so only plain ids are used here
            await db.rollback()
            await CartRepository.add_item(
                db,
                CartItem(cart_id=cart_id, product_id=data.product_id, quantity=data.quantity),
            )
        if was_empty:
            ecomm_active_carts.inc()

        logger.info(
            "cart_item_added",
            user_id=user_id,
            product_id=data.product_id,
            quantity=data.quantity,
        )
        return await CartRepository.get_cart_by_user(db, user_id)

    @staticmethod
    async def update_quantity(db: AsyncSession, user_id: int, product_id: int, data: CartItemUpdate):
        cart = await CartRepository.get_cart_by_user(db, user_id)
        if not cart:
            raise NotFoundError("Cart not found")

        item = await CartRepository.get_item(db, cart.id, product_id)
        if not item:
            raise NotFoundError("Item not found in cart")

        item.quantity = data.quantity
        return await CartRepository.update_item(db, item)

    @staticmethod
    async def remove_item(db: AsyncSession, user_id: int, product_id: int):
        cart = await CartRepository.get_cart_by_user(db, user_id)
        if not cart:
            raise NotFoundError("Cart not found")

        if not await CartRepository.remove_item(db, cart.id, product_id):
            raise NotFoundError("Item not found in cart")

        cart = await CartRepository.get_cart_by_user(db, user_id)
        if not cart.items:
            ecomm_active_carts.dec()
        logger.info("cart_item_removed", user_id=user_id, product_id=product_id)
