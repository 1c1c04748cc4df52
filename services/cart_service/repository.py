from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, update
from .models import Cart, CartItem

class CartRepository:
    @staticmethod
    async def get_cart_by_user(db: AsyncSession, user_id: int):
        # populate_existing: the items collection must reflect the latest writes
        result = await db.execute(
            select(Cart)
            .where(Cart.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def get_cart_for_update(db: AsyncSession, user_id: int):
        """Loads the cart and locks its row until the surrounding transaction ends."""
        result = await db.execute(
            select(Cart)
            .where(Cart.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @staticmethod
    async def create_cart(db: AsyncSession, cart: Cart):
        db.add(cart)
        await db.commit()
        await db.refresh(cart)
        return cart

    @staticmethod
    async def get_item(db: AsyncSession, cart_id: int, product_id: int):
        result = await db.execute(
            select(CartItem)
            .where(CartItem.cart_id == cart_id)
            .where(CartItem.product_id == product_id)
        )
        return result.scalars().first()

    @staticmethod
    async def add_item(db: AsyncSession, item: CartItem):
        """Increments the existing line in place, or inserts a new one."""
        result = await db.execute(
            update(CartItem)
            .where(CartItem.cart_id == item.cart_id)
            .where(CartItem.product_id == item.product_id)
            .values(quantity=CartItem.quantity + item.quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.add(item)

        await db.commit()

    @staticmethod
    async def update_item(db: AsyncSession, item: CartItem):
        db.add(item)
        await db.commit()
        await db.refresh(item)
        return item

    @staticmethod
    async def remove_item(db: AsyncSession, cart_id: int, product_id: int) -> bool:
        stmt = delete(CartItem).where(
            CartItem.cart_id == cart_id,
            CartItem.product_id == product_id
        )
        result = await db.execute(stmt)
        await db.commit()
        return result.rowcount > 0

    @staticmethod
    async def clear_items(db: AsyncSession, cart_id: int, item_ids: list[int]) -> int:
        """Deletes the given items from the cart and returns how many went.

        Does not commit: checkout runs this inside the same transaction that
        creates the order. Items added after checkout read the cart survive.
        """
        stmt = delete(CartItem).where(
            CartItem.cart_id == cart_id,
            CartItem.id.in_(item_ids),
        ).execution_options(synchronize_session=False)
        result = await db.execute(stmt)
        return result.rowcount
