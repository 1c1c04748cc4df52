from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.security import CurrentUser, get_current_user

from .schemas import (
    CartItemCreate,
    CartItemResponse,
    CartItemUpdate,
    CartResponse,
    MessageResponse,
)
from .service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=List[CartItemResponse])
async def get_cart(
    user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)
):
    return await CartService.get_items(db, user.id)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    item: CartItemCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CartService.add_item(db, user.id, item)


@router.put("/items/{product_id}", response_model=CartItemResponse)
async def update_item(
    product_id: int,
    data: CartItemUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await CartService.update_quantity(db, user.id, product_id, data)


@router.delete("/items/{product_id}", response_model=MessageResponse)
async def remove_item(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await CartService.remove_item(db, user.id, product_id)
    return {"message": "Item removed from cart"}
