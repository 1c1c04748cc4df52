from typing import List, Optional

from pydantic import Field

from shared.schemas import CamelModel

class CartItemCreate(CamelModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)

class CartItemUpdate(CamelModel):
    quantity: int = Field(ge=1)

class ProductSummary(CamelModel):
    id: int
    name: str
    price: float
    image: Optional[str] = None

class CartItemResponse(CamelModel):
    id: int
    product_id: int
    quantity: int
    product: ProductSummary

class CartResponse(CamelModel):
    id: int
    user_id: int
    items: List[CartItemResponse] = []

class MessageResponse(CamelModel):
    message: str
