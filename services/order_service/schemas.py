from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from shared.schemas import CamelModel

class OrderCreate(CamelModel):
    shipping_address: str
    payment_method: str
    total: float = Field(ge=0)

    @field_validator("shipping_address", "payment_method")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

class OrderProduct(CamelModel):
    id: int
    name: str
    image: Optional[str] = None

class OrderItemResponse(CamelModel):
    id: int
    product_id: int
    quantity: int
    price: float
    product: Optional[OrderProduct] = None

class OrderResponse(CamelModel):
    id: int
    user_id: int
    total: float
    shipping_address: str
    payment_method: str
    status: str
    payment_status: str
    gateway_session_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = []
