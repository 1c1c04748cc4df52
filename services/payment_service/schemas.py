from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from services.order_service.schemas import OrderProduct
from shared.schemas import CamelModel

class CreateSessionRequest(CamelModel):
    order_id: int
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

class SessionResponse(CamelModel):
    session_id: str
    url: Optional[str] = None

class VerifyRequest(CamelModel):
    session_id: str = Field(min_length=1)

# Gateway-side fields keep the gateway's own snake_case names
class SessionProjection(BaseModel):
    id: str
    payment_status: Optional[str] = None
    status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None

    class Config:
        from_attributes = True

class OrderItemProjection(CamelModel):
    id: int
    product_id: int
    quantity: int
    price: float
    product: Optional[OrderProduct] = None

class OrderProjection(CamelModel):
    id: int
    status: str
    payment_status: str
    total: float
    items: List[OrderItemProjection] = []
    created_at: datetime

class VerifyResponse(BaseModel):
    session: SessionProjection
    order: OrderProjection

class WebhookAck(BaseModel):
    received: bool = True
