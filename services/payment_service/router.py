from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.errors import SignatureError, StorageError
from shared.security import CurrentUser, require_email

from .gateway import PaymentGateway, get_gateway
from .schemas import (
    CreateSessionRequest,
    SessionResponse,
    VerifyRequest,
    VerifyResponse,
    WebhookAck,
)
from .service import PaymentService
from .webhooks import WebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/sessions", response_model=SessionResponse)
async def create_checkout_session(
    data: CreateSessionRequest,
    user: CurrentUser = Depends(require_email),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return await PaymentService.create_checkout_session(
        db, gateway, user, data.order_id, data.success_url, data.cancel_url
    )


@router.get("/sessions/verify", response_model=VerifyResponse)
async def verify_session_query(
    session_id: str = Query(..., min_length=1),
    user: CurrentUser = Depends(require_email),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return await PaymentService.verify_session(db, gateway, user, session_id)


@router.post("/sessions/verify", response_model=VerifyResponse)
async def verify_session_body(
    data: VerifyRequest,
    user: CurrentUser = Depends(require_email),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return await PaymentService.verify_session(db, gateway, user, data.session_id)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    if not stripe_signature:
        raise SignatureError("Missing stripe-signature header")

    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)

    try:
        await WebhookService.process(db, event)
    except StorageError:
        # Acknowledge anyway: a 5xx here makes the gateway retry indefinitely
        logger.warning("webhook_acknowledged_after_storage_error", event_id=event.id)

    return {"received": True}
