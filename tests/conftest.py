import hashlib
import hmac
import json
import os
import time

# Settings are read at import time
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_checkout")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_checkout")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from main import app
from services.auth_service.models import User
from services.auth_service.repository import UserRepository
from services.order_service.repository import OrderRepository
from services.payment_service.gateway import StripeGateway, get_gateway
from services.product_service.models import Product
from services.product_service.repository import ProductRepository
from shared.config.database import Base, get_db
from shared.security import create_access_token

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
BUYER_EMAIL = "buyer@example.com"
OTHER_EMAIL = "other@example.com"


class FakeStripeGateway(StripeGateway):
    """Keeps Stripe's signature verification; replaces the network calls."""

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.sessions = {}
        self.created = []
        self.expired = []
        self.error = None

    async def _create_session(self, params):
        if self.error:
            raise self.error
        self.created.append(params)
        session_id = f"cs_test_{len(self.created)}"
        session = {
            "id": session_id,
            "object": "checkout.session",
            "url": f"https://checkout.stripe.test/pay/{session_id}",
            "payment_status": "unpaid",
            "status": "open",
            "amount_total": sum(
                item["price_data"]["unit_amount"] * item["quantity"]
                for item in params["line_items"]
            ),
            "currency": params["line_items"][0]["price_data"]["currency"],
            "customer_email": params.get("customer_email"),
            "metadata": dict(params.get("metadata") or {}),
            "payment_intent": None,
            "expires_at": params.get("expires_at"),
        }
        self.sessions[session_id] = session
        return session

    async def _retrieve_session(self, session_id):
        if self.error:
            raise self.error
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(
                f"No such checkout.session: '{session_id}'", param="id", code="resource_missing"
            )
        return self.sessions[session_id]

    async def _expire_session(self, session_id):
        self.expired.append(session_id)
        self.sessions[session_id].update(status="expired")
        return self.sessions[session_id]

    def complete(self, session_id, payment_intent="pi_1"):
        self.sessions[session_id].update(
            payment_status="paid", status="complete", payment_intent=payment_intent
        )


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def bearer(user_id: int, email: str | None) -> dict:
    claims = {"sub": str(user_id)}
    if email:
        claims["email"] = email
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


# --- Database ---

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'checkout.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def load_order(session_factory):
    """Reads an order through a fresh session."""
    async def _load(order_id):
        async with session_factory() as session:
            return await OrderRepository.get_order_with_items(session, order_id)
    return _load


# --- App ---

@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# --- Seed data ---

@pytest_asyncio.fixture
async def user(db):
    return await UserRepository.create(db, User(email=BUYER_EMAIL, name="Buyer"))


@pytest_asyncio.fixture
async def other_user(db):
    return await UserRepository.create(db, User(email=OTHER_EMAIL, name="Other"))


@pytest_asyncio.fixture
async def product(db):
    return await ProductRepository.create_product(
        db,
        Product(
            name="Product A",
            description="A very good product",
            image="https://cdn.example.com/a.png",
            price=29.99,
            stock=10,
        ),
    )


@pytest.fixture
def buyer_headers(user):
    return bearer(user.id, BUYER_EMAIL)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user.id, OTHER_EMAIL)


@pytest.fixture
def place_order(client, product):
    """Fills the caller's cart with product A and checks out."""
    async def _place(headers, quantity=2, total=59.98):
        resp = await client.post(
            "/cart/items", json={"productId": product.id, "quantity": quantity}, headers=headers
        )
        assert resp.status_code == 201, resp.text
        resp = await client.post(
            "/orders",
            json={"shippingAddress": "123 Main St", "paymentMethod": "credit_card", "total": total},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _place


@pytest.fixture
def start_session(client):
    async def _start(order_id, headers):
        resp = await client.post("/payments/sessions", json={"orderId": order_id}, headers=headers)
        assert resp.status_code == 200, resp.text
        return resp.json()["sessionId"]
    return _start


@pytest.fixture
def send_event(client):
    """Posts a correctly signed webhook event."""
    async def _send(event_type, obj, event_id="evt_test_1"):
        payload = make_event(event_type, obj, event_id)
        return await client.post(
            "/payments/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload), "content-type": "application/json"},
        )
    return _send
