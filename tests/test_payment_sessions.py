import time

import pytest
import stripe
from sqlalchemy.exc import OperationalError

from conftest import BUYER_EMAIL, bearer
from services.order_service.models import OrderStatus, PaymentStatus
from services.order_service.repository import OrderRepository


class TestCreateCheckoutSession:
    @pytest.mark.asyncio
    async def test_creates_session_and_records_it(
        self, client, buyer_headers, place_order, gateway, load_order, user
    ):
        order = await place_order(buyer_headers)

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        assert resp.status_code == 200
        assert resp.json() == {
            "sessionId": "cs_test_1",
            "url": "https://checkout.stripe.test/pay/cs_test_1",
        }
        stored = await load_order(order["id"])
        assert stored.gateway_session_id == "cs_test_1"
        assert stored.payment_method == "stripe"
        assert stored.status == "pending"
        assert stored.payment_status == "PENDING"

    @pytest.mark.asyncio
    async def test_session_parameters(self, client, buyer_headers, place_order, gateway, user, product):
        order = await place_order(buyer_headers)
        before = int(time.time())

        await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        params = gateway.created[0]
        assert params["mode"] == "payment"
        assert params["payment_method_types"] == ["card"]
        assert params["customer_email"] == BUYER_EMAIL
        assert params["metadata"] == {"orderId": str(order["id"]), "userId": str(user.id)}
        assert params["billing_address_collection"] == "required"
        assert "US" in params["shipping_address_collection"]["allowed_countries"]
        assert params["success_url"] == "http://localhost:3000/checkout/success?session_id={CHECKOUT_SESSION_ID}"
        assert params["cancel_url"] == "http://localhost:3000/checkout/cancel"
        assert before + 29 * 60 <= params["expires_at"] <= int(time.time()) + 30 * 60

        [line_item] = params["line_items"]
        assert line_item["quantity"] == 2
        assert line_item["price_data"]["unit_amount"] == 2999
        assert line_item["price_data"]["currency"] == "usd"
        assert line_item["price_data"]["product_data"] == {
            "name": "Product A",
            "description": "A very good product",
            "images": ["https://cdn.example.com/a.png"],
        }

    @pytest.mark.asyncio
    async def test_caller_supplied_redirect_urls(self, client, buyer_headers, place_order, gateway):
        order = await place_order(buyer_headers)

        await client.post(
            "/payments/sessions",
            json={
                "orderId": order["id"],
                "successUrl": "https://shop.example.com/thanks",
                "cancelUrl": "https://shop.example.com/cart",
            },
            headers=buyer_headers,
        )

        assert gateway.created[0]["success_url"] == "https://shop.example.com/thanks"
        assert gateway.created[0]["cancel_url"] == "https://shop.example.com/cart"

    @pytest.mark.asyncio
    async def test_retry_gets_a_new_session(self, client, buyer_headers, place_order, start_session, load_order):
        order = await place_order(buyer_headers)
        await start_session(order["id"], buyer_headers)

        second = await start_session(order["id"], buyer_headers)

        assert second == "cs_test_2"
        assert (await load_order(order["id"])).gateway_session_id == "cs_test_2"

    @pytest.mark.asyncio
    async def test_failed_order_can_retry_and_is_reset_to_pending(
        self, client, buyer_headers, place_order, session_factory, load_order, start_session
    ):
        order = await place_order(buyer_headers)
        async with session_factory() as session:
            await OrderRepository.apply_payment_transition(
                session, order["id"], PaymentStatus.FAILED, OrderStatus.CANCELLED
            )

        await start_session(order["id"], buyer_headers)

        stored = await load_order(order["id"])
        assert stored.status == "pending"
        assert stored.payment_status == "PENDING"

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        resp = await client.post("/payments/sessions", json={"orderId": 1})

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_requires_email_claim(self, client, user, buyer_headers, place_order):
        order = await place_order(buyer_headers)

        resp = await client.post(
            "/payments/sessions", json={"orderId": order["id"]}, headers=bearer(user.id, None)
        )

        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_order_id(self, client, buyer_headers):
        resp = await client.post("/payments/sessions", json={}, headers=buyer_headers)

        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_unknown_order(self, client, buyer_headers, gateway):
        resp = await client.post("/payments/sessions", json={"orderId": 999}, headers=buyer_headers)

        assert resp.status_code == 404
        assert gateway.created == []

    @pytest.mark.asyncio
    async def test_not_owner(self, client, buyer_headers, other_headers, place_order, gateway):
        order = await place_order(buyer_headers)

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=other_headers)

        assert resp.status_code == 403
        assert gateway.created == []

    @pytest.mark.asyncio
    async def test_paid_order_is_rejected(
        self, client, buyer_headers, place_order, session_factory, gateway
    ):
        order = await place_order(buyer_headers)
        async with session_factory() as session:
            await OrderRepository.apply_payment_transition(
                session, order["id"], PaymentStatus.PAID, OrderStatus.CONFIRMED
            )

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        assert resp.status_code == 400
        assert resp.json()["code"] == "already_completed"
        assert gateway.created == []

    @pytest.mark.asyncio
    async def test_gateway_error_is_reported_distinctly(
        self, client, buyer_headers, place_order, gateway, load_order
    ):
        order = await place_order(buyer_headers)
        gateway.error = stripe.InvalidRequestError("Not a valid URL", param="success_url")

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "gateway_error"
        assert body["error"] == "Stripe error: Not a valid URL"
        assert (await load_order(order["id"])).gateway_session_id is None


class TestSessionRace:
    @pytest.mark.asyncio
    async def test_session_is_expired_when_order_was_paid_meanwhile(
        self, client, buyer_headers, place_order, gateway, load_order, monkeypatch
    ):
        order = await place_order(buyer_headers)

        async def paid_meanwhile(db, order_id, session_id, payment_method):
            return False

        monkeypatch.setattr(OrderRepository, "attach_gateway_session", staticmethod(paid_meanwhile))

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        assert resp.status_code == 400
        assert resp.json()["code"] == "already_completed"
        assert gateway.expired == ["cs_test_1"]
        assert gateway.sessions["cs_test_1"]["status"] == "expired"
        assert (await load_order(order["id"])).gateway_session_id is None

    @pytest.mark.asyncio
    async def test_storage_failure_has_stable_code(self, client, buyer_headers, place_order, monkeypatch):
        order = await place_order(buyer_headers)

        async def broken_lookup(db, order_id):
            raise OperationalError("SELECT orders", {}, Exception("connection reset"))

        monkeypatch.setattr(OrderRepository, "get_order_with_items", staticmethod(broken_lookup))

        resp = await client.post("/payments/sessions", json={"orderId": order["id"]}, headers=buyer_headers)

        assert resp.status_code == 500
        assert resp.json()["code"] == "storage_error"
