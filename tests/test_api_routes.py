import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

from api.dependencies import (
    get_adjustment_service,
    get_checkout_service,
    get_order_materializer,
    get_order_service,
    get_settlement_service,
    get_webhook_service,
)
from application.services.adjustment_service import AdjustmentService
from application.services.checkout_service import CheckoutService
from application.services.order_materializer import OrderMaterializer
from application.services.order_service import OrderService
from application.services.settlement_service import SettlementService
from application.services.webhook_service import WebhookService
from core.config import settings
from main import app


CHECKOUT = {
    "items": [{"product_id": "prod-a", "quantity": 2}],
    "shipping_address": {
        "full_name": "Ada Buyer",
        "line1": "1 Main St",
        "city": "Springfield",
        "postal_code": "12345",
        "country": "US",
    },
}


def _token(sub: str, role: str, *, expires_in: int = 3600) -> str:
    payload = {"sub": sub, "role": role, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(sub: str, role: str) -> dict:
    return {"Authorization": f"Bearer {_token(sub, role)}"}


BUYER = _auth("buyer-1", "buyer")
SELLER = _auth("seller-1", "seller")
ADMIN = _auth("admin-1", "admin")


@pytest_asyncio.fixture
async def client(store, gateway, now):
    clock = lambda: now  # noqa: E731
    materializer = OrderMaterializer(store.uow_factory, gateway, backoff_seconds=0, clock=clock)
    adjustments = AdjustmentService(store.uow_factory, gateway, clock=clock)
    app.dependency_overrides[get_order_materializer] = lambda: materializer
    app.dependency_overrides[get_checkout_service] = lambda: CheckoutService(
        store.uow_factory, gateway, materializer=materializer, clock=clock
    )
    app.dependency_overrides[get_adjustment_service] = lambda: adjustments
    app.dependency_overrides[get_webhook_service] = lambda: WebhookService(
        gateway, materializer, adjustments, store.uow_factory
    )
    app.dependency_overrides[get_settlement_service] = lambda: SettlementService(
        store.uow_factory, gateway, clock=lambda: datetime(2024, 1, 3, 0, 1, tzinfo=timezone.utc)
    )
    app.dependency_overrides[get_order_service] = lambda: OrderService(store.uow_factory, clock=clock)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _paid_order(client, gateway) -> dict:
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=BUYER)
    intent_id = resp.json()["data"]["payment_intent_id"]
    gateway.mark_intent_succeeded(intent_id)
    resp = await client.post(
        "/api/v1/payments/create-order-immediately", json={"payment_intent_id": intent_id}, headers=BUYER
    )
    return resp.json()["data"]["order"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}


@pytest.mark.asyncio
async def test_create_payment_intent_requires_buyer(client):
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT)
    assert resp.status_code == 401

    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=SELLER)
    assert resp.status_code == 403

    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=BUYER)
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["client_secret"] == "pi_1_secret"
    assert body["data"]["breakdown"]["total"] == "27.00"
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_idempotency_key_header_reaches_processor(client, gateway):
    retry = {**BUYER, "Idempotency-Key": "submit-1"}
    for _ in range(2):
        resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=retry)
        assert resp.status_code == 200
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=BUYER)
    assert resp.status_code == 200

    first, second, fresh = (req.idempotency_key for req in gateway.created_intents)
    assert first == second
    assert fresh != first


@pytest.mark.asyncio
async def test_expired_and_forged_tokens(client):
    expired = {"Authorization": f"Bearer {_token('buyer-1', 'buyer', expires_in=-60)}"}
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=expired)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "TokenExpired"

    forged = jwt.encode({"sub": "buyer-1", "role": "buyer"}, "not-the-secret", algorithm="HS256")
    resp = await client.post(
        "/api/v1/payments/create-payment-intent", json=CHECKOUT, headers={"Authorization": f"Bearer {forged}"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_checkout_validation_and_business_errors(client):
    resp = await client.post("/api/v1/payments/create-payment-intent", json={"items": []}, headers=BUYER)
    assert resp.status_code == 422

    payload = {**CHECKOUT, "items": [{"product_id": "prod-a", "quantity": 50}]}
    resp = await client.post("/api/v1/payments/create-payment-intent", json=payload, headers=BUYER)
    assert resp.status_code == 409
    assert resp.json()["error"]["type"] == "InsufficientStock"


@pytest.mark.asyncio
async def test_create_order_immediately_is_idempotent(client, gateway, store):
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=BUYER)
    intent_id = resp.json()["data"]["payment_intent_id"]

    resp = await client.post(
        "/api/v1/payments/create-order-immediately", json={"payment_intent_id": intent_id}, headers=BUYER
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "PaymentNotConfirmed"

    gateway.mark_intent_succeeded(intent_id)
    first = await client.post(
        "/api/v1/payments/create-order-immediately", json={"payment_intent_id": intent_id}, headers=BUYER
    )
    second = await client.post(
        "/api/v1/payments/create-order-immediately", json={"payment_intent_id": intent_id}, headers=BUYER
    )
    assert first.json()["data"]["created"] is True
    assert second.json()["data"]["created"] is False
    assert first.json()["data"]["order"]["order_code"] == second.json()["data"]["order"]["order_code"]
    assert len(store.orders) == 1


@pytest.mark.asyncio
async def test_webhook_signature_and_dispatch(client, gateway, store):
    resp = await client.post("/api/v1/payments/create-payment-intent", json=CHECKOUT, headers=BUYER)
    intent = gateway.intents[resp.json()["data"]["payment_intent_id"]]
    body = json.dumps(
        {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": intent.intent_id, "metadata": intent.metadata}}}
    )

    resp = await client.post("/api/v1/payments/webhook", content=body, headers={"stripe-signature": "bad"})
    assert resp.status_code == 400
    assert store.orders == {}

    resp = await client.post("/api/v1/payments/webhook", content=body, headers={"stripe-signature": "valid"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"id": "evt_1", "type": "payment_intent.succeeded", "provider": "stripe"}
    assert len(store.orders) == 1


@pytest.mark.asyncio
async def test_refund_and_dispute_routes(client, gateway):
    order = await _paid_order(client, gateway)

    resp = await client.post("/api/v1/payments/refund", json={"order_code": order["order_code"]}, headers=BUYER)
    assert resp.status_code == 403

    resp = await client.post(
        "/api/v1/payments/refund", json={"order_code": order["order_code"], "amount": "5.00"}, headers=SELLER
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["order"]["payment_status"] == "partially_refunded"

    resp = await client.get(f"/api/v1/payments/dispute/{order['order_code']}", headers=BUYER)
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "NoDispute"


@pytest.mark.asyncio
async def test_item_status_update(client, gateway):
    order = await _paid_order(client, gateway)
    url = f"/api/v1/orders/{order['order_code']}/items/prod-a/status"

    resp = await client.patch(url, json={"status": "shipped"}, headers=_auth("seller-2", "seller"))
    assert resp.status_code == 403

    resp = await client.patch(url, json={"status": "shipped", "location": "Depot"}, headers=SELLER)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["order_status"] == "in_transit"
    assert data["items"][0]["status"] == "shipped"


@pytest.mark.asyncio
async def test_settlement_trigger_auth(client, gateway):
    await _paid_order(client, gateway)

    resp = await client.post("/api/v1/settlements/process")
    assert resp.status_code == 401

    resp = await client.post("/api/v1/settlements/process", headers={"X-Cron-Secret": "wrong"})
    assert resp.status_code == 401

    resp = await client.post("/api/v1/settlements/process", headers=BUYER)
    assert resp.status_code == 403

    resp = await client.post("/api/v1/settlements/process", headers={"X-Cron-Secret": settings.settlement.cron_secret})
    assert resp.status_code == 200
    [item] = resp.json()["data"]["results"]
    assert item["status"] == "transferred"
    assert item["amount"] == "27.00"

    resp = await client.post("/api/v1/settlements/process", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["data"]["results"] == []
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_pending_settlements_listing(client, gateway):
    await _paid_order(client, gateway)

    resp = await client.get("/api/v1/settlements/pending?page=1&size=10", headers=SELLER)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["commission_amount"] == "27.00"

    resp = await client.get("/api/v1/settlements/pending", headers=BUYER)
    assert resp.status_code == 403
