import json
from decimal import Decimal

import pytest

from application.dtos.checkout import CheckoutRequest
from application.ports.payment_gateway import PaymentSignatureError
from application.services.adjustment_service import AdjustmentService
from application.services.checkout_service import CheckoutService
from application.services.order_materializer import OrderMaterializer
from application.services.webhook_service import WebhookService
from domain.common.exceptions import InsufficientStockException
from domain.order.entity import DisputeStatus, PaymentStatus
from domain.seller.entity import PayoutAccountStatus


D = Decimal
SIGNED = {"stripe-signature": "valid"}

REQUEST = {
    "items": [{"product_id": "prod-a", "quantity": 2}],
    "shipping_address": {
        "full_name": "Ada Buyer",
        "line1": "1 Main St",
        "city": "Springfield",
        "postal_code": "12345",
        "country": "US",
    },
}


def _body(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


@pytest.fixture
def adjustments(store, gateway, now):
    return AdjustmentService(store.uow_factory, gateway, clock=lambda: now)


@pytest.fixture
def service(store, gateway, adjustments, now):
    materializer = OrderMaterializer(store.uow_factory, gateway, max_attempts=1, backoff_seconds=0, clock=lambda: now)
    return WebhookService(gateway, materializer, adjustments, store.uow_factory)


@pytest.fixture
def checkout(store, gateway, now):
    return CheckoutService(store.uow_factory, gateway, clock=lambda: now)


async def _paid_intent(checkout, gateway, request=None):
    response = await checkout.create_payment_intent("buyer-1", CheckoutRequest(**(request or REQUEST)))
    gateway.mark_intent_succeeded(response.payment_intent_id)
    return gateway.intents[response.payment_intent_id]


@pytest.mark.asyncio
async def test_invalid_signature_rejected(service, store):
    with pytest.raises(PaymentSignatureError):
        await service.handle({"stripe-signature": "forged"}, _body("payment_intent.succeeded", {}))
    assert store.orders == {}


@pytest.mark.asyncio
async def test_payment_intent_succeeded_materializes_once(service, store, checkout, gateway):
    intent = await _paid_intent(checkout, gateway)
    body = _body("payment_intent.succeeded", {"id": intent.intent_id, "metadata": intent.metadata})

    event = await service.handle(SIGNED, body)
    await service.handle(SIGNED, body)

    assert event.type == "payment_intent.succeeded"
    [order] = store.orders.values()
    assert order.payment_intent_id == intent.intent_id
    assert order.total_amount == D("27.00")
    assert store.products["prod-a"].stock == 8


@pytest.mark.asyncio
async def test_checkout_session_completed(service, store, checkout, gateway):
    session = await checkout.create_checkout_session("buyer-1", CheckoutRequest(**REQUEST))
    metadata = gateway.sessions[session.session_id].metadata

    await service.handle(
        SIGNED,
        _body(
            "checkout.session.completed",
            {"id": session.session_id, "payment_status": "paid", "payment_intent": "pi_55", "metadata": metadata},
        ),
    )
    # the session's own payment intent carries no checkout metadata
    await service.handle(SIGNED, _body("payment_intent.succeeded", {"id": "pi_55", "metadata": {}}, "evt_2"))

    [order] = store.orders.values()
    assert order.checkout_session_id == session.session_id
    assert order.payment_intent_id == "pi_55"


@pytest.mark.asyncio
async def test_charge_succeeded_looks_up_intent_metadata(service, store, checkout, gateway):
    intent = await _paid_intent(checkout, gateway)

    await service.handle(
        SIGNED, _body("charge.succeeded", {"id": "ch_1", "payment_intent": intent.intent_id, "metadata": {}})
    )

    [order] = store.orders.values()
    assert order.payment_intent_id == intent.intent_id


@pytest.mark.asyncio
async def test_materialization_failure_propagates(service, store, checkout, gateway):
    intent = await _paid_intent(checkout, gateway)
    store.products["prod-a"].stock = 1

    with pytest.raises(InsufficientStockException):
        await service.handle(
            SIGNED, _body("payment_intent.succeeded", {"id": intent.intent_id, "metadata": intent.metadata})
        )
    assert store.orders == {}


@pytest.mark.asyncio
async def test_charge_refunded_uses_cumulative_minor_units(service, store, checkout, gateway):
    intent = await _paid_intent(checkout, gateway)
    await service.handle(SIGNED, _body("payment_intent.succeeded", {"id": intent.intent_id, "metadata": intent.metadata}))

    refund = _body("charge.refunded", {"id": "ch_1", "payment_intent": intent.intent_id, "amount_refunded": 1350}, "evt_2")
    await service.handle(SIGNED, refund)
    await service.handle(SIGNED, refund)

    [order] = store.orders.values()
    assert order.refund_amount == D("13.50")
    assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_dispute_lifecycle_events(service, store, checkout, gateway):
    intent = await _paid_intent(checkout, gateway)
    await service.handle(SIGNED, _body("payment_intent.succeeded", {"id": intent.intent_id, "metadata": intent.metadata}))

    dispute = {
        "id": "dp_1",
        "payment_intent": intent.intent_id,
        "charge": "ch_1",
        "amount": 2700,
        "currency": "usd",
        "reason": "fraudulent",
        "status": "needs_response",
        "evidence_details": {"due_by": 1704931200, "has_evidence": False, "submission_count": 0},
    }
    await service.handle(SIGNED, _body("charge.dispute.created", dispute, "evt_2"))
    [order] = store.orders.values()
    assert order.dispute_status == DisputeStatus.UNDER_REVIEW
    assert order.payment_status == PaymentStatus.DISPUTED

    await service.handle(SIGNED, _body("charge.dispute.closed", {**dispute, "status": "lost"}, "evt_3"))
    [order] = store.orders.values()
    assert order.dispute_status == DisputeStatus.LOST
    assert order.payment_status == PaymentStatus.REFUNDED
    assert store.products["prod-a"].stock == 10


@pytest.mark.asyncio
async def test_adjustment_errors_are_acknowledged(service, adjustments, monkeypatch):
    async def boom(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(adjustments, "apply_refund", boom)

    event = await service.handle(
        SIGNED, _body("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 100})
    )
    assert event.id == "evt_1"


@pytest.mark.asyncio
async def test_account_updated_syncs_payout_status(service, store):
    await service.handle(
        SIGNED,
        _body("account.updated", {"id": "acct_seller1", "charges_enabled": True, "payouts_enabled": False}),
    )
    assert store.sellers["seller-1"].payout_status == PayoutAccountStatus.PENDING
    assert store.sellers["seller-1"].onboarding_completed is False


@pytest.mark.asyncio
async def test_unknown_event_ignored(service, store):
    event = await service.handle(SIGNED, _body("customer.created", {"id": "cus_1"}))
    assert event.type == "customer.created"
    assert store.orders == {}
