from decimal import Decimal

import pytest
import pytest_asyncio

from application.dtos.auth import Principal
from application.dtos.checkout import (
    ConfirmedLine,
    DisputeEvidenceRequest,
    PaymentConfirmation,
    RefundOrderRequest,
)
from application.dtos.payments import DisputeInfo
from application.services.adjustment_service import AdjustmentService
from application.services.order_materializer import OrderMaterializer
from domain.common.exceptions import (
    ForbiddenActionException,
    NoDisputeException,
    RefundNotAllowedException,
)
from domain.order.entity import DisputeStatus, OrderStatus, PaymentStatus
from domain.settlement.entity import SettlementStatus


D = Decimal

SELLER = Principal(user_id="seller-1", role="seller")
OTHER_SELLER = Principal(user_id="seller-2", role="seller")
BUYER = Principal(user_id="buyer-1", role="buyer")
ADMIN = Principal(user_id="admin-1", role="admin")


@pytest.fixture
def adjustments(store, gateway, now):
    return AdjustmentService(store.uow_factory, gateway, clock=lambda: now)


@pytest_asyncio.fixture
async def order(store, gateway, now):
    """A paid $27.00 order (2 x $10 + $5 shipping + 8% tax) with a $2.70 platform fee."""
    materializer = OrderMaterializer(store.uow_factory, gateway, backoff_seconds=0, clock=lambda: now)
    result = await materializer.materialize(
        PaymentConfirmation(
            source="webhook",
            payment_intent_id="pi_1",
            buyer_id="buyer-1",
            lines=[ConfirmedLine(product_id="prod-a", seller_id="seller-1", quantity=2, price=D("10.00"))],
            shipping_address={},
            subtotal=D("20.00"),
            discount_amount=D("0"),
            shipping_cost=D("5.00"),
            tax_amount=D("2.00"),
            platform_fee=D("2.70"),
            total_amount=D("27.00"),
        )
    )
    return result.order


def _settlements(store, order):
    return sorted((s for s in store.settlements.values() if s.order_id == order.id), key=lambda s: s.id)


def _settle_all(store):
    for row in store.settlements.values():
        row.mark_settled("tr_0", row.scheduled_settlement_date)


def _dispute(status="under_review", amount="27.00") -> DisputeInfo:
    return DisputeInfo(
        dispute_id="dp_1",
        provider="stripe",
        status=status,
        reason="fraudulent",
        amount=D(amount),
        payment_intent_id="pi_1",
    )


@pytest.mark.asyncio
async def test_partial_refund_deducts_commission_proportionally(adjustments, store, order):
    updated = await adjustments.apply_refund("pi_1", D("13.50"))

    assert updated.payment_status == PaymentStatus.PARTIALLY_REFUNDED
    assert updated.refund_amount == D("13.50")
    assert updated.platform_fee_refunded == D("1.35")
    assert store.products["prod-a"].stock == 8

    [row] = _settlements(store, order)
    assert row.commission_amount == D("12.15")
    assert row.refund_deductions == D("12.15")
    assert row.status == SettlementStatus.PENDING


@pytest.mark.asyncio
async def test_redelivered_refund_event_is_a_no_op(adjustments, store, order):
    await adjustments.apply_refund("pi_1", D("13.50"))
    await adjustments.apply_refund("pi_1", D("13.50"))

    stored = store.orders[order.id]
    assert stored.refund_amount == D("13.50")
    [row] = _settlements(store, order)
    assert row.commission_amount == D("12.15")


@pytest.mark.asyncio
async def test_full_refund_restocks_and_zeroes_commission(adjustments, store, order):
    await adjustments.apply_refund("pi_1", D("13.50"))
    updated = await adjustments.apply_refund("pi_1", D("27.00"))

    assert updated.payment_status == PaymentStatus.REFUNDED
    assert updated.order_status == OrderStatus.REFUNDED
    assert updated.platform_fee_refunded == D("2.70")
    assert all(item.status == OrderStatus.REFUNDED for item in updated.items)
    assert updated.items[0].timeline[-1].event == "Stock Restored"
    assert store.products["prod-a"].stock == 10

    [row] = _settlements(store, order)
    assert row.commission_amount == D("0.00")
    assert row.status == SettlementStatus.REFUNDED

    # restock happens once even if the event is delivered again
    await adjustments.apply_refund("pi_1", D("27.00"))
    assert store.products["prod-a"].stock == 10


@pytest.mark.asyncio
async def test_refund_after_payout_creates_clawbacks(adjustments, store, order):
    _settle_all(store)

    await adjustments.apply_refund("pi_1", D("13.50"))
    await adjustments.apply_refund("pi_1", D("27.00"))

    original, first, second = _settlements(store, order)
    assert original.status == SettlementStatus.SETTLED
    assert original.commission_amount == D("24.30")
    assert first.commission_amount == D("-12.15")
    assert second.commission_amount == D("-12.15")
    assert {first.adjusts_settlement_id, second.adjusts_settlement_id} == {original.id}
    assert first.status == second.status == SettlementStatus.PENDING


@pytest.mark.asyncio
async def test_refund_for_unknown_payment_ignored(adjustments):
    assert await adjustments.apply_refund("pi_unknown", D("5.00")) is None


@pytest.mark.asyncio
async def test_lost_dispute_follows_full_refund(adjustments, store, order):
    opened = await adjustments.dispute_created(_dispute())
    assert opened.payment_status == PaymentStatus.DISPUTED
    assert opened.dispute_status == DisputeStatus.UNDER_REVIEW

    closed = await adjustments.dispute_closed(_dispute("lost"))

    assert closed.dispute_status == DisputeStatus.LOST
    assert closed.payment_status == PaymentStatus.REFUNDED
    assert closed.refund_amount == D("27.00")
    assert store.products["prod-a"].stock == 10
    [row] = _settlements(store, order)
    assert row.status == SettlementStatus.REFUNDED

    again = await adjustments.dispute_closed(_dispute("lost"))
    assert again.refund_amount == D("27.00")
    assert store.products["prod-a"].stock == 10


@pytest.mark.asyncio
async def test_won_dispute_restores_paid(adjustments, store, order):
    await adjustments.dispute_created(_dispute())
    await adjustments.dispute_updated(_dispute("under_review"))

    closed = await adjustments.dispute_updated(_dispute("won"))

    assert closed.dispute_status == DisputeStatus.WON
    assert closed.payment_status == PaymentStatus.PAID
    assert closed.dispute_closed_at is not None
    [row] = _settlements(store, order)
    assert row.commission_amount == D("24.30")


@pytest.mark.asyncio
async def test_dispute_created_twice_is_recorded_once(adjustments, store, order):
    await adjustments.dispute_created(_dispute())
    await adjustments.dispute_created(_dispute())

    stored = store.orders[order.id]
    assert [e.event for e in stored.timeline].count("Dispute Opened") == 1


@pytest.mark.asyncio
async def test_manual_refund_by_seller(adjustments, store, gateway, order):
    response = await adjustments.refund_order(SELLER, RefundOrderRequest(order_code=order.order_code, amount=D("7.00")))

    [req] = gateway.refunds
    assert req.payment_intent_id == "pi_1"
    assert req.amount == D("7.00")
    assert response.refund_id == "re_1"
    assert response.order.refund_amount == D("7.00")
    assert store.orders[order.id].payment_status == PaymentStatus.PARTIALLY_REFUNDED

    # the provider's refund webhook arriving afterwards changes nothing
    await adjustments.apply_refund("pi_1", D("7.00"))
    assert store.orders[order.id].refund_amount == D("7.00")


@pytest.mark.asyncio
async def test_manual_refund_defaults_to_remaining_amount(adjustments, store, order):
    response = await adjustments.refund_order(ADMIN, RefundOrderRequest(order_code=order.order_code))

    assert response.amount == D("27.00")
    assert store.orders[order.id].payment_status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_manual_refund_permissions_and_limits(adjustments, gateway, order):
    for principal in (BUYER, OTHER_SELLER):
        with pytest.raises(ForbiddenActionException):
            await adjustments.refund_order(principal, RefundOrderRequest(order_code=order.order_code))
    with pytest.raises(RefundNotAllowedException):
        await adjustments.refund_order(ADMIN, RefundOrderRequest(order_code=order.order_code, amount=D("30.00")))
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_dispute_lookup_and_evidence(adjustments, gateway, order):
    with pytest.raises(NoDisputeException):
        await adjustments.get_dispute(BUYER, order.order_code)

    await adjustments.dispute_created(_dispute())
    gateway.disputes["dp_1"] = _dispute()

    info = await adjustments.get_dispute(BUYER, order.order_code)
    assert info.dispute_id == "dp_1"

    with pytest.raises(ForbiddenActionException):
        await adjustments.submit_dispute_evidence(
            BUYER, order.order_code, DisputeEvidenceRequest(evidence={"product_description": "mug"})
        )

    updated = await adjustments.submit_dispute_evidence(
        SELLER, order.order_code, DisputeEvidenceRequest(evidence={"product_description": "mug"})
    )
    assert updated.has_evidence is True
    assert gateway.evidence == [("dp_1", {"product_description": "mug"}, True)]
