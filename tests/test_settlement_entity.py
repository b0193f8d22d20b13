from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import InvalidStatusTransitionException
from domain.order.entity import Order, OrderItem
from domain.settlement.entity import Settlement, SettlementStatus, calculate_settlement_date
from domain.settlement.service import build_settlements


D = Decimal


def _at(day: int, hour: int = 15) -> datetime:
    return datetime(2024, 1, day, hour, 30, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "order_day, settle_day",
    [
        (1, 3),   # Monday -> Wednesday
        (2, 3),   # Tuesday -> Wednesday
        (3, 10),  # Wednesday -> next Wednesday
        (4, 10),  # Thursday
        (7, 10),  # Sunday
    ],
)
def test_next_wednesday(order_day, settle_day):
    assert calculate_settlement_date(_at(order_day)) == datetime(2024, 1, settle_day, tzinfo=timezone.utc)


def _settlement(commission="20.00", status=SettlementStatus.PENDING, **kw) -> Settlement:
    return Settlement(
        id=kw.pop("id", 1),
        seller_id="seller-1",
        order_id=1,
        order_code="ORD-1",
        total_order_amount=D("27.00"),
        platform_fee=D("7.00"),
        commission_amount=D(commission),
        scheduled_settlement_date=_at(3, 0),
        status=status,
        **kw,
    )


def test_partial_deduction_is_proportional_to_original_commission():
    s = _settlement()
    assert s.apply_deduction(D("0.25"), full=False) == D("5.00")
    assert s.apply_deduction(D("0.25"), full=False) == D("5.00")
    assert s.commission_amount == D("10.00")
    assert s.refund_deductions == D("10.00")
    assert s.status == SettlementStatus.PENDING


def test_full_deduction_marks_refunded():
    s = _settlement()
    assert s.apply_deduction(D("1"), full=True) == D("20.00")
    assert s.commission_amount == D("0.00")
    assert s.status == SettlementStatus.REFUNDED


def test_deduction_requires_pending():
    s = _settlement(status=SettlementStatus.SETTLED)
    with pytest.raises(InvalidStatusTransitionException):
        s.apply_deduction(D("0.5"), full=False)


def test_clawback_creates_negative_pending_row():
    s = _settlement(status=SettlementStatus.SETTLED, id=7)
    claw = s.clawback(D("0.5"), full=False, now=_at(4))
    assert claw.commission_amount == D("-10.00")
    assert claw.status == SettlementStatus.PENDING
    assert claw.adjusts_settlement_id == 7
    assert claw.scheduled_settlement_date == datetime(2024, 1, 10, tzinfo=timezone.utc)


def test_clawback_never_exceeds_paid_commission():
    s = _settlement(status=SettlementStatus.SETTLED)
    assert s.clawback(D("1"), full=True, already_clawed_back=D("15.00")).commission_amount == D("-5.00")
    assert s.clawback(D("1"), full=True, already_clawed_back=D("20.00")) is None
    assert _settlement().clawback(D("1"), full=True) is None


def test_mark_settled_twice_rejected():
    s = _settlement()
    s.mark_settled("tr_1", _at(3))
    assert s.status == SettlementStatus.SETTLED
    with pytest.raises(InvalidStatusTransitionException):
        s.mark_settled("tr_2", _at(3))


def test_settle_paid_amount_restores_payout_and_returns_difference():
    s = _settlement()
    s.apply_deduction(D("0.25"), full=False)

    clawback = s.settle_paid_amount(D("20.00"), "tr_1", _at(3))

    assert s.status == SettlementStatus.SETTLED
    assert s.transfer_id == "tr_1"
    assert s.commission_amount == D("20.00")
    assert s.refund_deductions == D("0.00")
    assert clawback.commission_amount == D("-5.00")
    assert clawback.adjusts_settlement_id == s.id
    assert clawback.scheduled_settlement_date == datetime(2024, 1, 10, tzinfo=timezone.utc)


def test_settle_paid_amount_after_full_refund():
    s = _settlement()
    s.apply_deduction(D("1"), full=True)
    assert s.status == SettlementStatus.REFUNDED

    clawback = s.settle_paid_amount(D("20.00"), "tr_1", _at(3))

    assert s.status == SettlementStatus.SETTLED
    assert clawback.commission_amount == D("-20.00")


def test_settle_paid_amount_rejects_settled_row():
    s = _settlement(status=SettlementStatus.SETTLED)
    with pytest.raises(InvalidStatusTransitionException):
        s.settle_paid_amount(D("20.00"), "tr_2", _at(3))


def _order(items, total, fee="0.00") -> Order:
    return Order(
        id=42,
        order_code="ORD-42",
        buyer_id="buyer-1",
        items=items,
        shipping_address={},
        total_amount=D(total),
        platform_fee=D(fee),
        created_at=_at(1),
    )


def test_single_seller_commission_is_total_minus_fee():
    order = _order([OrderItem("prod-a", "seller-1", 2, D("10.00"))], "27.00", "2.70")
    [row] = build_settlements(order, now=_at(1))
    assert row.commission_amount == D("24.30")
    assert row.order_id == 42
    assert row.scheduled_settlement_date == datetime(2024, 1, 3, tzinfo=timezone.utc)
    assert row.products == [{"product_id": "prod-a", "quantity": 2, "price": "10.00"}]


def test_multi_seller_split_sums_to_order_totals():
    order = _order(
        [
            OrderItem("prod-a", "seller-1", 1, D("10.00")),
            OrderItem("prod-b", "seller-2", 2, D("10.00")),
        ],
        "33.33",
        "3.33",
    )
    rows = build_settlements(order, now=_at(1))
    assert [r.seller_id for r in rows] == ["seller-1", "seller-2"]
    assert sum((r.total_order_amount for r in rows), D("0")) == D("33.33")
    assert sum((r.platform_fee for r in rows), D("0")) == D("3.33")
    assert rows[0].total_order_amount == D("11.11")
