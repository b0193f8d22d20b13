"""
订单领域实体 - 订单聚合根

一次成功的支付确认对应且仅对应一个订单（支付引用唯一）。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import (
    DomainValidationException,
    InvalidStatusTransitionException,
)
from domain.common.money import ZERO, round_money
from domain.common.timeutils import ensure_utc, utcnow


class PaymentStatus(str, Enum):
    """支付状态"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


class OrderStatus(str, Enum):
    """订单/行项目履约状态"""
    NEW = "new"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DisputeStatus(str, Enum):
    """争议状态"""
    NONE = "none"
    UNDER_REVIEW = "under_review"
    WON = "won"
    LOST = "lost"
    WARNING_CLOSED = "warning_closed"


# 卖家可设置的行项目状态
SELLER_SETTABLE_STATUSES = frozenset({
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})

ORDER_CONFIRMED_EVENT = "Order Confirmed"
STOCK_RESTORED_EVENT = "Stock Restored"


@dataclass
class TimelineEvent:
    event: str
    timestamp: datetime
    location: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": ensure_utc(self.timestamp).isoformat(),
            "location": self.location,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TimelineEvent":
        ts = data.get("timestamp")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts)
        return cls(
            event=data["event"],
            timestamp=ensure_utc(ts) or utcnow(),
            location=data.get("location"),
            note=data.get("note"),
        )


@dataclass
class OrderItem:
    """订单行项目（卖家归属 + 独立状态时间线）"""

    product_id: str
    seller_id: str
    quantity: int
    price: Decimal
    title: Optional[str] = None
    status: OrderStatus = OrderStatus.NEW
    timeline: list[TimelineEvent] = field(default_factory=list)
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity < 1:
            raise DomainValidationException(
                f"行项目数量必须大于等于1: {self.quantity}",
                field="quantity",
            )
        if self.price < 0:
            raise DomainValidationException(
                f"行项目单价不能为负: {self.price}",
                field="price",
            )

    @property
    def line_total(self) -> Decimal:
        return round_money(self.price * self.quantity)


@dataclass(frozen=True)
class RefundOutcome:
    """一次退款（增量）对订单的影响"""

    amount: Decimal
    fraction: Decimal
    is_full: bool
    platform_fee_reversed: Decimal
    restock_required: bool


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. total_amount = Σ(单价 × 数量) + 运费 + 税费（单价已含折扣分摊），创建时固定
    2. 行项目状态按确定规则汇总为订单状态
    3. 退款金额累计不超过订单总额
    """

    id: Optional[int]
    order_code: str
    buyer_id: str
    items: list[OrderItem]
    shipping_address: dict[str, Any]
    total_amount: Decimal
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    tax_amount: Decimal = ZERO
    platform_fee: Decimal = ZERO
    currency: str = "usd"

    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.NEW
    payment_intent_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    tracking_number: Optional[str] = None
    promo_code_id: Optional[str] = None

    # 退款
    refund_amount: Decimal = ZERO
    platform_fee_refunded: Decimal = ZERO
    refunded_at: Optional[datetime] = None

    # 争议
    dispute_id: Optional[str] = None
    dispute_status: DisputeStatus = DisputeStatus.NONE
    dispute_reason: Optional[str] = None
    dispute_amount: Optional[Decimal] = None
    dispute_created_at: Optional[datetime] = None
    dispute_closed_at: Optional[datetime] = None

    timeline: list[TimelineEvent] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.items:
            raise DomainValidationException("订单至少包含一个行项目", field="items")
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.refunded_at = ensure_utc(self.refunded_at)
        self.dispute_created_at = ensure_utc(self.dispute_created_at)
        self.dispute_closed_at = ensure_utc(self.dispute_closed_at)

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------
    @classmethod
    def place(
        cls,
        *,
        order_code: str,
        tracking_number: str,
        buyer_id: str,
        items: list[OrderItem],
        shipping_address: dict[str, Any],
        subtotal: Decimal,
        discount_amount: Decimal,
        shipping_cost: Decimal,
        tax_amount: Decimal,
        total_amount: Decimal,
        platform_fee: Decimal,
        currency: str,
        payment_intent_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
        promo_code_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Order":
        """由已确认的支付创建订单：状态为已支付，写入初始时间线"""
        if not payment_intent_id and not checkout_session_id:
            raise DomainValidationException("订单必须关联支付引用", field="payment_intent_id")
        now = now or utcnow()
        for item in items:
            item.timeline.append(TimelineEvent(ORDER_CONFIRMED_EVENT, now, location="Seller"))
        order = cls(
            id=None,
            order_code=order_code,
            buyer_id=buyer_id,
            items=items,
            shipping_address=shipping_address,
            total_amount=round_money(total_amount),
            subtotal=round_money(subtotal),
            discount_amount=round_money(discount_amount),
            shipping_cost=round_money(shipping_cost),
            tax_amount=round_money(tax_amount),
            platform_fee=round_money(platform_fee),
            currency=currency,
            payment_status=PaymentStatus.PAID,
            order_status=OrderStatus.NEW,
            payment_intent_id=payment_intent_id,
            checkout_session_id=checkout_session_id,
            tracking_number=tracking_number,
            promo_code_id=promo_code_id,
            timeline=[TimelineEvent(ORDER_CONFIRMED_EVENT, now, location="Seller")],
            created_at=now,
            updated_at=now,
        )
        order._validate_totals()
        return order

    def _validate_totals(self) -> None:
        expected = round_money(self.items_subtotal + self.shipping_cost + self.tax_amount)
        if expected != self.total_amount:
            raise DomainValidationException(
                f"订单总额不一致: total={self.total_amount}, expected={expected}",
                field="total_amount",
                details={"total_amount": str(self.total_amount), "expected": str(expected)},
            )
        if self.platform_fee < 0 or self.platform_fee > self.total_amount:
            raise DomainValidationException("平台费超出订单总额", field="platform_fee")

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    @property
    def items_subtotal(self) -> Decimal:
        return round_money(sum((item.line_total for item in self.items), ZERO))

    @property
    def payment_reference(self) -> str:
        return self.payment_intent_id or self.checkout_session_id or ""

    @property
    def seller_ids(self) -> list[str]:
        seen: list[str] = []
        for item in self.items:
            if item.seller_id not in seen:
                seen.append(item.seller_id)
        return seen

    @property
    def refundable_amount(self) -> Decimal:
        return round_money(self.total_amount - self.refund_amount)

    @property
    def is_fully_refunded(self) -> bool:
        return self.refund_amount >= self.total_amount

    def find_item(self, product_id: str) -> Optional[OrderItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def _touch(self, now: Optional[datetime] = None) -> datetime:
        now = now or utcnow()
        self.updated_at = now
        return now

    # ------------------------------------------------------------------
    # 履约状态
    # ------------------------------------------------------------------
    def record_item_status(
        self,
        product_id: str,
        status: OrderStatus,
        *,
        location: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderItem:
        """更新行项目状态并重新汇总订单状态"""
        if status not in SELLER_SETTABLE_STATUSES:
            raise InvalidStatusTransitionException(
                f"不支持设置为 {status.value}",
                current="-",
                requested=status.value,
            )
        if self.order_status == OrderStatus.REFUNDED:
            raise InvalidStatusTransitionException(
                "订单已退款，不能再更新状态",
                current=self.order_status.value,
                requested=status.value,
            )
        item = self.find_item(product_id)
        if item is None:
            raise DomainValidationException(f"订单中不存在商品 {product_id}", field="product_id")
        if item.status == status:
            raise InvalidStatusTransitionException(
                f"行项目已是 {status.value} 状态",
                current=item.status.value,
                requested=status.value,
            )
        now = self._touch(now)
        label = status.value.replace("_", " ").title()
        item.status = status
        item.timeline.append(TimelineEvent(label, now, location=location))
        self.order_status = self._rollup(status)
        self.timeline.append(TimelineEvent(label, now, location=location, note=f"product {product_id}"))
        return item

    def _rollup(self, latest: OrderStatus) -> OrderStatus:
        statuses = [item.status for item in self.items]
        if all(s == OrderStatus.DELIVERED for s in statuses):
            return OrderStatus.DELIVERED
        if any(s in (OrderStatus.SHIPPED, OrderStatus.IN_TRANSIT) for s in statuses):
            return OrderStatus.IN_TRANSIT
        return latest

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------
    def apply_refund(
        self,
        amount: Decimal,
        *,
        force_full: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[RefundOutcome]:
        """
        记录一次退款增量

        amount 为本次新增退款金额（非累计）；超出可退金额部分被截断。
        force_full 用于争议败诉：无论金额多少都按全额退款处理。
        已全额退款的订单再次调用返回 None。
        """
        if self.is_fully_refunded or self.payment_status == PaymentStatus.REFUNDED:
            return None
        amount = min(round_money(amount), self.refundable_amount)
        if amount <= 0 and not force_full:
            return None
        now = self._touch(now)

        self.refund_amount = round_money(self.refund_amount + max(amount, ZERO))
        is_full = force_full or self.refund_amount >= self.total_amount
        fraction = (amount / self.total_amount) if self.total_amount > 0 else Decimal(1)
        if is_full:
            fee_reversed = round_money(self.platform_fee - self.platform_fee_refunded)
        else:
            fee_reversed = min(
                round_money(self.platform_fee * fraction),
                round_money(self.platform_fee - self.platform_fee_refunded),
            )
        self.platform_fee_refunded = round_money(self.platform_fee_refunded + fee_reversed)
        self.refunded_at = now

        if is_full:
            self.payment_status = PaymentStatus.REFUNDED
            self.order_status = OrderStatus.REFUNDED
            self.timeline.append(TimelineEvent("Refunded", now, note=f"amount {amount}"))
        else:
            self.payment_status = PaymentStatus.PARTIALLY_REFUNDED
            self.timeline.append(TimelineEvent("Partially Refunded", now, note=f"amount {amount}"))

        return RefundOutcome(
            amount=amount,
            fraction=fraction,
            is_full=is_full,
            platform_fee_reversed=fee_reversed,
            restock_required=is_full,
        )

    def record_restock(self, now: Optional[datetime] = None) -> list[tuple[str, int]]:
        """全额退款后回补库存：为每个行项目追加时间线，返回 (product_id, quantity)"""
        now = self._touch(now)
        restocked: list[tuple[str, int]] = []
        for item in self.items:
            item.status = OrderStatus.REFUNDED
            item.timeline.append(
                TimelineEvent(STOCK_RESTORED_EVENT, now, note=f"quantity {item.quantity}")
            )
            restocked.append((item.product_id, item.quantity))
        return restocked

    # ------------------------------------------------------------------
    # 争议
    # ------------------------------------------------------------------
    def open_dispute(
        self,
        dispute_id: str,
        *,
        reason: Optional[str],
        amount: Decimal,
        now: Optional[datetime] = None,
    ) -> None:
        now = self._touch(now)
        self.dispute_id = dispute_id
        self.dispute_reason = reason
        self.dispute_amount = round_money(amount)
        self.dispute_status = DisputeStatus.UNDER_REVIEW
        self.dispute_created_at = self.dispute_created_at or now
        self.dispute_closed_at = None
        self.payment_status = PaymentStatus.DISPUTED
        self.timeline.append(
            TimelineEvent(
                "Dispute Opened",
                now,
                note=f"reason {reason or 'unknown'}; platform fee at risk {self.platform_fee}",
            )
        )

    def update_dispute(
        self,
        *,
        status: DisputeStatus,
        reason: Optional[str] = None,
        amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = self._touch(now)
        self.dispute_status = status
        if reason:
            self.dispute_reason = reason
        if amount is not None:
            self.dispute_amount = round_money(amount)
        self.timeline.append(TimelineEvent("Dispute Updated", now, note=f"status {status.value}"))

    def close_dispute(self, outcome: DisputeStatus, *, now: Optional[datetime] = None) -> bool:
        """
        关闭争议，返回是否发生了变化（重复投递的关闭事件返回 False）

        败诉（lost）后的资金处理由调用方按全额退款路径执行。
        """
        if outcome not in (DisputeStatus.WON, DisputeStatus.LOST, DisputeStatus.WARNING_CLOSED):
            raise InvalidStatusTransitionException(
                "无效的争议结果",
                current=self.dispute_status.value,
                requested=outcome.value,
            )
        if self.dispute_status == outcome and self.dispute_closed_at is not None:
            return False
        now = self._touch(now)
        self.dispute_status = outcome
        self.dispute_closed_at = now
        if outcome == DisputeStatus.LOST:
            self.timeline.append(TimelineEvent("Dispute Lost", now, note=f"amount {self.dispute_amount}"))
        else:
            if self.payment_status == PaymentStatus.DISPUTED:
                self.payment_status = (
                    PaymentStatus.PARTIALLY_REFUNDED if self.refund_amount > 0 else PaymentStatus.PAID
                )
            self.timeline.append(
                TimelineEvent(
                    "Dispute Won" if outcome == DisputeStatus.WON else "Dispute Closed",
                    now,
                    note="platform fee and seller commission retained",
                )
            )
        return True
