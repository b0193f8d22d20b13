"""
结算领域实体 - 每个订单每个卖家一行佣金记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import InvalidStatusTransitionException
from domain.common.money import ZERO, round_money
from domain.common.timeutils import ensure_utc, utcnow

# 结算日：周三（按周日=0 计数）
SETTLEMENT_WEEKDAY = 3


class SettlementStatus(str, Enum):
    """结算状态"""
    PENDING = "pending"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


def calculate_settlement_date(order_date: datetime) -> datetime:
    """
    计算结算日：订单日期之后的下一个周三（零点）

    周三下单顺延 7 天，不会当天结算；保留原时区。
    """
    day_of_week = (order_date.weekday() + 1) % 7  # 周日=0 ... 周六=6
    days_until = (SETTLEMENT_WEEKDAY - day_of_week + 7) % 7
    if days_until == 0:
        days_until = 7
    target = order_date + timedelta(days=days_until)
    return target.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass
class Settlement:
    """
    卖家结算记录

    业务规则：
    1. 佣金 <= 0 时保持 pending，参与下次批处理的卖家汇总，不会被清零
    2. 已结算记录不可再修改金额；其后的退款以负数冲正记录体现
    3. 退款扣减耗尽佣金时标记为 refunded
    """

    id: Optional[int]
    seller_id: str
    order_id: int
    order_code: str
    total_order_amount: Decimal
    platform_fee: Decimal
    commission_amount: Decimal
    scheduled_settlement_date: datetime
    products: list[dict[str, Any]] = field(default_factory=list)
    refund_deductions: Decimal = ZERO
    status: SettlementStatus = SettlementStatus.PENDING
    actual_settlement_date: Optional[datetime] = None
    transfer_id: Optional[str] = None
    adjusts_settlement_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.scheduled_settlement_date = ensure_utc(self.scheduled_settlement_date)
        self.actual_settlement_date = ensure_utc(self.actual_settlement_date)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def is_clawback(self) -> bool:
        return self.adjusts_settlement_id is not None

    @property
    def original_commission(self) -> Decimal:
        return round_money(self.commission_amount + self.refund_deductions)

    def is_due(self, now: datetime) -> bool:
        return self.status == SettlementStatus.PENDING and self.scheduled_settlement_date <= now

    def apply_deduction(self, fraction: Decimal, *, full: bool, now: Optional[datetime] = None) -> Decimal:
        """
        按退款比例扣减佣金，返回实际扣减金额

        仅对 pending 且佣金为正的记录生效；扣减不会使佣金为负。
        """
        if self.status != SettlementStatus.PENDING:
            raise InvalidStatusTransitionException(
                "只有待结算记录可以扣减",
                current=self.status.value,
                requested="deduction",
            )
        if self.commission_amount <= 0:
            return ZERO
        if full:
            deduction = self.commission_amount
        else:
            deduction = min(round_money(self.original_commission * fraction), self.commission_amount)
        self.commission_amount = round_money(self.commission_amount - deduction)
        self.refund_deductions = round_money(self.refund_deductions + deduction)
        if self.commission_amount <= 0:
            self.status = SettlementStatus.REFUNDED
        self.updated_at = now or utcnow()
        return deduction

    def clawback(
        self,
        fraction: Decimal,
        *,
        full: bool,
        already_clawed_back: Decimal = ZERO,
        now: Optional[datetime] = None,
    ) -> Optional["Settlement"]:
        """
        针对已结算记录生成负数冲正记录（pending），在后续批次中与新销售相抵

        全额退款冲回该记录尚未冲回的全部已付佣金；冲回总额不超过已付佣金。
        """
        if self.status != SettlementStatus.SETTLED or self.commission_amount <= 0:
            return None
        now = now or utcnow()
        remaining = round_money(self.commission_amount - already_clawed_back)
        if full:
            amount = remaining
        else:
            amount = min(round_money(self.commission_amount * fraction), remaining)
        if amount <= 0:
            return None
        return self._adjustment(amount, now)

    def _adjustment(self, amount: Decimal, now: datetime) -> "Settlement":
        return Settlement(
            id=None,
            seller_id=self.seller_id,
            order_id=self.order_id,
            order_code=self.order_code,
            total_order_amount=self.total_order_amount,
            platform_fee=ZERO,
            commission_amount=-amount,
            scheduled_settlement_date=calculate_settlement_date(now),
            products=list(self.products),
            adjusts_settlement_id=self.id,
            created_at=now,
            updated_at=now,
        )

    def mark_settled(self, transfer_id: str, settled_at: datetime) -> None:
        if self.status != SettlementStatus.PENDING:
            raise InvalidStatusTransitionException(
                "只有待结算记录可以标记为已结算",
                current=self.status.value,
                requested=SettlementStatus.SETTLED.value,
            )
        self.status = SettlementStatus.SETTLED
        self.transfer_id = transfer_id
        self.actual_settlement_date = ensure_utc(settled_at)
        self.updated_at = self.actual_settlement_date

    def settle_paid_amount(self, paid: Decimal, transfer_id: str, settled_at: datetime) -> Optional["Settlement"]:
        """
        转账已按快照金额付出，而记录在此期间被退款扣减

        记录恢复为实际付出的佣金并标记已结算，扣减部分转为冲正记录，返回该冲正记录（无差额时为 None）。
        """
        if self.status not in (SettlementStatus.PENDING, SettlementStatus.REFUNDED):
            raise InvalidStatusTransitionException(
                "只有待结算或已退款记录可以按已付金额结算",
                current=self.status.value,
                requested=SettlementStatus.SETTLED.value,
            )
        paid = round_money(paid)
        overpaid = round_money(paid - self.commission_amount)
        if overpaid > 0:
            self.commission_amount = paid
            self.refund_deductions = max(round_money(self.refund_deductions - overpaid), ZERO)
        self.status = SettlementStatus.PENDING
        self.mark_settled(transfer_id, settled_at)
        if overpaid <= 0:
            return None
        return self._adjustment(overpaid, self.actual_settlement_date)
