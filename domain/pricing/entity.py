"""
定价领域值对象 - 折扣、税费配置、平台费配置与价格明细
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.money import ZERO, round_money
from domain.common.timeutils import ensure_utc


class DiscountType(str, Enum):
    """折扣/费用类型"""
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class ShippingMethod(str, Enum):
    """配送方式"""
    STANDARD = "standard"    # 卖家自定义运费，满额包邮
    EXPRESS = "express"      # 承运商固定档位
    OVERNIGHT = "overnight"  # 承运商固定档位


@dataclass(frozen=True)
class ItemDiscount:
    """商品级折扣"""

    discount_type: DiscountType
    amount: Decimal
    expires_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        if self.amount <= 0:
            return False
        expires_at = ensure_utc(self.expires_at)
        return expires_at is None or expires_at > now

    def apply(self, price: Decimal) -> Decimal:
        if self.discount_type == DiscountType.PERCENTAGE:
            discounted = price - price * self.amount / Decimal(100)
        else:
            discounted = price - self.amount
        return max(round_money(discounted), ZERO)


@dataclass(frozen=True)
class LimitedTimeOffer:
    """平台限时优惠（按小计百分比）"""

    active: bool = False
    min_spend: Decimal = ZERO
    discount_percent: Decimal = ZERO
    expires_at: Optional[datetime] = None

    def discount_for(self, subtotal: Decimal, now: datetime) -> Decimal:
        if not self.active or self.discount_percent <= 0:
            return ZERO
        expires_at = ensure_utc(self.expires_at)
        if expires_at is not None and expires_at <= now:
            return ZERO
        if subtotal < self.min_spend:
            return ZERO
        return round_money(subtotal * self.discount_percent / Decimal(100))


@dataclass(frozen=True)
class TaxConfig:
    """税率配置（rate_percent 以百分比存储，如 8 表示 8%）"""

    rate_percent: Decimal = ZERO
    active: bool = True
    offer: Optional[LimitedTimeOffer] = None

    @property
    def effective_rate_percent(self) -> Decimal:
        return self.rate_percent if self.active else ZERO


@dataclass(frozen=True)
class PlatformFeeConfig:
    """全局平台费配置"""

    fee: Decimal = ZERO
    fee_type: DiscountType = DiscountType.FIXED

    def compute(self, total: Decimal) -> Decimal:
        if self.fee <= 0 or total <= 0:
            return ZERO
        if self.fee_type == DiscountType.PERCENTAGE:
            return round_money(total * self.fee / Decimal(100))
        return min(round_money(self.fee), total)


@dataclass(frozen=True)
class ShippingPolicy:
    """卖家运费策略"""

    flat_charge: Decimal = ZERO
    free_shipping_threshold: Decimal = ZERO


@dataclass(frozen=True)
class PricingLine:
    """待定价的行项目（单价已解析为基础单价）"""

    product_id: str
    seller_id: str
    quantity: int
    base_unit_price: Decimal
    title: Optional[str] = None


@dataclass(frozen=True)
class PricedLine:
    """定价后的行项目"""

    product_id: str
    seller_id: str
    quantity: int
    base_unit_price: Decimal
    allocated_discount: Decimal
    final_unit_price: Decimal
    title: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return round_money(self.final_unit_price * self.quantity)


@dataclass
class PricingBreakdown:
    """
    价格明细（不单独持久化）

    结账时计算并写入支付元数据，订单落库时直接使用，不再读取可变的定价配置。
    """

    lines: list[PricedLine]
    subtotal: Decimal
    promo_discount: Decimal = ZERO
    platform_discount: Decimal = ZERO
    discounted_subtotal: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    tax_rate_percent: Decimal = ZERO
    tax_amount: Decimal = ZERO
    platform_fee: Decimal = ZERO
    total: Decimal = ZERO
    promo_code_id: Optional[str] = None
    promo_code: Optional[str] = None
    promo_rejection: Optional[str] = None
    shipping_method: ShippingMethod = ShippingMethod.STANDARD

    @property
    def seller_ids(self) -> list[str]:
        seen: list[str] = []
        for line in self.lines:
            if line.seller_id not in seen:
                seen.append(line.seller_id)
        return seen

    @property
    def discount_applied(self) -> Decimal:
        """实际生效的折扣（小计 - 折后小计）"""
        return round_money(self.subtotal - self.discounted_subtotal)
