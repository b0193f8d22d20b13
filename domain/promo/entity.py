"""
优惠码领域实体
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO, round_money
from domain.common.timeutils import ensure_utc, utcnow
from domain.pricing.entity import DiscountType


@dataclass
class PromoCode:
    """
    卖家优惠码

    业务规则：
    1. 仅对所属卖家的商品生效
    2. 未过期、已启用、小计不低于最低消费
    3. 全局使用次数 < usage_limit（None 表示不限）
    4. 单个买家使用次数 < per_user_limit
    """

    id: str
    code: str
    seller_id: str
    discount_type: DiscountType
    discount: Decimal
    expires_at: Optional[datetime] = None
    min_order_amount: Decimal = ZERO
    is_active: bool = True
    usage_limit: Optional[int] = None
    per_user_limit: int = 1
    used_count: int = 0

    def rejection_reason(self, subtotal: Decimal, buyer_usage_count: int, now: datetime) -> Optional[str]:
        """返回不可用原因；可用时返回 None"""
        if not self.is_active:
            return "inactive"
        expires_at = ensure_utc(self.expires_at)
        if expires_at is not None and expires_at < now:
            return "expired"
        if subtotal < self.min_order_amount:
            return "below_minimum_order"
        if self.usage_limit is not None and self.used_count >= self.usage_limit:
            return "usage_limit_reached"
        if self.per_user_limit is not None and buyer_usage_count >= self.per_user_limit:
            return "per_user_limit_reached"
        return None

    def discount_for(self, subtotal: Decimal) -> Decimal:
        if self.discount_type == DiscountType.PERCENTAGE:
            return round_money(subtotal * self.discount / Decimal(100))
        return round_money(self.discount)


@dataclass
class PromoCodeUsage:
    """优惠码使用记录（买家 × 优惠码 × 订单），创建后不可变"""

    id: Optional[int]
    promo_code_id: str
    buyer_id: str
    order_code: str
    used_at: datetime = field(default_factory=utcnow)
