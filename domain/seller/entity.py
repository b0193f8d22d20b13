"""
卖家资料（结算与运费相关字段）
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.money import ZERO
from domain.pricing.entity import ShippingPolicy


class PayoutAccountStatus(str, Enum):
    """收款账户状态"""
    PENDING = "pending"
    ACTIVE = "active"


@dataclass
class SellerProfile:
    id: str
    shop_name: Optional[str] = None
    shipping_charges: Decimal = ZERO
    free_shipping_threshold: Decimal = ZERO
    payout_account_id: Optional[str] = None
    payout_status: PayoutAccountStatus = PayoutAccountStatus.PENDING
    onboarding_completed: bool = False

    @property
    def has_active_payout_account(self) -> bool:
        return bool(self.payout_account_id) and self.payout_status == PayoutAccountStatus.ACTIVE

    @property
    def shipping_policy(self) -> ShippingPolicy:
        return ShippingPolicy(
            flat_charge=self.shipping_charges,
            free_shipping_threshold=self.free_shipping_threshold,
        )

    def sync_payout_capabilities(self, charges_enabled: bool, payouts_enabled: bool) -> bool:
        """根据支付渠道账户能力更新状态，返回是否有变化"""
        new_status = (
            PayoutAccountStatus.ACTIVE
            if charges_enabled and payouts_enabled
            else PayoutAccountStatus.PENDING
        )
        changed = new_status != self.payout_status
        self.payout_status = new_status
        self.onboarding_completed = new_status == PayoutAccountStatus.ACTIVE
        return changed
