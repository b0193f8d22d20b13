"""
定价引擎 - 纯计算，无副作用

计算顺序：基础单价 → 小计 → 运费 → 优惠码折扣 → 平台限时折扣
→ 折扣按行分摊 → 税费 → 最终总额 → 平台费。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from domain.catalog.entity import Product
from domain.common.exceptions import DomainValidationException, EmptyCartException
from domain.common.money import ZERO, round_money
from domain.pricing.entity import (
    PlatformFeeConfig,
    PricedLine,
    PricingBreakdown,
    PricingLine,
    ShippingMethod,
    ShippingPolicy,
    TaxConfig,
)
from domain.promo.entity import PromoCode


def resolve_base_unit_price(product: Product, client_price: Optional[Decimal], now: datetime) -> Decimal:
    """
    解析基础单价

    客户端传入的单价（购物车中已折扣的价格）直接信任；
    否则按目录价扣除生效中的商品折扣重新计算，且不低于 0。
    """
    if client_price is not None:
        if client_price < 0:
            raise DomainValidationException("Unit price cannot be negative", field="price")
        return round_money(client_price)
    return max(round_money(product.current_unit_price(now)), ZERO)


@dataclass(frozen=True)
class CarrierRates:
    express: Decimal
    overnight: Decimal


class PricingEngine:
    """单卖家结账的定价引擎"""

    def __init__(self, carrier_rates: CarrierRates) -> None:
        self._carrier_rates = carrier_rates

    @staticmethod
    def subtotal(lines: Sequence[PricingLine]) -> Decimal:
        return round_money(sum((line.base_unit_price * line.quantity for line in lines), ZERO))

    def shipping_cost(self, method: ShippingMethod, policy: ShippingPolicy, subtotal: Decimal) -> Decimal:
        if method == ShippingMethod.EXPRESS:
            return round_money(self._carrier_rates.express)
        if method == ShippingMethod.OVERNIGHT:
            return round_money(self._carrier_rates.overnight)
        threshold = policy.free_shipping_threshold or ZERO
        if threshold > 0 and subtotal >= threshold:
            return ZERO
        return round_money(policy.flat_charge or ZERO)

    @staticmethod
    def allocate_discount(lines: Sequence[PricingLine], subtotal: Decimal, total_discount: Decimal) -> list[PricedLine]:
        """
        按各行在小计中的占比分摊折扣，得到两位小数的最终单价

        折后小计定义为 Σ(最终单价 × 数量)，因此按行求和与折后小计按分完全相等。
        """
        priced: list[PricedLine] = []
        for line in lines:
            if total_discount > 0 and subtotal > 0:
                line_amount = line.base_unit_price * line.quantity
                share = line_amount / subtotal
                per_unit = total_discount * share / line.quantity
                final_unit = max(round_money(line.base_unit_price - per_unit), ZERO)
            else:
                final_unit = round_money(line.base_unit_price)
            priced.append(
                PricedLine(
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    quantity=line.quantity,
                    base_unit_price=round_money(line.base_unit_price),
                    allocated_discount=round_money(line.base_unit_price - final_unit),
                    final_unit_price=final_unit,
                    title=line.title,
                )
            )
        return priced

    def price(
        self,
        lines: Sequence[PricingLine],
        *,
        shipping_method: ShippingMethod,
        shipping_policy: ShippingPolicy,
        tax_config: Optional[TaxConfig],
        fee_config: Optional[PlatformFeeConfig],
        seller_payout_active: bool,
        now: datetime,
        promo: Optional[PromoCode] = None,
        buyer_promo_usage: int = 0,
    ) -> PricingBreakdown:
        if not lines:
            raise EmptyCartException()
        for line in lines:
            if line.quantity < 1:
                raise DomainValidationException("Quantity must be at least 1", field="quantity")

        subtotal = self.subtotal(lines)
        shipping = self.shipping_cost(shipping_method, shipping_policy, subtotal)

        promo_discount = ZERO
        promo_rejection: Optional[str] = None
        applied_promo: Optional[PromoCode] = None
        if promo is not None:
            promo_rejection = promo.rejection_reason(subtotal, buyer_promo_usage, now)
            if promo_rejection is None:
                promo_discount = promo.discount_for(subtotal)
                applied_promo = promo

        platform_discount = ZERO
        if tax_config is not None and tax_config.offer is not None:
            platform_discount = tax_config.offer.discount_for(subtotal, now)

        total_discount = min(promo_discount + platform_discount, subtotal)
        priced_lines = self.allocate_discount(lines, subtotal, total_discount)
        discounted_subtotal = round_money(sum((pl.line_total for pl in priced_lines), ZERO))

        rate = tax_config.effective_rate_percent if tax_config is not None else ZERO
        tax = round_money((discounted_subtotal + shipping) * rate / Decimal(100))
        total = round_money(discounted_subtotal + shipping + tax)

        platform_fee = ZERO
        if seller_payout_active and fee_config is not None:
            platform_fee = fee_config.compute(total)

        return PricingBreakdown(
            lines=priced_lines,
            subtotal=subtotal,
            promo_discount=promo_discount,
            platform_discount=platform_discount,
            discounted_subtotal=discounted_subtotal,
            shipping_cost=shipping,
            tax_rate_percent=rate,
            tax_amount=tax,
            platform_fee=platform_fee,
            total=total,
            promo_code_id=applied_promo.id if applied_promo else None,
            promo_code=applied_promo.code if applied_promo else None,
            promo_rejection=promo_rejection,
            shipping_method=shipping_method,
        )
