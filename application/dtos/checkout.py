"""
Checkout / order / settlement DTOs (Pydantic v2) used by API and services.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.types import condecimal

from domain.common.identifiers import normalize_id
from domain.order.entity import Order, OrderStatus
from domain.pricing.entity import PricingBreakdown, ShippingMethod
from domain.settlement.entity import Settlement


# ---------------------------------------------------------------------------
# Checkout requests
# ---------------------------------------------------------------------------
class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    # Cart price already reflecting item discounts; recomputed from catalog when absent
    price: Optional[condecimal(ge=0, max_digits=12, decimal_places=2)] = None  # type: ignore[valid-type]

    @field_validator("product_id", mode="before")
    @classmethod
    def _normalize_product_id(cls, v: Any) -> str:
        return normalize_id(v, field="product_id")


class ShippingAddress(BaseModel):
    full_name: str
    line1: str
    line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str
    phone: Optional[str] = None
    shipping_method: ShippingMethod = ShippingMethod.STANDARD


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(default_factory=list)
    shipping_address: ShippingAddress
    promo_code: Optional[str] = None

    @field_validator("promo_code")
    @classmethod
    def _strip_promo(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class ConfirmOrderRequest(BaseModel):
    payment_intent_id: Optional[str] = None
    checkout_session_id: Optional[str] = None

    @model_validator(mode="after")
    def _one_reference(self):
        if not self.payment_intent_id and not self.checkout_session_id:
            raise ValueError("payment_intent_id or checkout_session_id is required")
        return self


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------
class PricedLineDTO(BaseModel):
    product_id: str
    seller_id: str
    title: Optional[str] = None
    quantity: int
    base_unit_price: Decimal
    allocated_discount: Decimal
    final_unit_price: Decimal
    line_total: Decimal


class PricingBreakdownDTO(BaseModel):
    items: list[PricedLineDTO]
    subtotal: Decimal
    promo_discount: Decimal
    platform_discount: Decimal
    discount_applied: Decimal
    discounted_subtotal: Decimal
    shipping_method: ShippingMethod
    shipping_cost: Decimal
    tax_rate_percent: Decimal
    tax_amount: Decimal
    platform_fee: Decimal
    total: Decimal
    promo_code: Optional[str] = None
    promo_code_id: Optional[str] = None
    promo_rejection: Optional[str] = None

    @classmethod
    def from_domain(cls, breakdown: PricingBreakdown) -> "PricingBreakdownDTO":
        return cls(
            items=[
                PricedLineDTO(
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    title=line.title,
                    quantity=line.quantity,
                    base_unit_price=line.base_unit_price,
                    allocated_discount=line.allocated_discount,
                    final_unit_price=line.final_unit_price,
                    line_total=line.line_total,
                )
                for line in breakdown.lines
            ],
            subtotal=breakdown.subtotal,
            promo_discount=breakdown.promo_discount,
            platform_discount=breakdown.platform_discount,
            discount_applied=breakdown.discount_applied,
            discounted_subtotal=breakdown.discounted_subtotal,
            shipping_method=breakdown.shipping_method,
            shipping_cost=breakdown.shipping_cost,
            tax_rate_percent=breakdown.tax_rate_percent,
            tax_amount=breakdown.tax_amount,
            platform_fee=breakdown.platform_fee,
            total=breakdown.total,
            promo_code=breakdown.promo_code,
            promo_code_id=breakdown.promo_code_id,
            promo_rejection=breakdown.promo_rejection,
        )


# ---------------------------------------------------------------------------
# Canonical "payment confirmed" record
# ---------------------------------------------------------------------------
class ConfirmedLine(BaseModel):
    product_id: str
    seller_id: str
    quantity: int = Field(ge=1)
    price: Decimal
    title: Optional[str] = None


class PaymentConfirmation(BaseModel):
    """Normalized input of the order materializer, whatever the trigger."""

    source: Literal["webhook", "client_confirm", "dev_shortcut"]
    payment_intent_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    buyer_id: str
    lines: list[ConfirmedLine]
    shipping_address: dict[str, Any]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    platform_fee: Decimal
    total_amount: Decimal
    currency: str = "usd"
    promo_code_id: Optional[str] = None

    @model_validator(mode="after")
    def _has_reference(self):
        if not self.payment_intent_id and not self.checkout_session_id:
            raise ValueError("a payment reference is required")
        return self

    @property
    def payment_reference(self) -> str:
        return self.checkout_session_id or self.payment_intent_id or ""


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class TimelineEventDTO(BaseModel):
    event: str
    timestamp: datetime
    location: Optional[str] = None
    note: Optional[str] = None


class OrderItemDTO(BaseModel):
    product_id: str
    seller_id: str
    title: Optional[str] = None
    quantity: int
    price: Decimal
    status: OrderStatus
    timeline: list[TimelineEventDTO] = Field(default_factory=list)


class OrderDTO(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    order_code: str
    buyer_id: str
    items: list[OrderItemDTO]
    shipping_address: dict[str, Any]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    currency: str
    payment_status: str
    order_status: str
    tracking_number: Optional[str] = None
    payment_intent_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    refund_amount: Decimal
    dispute_status: str
    timeline: list[TimelineEventDTO] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderDTO":
        return cls(
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            items=[
                OrderItemDTO(
                    product_id=item.product_id,
                    seller_id=item.seller_id,
                    title=item.title,
                    quantity=item.quantity,
                    price=item.price,
                    status=item.status,
                    timeline=[TimelineEventDTO(**ev.__dict__) for ev in item.timeline],
                )
                for item in order.items
            ],
            shipping_address=order.shipping_address,
            subtotal=order.subtotal,
            discount_amount=order.discount_amount,
            shipping_cost=order.shipping_cost,
            tax_amount=order.tax_amount,
            total_amount=order.total_amount,
            platform_fee=order.platform_fee,
            currency=order.currency,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            tracking_number=order.tracking_number,
            payment_intent_id=order.payment_intent_id,
            checkout_session_id=order.checkout_session_id,
            refund_amount=order.refund_amount,
            dispute_status=order.dispute_status.value,
            timeline=[TimelineEventDTO(**ev.__dict__) for ev in order.timeline],
            created_at=order.created_at,
        )


class PaymentIntentResponse(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    breakdown: PricingBreakdownDTO
    # Populated only when the local webhook shortcut materialized the order
    order: Optional[OrderDTO] = None


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: Optional[str] = None
    breakdown: PricingBreakdownDTO


class MaterializedOrderResponse(BaseModel):
    order: OrderDTO
    created: bool


class SettlementDTO(BaseModel):
    id: int
    seller_id: str
    order_code: str
    total_order_amount: Decimal
    platform_fee: Decimal
    commission_amount: Decimal
    refund_deductions: Decimal
    status: str
    scheduled_settlement_date: datetime
    actual_settlement_date: Optional[datetime] = None
    transfer_id: Optional[str] = None
    adjusts_settlement_id: Optional[int] = None
    products: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, settlement: Settlement) -> "SettlementDTO":
        return cls(
            id=settlement.id,
            seller_id=settlement.seller_id,
            order_code=settlement.order_code,
            total_order_amount=settlement.total_order_amount,
            platform_fee=settlement.platform_fee,
            commission_amount=settlement.commission_amount,
            refund_deductions=settlement.refund_deductions,
            status=settlement.status.value,
            scheduled_settlement_date=settlement.scheduled_settlement_date,
            actual_settlement_date=settlement.actual_settlement_date,
            transfer_id=settlement.transfer_id,
            adjusts_settlement_id=settlement.adjusts_settlement_id,
            products=settlement.products,
        )


class SettlementBatchItem(BaseModel):
    seller_id: str
    amount: Decimal
    settlement_ids: list[int]
    status: Literal["transferred", "carried_over", "skipped", "failed"]
    transfer_id: Optional[str] = None
    error: Optional[str] = None


class SettlementBatchResult(BaseModel):
    run_at: datetime
    processed_sellers: int
    transferred_total: Decimal
    results: list[SettlementBatchItem]


# ---------------------------------------------------------------------------
# Refunds / disputes / status
# ---------------------------------------------------------------------------
class RefundOrderRequest(BaseModel):
    order_code: str
    # Defaults to the full remaining refundable amount
    amount: Optional[condecimal(gt=0, max_digits=12, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[Literal["duplicate", "fraudulent", "requested_by_customer"]] = "requested_by_customer"
    refund_application_fee: bool = False


class RefundOrderResponse(BaseModel):
    refund_id: str
    refund_status: str
    amount: Decimal
    order: OrderDTO


class DisputeEvidenceRequest(BaseModel):
    evidence: dict[str, str]
    submit: bool = True

    @field_validator("evidence")
    @classmethod
    def _non_empty(cls, v: dict[str, str]) -> dict[str, str]:
        if not v:
            raise ValueError("evidence must not be empty")
        return v


class ItemStatusUpdateRequest(BaseModel):
    status: OrderStatus
    location: Optional[str] = None
