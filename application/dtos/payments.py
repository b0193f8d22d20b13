"""
Payment DTOs (Pydantic v2) used at the payment gateway boundary.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.types import condecimal


def _lower_currency(v: str) -> str:
    u = (v or "").lower()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


class CreatePaymentIntent(BaseModel):
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str = Field(default="usd")
    metadata: dict[str, str] = Field(default_factory=dict)
    description: Optional[str] = None
    idempotency_key: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class PaymentIntent(BaseModel):
    intent_id: str
    status: str
    provider: str
    provider_status: Optional[str] = None
    client_secret: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    latest_charge: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SessionLineItem(BaseModel):
    name: str
    unit_amount: condecimal(ge=0)  # type: ignore[valid-type]
    quantity: int = Field(default=1, ge=1)


class CreateCheckoutSession(BaseModel):
    line_items: list[SessionLineItem]
    currency: str = Field(default="usd")
    success_url: str
    cancel_url: str
    metadata: dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = None
    idempotency_key: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class CheckoutSession(BaseModel):
    session_id: str
    provider: str
    url: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount_total: Optional[Decimal] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    payment_intent_id: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str = Field(default="usd")
    reason: Optional[str] = None
    refund_application_fee: bool = False
    idempotency_key: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class RefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    amount: Optional[Decimal] = None
    payment_intent_id: Optional[str] = None


class TransferRequest(BaseModel):
    destination: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str = Field(default="usd")
    description: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class TransferResult(BaseModel):
    transfer_id: str
    provider: str
    amount: Decimal
    destination: str


class DisputeInfo(BaseModel):
    dispute_id: str
    provider: str
    status: str
    reason: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    evidence_due_by: Optional[datetime] = None
    has_evidence: bool = False
    submission_count: int = 0
    evidence: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def data_object(self) -> dict[str, Any]:
        return (self.data or {}).get("object") or {}
