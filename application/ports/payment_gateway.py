"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
The error types are part of the port contract so that services can tell a
provider rejection from a transient outage without importing an adapter.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CheckoutSession,
    CreateCheckoutSession,
    CreatePaymentIntent,
    DisputeInfo,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(PaymentProviderError):
    """Rate limits, connectivity problems: safe to retry later."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(message, provider=provider, provider_code=provider_code, details=details)
        self.code = PaymentCode.PROVIDER_RECOVERABLE
        self.error_type = "PaymentRecoverableError"


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=full_details,
        )


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the external payment processor.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntent: ...

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent: ...

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession: ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    async def create_transfer(self, req: TransferRequest) -> TransferResult: ...

    async def retrieve_dispute(self, dispute_id: str) -> DisputeInfo: ...

    async def submit_dispute_evidence(self, dispute_id: str, evidence: dict[str, str], *, submit: bool = True) -> DisputeInfo: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...
