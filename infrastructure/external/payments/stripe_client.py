"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (`stripe.PaymentIntent`, `stripe.checkout.Session`,
  `stripe.Refund`, `stripe.Transfer`, `stripe.Dispute`) accept an
  `idempotency_key` kwarg.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header; the verified body is then decoded as plain JSON.
- Amounts cross the boundary in minor units (cents).
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

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
from application.ports.payment_gateway import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.money import from_minor_units, to_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PROVIDER_DISPUTE_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# Stripe only accepts these refund reasons
_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def _id(obj: Any) -> Optional[str]:
    """Expandable references come back either as an id or as an object."""
    if obj is None:
        return None
    if isinstance(obj, str):
        return obj
    return _field(obj, "id")


def _str_map(obj: Any) -> dict[str, str]:
    if not obj:
        return {}
    return {str(k): str(obj[k]) for k in obj.keys()}


def _header(headers: dict[str, Any], name: str) -> Optional[str]:
    target = name.lower()
    for key, value in headers.items():
        if str(key).lower() == target:
            return value
    return None


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        super().__init__(
            retry={"max": payment_settings.payment_retry.max, "base": payment_settings.payment_retry.base_backoff},
        )
        self._secret_key = secret_key or payment_settings.stripe.secret_key
        self._webhook_secret = webhook_secret or payment_settings.stripe.webhook_secret
        if not self._secret_key:
            raise RuntimeError("STRIPE__SECRET_KEY not configured")
        # Configure module-level key for compatibility across SDK variants
        stripe.api_key = self._secret_key
        stripe.max_network_retries = payment_settings.payment_retry.max
        if payment_settings.stripe.api_version:
            stripe.api_version = payment_settings.stripe.api_version

    def _translate_error(self, exc: Exception) -> Exception:
        if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError)):
            return PaymentRecoverableError(
                getattr(exc, "user_message", None) or str(exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
            )
        if isinstance(exc, stripe.StripeError):
            return PaymentProviderError(
                getattr(exc, "user_message", None) or str(exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
                details={"http_status": getattr(exc, "http_status", None)},
            )
        return exc

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------
    def _to_intent(self, pi: Any) -> PaymentIntent:
        raw_status = _field(pi, "status")
        amount = _field(pi, "amount")
        return PaymentIntent(
            intent_id=str(_field(pi, "id")),
            status=self._map_status(raw_status),
            provider=self.provider,
            provider_status=raw_status,
            client_secret=_field(pi, "client_secret"),
            amount=from_minor_units(amount) if amount is not None else None,
            currency=_field(pi, "currency"),
            latest_charge=_id(_field(pi, "latest_charge")),
            metadata=_str_map(_field(pi, "metadata")),
        )

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntent:
        pi = await self._call(
            "create_payment_intent",
            stripe.PaymentIntent.create,
            amount=to_minor_units(req.amount),
            currency=req.currency,
            metadata=req.metadata,
            description=req.description,
            automatic_payment_methods={"enabled": True},
            idempotency_key=req.idempotency_key,
        )
        intent = self._to_intent(pi)
        self._log("payment_intent_created", intent_id=intent.intent_id, status=intent.status)
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        pi = await self._call("retrieve_payment_intent", stripe.PaymentIntent.retrieve, intent_id)
        return self._to_intent(pi)

    # ------------------------------------------------------------------
    # Hosted checkout sessions
    # ------------------------------------------------------------------
    def _to_session(self, session: Any) -> CheckoutSession:
        amount_total = _field(session, "amount_total")
        return CheckoutSession(
            session_id=str(_field(session, "id")),
            provider=self.provider,
            url=_field(session, "url"),
            status=_field(session, "status"),
            payment_status=_field(session, "payment_status"),
            payment_intent_id=_id(_field(session, "payment_intent")),
            amount_total=from_minor_units(amount_total) if amount_total is not None else None,
            metadata=_str_map(_field(session, "metadata")),
        )

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:
        line_items = [
            {
                "price_data": {
                    "currency": req.currency,
                    "product_data": {"name": item.name},
                    "unit_amount": to_minor_units(item.unit_amount),
                },
                "quantity": item.quantity,
            }
            for item in req.line_items
        ]
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": req.success_url,
            "cancel_url": req.cancel_url,
            "metadata": req.metadata,
            "idempotency_key": req.idempotency_key,
        }
        if req.customer_email:
            params["customer_email"] = req.customer_email
        session = await self._call("create_checkout_session", stripe.checkout.Session.create, **params)
        result = self._to_session(session)
        self._log("checkout_session_created", session_id=result.session_id)
        return result

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        session = await self._call("retrieve_checkout_session", stripe.checkout.Session.retrieve, session_id)
        return self._to_session(session)

    # ------------------------------------------------------------------
    # Refunds / transfers
    # ------------------------------------------------------------------
    async def refund(self, req: RefundRequest) -> RefundResult:
        params: dict[str, Any] = {
            "payment_intent": req.payment_intent_id,
            "amount": to_minor_units(req.amount),
            "metadata": req.metadata,
            "idempotency_key": req.idempotency_key,
        }
        if req.reason in _REFUND_REASONS:
            params["reason"] = req.reason
        if req.refund_application_fee:
            params["refund_application_fee"] = True
        refund = await self._call("refund", stripe.Refund.create, **params)
        amount = _field(refund, "amount")
        result = RefundResult(
            refund_id=str(_field(refund, "id")),
            status=str(_field(refund, "status", "")),
            provider=self.provider,
            amount=from_minor_units(amount) if amount is not None else req.amount,
            payment_intent_id=_id(_field(refund, "payment_intent")) or req.payment_intent_id,
        )
        self._log("refund_created", refund_id=result.refund_id, status=result.status)
        return result

    async def create_transfer(self, req: TransferRequest) -> TransferResult:
        transfer = await self._call(
            "create_transfer",
            stripe.Transfer.create,
            amount=to_minor_units(req.amount),
            currency=req.currency,
            destination=req.destination,
            description=req.description,
            metadata=req.metadata,
            idempotency_key=req.idempotency_key,
        )
        result = TransferResult(
            transfer_id=str(_field(transfer, "id")),
            provider=self.provider,
            amount=req.amount,
            destination=req.destination,
        )
        self._log("transfer_created", transfer_id=result.transfer_id, destination=req.destination)
        return result

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------
    def _to_dispute(self, dispute: Any) -> DisputeInfo:
        raw_status = _field(dispute, "status", "")
        details = _field(dispute, "evidence_details") or {}
        due_by = _field(details, "due_by")
        amount = _field(dispute, "amount")
        evidence = _field(dispute, "evidence") or {}
        return DisputeInfo(
            dispute_id=str(_field(dispute, "id")),
            provider=self.provider,
            status=PROVIDER_DISPUTE_STATUS_TO_INTERNAL[self.provider].get(raw_status, raw_status),
            reason=_field(dispute, "reason"),
            amount=from_minor_units(amount) if amount is not None else None,
            currency=_field(dispute, "currency"),
            payment_intent_id=_id(_field(dispute, "payment_intent")),
            charge_id=_id(_field(dispute, "charge")),
            evidence_due_by=datetime.fromtimestamp(due_by, tz=timezone.utc) if due_by else None,
            has_evidence=bool(_field(details, "has_evidence", False)),
            submission_count=int(_field(details, "submission_count", 0)),
            evidence={str(k): evidence[k] for k in evidence.keys() if evidence[k] is not None},
        )

    async def retrieve_dispute(self, dispute_id: str) -> DisputeInfo:
        dispute = await self._call("retrieve_dispute", stripe.Dispute.retrieve, dispute_id)
        return self._to_dispute(dispute)

    async def submit_dispute_evidence(self, dispute_id: str, evidence: dict[str, str], *, submit: bool = True) -> DisputeInfo:
        dispute = await self._call(
            "submit_dispute_evidence",
            stripe.Dispute.modify,
            dispute_id,
            evidence=evidence,
            submit=submit,
        )
        self._log("dispute_evidence_updated", dispute_id=dispute_id, submitted=submit)
        return self._to_dispute(dispute)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        if not self._webhook_secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = _header(headers, "Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=self._webhook_secret,
                tolerance=payment_settings.stripe.webhook_tolerance_seconds,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise PaymentSignatureError("Webhook body is not valid JSON", provider=self.provider) from exc
        return WebhookEvent(
            id=str(payload.get("id")),
            type=str(payload.get("type")),
            provider=self.provider,
            data=payload.get("data") or {},
            raw_headers=dict(headers),
            raw_body=body,
        )
