from decimal import Decimal

import pytest


stripe = pytest.importorskip("stripe")

from application.dtos.payments import CreatePaymentIntent, RefundRequest, TransferRequest  # noqa: E402
from application.ports.payment_gateway import PaymentProviderError, PaymentRecoverableError  # noqa: E402
from infrastructure.external.payments.stripe_client import StripeClient  # noqa: E402


@pytest.fixture
def client():
    return StripeClient(secret_key="sk_test_123", webhook_secret="whsec_test")


@pytest.mark.asyncio
async def test_payment_intent_amounts_cross_in_minor_units(client, monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return {
            "id": "pi_1",
            "status": "requires_payment_method",
            "client_secret": "pi_1_secret",
            "amount": kwargs["amount"],
            "currency": kwargs["currency"],
            "metadata": kwargs["metadata"],
        }

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    intent = await client.create_payment_intent(
        CreatePaymentIntent(amount=Decimal("21.60"), metadata={"buyer": "buyer-1"}, idempotency_key="k1")
    )

    assert captured["amount"] == 2160
    assert captured["idempotency_key"] == "k1"
    assert intent.amount == Decimal("21.60")
    assert intent.status == "failed"
    assert intent.provider_status == "requires_payment_method"
    assert intent.metadata == {"buyer": "buyer-1"}


@pytest.mark.asyncio
async def test_refund_drops_unknown_reason(client, monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return {"id": "re_1", "status": "succeeded", "amount": kwargs["amount"], "payment_intent": "pi_1"}

    monkeypatch.setattr(stripe.Refund, "create", create)

    result = await client.refund(RefundRequest(payment_intent_id="pi_1", amount=Decimal("5.00"), reason="other"))

    assert "reason" not in captured
    assert captured["amount"] == 500
    assert result.amount == Decimal("5.00")


@pytest.mark.asyncio
async def test_transfer_rate_limit_is_recoverable(client, monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        raise stripe.RateLimitError("Too many requests")

    monkeypatch.setattr(stripe.Transfer, "create", create)

    with pytest.raises(PaymentRecoverableError):
        await client.create_transfer(TransferRequest(destination="acct_1", amount=Decimal("20.00")))
    assert len(calls) > 1


@pytest.mark.asyncio
async def test_invalid_request_maps_to_provider_error(client, monkeypatch):
    def retrieve(dispute_id):
        raise stripe.InvalidRequestError("No such dispute", "id")

    monkeypatch.setattr(stripe.Dispute, "retrieve", retrieve)

    with pytest.raises(PaymentProviderError) as info:
        await client.retrieve_dispute("dp_missing")
    assert not isinstance(info.value, PaymentRecoverableError)


@pytest.mark.asyncio
async def test_dispute_status_mapped(client, monkeypatch):
    monkeypatch.setattr(
        stripe.Dispute,
        "retrieve",
        lambda dispute_id: {
            "id": dispute_id,
            "status": "needs_response",
            "amount": 2700,
            "payment_intent": {"id": "pi_1"},
            "evidence_details": {"due_by": 1704931200, "has_evidence": False, "submission_count": 0},
            "evidence": {"product_description": None},
        },
    )

    info = await client.retrieve_dispute("dp_1")

    assert info.status == "under_review"
    assert info.amount == Decimal("27.00")
    assert info.payment_intent_id == "pi_1"
    assert info.evidence == {}
    assert info.evidence_due_by is not None
