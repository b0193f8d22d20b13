import json

import pytest


stripe = pytest.importorskip("stripe")


def _client(monkeypatch, construct_event):
    from infrastructure.external.payments import get_payment_gateway
    from infrastructure.external.payments.stripe_client import StripeClient

    # Fake construct_event to bypass cryptography
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return construct_event(payload, sig_header, secret)

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)
    gw = get_payment_gateway("stripe")
    assert isinstance(gw, StripeClient)
    return gw


def test_stripe_parse_webhook(monkeypatch):
    seen = {}

    def construct(payload, sig_header, secret):
        seen.update(sig=sig_header, secret=secret)
        return json.loads(payload)

    gw = _client(monkeypatch, construct)
    body = json.dumps(
        {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1", "metadata": {}}}}
    ).encode()

    evt = gw.parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, body)

    assert evt.type == "payment_intent.succeeded"
    assert evt.provider == "stripe"
    assert evt.data_object["id"] == "pi_1"
    assert seen == {"sig": "t=1,v1=abc", "secret": "whsec_test"}


def test_stripe_webhook_bad_signature(monkeypatch):
    from application.ports.payment_gateway import PaymentSignatureError

    def construct(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("No signatures found", sig_header)

    gw = _client(monkeypatch, construct)
    with pytest.raises(PaymentSignatureError):
        gw.parse_webhook({"stripe-signature": "t=1,v1=bad"}, b"{}")


def test_stripe_webhook_missing_header(monkeypatch):
    from application.ports.payment_gateway import PaymentSignatureError

    gw = _client(monkeypatch, lambda *a: {})
    with pytest.raises(PaymentSignatureError):
        gw.parse_webhook({}, b"{}")
