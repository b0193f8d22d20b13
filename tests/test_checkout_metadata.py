from decimal import Decimal

import pytest

from application.utils.checkout_metadata import (
    MAX_VALUE_LENGTH,
    CheckoutMetadataError,
    decode_checkout_metadata,
    encode_checkout_metadata,
    has_checkout_metadata,
)
from domain.pricing.entity import PricedLine, PricingBreakdown


D = Decimal


def _breakdown(n_lines: int = 1) -> PricingBreakdown:
    lines = [
        PricedLine(
            product_id=f"product-with-a-long-identifier-{i:04d}",
            seller_id="seller-1",
            quantity=1,
            base_unit_price=D("1.00"),
            allocated_discount=D("0.00"),
            final_unit_price=D("1.00"),
        )
        for i in range(n_lines)
    ]
    subtotal = D(n_lines).quantize(D("0.01"))
    return PricingBreakdown(
        lines=lines,
        subtotal=subtotal,
        discounted_subtotal=subtotal,
        shipping_cost=D("0.00"),
        tax_amount=D("0.00"),
        total=subtotal,
    )


def test_all_values_are_short_strings():
    metadata = encode_checkout_metadata(_breakdown(40), buyer_id="buyer-1", shipping_address={"city": "X"}, currency="usd")
    assert all(isinstance(v, str) for v in metadata.values())
    assert all(len(v) <= MAX_VALUE_LENGTH for v in metadata.values())
    assert "items_chunks" in metadata
    assert has_checkout_metadata(metadata)


def test_chunked_items_decode_back():
    metadata = encode_checkout_metadata(_breakdown(40), buyer_id="buyer-1", shipping_address={"city": "X"}, currency="usd")
    confirmation = decode_checkout_metadata(metadata, source="webhook", payment_intent_id="pi_1")
    assert len(confirmation.lines) == 40
    assert confirmation.total_amount == D("40.00")
    assert confirmation.lines[-1].product_id.endswith("0039")


def test_too_many_lines_rejected():
    with pytest.raises(CheckoutMetadataError):
        encode_checkout_metadata(_breakdown(600), buyer_id="buyer-1", shipping_address={}, currency="usd")


def test_missing_buyer_rejected():
    metadata = encode_checkout_metadata(_breakdown(), buyer_id="buyer-1", shipping_address={}, currency="usd")
    metadata.pop("buyer")
    assert not has_checkout_metadata(metadata)
    with pytest.raises(CheckoutMetadataError):
        decode_checkout_metadata(metadata, source="webhook", payment_intent_id="pi_1")


def test_missing_chunk_rejected():
    metadata = encode_checkout_metadata(_breakdown(40), buyer_id="buyer-1", shipping_address={}, currency="usd")
    metadata.pop("items_1")
    with pytest.raises(CheckoutMetadataError):
        decode_checkout_metadata(metadata, source="webhook", payment_intent_id="pi_1")


def test_missing_amount_rejected():
    metadata = encode_checkout_metadata(_breakdown(), buyer_id="buyer-1", shipping_address={}, currency="usd")
    metadata.pop("total")
    with pytest.raises(CheckoutMetadataError):
        decode_checkout_metadata(metadata, source="webhook", payment_intent_id="pi_1")


def test_metadata_without_line_seller_uses_order_seller():
    metadata = {
        "buyer": "buyer-1",
        "seller": "seller-1",
        "items": '[{"p":"prod-a","q":2,"u":"10.00"}]',
        "shipping_address": "{}",
        "subtotal": "20.00",
        "discount": "0.00",
        "shipping_cost": "5.00",
        "tax_amount": "2.00",
        "platform_fee": "0.00",
        "total": "27.00",
    }
    confirmation = decode_checkout_metadata(metadata, source="client_confirm", checkout_session_id="cs_1")
    assert confirmation.lines[0].seller_id == "seller-1"
    assert confirmation.payment_reference == "cs_1"
