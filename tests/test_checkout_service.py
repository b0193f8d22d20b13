from decimal import Decimal

import pytest

from application.dtos.checkout import CheckoutRequest
from application.services.checkout_service import CheckoutService
from application.utils.checkout_metadata import decode_checkout_metadata
from domain.catalog.entity import Product
from domain.common.exceptions import (
    InsufficientStockException,
    MultipleSellersNotSupportedException,
    ProductNotFoundException,
)
from domain.pricing.entity import DiscountType
from domain.promo.entity import PromoCode, PromoCodeUsage
from domain.seller.entity import SellerProfile


D = Decimal

ADDRESS = {
    "full_name": "Ada Buyer",
    "line1": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


def _request(items=None, **kw) -> CheckoutRequest:
    return CheckoutRequest(
        items=items if items is not None else [{"product_id": "prod-a", "quantity": 2}],
        shipping_address=kw.pop("shipping_address", ADDRESS),
        **kw,
    )


@pytest.fixture
def service(store, gateway, now):
    return CheckoutService(store.uow_factory, gateway, clock=lambda: now)


@pytest.mark.asyncio
async def test_quote_prices_from_catalog(service):
    breakdown = await service.quote("buyer-1", _request())
    assert breakdown.total == D("27.00")
    assert breakdown.lines[0].title == "Product A"


@pytest.mark.asyncio
async def test_payment_intent_carries_pricing_snapshot(service, gateway):
    response = await service.create_payment_intent("buyer-1", _request())

    assert response.payment_intent_id == "pi_1"
    assert response.client_secret == "pi_1_secret"
    assert response.breakdown.total == D("27.00")
    assert response.order is None

    [req] = gateway.created_intents
    assert req.amount == D("27.00")
    confirmation = decode_checkout_metadata(req.metadata, source="webhook", payment_intent_id="pi_1")
    assert confirmation.buyer_id == "buyer-1"
    assert confirmation.total_amount == D("27.00")
    assert confirmation.lines[0].price == D("10.00")
    assert confirmation.shipping_address["city"] == "Springfield"


@pytest.mark.asyncio
async def test_repeat_checkout_of_same_cart_gets_new_idempotency_key(service, gateway):
    await service.create_payment_intent("buyer-1", _request())
    await service.create_payment_intent("buyer-1", _request())
    await service.create_checkout_session("buyer-1", _request())
    await service.create_checkout_session("buyer-1", _request())

    intent_keys = [req.idempotency_key for req in gateway.created_intents]
    session_keys = [req.idempotency_key for req in gateway.created_sessions]
    assert intent_keys[0] != intent_keys[1]
    assert session_keys[0] != session_keys[1]


@pytest.mark.asyncio
async def test_client_idempotency_key_reused_for_retries_of_one_submit(service, gateway):
    await service.create_payment_intent("buyer-1", _request(), idempotency_key="submit-1")
    await service.create_payment_intent("buyer-1", _request(), idempotency_key="submit-1")
    await service.create_payment_intent("buyer-2", _request(), idempotency_key="submit-1")
    await service.create_payment_intent("buyer-1", _request(), idempotency_key="submit-2")

    keys = [req.idempotency_key for req in gateway.created_intents]
    assert keys[0] == keys[1]
    assert keys[0] != keys[2]
    assert keys[0] != keys[3]


@pytest.mark.asyncio
async def test_multi_seller_cart_rejected(service, store, gateway):
    store.sellers["seller-2"] = SellerProfile(id="seller-2")
    store.products["prod-b"] = Product(id="prod-b", seller_id="seller-2", title="B", price=D("3.00"), stock=5)

    with pytest.raises(MultipleSellersNotSupportedException):
        await service.create_payment_intent(
            "buyer-1",
            _request([{"product_id": "prod-a", "quantity": 1}, {"product_id": "prod-b", "quantity": 1}]),
        )
    assert gateway.created_intents == []


@pytest.mark.asyncio
async def test_unknown_product_and_low_stock_rejected(service):
    with pytest.raises(ProductNotFoundException):
        await service.quote("buyer-1", _request([{"product_id": "missing", "quantity": 1}]))
    with pytest.raises(InsufficientStockException):
        await service.quote("buyer-1", _request([{"product_id": "prod-a", "quantity": 11}]))


@pytest.mark.asyncio
async def test_promo_code_applied_once_per_buyer(service, store):
    store.promos["promo-1"] = PromoCode(
        id="promo-1", code="FIVE", seller_id="seller-1", discount_type=DiscountType.FIXED, discount=D("5")
    )
    breakdown = await service.quote("buyer-1", _request(promo_code=" five "))
    assert breakdown.total == D("21.60")
    assert breakdown.promo_code_id == "promo-1"

    store.promo_usages.append(PromoCodeUsage(id=1, promo_code_id="promo-1", buyer_id="buyer-1", order_code="ORD-0"))
    breakdown = await service.quote("buyer-1", _request(promo_code="FIVE"))
    assert breakdown.total == D("27.00")
    assert breakdown.promo_rejection == "per_user_limit_reached"


@pytest.mark.asyncio
async def test_promo_code_of_another_seller_is_ignored(service, store):
    store.promos["promo-2"] = PromoCode(
        id="promo-2", code="FIVE", seller_id="seller-9", discount_type=DiscountType.FIXED, discount=D("5")
    )
    breakdown = await service.quote("buyer-1", _request(promo_code="FIVE"))
    assert breakdown.promo_code_id is None
    assert breakdown.total == D("27.00")


@pytest.mark.asyncio
async def test_checkout_session_line_items(service, gateway):
    response = await service.create_checkout_session("buyer-1", _request())
    assert response.session_id == "cs_1"
    assert response.url.endswith("/cs_1")

    [req] = gateway.created_sessions
    names = [item.name for item in req.line_items]
    assert names == ["Product A", "Shipping (standard)", "Tax"]
    charged = sum((item.unit_amount * item.quantity for item in req.line_items), D("0"))
    assert charged == D("27.00")
    assert "{CHECKOUT_SESSION_ID}" in req.success_url
