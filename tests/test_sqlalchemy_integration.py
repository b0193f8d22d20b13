from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.checkout import ConfirmedLine, PaymentConfirmation
from application.services.order_materializer import OrderMaterializer
from application.services.settlement_service import SettlementService
from domain.common.exceptions import InsufficientStockException
from domain.customer.entity import LoyaltyPointEntry
from infrastructure.database import build_engine
from infrastructure.models import (
    Base,
    LoyaltyPointModel,
    OrderModel,
    ProductModel,
    SellerProfileModel,
    SettlementModel,
)
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


D = Decimal
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
RUN_AT = datetime(2024, 1, 3, 0, 1, tzinfo=timezone.utc)


def _confirmation(intent_id="pi_1", quantity=2) -> PaymentConfirmation:
    subtotal = D("10.00") * quantity
    tax = ((subtotal + D("5.00")) * D("0.08")).quantize(D("0.01"))
    return PaymentConfirmation(
        source="webhook",
        payment_intent_id=intent_id,
        buyer_id="buyer-1",
        lines=[ConfirmedLine(product_id="prod-a", seller_id="seller-1", quantity=quantity, price=D("10.00"))],
        shipping_address={"city": "Springfield"},
        subtotal=subtotal,
        discount_amount=D("0"),
        shipping_cost=D("5.00"),
        tax_amount=tax,
        platform_fee=D("0"),
        total_amount=subtotal + D("5.00") + tax,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/checkout.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with factory() as session:
        session.add(
            SellerProfileModel(
                id="seller-1",
                shop_name="Shop One",
                shipping_charges=D("5.00"),
                free_shipping_threshold=D("0"),
                payout_account_id="acct_seller1",
                payout_status="active",
                onboarding_completed=True,
            )
        )
        session.add(ProductModel(id="prod-a", seller_id="seller-1", title="Product A", price=D("10.00"), stock=10))
        await session.commit()
    yield factory
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return lambda **kw: SQLAlchemyUnitOfWork(session_factory, **kw)


async def _scalar(session_factory, stmt):
    async with session_factory() as session:
        return (await session.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_materialize_and_settle_against_sqlite(session_factory, uow_factory, gateway):
    materializer = OrderMaterializer(uow_factory, gateway, backoff_seconds=0, clock=lambda: NOW)

    first = await materializer.materialize(_confirmation())
    replay = await materializer.materialize(_confirmation())

    assert first.created is True
    assert replay.created is False
    assert replay.order.order_code == first.order.order_code
    assert await _scalar(session_factory, select(func.count(OrderModel.id))) == 1
    assert await _scalar(session_factory, select(ProductModel.stock).where(ProductModel.id == "prod-a")) == 8
    assert await _scalar(session_factory, select(func.count(LoyaltyPointModel.id))) == 1

    settlements = SettlementService(uow_factory, gateway, clock=lambda: RUN_AT)
    result = await settlements.process_due()

    [item] = result.results
    assert item.amount == D("27.00")
    assert gateway.transfers[0].destination == "acct_seller1"
    status = await _scalar(session_factory, select(SettlementModel.status))
    assert status == "settled"

    again = await settlements.process_due()
    assert again.results == []
    assert len(gateway.transfers) == 1


@pytest.mark.asyncio
async def test_stock_guard_rolls_back_whole_order(session_factory, uow_factory, gateway):
    materializer = OrderMaterializer(uow_factory, gateway, max_attempts=1, backoff_seconds=0, clock=lambda: NOW)

    with pytest.raises(InsufficientStockException):
        await materializer.materialize(_confirmation(quantity=11))

    assert await _scalar(session_factory, select(func.count(OrderModel.id))) == 0
    assert await _scalar(session_factory, select(ProductModel.stock).where(ProductModel.id == "prod-a")) == 10


@pytest.mark.asyncio
async def test_savepoint_discards_only_inner_writes(session_factory, uow_factory):
    async with uow_factory() as uow:
        await uow.loyalty_repository.add(LoyaltyPointEntry(id=None, user_id="buyer-1", points=1, reason="outer"))
        with pytest.raises(RuntimeError):
            async with uow.savepoint():
                await uow.loyalty_repository.add(
                    LoyaltyPointEntry(id=None, user_id="buyer-1", points=5, reason="inner")
                )
                raise RuntimeError("side effect failed")

    reasons = await _scalar(session_factory, select(func.group_concat(LoyaltyPointModel.reason)))
    assert reasons == "outer"
