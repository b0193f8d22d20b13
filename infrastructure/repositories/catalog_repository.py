"""
商品与卖家仓储实现
"""
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from domain.common.exceptions import SellerNotFoundException
from domain.pricing.entity import DiscountType, ItemDiscount
from domain.seller.entity import PayoutAccountStatus, SellerProfile
from domain.seller.repository import SellerRepository
from infrastructure.models.catalog import ProductModel, SellerProfileModel


class SQLAlchemyProductRepository(ProductRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        discount = None
        if model.discount_type and model.discount_amount is not None:
            discount = ItemDiscount(
                discount_type=DiscountType(model.discount_type),
                amount=model.discount_amount,
                expires_at=model.discount_expires_at,
            )
        return Product(
            id=model.id,
            seller_id=model.seller_id,
            title=model.title,
            price=model.price,
            stock=model.stock,
            discount=discount,
        )

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self.session.execute(select(ProductModel).where(ProductModel.id == product_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many(self, product_ids: Sequence[str]) -> dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(ProductModel).where(ProductModel.id.in_(ids)))
        return {model.id: self._to_entity(model) for model in result.scalars().all()}

    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        # 单条条件更新：库存检查与扣减在同一语句内完成
        result = await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_stock(self, product_id: str, quantity: int) -> None:
        await self.session.execute(
            update(ProductModel)
            .where(ProductModel.id == product_id)
            .values(stock=ProductModel.stock + quantity)
            .execution_options(synchronize_session=False)
        )


class SQLAlchemySellerRepository(SellerRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SellerProfileModel) -> SellerProfile:
        return SellerProfile(
            id=model.id,
            shop_name=model.shop_name,
            shipping_charges=model.shipping_charges,
            free_shipping_threshold=model.free_shipping_threshold,
            payout_account_id=model.payout_account_id,
            payout_status=PayoutAccountStatus(model.payout_status),
            onboarding_completed=model.onboarding_completed,
        )

    async def get_by_id(self, seller_id: str) -> Optional[SellerProfile]:
        result = await self.session.execute(select(SellerProfileModel).where(SellerProfileModel.id == seller_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_payout_account(self, payout_account_id: str) -> Optional[SellerProfile]:
        result = await self.session.execute(
            select(SellerProfileModel).where(SellerProfileModel.payout_account_id == payout_account_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, seller: SellerProfile) -> SellerProfile:
        model = await self.session.get(SellerProfileModel, seller.id)
        if model is None:
            raise SellerNotFoundException(seller.id)
        model.payout_account_id = seller.payout_account_id
        model.payout_status = seller.payout_status.value
        model.onboarding_completed = seller.onboarding_completed
        await self.session.flush()
        return self._to_entity(model)
