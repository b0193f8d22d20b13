"""
优惠码与定价配置仓储实现
"""
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.pricing.entity import DiscountType, LimitedTimeOffer, PlatformFeeConfig, TaxConfig
from domain.pricing.repository import PricingConfigRepository
from domain.promo.entity import PromoCode, PromoCodeUsage
from domain.promo.repository import PromoCodeRepository
from infrastructure.models.pricing import (
    PlatformFeeModel,
    PromoCodeModel,
    PromoCodeUsageModel,
    TaxConfigModel,
)


class SQLAlchemyPromoCodeRepository(PromoCodeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PromoCodeModel) -> PromoCode:
        return PromoCode(
            id=model.id,
            code=model.code,
            seller_id=model.seller_id,
            discount_type=DiscountType(model.discount_type),
            discount=model.discount,
            expires_at=model.expires_at,
            min_order_amount=model.min_order_amount,
            is_active=model.is_active,
            usage_limit=model.usage_limit,
            per_user_limit=model.per_user_limit,
            used_count=model.used_count,
        )

    async def get_by_id(self, promo_code_id: str) -> Optional[PromoCode]:
        model = await self.session.get(PromoCodeModel, promo_code_id)
        return self._to_entity(model) if model else None

    async def get_active_by_code(self, code: str, seller_id: str) -> Optional[PromoCode]:
        result = await self.session.execute(
            select(PromoCodeModel)
            .where(
                func.upper(PromoCodeModel.code) == code.upper(),
                PromoCodeModel.seller_id == seller_id,
                PromoCodeModel.is_active.is_(True),
            )
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def count_usage(self, promo_code_id: str, buyer_id: str) -> int:
        result = await self.session.execute(
            select(func.count(PromoCodeUsageModel.id)).where(
                PromoCodeUsageModel.promo_code_id == promo_code_id,
                PromoCodeUsageModel.buyer_id == buyer_id,
            )
        )
        return int(result.scalar_one())

    async def record_usage(self, usage: PromoCodeUsage) -> PromoCodeUsage:
        model = PromoCodeUsageModel(
            promo_code_id=usage.promo_code_id,
            buyer_id=usage.buyer_id,
            order_code=usage.order_code,
            used_at=usage.used_at,
        )
        self.session.add(model)
        await self.session.execute(
            update(PromoCodeModel)
            .where(PromoCodeModel.id == usage.promo_code_id)
            .values(used_count=PromoCodeModel.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        return PromoCodeUsage(
            id=model.id,
            promo_code_id=model.promo_code_id,
            buyer_id=model.buyer_id,
            order_code=model.order_code,
            used_at=model.used_at,
        )


class SQLAlchemyPricingConfigRepository(PricingConfigRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_tax_config(self) -> Optional[TaxConfig]:
        result = await self.session.execute(
            select(TaxConfigModel)
            .where(TaxConfigModel.is_active.is_(True))
            .order_by(TaxConfigModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return TaxConfig(
            rate_percent=model.rate_percent,
            active=model.is_active,
            offer=LimitedTimeOffer(
                active=model.offer_active,
                min_spend=model.offer_min_spend,
                discount_percent=model.offer_discount_percent,
                expires_at=model.offer_expires_at,
            ),
        )

    async def get_platform_fee(self) -> Optional[PlatformFeeConfig]:
        result = await self.session.execute(
            select(PlatformFeeModel).order_by(PlatformFeeModel.id.desc()).limit(1)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return PlatformFeeConfig(fee=model.fee, fee_type=DiscountType(model.fee_type))
