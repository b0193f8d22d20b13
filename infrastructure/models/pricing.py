"""
优惠码与全局定价配置数据库模型
"""
from sqlalchemy import (
    Boolean, Column, DateTime, Integer, Numeric, String, Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(String(64), primary_key=True)
    code = Column(String(50), nullable=False, index=True, comment="优惠码")
    seller_id = Column(String(64), nullable=False, index=True, comment="所属卖家")
    discount_type = Column(String(20), nullable=False, comment="fixed/percentage")
    discount = Column(Numeric(precision=12, scale=2), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    min_order_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_limit = Column(Integer, nullable=True, comment="全局使用上限，空表示不限")
    per_user_limit = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_promo_codes_seller_code", "seller_id", "code"),
    )


class PromoCodeUsageModel(Base):
    __tablename__ = "promo_code_usages"

    id = Column(Integer, primary_key=True, index=True)
    promo_code_id = Column(
        String(64), ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    buyer_id = Column(String(64), nullable=False, index=True)
    order_code = Column(String(64), nullable=False)
    used_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_promo_code_usages_promo_buyer", "promo_code_id", "buyer_id"),
    )


class TaxConfigModel(Base):
    """税率 + 平台限时优惠（最新一条启用中的记录生效）"""
    __tablename__ = "tax_configs"

    id = Column(Integer, primary_key=True, index=True)
    rate_percent = Column(Numeric(precision=6, scale=3), nullable=False, default=0, comment="税率百分比")
    is_active = Column(Boolean, nullable=False, default=True)
    offer_active = Column(Boolean, nullable=False, default=False)
    offer_min_spend = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    offer_discount_percent = Column(Numeric(precision=6, scale=3), nullable=False, default=0)
    offer_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)


class PlatformFeeModel(Base):
    """平台费配置（最新一条生效）"""
    __tablename__ = "platform_fees"

    id = Column(Integer, primary_key=True, index=True)
    fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    fee_type = Column(String(20), nullable=False, default="fixed", comment="fixed/percentage")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
