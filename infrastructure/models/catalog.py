"""
商品、卖家资料数据库模型 - 目录由外部系统维护，本服务只读价格并维护库存
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from datetime import datetime, timezone

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True, comment="商品ID")
    seller_id = Column(String(64), nullable=False, index=True, comment="卖家ID")
    title = Column(String(255), nullable=False, comment="商品标题")
    price = Column(Numeric(precision=12, scale=2), nullable=False, comment="目录价")
    stock = Column(Integer, nullable=False, default=0, comment="库存")

    # 商品级折扣
    discount_type = Column(String(20), nullable=True, comment="折扣类型: fixed/percentage")
    discount_amount = Column(Numeric(precision=12, scale=2), nullable=True, comment="折扣额")
    discount_expires_at = Column(DateTime(timezone=True), nullable=True, comment="折扣过期时间")

    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<ProductModel(id='{self.id}', seller_id='{self.seller_id}', stock={self.stock})>"


class SellerProfileModel(Base):
    __tablename__ = "seller_profiles"

    id = Column(String(64), primary_key=True, comment="卖家ID")
    shop_name = Column(String(255), nullable=True)
    shipping_charges = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="标准运费")
    free_shipping_threshold = Column(
        Numeric(precision=12, scale=2), nullable=False, default=0, comment="满额包邮门槛（0 表示不包邮）"
    )
    payout_account_id = Column(String(100), nullable=True, unique=True, index=True, comment="收款账户ID")
    payout_status = Column(String(20), nullable=False, default="pending", comment="收款账户状态: pending/active")
    onboarding_completed = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<SellerProfileModel(id='{self.id}', payout_status='{self.payout_status}')>"
