"""
订单数据库模型 - 注意：这是基础设施层的实现细节，不是领域模型
所有业务规则都在 domain.order.entity.Order 中
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, JSON, Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_code = Column(String(64), unique=True, nullable=False, comment="订单号")
    tracking_number = Column(String(64), unique=True, nullable=True, comment="物流单号")
    buyer_id = Column(String(64), nullable=False, index=True, comment="买家ID")

    # 支付引用（唯一索引是防止重复落单的最终屏障）
    payment_intent_id = Column(String(200), unique=True, nullable=True, comment="支付意图ID")
    checkout_session_id = Column(String(200), unique=True, nullable=True, comment="结账会话ID")

    shipping_address = Column(JSON, nullable=False)

    # 金额
    subtotal = Column(Numeric(precision=12, scale=2), nullable=False, default=0, comment="折前小计")
    discount_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    shipping_cost = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    tax_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    total_amount = Column(Numeric(precision=12, scale=2), nullable=False)
    platform_fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    promo_code_id = Column(String(64), nullable=True)

    # 状态
    payment_status = Column(String(30), nullable=False, default="pending", index=True)
    order_status = Column(String(30), nullable=False, default="new", index=True)

    # 退款
    refund_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    platform_fee_refunded = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # 争议
    dispute_id = Column(String(200), nullable=True, index=True)
    dispute_status = Column(String(30), nullable=False, default="none")
    dispute_reason = Column(String(100), nullable=True)
    dispute_amount = Column(Numeric(precision=12, scale=2), nullable=True)
    dispute_created_at = Column(DateTime(timezone=True), nullable=True)
    dispute_closed_at = Column(DateTime(timezone=True), nullable=True)

    timeline = Column(JSON, nullable=False, default=list)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )

    __table_args__ = (
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_code='{self.order_code}', "
            f"total={self.total_amount}, payment_status='{self.payment_status}')>"
        )


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(precision=12, scale=2), nullable=False, comment="折后单价")
    status = Column(String(30), nullable=False, default="new")
    timeline = Column(JSON, nullable=False, default=list)

    order = relationship("OrderModel", back_populates="items")
