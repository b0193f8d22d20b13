"""
卖家结算数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, JSON, Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class SettlementModel(Base):
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String(64), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    order_code = Column(String(64), nullable=False)

    total_order_amount = Column(Numeric(precision=12, scale=2), nullable=False)
    platform_fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    commission_amount = Column(Numeric(precision=12, scale=2), nullable=False, comment="可为负（冲正）")
    refund_deductions = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    products = Column(JSON, nullable=False, default=list)

    status = Column(String(20), nullable=False, default="pending", comment="pending/settled/cancelled/refunded")
    scheduled_settlement_date = Column(DateTime(timezone=True), nullable=False)
    actual_settlement_date = Column(DateTime(timezone=True), nullable=True)
    transfer_id = Column(String(200), nullable=True)
    adjusts_settlement_id = Column(Integer, ForeignKey("settlements.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_settlements_status_scheduled", "status", "scheduled_settlement_date"),
        Index("ix_settlements_seller_status", "seller_id", "status"),
    )

    def __repr__(self):
        return (
            f"<SettlementModel(id={self.id}, seller_id='{self.seller_id}', "
            f"commission={self.commission_amount}, status='{self.status}')>"
        )
