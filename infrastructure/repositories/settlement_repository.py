"""
结算仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.timeutils import ensure_utc, utcnow
from domain.settlement.entity import Settlement, SettlementStatus
from domain.settlement.repository import SettlementRepository
from infrastructure.models.settlement import SettlementModel


class SQLAlchemySettlementRepository(SettlementRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: SettlementModel) -> Settlement:
        return Settlement(
            id=model.id,
            seller_id=model.seller_id,
            order_id=model.order_id,
            order_code=model.order_code,
            total_order_amount=model.total_order_amount,
            platform_fee=model.platform_fee,
            commission_amount=model.commission_amount,
            scheduled_settlement_date=model.scheduled_settlement_date,
            products=list(model.products or []),
            refund_deductions=model.refund_deductions,
            status=SettlementStatus(model.status),
            actual_settlement_date=model.actual_settlement_date,
            transfer_id=model.transfer_id,
            adjusts_settlement_id=model.adjusts_settlement_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Settlement) -> SettlementModel:
        return SettlementModel(
            seller_id=entity.seller_id,
            order_id=entity.order_id,
            order_code=entity.order_code,
            total_order_amount=entity.total_order_amount,
            platform_fee=entity.platform_fee,
            commission_amount=entity.commission_amount,
            refund_deductions=entity.refund_deductions,
            products=entity.products,
            status=entity.status.value,
            scheduled_settlement_date=entity.scheduled_settlement_date,
            actual_settlement_date=entity.actual_settlement_date,
            transfer_id=entity.transfer_id,
            adjusts_settlement_id=entity.adjusts_settlement_id,
            created_at=entity.created_at or utcnow(),
            updated_at=entity.updated_at or utcnow(),
        )

    async def create(self, settlement: Settlement) -> Settlement:
        model = self._to_model(settlement)
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def get_by_id(self, settlement_id: int) -> Optional[Settlement]:
        model = await self.session.get(SettlementModel, settlement_id)
        return self._to_entity(model) if model else None

    async def list_by_order(self, order_id: int) -> list[Settlement]:
        result = await self.session.execute(
            select(SettlementModel).where(SettlementModel.order_id == order_id).order_by(SettlementModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_due(self, now: datetime) -> list[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(
                SettlementModel.status == SettlementStatus.PENDING.value,
                SettlementModel.scheduled_settlement_date <= ensure_utc(now),
            )
            .order_by(SettlementModel.seller_id, SettlementModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_pending_by_seller(self, seller_id: str, skip: int = 0, limit: int = 100) -> list[Settlement]:
        result = await self.session.execute(
            select(SettlementModel)
            .where(
                SettlementModel.seller_id == seller_id,
                SettlementModel.status == SettlementStatus.PENDING.value,
            )
            .order_by(SettlementModel.scheduled_settlement_date, SettlementModel.id)
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_pending_by_seller(self, seller_id: str) -> int:
        result = await self.session.execute(
            select(func.count(SettlementModel.id)).where(
                SettlementModel.seller_id == seller_id,
                SettlementModel.status == SettlementStatus.PENDING.value,
            )
        )
        return int(result.scalar_one())

    async def update(self, settlement: Settlement) -> Settlement:
        model = await self.session.get(SettlementModel, settlement.id)
        if model is None:
            raise ValueError(f"settlement {settlement.id} not found")
        model.commission_amount = settlement.commission_amount
        model.refund_deductions = settlement.refund_deductions
        model.status = settlement.status.value
        model.actual_settlement_date = settlement.actual_settlement_date
        model.transfer_id = settlement.transfer_id
        if settlement.updated_at is not None:
            model.updated_at = settlement.updated_at
        await self.session.flush()
        return self._to_entity(model)

    async def mark_settled(
        self, paid_amounts: Mapping[int, Decimal], transfer_id: str, settled_at: datetime
    ) -> set[int]:
        settled_at = ensure_utc(settled_at)
        settled: set[int] = set()
        for settlement_id, paid in paid_amounts.items():
            # 佣金已被并发退款改动的记录不更新，由调用方按已付金额补冲正
            result = await self.session.execute(
                update(SettlementModel)
                .where(
                    SettlementModel.id == settlement_id,
                    SettlementModel.status == SettlementStatus.PENDING.value,
                    SettlementModel.commission_amount == paid,
                )
                .values(
                    status=SettlementStatus.SETTLED.value,
                    transfer_id=transfer_id,
                    actual_settlement_date=settled_at,
                    updated_at=settled_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                settled.add(settlement_id)
        return settled
