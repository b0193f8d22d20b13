"""
卖家结算批处理（每周三）

到期 pending 记录按卖家汇总；汇总 <= 0 的卖家整体顺延，不报错；
其余卖家每人一笔转账，成功后把参与汇总的记录全部标记为已结算。
转账期间被退款扣减的记录仍按已付金额结算，差额生成冲正记录进入下一批次。
单个卖家失败只记录日志，不影响其他卖家。
"""
from __future__ import annotations

import hashlib
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Optional

from application.dtos.checkout import SettlementBatchItem, SettlementBatchResult, SettlementDTO
from application.dtos.payments import TransferRequest
from application.ports.payment_gateway import PaymentGateway, PaymentProviderError
from core.config import settings
from core.logging_config import get_logger
from domain.common.money import ZERO, round_money
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.settlement.entity import Settlement, SettlementStatus


logger = get_logger(__name__)

RECONCILABLE_STATUSES = frozenset({SettlementStatus.PENDING, SettlementStatus.REFUNDED})


def _transfer_idempotency_key(seller_id: str, settlement_ids: list[int]) -> str:
    base = f"settlement|{seller_id}|{','.join(str(i) for i in sorted(settlement_ids))}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class SettlementService:
    """结算应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        currency: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._currency = currency or settings.settlement.currency
        self._clock = clock

    async def process_due(self, now: Optional[datetime] = None) -> SettlementBatchResult:
        run_at = now or self._clock()
        async with self._uow_factory(readonly=True) as uow:
            due = await uow.settlement_repository.list_due(run_at)

        grouped: "OrderedDict[str, list[Settlement]]" = OrderedDict()
        for settlement in due:
            grouped.setdefault(settlement.seller_id, []).append(settlement)

        logger.info("settlement_batch_started", run_at=run_at.isoformat(), due=len(due), sellers=len(grouped))

        results: list[SettlementBatchItem] = []
        transferred_total = ZERO
        for seller_id, rows in grouped.items():
            try:
                item = await self._settle_seller(seller_id, rows, run_at)
            except Exception as exc:
                logger.exception("settlement_seller_failed", seller_id=seller_id, error=str(exc))
                item = SettlementBatchItem(
                    seller_id=seller_id,
                    amount=round_money(sum((r.commission_amount for r in rows), ZERO)),
                    settlement_ids=[r.id for r in rows],
                    status="failed",
                    error=str(exc),
                )
            if item.status == "transferred":
                transferred_total = round_money(transferred_total + item.amount)
            results.append(item)

        logger.info(
            "settlement_batch_finished",
            sellers=len(results),
            transferred=sum(1 for r in results if r.status == "transferred"),
            transferred_total=str(transferred_total),
        )
        return SettlementBatchResult(
            run_at=run_at,
            processed_sellers=len(results),
            transferred_total=transferred_total,
            results=results,
        )

    async def _settle_seller(self, seller_id: str, rows: list[Settlement], run_at: datetime) -> SettlementBatchItem:
        ids = [row.id for row in rows]
        amount = round_money(sum((row.commission_amount for row in rows), ZERO))

        if amount <= 0:
            # 负数余额（退款冲正超过本期销售）顺延到后续批次抵扣
            logger.info("settlement_carried_over", seller_id=seller_id, amount=str(amount), settlements=len(ids))
            return SettlementBatchItem(seller_id=seller_id, amount=amount, settlement_ids=ids, status="carried_over")

        async with self._uow_factory(readonly=True) as uow:
            seller = await uow.seller_repository.get_by_id(seller_id)
        if seller is None or not seller.has_active_payout_account:
            logger.warning("settlement_payout_account_missing", seller_id=seller_id, amount=str(amount))
            return SettlementBatchItem(
                seller_id=seller_id,
                amount=amount,
                settlement_ids=ids,
                status="skipped",
                error="payout account not active",
            )

        try:
            transfer = await self._gateway.create_transfer(
                TransferRequest(
                    destination=seller.payout_account_id,
                    amount=amount,
                    currency=self._currency,
                    description=f"Weekly settlement for seller {seller_id}",
                    metadata={
                        "seller_id": seller_id,
                        "settlement_ids": ",".join(str(i) for i in ids)[:500],
                        "order_codes": ",".join(sorted({row.order_code for row in rows}))[:500],
                    },
                    idempotency_key=_transfer_idempotency_key(seller_id, ids),
                )
            )
        except PaymentProviderError as exc:
            logger.error(
                "settlement_transfer_failed",
                seller_id=seller_id,
                amount=str(amount),
                error=exc.message,
                provider_code=(exc.details or {}).get("provider_code"),
            )
            return SettlementBatchItem(
                seller_id=seller_id,
                amount=amount,
                settlement_ids=ids,
                status="failed",
                error=exc.message,
            )

        async with self._uow_factory() as uow:
            repo = uow.settlement_repository
            settled = await repo.mark_settled(
                {row.id: row.commission_amount for row in rows}, transfer.transfer_id, run_at
            )
            updated = len(settled)
            for row in rows:
                if row.id in settled:
                    continue
                current = await repo.get_by_id(row.id)
                if current is None or current.status not in RECONCILABLE_STATUSES:
                    continue
                # 快照之后被退款扣减：按已付金额结算，差额冲正到下一批次
                clawback = current.settle_paid_amount(row.commission_amount, transfer.transfer_id, run_at)
                await repo.update(current)
                updated += 1
                if clawback is not None:
                    clawback = await repo.create(clawback)
                    logger.warning(
                        "settlement_changed_during_transfer",
                        seller_id=seller_id,
                        settlement_id=row.id,
                        paid=str(row.commission_amount),
                        clawback_id=clawback.id,
                        clawback_amount=str(clawback.commission_amount),
                        transfer_id=transfer.transfer_id,
                    )
        if updated != len(ids):
            logger.warning(
                "settlement_mark_partial",
                seller_id=seller_id,
                expected=len(ids),
                updated=updated,
                transfer_id=transfer.transfer_id,
            )
        logger.info(
            "settlement_transferred",
            seller_id=seller_id,
            amount=str(amount),
            transfer_id=transfer.transfer_id,
            settlements=len(ids),
        )
        return SettlementBatchItem(
            seller_id=seller_id,
            amount=amount,
            settlement_ids=ids,
            status="transferred",
            transfer_id=transfer.transfer_id,
        )

    async def list_pending_for_seller(
        self, seller_id: str, page: int = 1, size: int = 20
    ) -> tuple[list[SettlementDTO], int]:
        async with self._uow_factory(readonly=True) as uow:
            rows = await uow.settlement_repository.list_pending_by_seller(
                seller_id, skip=(page - 1) * size, limit=size
            )
            total = await uow.settlement_repository.count_pending_by_seller(seller_id)
        return [SettlementDTO.from_domain(row) for row in rows], total
