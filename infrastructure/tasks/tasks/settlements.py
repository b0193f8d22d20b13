"""Seller settlement Celery tasks"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask, run_async
from application.dtos.checkout import SettlementBatchResult
from application.services.settlement_service import SettlementService
from core.logging_config import get_logger

logger = get_logger(__name__)


async def _process_due(run_at: Optional[datetime]) -> SettlementBatchResult:
    # 延迟导入：worker 进程才需要数据库引擎与支付 SDK
    from infrastructure.external.payments import get_payment_gateway
    from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

    service = SettlementService(SQLAlchemyUnitOfWork, get_payment_gateway())
    return await service.process_due(run_at)


@shared_task(name="settlements.process_due", bind=True, base=BaseTask, max_retries=0)
def process_due_settlements(self, run_at: Optional[str] = None) -> dict:
    """处理到期结算记录；run_at 为 ISO8601 字符串（缺省为当前时间）"""
    when = datetime.fromisoformat(run_at) if run_at else None
    result = run_async(lambda: _process_due(when))
    logger.info(
        "settlement_task_finished",
        processed_sellers=result.processed_sellers,
        transferred_total=str(result.transferred_total),
    )
    return result.model_dump(mode="json")
