"""
卖家结算路由
"""
from fastapi import APIRouter, Depends, Query

from api.dependencies import get_settlement_service, require_roles, verify_cron_or_admin
from application.dtos.auth import Principal
from application.dtos.checkout import SettlementBatchResult
from application.services.settlement_service import SettlementService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, paginated_response, success_response

router = APIRouter(prefix="/settlements", tags=["Settlements"])
logger = get_logger(__name__)


@router.post("/process", summary="Run the settlement batch", response_model=ApiResponse[SettlementBatchResult])
async def process_settlements(
    trigger: str = Depends(verify_cron_or_admin),
    service: SettlementService = Depends(get_settlement_service),
):
    """与每周三定时任务相同的批处理；可重复触发，已结算记录不会再次转账"""
    logger.info("settlement_batch_triggered", trigger=trigger)
    result = await service.process_due()
    return success_response(data=result, message="Settlement batch processed")


@router.get("/pending", summary="List my pending settlements")
async def list_pending(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(20, ge=1, le=100, description="每页数量"),
    principal: Principal = Depends(require_roles("seller")),
    service: SettlementService = Depends(get_settlement_service),
):
    items, total = await service.list_pending_for_seller(principal.user_id, page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)
