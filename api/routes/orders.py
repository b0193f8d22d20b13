"""
订单路由 - 卖家更新订单行状态
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_order_service, require_roles
from application.dtos.auth import Principal
from application.dtos.checkout import ItemStatusUpdateRequest, OrderDTO
from application.services.order_service import OrderService
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.patch(
    "/{order_code}/items/{product_id}/status",
    summary="Update order item status",
    response_model=ApiResponse[OrderDTO],
)
async def update_item_status(
    order_code: str,
    product_id: str,
    payload: ItemStatusUpdateRequest,
    principal: Principal = Depends(require_roles("seller", "admin")),
    service: OrderService = Depends(get_order_service),
):
    order = await service.update_item_status(principal, order_code, product_id, payload)
    return success_response(data=order, message="Order item status updated")
