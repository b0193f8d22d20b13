"""
订单履约状态更新（卖家）
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from application.dtos.auth import Principal
from application.dtos.checkout import ItemStatusUpdateRequest, OrderDTO
from core.logging_config import get_logger
from domain.common.exceptions import ForbiddenActionException, OrderNotFoundException
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.customer.entity import Notification, NotificationType
from domain.order.entity import OrderStatus


logger = get_logger(__name__)

_NOTIFICATION_TYPES = {
    OrderStatus.DELIVERED: NotificationType.ORDER_DELIVERED,
    OrderStatus.CANCELLED: NotificationType.ORDER_CANCELLED,
}


class OrderService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], *, clock: Callable[[], datetime] = utcnow) -> None:
        self._uow_factory = uow_factory
        self._clock = clock

    async def update_item_status(
        self,
        principal: Principal,
        order_code: str,
        product_id: str,
        request: ItemStatusUpdateRequest,
    ) -> OrderDTO:
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_code(order_code)
            if order is None:
                raise OrderNotFoundException(order_code)
            item = order.find_item(product_id)
            if item is not None and not principal.is_admin and item.seller_id != principal.user_id:
                raise ForbiddenActionException("Only the item's seller can update its status")

            order.record_item_status(product_id, request.status, location=request.location, now=now)
            order = await uow.order_repository.update(order)

            try:
                async with uow.savepoint():
                    await uow.notification_repository.create(
                        Notification(
                            id=None,
                            user_id=order.buyer_id,
                            type=_NOTIFICATION_TYPES.get(request.status, NotificationType.ORDER_STATUS_UPDATED),
                            title="Order update",
                            message=f"An item in order {order.order_code} is now {request.status.value.replace('_', ' ')}.",
                            order_code=order.order_code,
                            product_id=product_id,
                            created_at=now,
                        )
                    )
            except Exception as exc:
                logger.warning("buyer_notification_failed", order_code=order_code, error=str(exc))

        logger.info(
            "order_item_status_updated",
            order_code=order_code,
            product_id=product_id,
            item_status=request.status.value,
            order_status=order.order_status.value,
            updated_by=principal.user_id,
        )
        return OrderDTO.from_domain(order)
