"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import OrderConflictException, OrderNotFoundException
from domain.order.entity import (
    DisputeStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    TimelineEvent,
)
from domain.order.repository import OrderRepository
from domain.common.timeutils import utcnow
from infrastructure.models.order import OrderItemModel, OrderModel


logger = get_logger(__name__)


def _timeline_to_json(events: list[TimelineEvent]) -> list[dict]:
    return [event.to_dict() for event in events]


def _timeline_from_json(data: Optional[list]) -> list[TimelineEvent]:
    return [TimelineEvent.from_dict(item) for item in (data or [])]


def _conflict_constraint(error: IntegrityError) -> Optional[str]:
    """从唯一约束错误信息中识别冲突列"""
    msg = str(error.orig if error.orig is not None else error).lower()
    if "payment_intent_id" in msg or "checkout_session_id" in msg:
        return "payment_reference"
    if "order_code" in msg:
        return "order_code"
    if "tracking_number" in msg:
        return "tracking_number"
    return None


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_code=model.order_code,
            buyer_id=model.buyer_id,
            items=[
                OrderItem(
                    id=item.id,
                    product_id=item.product_id,
                    seller_id=item.seller_id,
                    quantity=item.quantity,
                    price=item.price,
                    title=item.title,
                    status=OrderStatus(item.status),
                    timeline=_timeline_from_json(item.timeline),
                )
                for item in model.items
            ],
            shipping_address=dict(model.shipping_address or {}),
            total_amount=model.total_amount,
            subtotal=model.subtotal,
            discount_amount=model.discount_amount,
            shipping_cost=model.shipping_cost,
            tax_amount=model.tax_amount,
            platform_fee=model.platform_fee,
            currency=model.currency,
            payment_status=PaymentStatus(model.payment_status),
            order_status=OrderStatus(model.order_status),
            payment_intent_id=model.payment_intent_id,
            checkout_session_id=model.checkout_session_id,
            tracking_number=model.tracking_number,
            promo_code_id=model.promo_code_id,
            refund_amount=model.refund_amount,
            platform_fee_refunded=model.platform_fee_refunded,
            refunded_at=model.refunded_at,
            dispute_id=model.dispute_id,
            dispute_status=DisputeStatus(model.dispute_status),
            dispute_reason=model.dispute_reason,
            dispute_amount=model.dispute_amount,
            dispute_created_at=model.dispute_created_at,
            dispute_closed_at=model.dispute_closed_at,
            timeline=_timeline_from_json(model.timeline),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        model = OrderModel(
            order_code=entity.order_code,
            buyer_id=entity.buyer_id,
            tracking_number=entity.tracking_number,
            payment_intent_id=entity.payment_intent_id,
            checkout_session_id=entity.checkout_session_id,
            shipping_address=entity.shipping_address,
            subtotal=entity.subtotal,
            discount_amount=entity.discount_amount,
            shipping_cost=entity.shipping_cost,
            tax_amount=entity.tax_amount,
            total_amount=entity.total_amount,
            platform_fee=entity.platform_fee,
            currency=entity.currency,
            promo_code_id=entity.promo_code_id,
            created_at=entity.created_at or utcnow(),
            updated_at=entity.updated_at or utcnow(),
            items=[
                OrderItemModel(
                    product_id=item.product_id,
                    seller_id=item.seller_id,
                    title=item.title,
                    quantity=item.quantity,
                    price=item.price,
                )
                for item in entity.items
            ],
        )
        self._apply_mutable_fields(model, entity)
        return model

    def _apply_mutable_fields(self, model: OrderModel, entity: Order) -> None:
        model.payment_status = entity.payment_status.value
        model.order_status = entity.order_status.value
        model.refund_amount = entity.refund_amount
        model.platform_fee_refunded = entity.platform_fee_refunded
        model.refunded_at = entity.refunded_at
        model.dispute_id = entity.dispute_id
        model.dispute_status = entity.dispute_status.value
        model.dispute_reason = entity.dispute_reason
        model.dispute_amount = entity.dispute_amount
        model.dispute_created_at = entity.dispute_created_at
        model.dispute_closed_at = entity.dispute_closed_at
        # JSON 列整体重新赋值，保证变更被追踪
        model.timeline = _timeline_to_json(entity.timeline)
        if entity.updated_at is not None:
            model.updated_at = entity.updated_at
        by_product = {item.product_id: item for item in entity.items}
        for item_model in model.items:
            item = by_product.get(item_model.product_id)
            if item is None:
                continue
            item_model.status = item.status.value
            item_model.timeline = _timeline_to_json(item.timeline)

    async def create(self, order: Order) -> Order:
        """创建订单；唯一约束冲突转换为 OrderConflictException（回滚由 UoW 负责）"""
        model = self._to_model(order)
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            constraint = _conflict_constraint(e)
            logger.warning(
                "create_order_conflict",
                constraint=constraint,
                order_code=order.order_code,
                payment_reference=order.payment_reference,
            )
            raise OrderConflictException(payment_reference=order.payment_reference, constraint=constraint) from e
        await self.session.refresh(model, attribute_names=["items"])
        return self._to_entity(model)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_code(self, order_code: str) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.order_code == order_code))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_payment_reference(
        self,
        *,
        payment_intent_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Optional[Order]:
        conditions = []
        if payment_intent_id:
            conditions.append(OrderModel.payment_intent_id == payment_intent_id)
        if checkout_session_id:
            conditions.append(OrderModel.checkout_session_id == checkout_session_id)
        if not conditions:
            return None
        result = await self.session.execute(select(OrderModel).where(or_(*conditions)).limit(1))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_dispute_id(self, dispute_id: str) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.dispute_id == dispute_id).limit(1))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, order: Order) -> Order:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order.id))
        model = result.scalar_one_or_none()
        if model is None:
            raise OrderNotFoundException(order.order_code)
        self._apply_mutable_fields(model, order)
        await self.session.flush()
        return self._to_entity(model)
