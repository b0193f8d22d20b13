"""
购物车、积分、通知仓储实现
"""
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from domain.customer.entity import LoyaltyPointEntry, Notification
from domain.customer.repository import CartRepository, LoyaltyPointRepository, NotificationRepository
from infrastructure.models.customer import CartItemModel, LoyaltyPointModel, NotificationModel


class SQLAlchemyCartRepository(CartRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def clear(self, buyer_id: str) -> int:
        result = await self.session.execute(delete(CartItemModel).where(CartItemModel.buyer_id == buyer_id))
        return result.rowcount or 0


class SQLAlchemyLoyaltyPointRepository(LoyaltyPointRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: LoyaltyPointEntry) -> LoyaltyPointEntry:
        model = LoyaltyPointModel(
            user_id=entry.user_id,
            points=entry.points,
            type=entry.type.value,
            reason=entry.reason,
            reference_id=entry.reference_id,
            created_at=entry.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        entry.id = model.id
        return entry


class SQLAlchemyNotificationRepository(NotificationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, notification: Notification) -> Notification:
        model = NotificationModel(
            user_id=notification.user_id,
            type=notification.type.value,
            title=notification.title,
            message=notification.message,
            order_code=notification.order_code,
            product_id=notification.product_id,
            extra_metadata=notification.metadata or None,
            is_read=notification.is_read,
            created_at=notification.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        notification.id = model.id
        return notification
