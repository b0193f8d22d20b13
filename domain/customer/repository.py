"""
购物车、积分、通知仓储接口
"""
from abc import ABC, abstractmethod

from .entity import LoyaltyPointEntry, Notification


class CartRepository(ABC):

    @abstractmethod
    async def clear(self, buyer_id: str) -> int:
        """清空买家购物车，返回删除的行数"""
        pass


class LoyaltyPointRepository(ABC):

    @abstractmethod
    async def add(self, entry: LoyaltyPointEntry) -> LoyaltyPointEntry:
        pass


class NotificationRepository(ABC):

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        pass
