"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """
        创建订单

        违反唯一约束时抛出 OrderConflictException：
        支付引用重复（constraint="payment_reference"）或订单号/物流号碰撞。
        """
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_code(self, order_code: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_reference(
        self,
        *,
        payment_intent_id: Optional[str] = None,
        checkout_session_id: Optional[str] = None,
    ) -> Optional[Order]:
        """按支付意图ID或结账会话ID查找（任一命中即返回）"""
        pass

    @abstractmethod
    async def get_by_dispute_id(self, dispute_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        pass
