"""
商品仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .entity import Product


class ProductRepository(ABC):

    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_many(self, product_ids: Sequence[str]) -> dict[str, Product]:
        """批量获取，返回 id → Product"""
        pass

    @abstractmethod
    async def decrement_stock(self, product_id: str, quantity: int) -> bool:
        """
        原子条件扣减：仅当 stock >= quantity 时扣减

        单条条件更新语句完成，禁止先读后写。库存不足返回 False。
        """
        pass

    @abstractmethod
    async def increment_stock(self, product_id: str, quantity: int) -> None:
        """退款回补库存"""
        pass
