"""
结算仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from .entity import Settlement


class SettlementRepository(ABC):

    @abstractmethod
    async def create(self, settlement: Settlement) -> Settlement:
        pass

    @abstractmethod
    async def get_by_id(self, settlement_id: int) -> Optional[Settlement]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> list[Settlement]:
        pass

    @abstractmethod
    async def list_due(self, now: datetime) -> list[Settlement]:
        """所有 pending 且结算日 <= now 的记录（包含佣金 <= 0 的记录）"""
        pass

    @abstractmethod
    async def list_pending_by_seller(self, seller_id: str, skip: int = 0, limit: int = 100) -> list[Settlement]:
        pass

    @abstractmethod
    async def count_pending_by_seller(self, seller_id: str) -> int:
        pass

    @abstractmethod
    async def update(self, settlement: Settlement) -> Settlement:
        pass

    @abstractmethod
    async def mark_settled(
        self, paid_amounts: Mapping[int, Decimal], transfer_id: str, settled_at: datetime
    ) -> set[int]:
        """条件更新：仅 pending 且佣金仍等于快照金额的记录标记为已结算，返回已更新的记录 id"""
        pass
