"""
卖家仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import SellerProfile


class SellerRepository(ABC):

    @abstractmethod
    async def get_by_id(self, seller_id: str) -> Optional[SellerProfile]:
        pass

    @abstractmethod
    async def get_by_payout_account(self, payout_account_id: str) -> Optional[SellerProfile]:
        pass

    @abstractmethod
    async def update(self, seller: SellerProfile) -> SellerProfile:
        pass
