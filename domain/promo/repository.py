"""
优惠码仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import PromoCode, PromoCodeUsage


class PromoCodeRepository(ABC):

    @abstractmethod
    async def get_by_id(self, promo_code_id: str) -> Optional[PromoCode]:
        pass

    @abstractmethod
    async def get_active_by_code(self, code: str, seller_id: str) -> Optional[PromoCode]:
        """按码查找卖家名下启用中的优惠码"""
        pass

    @abstractmethod
    async def count_usage(self, promo_code_id: str, buyer_id: str) -> int:
        """统计买家对该优惠码的使用次数"""
        pass

    @abstractmethod
    async def record_usage(self, usage: PromoCodeUsage) -> PromoCodeUsage:
        """写入使用记录并累加 used_count"""
        pass
