"""
定价配置提供者接口（税率、平台限时优惠、平台费）

每次定价只查询一次，结果写入支付元数据作为快照。
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import PlatformFeeConfig, TaxConfig


class PricingConfigRepository(ABC):

    @abstractmethod
    async def get_active_tax_config(self) -> Optional[TaxConfig]:
        pass

    @abstractmethod
    async def get_platform_fee(self) -> Optional[PlatformFeeConfig]:
        pass
