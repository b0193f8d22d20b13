"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from domain.catalog.repository import ProductRepository
from domain.customer.repository import (
    CartRepository,
    LoyaltyPointRepository,
    NotificationRepository,
)
from domain.order.repository import OrderRepository
from domain.pricing.repository import PricingConfigRepository
from domain.promo.repository import PromoCodeRepository
from domain.seller.repository import SellerRepository
from domain.settlement.repository import SettlementRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    product_repository: ProductRepository
    seller_repository: SellerRepository
    promo_code_repository: PromoCodeRepository
    pricing_config_repository: PricingConfigRepository
    order_repository: OrderRepository
    settlement_repository: SettlementRepository
    cart_repository: CartRepository
    loyalty_repository: LoyaltyPointRepository
    notification_repository: NotificationRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.product_repository = None  # type: ignore[assignment]
        self.seller_repository = None  # type: ignore[assignment]
        self.promo_code_repository = None  # type: ignore[assignment]
        self.pricing_config_repository = None  # type: ignore[assignment]
        self.order_repository = None  # type: ignore[assignment]
        self.settlement_repository = None  # type: ignore[assignment]
        self.cart_repository = None  # type: ignore[assignment]
        self.loyalty_repository = None  # type: ignore[assignment]
        self.notification_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """
        子事务：块内异常只回滚块内写入，外层事务继续

        用于积分、清空购物车、通知等尽力而为的附属写入。
        """
        yield

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
