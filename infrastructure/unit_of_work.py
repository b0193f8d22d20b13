"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Callable
import inspect

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.catalog_repository import (
    SQLAlchemyProductRepository,
    SQLAlchemySellerRepository,
)
from infrastructure.repositories.customer_repository import (
    SQLAlchemyCartRepository,
    SQLAlchemyLoyaltyPointRepository,
    SQLAlchemyNotificationRepository,
)
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.pricing_repository import (
    SQLAlchemyPricingConfigRepository,
    SQLAlchemyPromoCodeRepository,
)
from infrastructure.repositories.settlement_repository import SQLAlchemySettlementRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.product_repository = SQLAlchemyProductRepository(self.session)
        self.seller_repository = SQLAlchemySellerRepository(self.session)
        self.promo_code_repository = SQLAlchemyPromoCodeRepository(self.session)
        self.pricing_config_repository = SQLAlchemyPricingConfigRepository(self.session)
        self.order_repository = SQLAlchemyOrderRepository(self.session)
        self.settlement_repository = SQLAlchemySettlementRepository(self.session)
        self.cart_repository = SQLAlchemyCartRepository(self.session)
        self.loyalty_repository = SQLAlchemyLoyaltyPointRepository(self.session)
        self.notification_repository = SQLAlchemyNotificationRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        if self.session is None or self._readonly:
            yield
            return
        async with self.session.begin_nested():
            yield

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
