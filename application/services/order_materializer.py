"""
订单落库（Materialization）- 已确认支付 → 订单 + 库存扣减 + 结算记录

三个入口（webhook、客户端确认、本地开发直落）先各自归一为 PaymentConfirmation，
再调用同一个幂等的 materialize：

1. 事务内按支付引用预检查，已存在直接返回
2. 逐行条件扣减库存（stock >= qty），不足则整体回滚
3. 生成订单号/物流号并插入订单；支付引用唯一索引兜底并发重复
4. 每个卖家一条 pending 结算记录；记录优惠码使用
5. 尽力而为（savepoint）：积分、清空购物车、卖家通知

整体由有界重试包裹，每次重试都是一个完整的新事务。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import OperationalError

from application.dtos.checkout import ConfirmOrderRequest, PaymentConfirmation
from application.ports.payment_gateway import PaymentGateway
from application.utils.checkout_metadata import decode_checkout_metadata, has_checkout_metadata
from application.utils.retry import run_with_retry
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    ForbiddenActionException,
    InsufficientStockException,
    OrderConflictException,
    PaymentNotConfirmedException,
    ProductNotFoundException,
)
from domain.common.money import floor_div
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.customer.entity import LoyaltyPointEntry, Notification, NotificationType
from domain.order.entity import Order, OrderItem
from domain.order.service import generate_order_code, generate_tracking_number
from domain.promo.entity import PromoCodeUsage
from domain.settlement.service import build_settlements


logger = get_logger(__name__)


@dataclass
class MaterializationResult:
    order: Order
    created: bool


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, InsufficientStockException):
        return True
    if isinstance(exc, OrderConflictException):
        # 支付引用重复不重试：说明订单已由并发请求创建
        return not exc.is_duplicate_payment
    return isinstance(exc, OperationalError)


class OrderMaterializer:
    """订单落库服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: Optional[PaymentGateway] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        loyalty_points_divisor: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._max_attempts = max_attempts or settings.checkout.materialize_max_attempts
        self._backoff_seconds = (
            settings.checkout.materialize_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._loyalty_divisor = loyalty_points_divisor or settings.checkout.loyalty_points_divisor
        self._clock = clock

    # ------------------------------------------------------------------
    # 入口适配
    # ------------------------------------------------------------------
    async def from_payment_intent(
        self, payment_intent_id: str, metadata: Mapping[str, Any]
    ) -> Optional[MaterializationResult]:
        """payment_intent.succeeded / charge.succeeded"""
        if not has_checkout_metadata(metadata):
            # 结账会话模式的支付意图不携带元数据，由 checkout.session.completed 处理
            logger.info("payment_intent_without_checkout_metadata", payment_intent_id=payment_intent_id)
            return None
        confirmation = decode_checkout_metadata(metadata, source="webhook", payment_intent_id=payment_intent_id)
        return await self.materialize(confirmation)

    async def from_checkout_session(
        self,
        session_id: str,
        *,
        payment_intent_id: Optional[str],
        payment_status: Optional[str],
        metadata: Mapping[str, Any],
    ) -> Optional[MaterializationResult]:
        """checkout.session.completed（仅 payment_status == paid）"""
        if payment_status != "paid":
            logger.info("checkout_session_not_paid", session_id=session_id, payment_status=payment_status)
            return None
        confirmation = decode_checkout_metadata(
            metadata,
            source="webhook",
            payment_intent_id=payment_intent_id,
            checkout_session_id=session_id,
        )
        return await self.materialize(confirmation)

    async def confirm_for_buyer(self, buyer_id: str, request: ConfirmOrderRequest) -> MaterializationResult:
        """客户端确认：先向支付渠道复核支付状态，防止支付完成前调用"""
        if self._gateway is None:
            raise RuntimeError("payment gateway is required for client confirmation")

        if request.checkout_session_id:
            session = await self._gateway.retrieve_checkout_session(request.checkout_session_id)
            if session.payment_status != "paid":
                raise PaymentNotConfirmedException(session.session_id, session.payment_status)
            confirmation = decode_checkout_metadata(
                session.metadata,
                source="client_confirm",
                payment_intent_id=session.payment_intent_id,
                checkout_session_id=session.session_id,
            )
        else:
            intent = await self._gateway.retrieve_payment_intent(request.payment_intent_id)
            if intent.status != "succeeded":
                raise PaymentNotConfirmedException(intent.intent_id, intent.provider_status or intent.status)
            confirmation = decode_checkout_metadata(
                intent.metadata,
                source="client_confirm",
                payment_intent_id=intent.intent_id,
            )

        if confirmation.buyer_id != buyer_id:
            raise ForbiddenActionException(
                "Payment belongs to another buyer",
                details={"payment_reference": confirmation.payment_reference},
            )
        return await self.materialize(confirmation)

    async def materialize_dev_shortcut(self, confirmation: PaymentConfirmation) -> MaterializationResult:
        logger.warning("order_materialize_dev_shortcut", payment_intent_id=confirmation.payment_intent_id)
        return await self.materialize(confirmation)

    # ------------------------------------------------------------------
    # 核心流程
    # ------------------------------------------------------------------
    async def materialize(self, confirmation: PaymentConfirmation) -> MaterializationResult:
        try:
            result = await run_with_retry(
                lambda: self._materialize_once(confirmation),
                operation="order_materialize",
                attempts=self._max_attempts,
                backoff_seconds=self._backoff_seconds,
                should_retry=_is_retryable,
                payment_reference=confirmation.payment_reference,
            )
        except OrderConflictException as exc:
            if not exc.is_duplicate_payment:
                raise
            result = await self._load_existing(confirmation)
        except InsufficientStockException as exc:
            logger.error(
                "order_materialize_insufficient_stock",
                payment_reference=confirmation.payment_reference,
                source=confirmation.source,
                details=exc.details,
            )
            raise

        if not result.created:
            logger.info(
                "order_already_materialized",
                order_code=result.order.order_code,
                payment_reference=confirmation.payment_reference,
                source=confirmation.source,
            )
        return result

    async def _load_existing(self, confirmation: PaymentConfirmation) -> MaterializationResult:
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.order_repository.get_by_payment_reference(
                payment_intent_id=confirmation.payment_intent_id,
                checkout_session_id=confirmation.checkout_session_id,
            )
        if existing is None:
            raise OrderConflictException(
                payment_reference=confirmation.payment_reference,
                constraint="payment_reference",
            )
        return MaterializationResult(order=existing, created=False)

    async def _materialize_once(self, confirmation: PaymentConfirmation) -> MaterializationResult:
        now = self._clock()
        async with self._uow_factory() as uow:
            existing = await uow.order_repository.get_by_payment_reference(
                payment_intent_id=confirmation.payment_intent_id,
                checkout_session_id=confirmation.checkout_session_id,
            )
            if existing is not None:
                return MaterializationResult(order=existing, created=False)

            products = await uow.product_repository.get_many([line.product_id for line in confirmation.lines])
            for line in confirmation.lines:
                if line.product_id not in products:
                    raise ProductNotFoundException(line.product_id)
                decremented = await uow.product_repository.decrement_stock(line.product_id, line.quantity)
                if not decremented:
                    raise InsufficientStockException(line.product_id, line.quantity)

            items = [
                OrderItem(
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    quantity=line.quantity,
                    price=line.price,
                    title=line.title or products[line.product_id].title,
                )
                for line in confirmation.lines
            ]
            order = Order.place(
                order_code=generate_order_code(now),
                tracking_number=generate_tracking_number(now),
                buyer_id=confirmation.buyer_id,
                items=items,
                shipping_address=confirmation.shipping_address,
                subtotal=confirmation.subtotal,
                discount_amount=confirmation.discount_amount,
                shipping_cost=confirmation.shipping_cost,
                tax_amount=confirmation.tax_amount,
                total_amount=confirmation.total_amount,
                platform_fee=confirmation.platform_fee,
                currency=confirmation.currency,
                payment_intent_id=confirmation.payment_intent_id,
                checkout_session_id=confirmation.checkout_session_id,
                promo_code_id=confirmation.promo_code_id,
                now=now,
            )
            order = await uow.order_repository.create(order)

            settlements = build_settlements(order, now=now)
            for settlement in settlements:
                await uow.settlement_repository.create(settlement)

            if order.promo_code_id:
                await uow.promo_code_repository.record_usage(
                    PromoCodeUsage(
                        id=None,
                        promo_code_id=order.promo_code_id,
                        buyer_id=order.buyer_id,
                        order_code=order.order_code,
                        used_at=now,
                    )
                )

            await self._best_effort_side_effects(uow, order)

            logger.info(
                "order_materialized",
                order_code=order.order_code,
                buyer_id=order.buyer_id,
                payment_reference=confirmation.payment_reference,
                source=confirmation.source,
                total=str(order.total_amount),
                settlements=len(settlements),
            )
            return MaterializationResult(order=order, created=True)

    async def _best_effort_side_effects(self, uow: AbstractUnitOfWork, order: Order) -> None:
        """积分、购物车、通知：失败只记录日志，不影响订单创建"""
        points = floor_div(order.total_amount, self._loyalty_divisor)
        if points > 0:
            try:
                async with uow.savepoint():
                    await uow.loyalty_repository.add(
                        LoyaltyPointEntry(
                            id=None,
                            user_id=order.buyer_id,
                            points=points,
                            reason="purchase",
                            reference_id=order.order_code,
                        )
                    )
            except Exception as exc:
                logger.warning("loyalty_points_failed", order_code=order.order_code, error=str(exc))

        try:
            async with uow.savepoint():
                await uow.cart_repository.clear(order.buyer_id)
        except Exception as exc:
            logger.warning("cart_clear_failed", order_code=order.order_code, buyer_id=order.buyer_id, error=str(exc))

        for seller_id in order.seller_ids:
            try:
                async with uow.savepoint():
                    await uow.notification_repository.create(
                        Notification(
                            id=None,
                            user_id=seller_id,
                            type=NotificationType.ORDER_PLACED,
                            title="New order received",
                            message=f"Order {order.order_code} has been placed and paid.",
                            order_code=order.order_code,
                            metadata={"total_amount": str(order.total_amount)},
                        )
                    )
            except Exception as exc:
                logger.warning(
                    "seller_notification_failed",
                    order_code=order.order_code,
                    seller_id=seller_id,
                    error=str(exc),
                )
