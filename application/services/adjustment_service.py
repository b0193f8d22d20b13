"""
退款 / 争议调整

渠道退款事件携带累计退款金额，按 累计 - 已记录 计算本次增量，重复投递为空操作。
全额退款（含争议败诉）：回补库存、冲减平台费、扣减/冲回卖家佣金。
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.auth import Principal
from application.dtos.checkout import (
    DisputeEvidenceRequest,
    OrderDTO,
    RefundOrderRequest,
    RefundOrderResponse,
)
from application.dtos.payments import DisputeInfo, RefundRequest
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import (
    ForbiddenActionException,
    NoDisputeException,
    OrderNotFoundException,
    RefundNotAllowedException,
)
from domain.common.money import ZERO, round_money
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import DisputeStatus, Order, PaymentStatus, RefundOutcome
from domain.settlement.entity import SettlementStatus


logger = get_logger(__name__)

REFUNDABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED})
CLOSED_DISPUTE_STATUSES = frozenset({DisputeStatus.WON, DisputeStatus.LOST, DisputeStatus.WARNING_CLOSED})


class AdjustmentService:
    """退款与争议调整服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._clock = clock

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------
    async def apply_refund(self, payment_intent_id: str, cumulative_refunded: Decimal) -> Optional[Order]:
        """按渠道累计退款金额记账（charge.refunded）"""
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_payment_reference(payment_intent_id=payment_intent_id)
            if order is None:
                logger.warning("refund_order_not_found", payment_intent_id=payment_intent_id)
                return None
            delta = round_money(round_money(cumulative_refunded) - order.refund_amount)
            if delta <= 0:
                logger.info(
                    "refund_already_applied",
                    order_code=order.order_code,
                    cumulative_refunded=str(cumulative_refunded),
                    recorded=str(order.refund_amount),
                )
                return order
            outcome = order.apply_refund(delta, now=now)
            if outcome is None:
                return order
            await self._apply_outcome(uow, order, outcome, now)
            order = await uow.order_repository.update(order)
        logger.info(
            "refund_applied",
            order_code=order.order_code,
            amount=str(outcome.amount),
            full=outcome.is_full,
            platform_fee_reversed=str(outcome.platform_fee_reversed),
        )
        return order

    async def _apply_outcome(self, uow: AbstractUnitOfWork, order: Order, outcome: RefundOutcome, now: datetime) -> None:
        if outcome.restock_required:
            for product_id, quantity in order.record_restock(now):
                await uow.product_repository.increment_stock(product_id, quantity)

        settlements = await uow.settlement_repository.list_by_order(order.id)
        for settlement in settlements:
            if settlement.is_clawback:
                continue
            if settlement.status == SettlementStatus.PENDING:
                deducted = settlement.apply_deduction(outcome.fraction, full=outcome.is_full, now=now)
                if deducted > 0:
                    await uow.settlement_repository.update(settlement)
            elif settlement.status == SettlementStatus.SETTLED:
                already = sum(
                    (-s.commission_amount for s in settlements if s.adjusts_settlement_id == settlement.id),
                    ZERO,
                )
                clawback = settlement.clawback(
                    outcome.fraction,
                    full=outcome.is_full,
                    already_clawed_back=already,
                    now=now,
                )
                if clawback is not None:
                    await uow.settlement_repository.create(clawback)
                    logger.info(
                        "settlement_clawback_created",
                        order_code=order.order_code,
                        seller_id=settlement.seller_id,
                        settlement_id=settlement.id,
                        amount=str(clawback.commission_amount),
                    )

    async def refund_order(self, principal: Principal, request: RefundOrderRequest) -> RefundOrderResponse:
        """手动退款（管理员或订单所属卖家）：调用渠道退款后立即记账"""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_code(request.order_code)
        if order is None:
            raise OrderNotFoundException(request.order_code)
        if not principal.is_admin and not (principal.is_seller and principal.user_id in order.seller_ids):
            raise ForbiddenActionException("Only an admin or the order's seller can refund it")
        if order.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
            raise RefundNotAllowedException(
                f"Order cannot be refunded in payment status {order.payment_status.value}",
                order_code=order.order_code,
            )
        if not order.payment_intent_id:
            raise RefundNotAllowedException("Order has no captured payment", order_code=order.order_code)

        amount = round_money(request.amount) if request.amount is not None else order.refundable_amount
        if amount <= 0 or amount > order.refundable_amount:
            raise RefundNotAllowedException(
                "Refund amount exceeds the refundable amount",
                order_code=order.order_code,
                amount=amount,
            )

        recorded = order.refund_amount
        idempotency_base = f"refund|{order.order_code}|{recorded}|{amount}"
        result = await self._gateway.refund(
            RefundRequest(
                payment_intent_id=order.payment_intent_id,
                amount=amount,
                currency=order.currency,
                reason=request.reason,
                refund_application_fee=request.refund_application_fee,
                idempotency_key=hashlib.sha256(idempotency_base.encode("utf-8")).hexdigest(),
                metadata={"order_code": order.order_code, "requested_by": principal.user_id},
            )
        )
        logger.info(
            "manual_refund_requested",
            order_code=order.order_code,
            amount=str(amount),
            refund_id=result.refund_id,
            requested_by=principal.user_id,
            role=principal.role,
        )

        # 渠道 webhook 可能先到；按累计金额记账保证只生效一次
        updated = await self.apply_refund(order.payment_intent_id, round_money(recorded + amount))
        return RefundOrderResponse(
            refund_id=result.refund_id,
            refund_status=result.status,
            amount=amount,
            order=OrderDTO.from_domain(updated or order),
        )

    # ------------------------------------------------------------------
    # 争议
    # ------------------------------------------------------------------
    async def _find_dispute_order(self, uow: AbstractUnitOfWork, dispute: DisputeInfo) -> Optional[Order]:
        order = await uow.order_repository.get_by_dispute_id(dispute.dispute_id)
        if order is None and dispute.payment_intent_id:
            order = await uow.order_repository.get_by_payment_reference(payment_intent_id=dispute.payment_intent_id)
        if order is None:
            logger.warning(
                "dispute_order_not_found",
                dispute_id=dispute.dispute_id,
                payment_intent_id=dispute.payment_intent_id,
            )
        return order

    async def dispute_created(self, dispute: DisputeInfo) -> Optional[Order]:
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await self._find_dispute_order(uow, dispute)
            if order is None:
                return None
            if order.dispute_id == dispute.dispute_id and order.dispute_status != DisputeStatus.NONE:
                logger.info("dispute_already_recorded", order_code=order.order_code, dispute_id=dispute.dispute_id)
                return order
            order.open_dispute(
                dispute.dispute_id,
                reason=dispute.reason,
                amount=dispute.amount if dispute.amount is not None else order.total_amount,
                now=now,
            )
            order = await uow.order_repository.update(order)
        logger.warning(
            "dispute_opened",
            order_code=order.order_code,
            dispute_id=dispute.dispute_id,
            reason=dispute.reason,
            amount=str(order.dispute_amount),
            platform_fee_at_risk=str(order.platform_fee),
        )
        return order

    async def dispute_updated(self, dispute: DisputeInfo) -> Optional[Order]:
        status = DisputeStatus(dispute.status)
        if status in CLOSED_DISPUTE_STATUSES:
            return await self.dispute_closed(dispute)
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await self._find_dispute_order(uow, dispute)
            if order is None:
                return None
            if order.dispute_id is None:
                order.open_dispute(
                    dispute.dispute_id,
                    reason=dispute.reason,
                    amount=dispute.amount if dispute.amount is not None else order.total_amount,
                    now=now,
                )
            else:
                order.update_dispute(status=status, reason=dispute.reason, amount=dispute.amount, now=now)
            order = await uow.order_repository.update(order)
        logger.info("dispute_updated", order_code=order.order_code, dispute_id=dispute.dispute_id, status=status.value)
        return order

    async def dispute_closed(self, dispute: DisputeInfo) -> Optional[Order]:
        """won / warning_closed：恢复已支付；lost：按争议金额走全额退款流程"""
        outcome_status = DisputeStatus(dispute.status)
        now = self._clock()
        async with self._uow_factory() as uow:
            order = await self._find_dispute_order(uow, dispute)
            if order is None:
                return None
            if order.dispute_id is None:
                order.dispute_id = dispute.dispute_id
            changed = order.close_dispute(outcome_status, now=now)
            if not changed:
                logger.info("dispute_already_closed", order_code=order.order_code, dispute_id=dispute.dispute_id)
                return order
            refund_outcome = None
            if outcome_status == DisputeStatus.LOST:
                disputed = dispute.amount if dispute.amount is not None else order.dispute_amount
                refund_outcome = order.apply_refund(disputed or order.refundable_amount, force_full=True, now=now)
                if refund_outcome is not None:
                    await self._apply_outcome(uow, order, refund_outcome, now)
            order = await uow.order_repository.update(order)
        logger.warning(
            "dispute_closed",
            order_code=order.order_code,
            dispute_id=dispute.dispute_id,
            outcome=outcome_status.value,
            refunded=str(refund_outcome.amount) if refund_outcome else None,
        )
        return order

    async def get_dispute(self, principal: Principal, order_code: str) -> DisputeInfo:
        order = await self._load_order(order_code)
        allowed = (
            principal.is_admin
            or (principal.is_buyer and principal.user_id == order.buyer_id)
            or (principal.is_seller and principal.user_id in order.seller_ids)
        )
        if not allowed:
            raise ForbiddenActionException("Not allowed to view this dispute")
        if not order.dispute_id:
            raise NoDisputeException(order_code)
        return await self._gateway.retrieve_dispute(order.dispute_id)

    async def submit_dispute_evidence(
        self, principal: Principal, order_code: str, request: DisputeEvidenceRequest
    ) -> DisputeInfo:
        order = await self._load_order(order_code)
        if not principal.is_admin and not (principal.is_seller and principal.user_id in order.seller_ids):
            raise ForbiddenActionException("Only an admin or the order's seller can submit evidence")
        if not order.dispute_id:
            raise NoDisputeException(order_code)
        info = await self._gateway.submit_dispute_evidence(order.dispute_id, request.evidence, submit=request.submit)
        logger.info(
            "dispute_evidence_submitted",
            order_code=order_code,
            dispute_id=order.dispute_id,
            fields=sorted(request.evidence.keys()),
            submitted=request.submit,
            submitted_by=principal.user_id,
        )
        return info

    async def _load_order(self, order_code: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_code(order_code)
        if order is None:
            raise OrderNotFoundException(order_code)
        return order
