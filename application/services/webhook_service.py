"""
支付渠道 webhook 分发

- 支付成功类事件 → 订单落库；失败向上抛出（返回非 2xx，渠道会重投）
- 退款/争议事件 → 调整服务；失败只记录日志并确认接收，避免渠道无限重投
- account.updated → 同步卖家收款账户状态
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from application.dtos.payments import DisputeInfo, WebhookEvent
from application.ports.payment_gateway import PaymentGateway
from application.services.adjustment_service import AdjustmentService
from application.services.order_materializer import OrderMaterializer
from core.logging_config import get_logger
from domain.common.money import from_minor_units
from domain.common.unit_of_work import AbstractUnitOfWork
from shared.codes.payment_codes import PROVIDER_DISPUTE_STATUS_TO_INTERNAL


logger = get_logger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
CHARGE_SUCCEEDED = "charge.succeeded"
SESSION_COMPLETED = "checkout.session.completed"
CHARGE_REFUNDED = "charge.refunded"
DISPUTE_CREATED = "charge.dispute.created"
DISPUTE_UPDATED = "charge.dispute.updated"
DISPUTE_CLOSED = "charge.dispute.closed"
ACCOUNT_UPDATED = "account.updated"


def _id_of(value: Any) -> Optional[str]:
    """渠道对象引用可能是 id 字符串，也可能是展开后的对象"""
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get("id")
    return str(value)


class WebhookService:
    def __init__(
        self,
        gateway: PaymentGateway,
        materializer: OrderMaterializer,
        adjustments: AdjustmentService,
        uow_factory: Callable[..., AbstractUnitOfWork],
    ) -> None:
        self._gateway = gateway
        self._materializer = materializer
        self._adjustments = adjustments
        self._uow_factory = uow_factory

    async def handle(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        """校验签名并分发事件；签名错误抛 PaymentSignatureError"""
        event = self._gateway.parse_webhook(headers, body)
        logger.info("payment_webhook_received", event_id=event.id, event_type=event.type, provider=event.provider)

        if event.type in (PAYMENT_SUCCEEDED, CHARGE_SUCCEEDED, SESSION_COMPLETED):
            await self._handle_payment_succeeded(event)
        elif event.type in (CHARGE_REFUNDED, DISPUTE_CREATED, DISPUTE_UPDATED, DISPUTE_CLOSED):
            try:
                await self._handle_adjustment(event)
            except Exception as exc:
                logger.exception(
                    "webhook_adjustment_failed",
                    event_id=event.id,
                    event_type=event.type,
                    error=str(exc),
                )
        elif event.type == ACCOUNT_UPDATED:
            await self._handle_account_updated(event)
        else:
            logger.debug("payment_webhook_ignored", event_id=event.id, event_type=event.type)
        return event

    async def _handle_payment_succeeded(self, event: WebhookEvent) -> None:
        obj = event.data_object
        if event.type == SESSION_COMPLETED:
            result = await self._materializer.from_checkout_session(
                obj.get("id"),
                payment_intent_id=_id_of(obj.get("payment_intent")),
                payment_status=obj.get("payment_status"),
                metadata=obj.get("metadata") or {},
            )
        elif event.type == CHARGE_SUCCEEDED:
            intent_id = _id_of(obj.get("payment_intent"))
            if not intent_id:
                logger.info("charge_without_payment_intent", event_id=event.id, charge_id=obj.get("id"))
                return
            metadata = obj.get("metadata") or {}
            if not metadata.get("buyer"):
                # 扣款对象不一定带元数据，回查支付意图
                intent = await self._gateway.retrieve_payment_intent(intent_id)
                metadata = intent.metadata
            result = await self._materializer.from_payment_intent(intent_id, metadata)
        else:
            result = await self._materializer.from_payment_intent(obj.get("id"), obj.get("metadata") or {})

        if result is not None:
            logger.info(
                "webhook_order_materialized",
                event_id=event.id,
                event_type=event.type,
                order_code=result.order.order_code,
                created=result.created,
            )

    async def _handle_adjustment(self, event: WebhookEvent) -> None:
        obj = event.data_object
        if event.type == CHARGE_REFUNDED:
            intent_id = _id_of(obj.get("payment_intent"))
            if not intent_id:
                logger.warning("refund_without_payment_intent", event_id=event.id, charge_id=obj.get("id"))
                return
            await self._adjustments.apply_refund(intent_id, from_minor_units(obj.get("amount_refunded") or 0))
            return

        dispute = self._dispute_from_event(event)
        if event.type == DISPUTE_CREATED:
            await self._adjustments.dispute_created(dispute)
        elif event.type == DISPUTE_UPDATED:
            await self._adjustments.dispute_updated(dispute)
        else:
            await self._adjustments.dispute_closed(dispute)

    def _dispute_from_event(self, event: WebhookEvent) -> DisputeInfo:
        obj = event.data_object
        mapping = PROVIDER_DISPUTE_STATUS_TO_INTERNAL.get(event.provider, {})
        raw_status = obj.get("status") or ""
        evidence_details = obj.get("evidence_details") or {}
        due_by = evidence_details.get("due_by")
        amount = obj.get("amount")
        return DisputeInfo(
            dispute_id=obj.get("id"),
            provider=event.provider,
            status=mapping.get(raw_status, "under_review"),
            reason=obj.get("reason"),
            amount=from_minor_units(amount) if amount is not None else None,
            currency=obj.get("currency"),
            payment_intent_id=_id_of(obj.get("payment_intent")),
            charge_id=_id_of(obj.get("charge")),
            evidence_due_by=datetime.fromtimestamp(due_by, tz=timezone.utc) if due_by else None,
            has_evidence=bool(evidence_details.get("has_evidence")),
            submission_count=int(evidence_details.get("submission_count") or 0),
        )

    async def _handle_account_updated(self, event: WebhookEvent) -> None:
        obj = event.data_object
        account_id = obj.get("id")
        if not account_id:
            return
        async with self._uow_factory() as uow:
            seller = await uow.seller_repository.get_by_payout_account(account_id)
            if seller is None:
                logger.info("payout_account_unknown", account_id=account_id)
                return
            changed = seller.sync_payout_capabilities(
                bool(obj.get("charges_enabled")),
                bool(obj.get("payouts_enabled")),
            )
            if changed:
                await uow.seller_repository.update(seller)
        if changed:
            logger.info(
                "seller_payout_status_updated",
                seller_id=seller.id,
                account_id=account_id,
                payout_status=seller.payout_status.value,
            )
