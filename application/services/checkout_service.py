"""
结账应用服务 - 定价 + 创建支付（支付意图 / 托管结账会话）

每次结账只调用一次支付渠道；价格明细编码进支付元数据，由订单落库流程使用。
"""
from __future__ import annotations

import hashlib
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from application.dtos.checkout import (
    CheckoutRequest,
    CheckoutSessionResponse,
    OrderDTO,
    PaymentIntentResponse,
    PricingBreakdownDTO,
)
from application.dtos.payments import (
    CreateCheckoutSession,
    CreatePaymentIntent,
    SessionLineItem,
)
from application.ports.payment_gateway import PaymentGateway
from application.utils.checkout_metadata import decode_checkout_metadata, encode_checkout_metadata
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    EmptyCartException,
    InsufficientStockException,
    MultipleSellersNotSupportedException,
    ProductNotFoundException,
    SellerNotFoundException,
)
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.pricing.entity import PricingBreakdown, PricingLine
from domain.pricing.service import CarrierRates, PricingEngine, resolve_base_unit_price

if TYPE_CHECKING:
    from application.services.order_materializer import OrderMaterializer


logger = get_logger(__name__)


def _idempotency_key(kind: str, buyer_id: str, request_key: Optional[str] = None) -> str:
    # 客户端带 Idempotency-Key 时同一次提交的重试复用同一笔支付；否则每次结账都是新支付
    base = f"{kind}|{buyer_id}|{request_key or uuid.uuid4().hex}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def webhook_shortcut_enabled() -> bool:
    """本地开发直接落单开关：生产环境始终关闭"""
    return settings.checkout.skip_webhook_confirmation and not settings.is_production


class CheckoutService:
    """结账应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        *,
        materializer: Optional["OrderMaterializer"] = None,
        engine: Optional[PricingEngine] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._materializer = materializer
        self._engine = engine or PricingEngine(
            CarrierRates(
                express=settings.checkout.express_shipping_rate,
                overnight=settings.checkout.overnight_shipping_rate,
            )
        )
        self._clock = clock

    async def quote(self, buyer_id: str, request: CheckoutRequest) -> PricingBreakdown:
        """读取商品、卖家、优惠码与定价配置（只读），计算价格明细"""
        if not request.items:
            raise EmptyCartException()
        now = self._clock()

        async with self._uow_factory(readonly=True) as uow:
            product_ids = [item.product_id for item in request.items]
            products = await uow.product_repository.get_many(product_ids)
            for product_id in product_ids:
                if product_id not in products:
                    raise ProductNotFoundException(product_id)

            seller_ids = {products[pid].seller_id for pid in product_ids}
            if len(seller_ids) > 1:
                raise MultipleSellersNotSupportedException(list(seller_ids))
            seller_id = next(iter(seller_ids))
            seller = await uow.seller_repository.get_by_id(seller_id)
            if seller is None:
                raise SellerNotFoundException(seller_id)

            lines: list[PricingLine] = []
            for item in request.items:
                product = products[item.product_id]
                if product.stock < item.quantity:
                    raise InsufficientStockException(product.id, item.quantity)
                lines.append(
                    PricingLine(
                        product_id=product.id,
                        seller_id=product.seller_id,
                        quantity=item.quantity,
                        base_unit_price=resolve_base_unit_price(product, item.price, now),
                        title=product.title,
                    )
                )

            promo = None
            promo_usage = 0
            if request.promo_code:
                promo = await uow.promo_code_repository.get_active_by_code(request.promo_code, seller_id)
                if promo is None:
                    logger.info("promo_code_not_found", code=request.promo_code, seller_id=seller_id)
                else:
                    promo_usage = await uow.promo_code_repository.count_usage(promo.id, buyer_id)

            tax_config = await uow.pricing_config_repository.get_active_tax_config()
            fee_config = await uow.pricing_config_repository.get_platform_fee()

        breakdown = self._engine.price(
            lines,
            shipping_method=request.shipping_address.shipping_method,
            shipping_policy=seller.shipping_policy,
            tax_config=tax_config,
            fee_config=fee_config,
            seller_payout_active=seller.has_active_payout_account,
            now=now,
            promo=promo,
            buyer_promo_usage=promo_usage,
        )
        if breakdown.promo_rejection:
            logger.info(
                "promo_code_rejected",
                code=request.promo_code,
                buyer_id=buyer_id,
                reason=breakdown.promo_rejection,
            )
        if breakdown.total <= 0:
            raise DomainValidationException("Order total must be greater than zero", field="items")
        return breakdown

    def _metadata(self, buyer_id: str, request: CheckoutRequest, breakdown: PricingBreakdown) -> dict[str, str]:
        return encode_checkout_metadata(
            breakdown,
            buyer_id=buyer_id,
            shipping_address=request.shipping_address.model_dump(mode="json"),
            currency=settings.checkout.currency,
        )

    async def create_payment_intent(
        self, buyer_id: str, request: CheckoutRequest, *, idempotency_key: Optional[str] = None
    ) -> PaymentIntentResponse:
        breakdown = await self.quote(buyer_id, request)
        metadata = self._metadata(buyer_id, request, breakdown)
        intent = await self._gateway.create_payment_intent(
            CreatePaymentIntent(
                amount=breakdown.total,
                currency=settings.checkout.currency,
                metadata=metadata,
                description=f"Marketplace order for buyer {buyer_id}",
                idempotency_key=_idempotency_key("intent", buyer_id, idempotency_key),
            )
        )
        logger.info(
            "payment_intent_created",
            buyer_id=buyer_id,
            payment_intent_id=intent.intent_id,
            total=str(breakdown.total),
            platform_fee=str(breakdown.platform_fee),
        )

        order_dto = None
        if webhook_shortcut_enabled() and self._materializer is not None:
            confirmation = decode_checkout_metadata(
                metadata,
                source="dev_shortcut",
                payment_intent_id=intent.intent_id,
            )
            result = await self._materializer.materialize_dev_shortcut(confirmation)
            order_dto = OrderDTO.from_domain(result.order)

        return PaymentIntentResponse(
            payment_intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            breakdown=PricingBreakdownDTO.from_domain(breakdown),
            order=order_dto,
        )

    async def create_checkout_session(
        self, buyer_id: str, request: CheckoutRequest, *, idempotency_key: Optional[str] = None
    ) -> CheckoutSessionResponse:
        breakdown = await self.quote(buyer_id, request)
        metadata = self._metadata(buyer_id, request, breakdown)

        line_items = [
            SessionLineItem(
                name=line.title or line.product_id,
                unit_amount=line.final_unit_price,
                quantity=line.quantity,
            )
            for line in breakdown.lines
        ]
        if breakdown.shipping_cost > 0:
            line_items.append(
                SessionLineItem(name=f"Shipping ({breakdown.shipping_method.value})", unit_amount=breakdown.shipping_cost)
            )
        if breakdown.tax_amount > 0:
            line_items.append(SessionLineItem(name="Tax", unit_amount=breakdown.tax_amount))

        frontend = settings.FRONTEND_URL
        session = await self._gateway.create_checkout_session(
            CreateCheckoutSession(
                line_items=line_items,
                currency=settings.checkout.currency,
                success_url=f"{frontend}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend}/checkout/cancel",
                metadata=metadata,
                idempotency_key=_idempotency_key("session", buyer_id, idempotency_key),
            )
        )
        logger.info(
            "checkout_session_created",
            buyer_id=buyer_id,
            session_id=session.session_id,
            total=str(breakdown.total),
        )
        return CheckoutSessionResponse(
            session_id=session.session_id,
            url=session.url,
            breakdown=PricingBreakdownDTO.from_domain(breakdown),
        )
