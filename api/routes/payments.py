"""
Payments API routes.

Checkout (payment intent / hosted session), client-side confirmation, the
processor webhook, refunds and disputes. Keep this thin: no SDK details here.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from api.dependencies import (
    get_adjustment_service,
    get_checkout_service,
    get_current_principal,
    get_order_materializer,
    get_webhook_service,
    require_roles,
)
from application.dtos.auth import Principal
from application.dtos.checkout import (
    CheckoutRequest,
    CheckoutSessionResponse,
    ConfirmOrderRequest,
    DisputeEvidenceRequest,
    MaterializedOrderResponse,
    OrderDTO,
    PaymentIntentResponse,
    RefundOrderRequest,
    RefundOrderResponse,
)
from application.dtos.payments import DisputeInfo
from application.services.adjustment_service import AdjustmentService
from application.services.checkout_service import CheckoutService
from application.services.order_materializer import OrderMaterializer
from application.services.webhook_service import WebhookService
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "/create-payment-intent",
    summary="Create payment intent",
    response_model=ApiResponse[PaymentIntentResponse],
)
async def create_payment_intent(
    payload: CheckoutRequest,
    principal: Principal = Depends(require_roles("buyer")),
    service: CheckoutService = Depends(get_checkout_service),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    result = await service.create_payment_intent(principal.user_id, payload, idempotency_key=idempotency_key)
    return success_response(data=result, message="Payment intent created")


@router.post(
    "/create-checkout-session",
    summary="Create hosted checkout session",
    response_model=ApiResponse[CheckoutSessionResponse],
)
async def create_checkout_session(
    payload: CheckoutRequest,
    principal: Principal = Depends(require_roles("buyer")),
    service: CheckoutService = Depends(get_checkout_service),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    result = await service.create_checkout_session(principal.user_id, payload, idempotency_key=idempotency_key)
    return success_response(data=result, message="Checkout session created")


@router.post(
    "/create-order-immediately",
    summary="Materialize order after client-side confirmation",
    response_model=ApiResponse[MaterializedOrderResponse],
)
async def create_order_immediately(
    payload: ConfirmOrderRequest,
    principal: Principal = Depends(require_roles("buyer")),
    materializer: OrderMaterializer = Depends(get_order_materializer),
):
    """
    支付完成后客户端主动确认；与 webhook 走同一条幂等落单流程。

    - 已存在同一支付引用的订单时返回该订单（created = false）
    """
    result = await materializer.confirm_for_buyer(principal.user_id, payload)
    data = MaterializedOrderResponse(order=OrderDTO.from_domain(result.order), created=result.created)
    return success_response(data=data, message="Order created" if result.created else "Order already exists")


@router.post("/webhook", summary="Payment processor webhook")
async def payments_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    # 签名校验需要原始字节
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    event = await service.handle(headers, raw_body)
    return success_response(
        data={"id": event.id, "type": event.type, "provider": event.provider},
        message="Webhook received",
    )


@router.post("/refund", summary="Refund an order", response_model=ApiResponse[RefundOrderResponse])
async def refund_order(
    payload: RefundOrderRequest,
    principal: Principal = Depends(require_roles("seller", "admin")),
    service: AdjustmentService = Depends(get_adjustment_service),
):
    result = await service.refund_order(principal, payload)
    return success_response(data=result, message="Refund submitted")


@router.get("/dispute/{order_code}", summary="Get dispute details", response_model=ApiResponse[DisputeInfo])
async def get_dispute(
    order_code: str,
    principal: Principal = Depends(get_current_principal),
    service: AdjustmentService = Depends(get_adjustment_service),
):
    dispute = await service.get_dispute(principal, order_code)
    return success_response(data=dispute)


@router.post(
    "/dispute/{order_code}/evidence",
    summary="Submit dispute evidence",
    response_model=ApiResponse[DisputeInfo],
)
async def submit_dispute_evidence(
    order_code: str,
    payload: DisputeEvidenceRequest,
    principal: Principal = Depends(require_roles("seller", "admin")),
    service: AdjustmentService = Depends(get_adjustment_service),
):
    dispute = await service.submit_dispute_evidence(principal, order_code, payload)
    return success_response(data=dispute, message="Dispute evidence submitted")
