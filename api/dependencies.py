"""
API依赖项 - 认证、授权与应用服务装配
"""
import hmac
from typing import Callable, Optional

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from application.dtos.auth import Principal, Role
from application.ports.payment_gateway import PaymentGateway
from application.services.adjustment_service import AdjustmentService
from application.services.checkout_service import CheckoutService
from application.services.order_materializer import OrderMaterializer
from application.services.order_service import OrderService
from application.services.settlement_service import SettlementService
from application.services.webhook_service import WebhookService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from domain.common.exceptions import DomainValidationException, ForbiddenActionException
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def decode_principal(token: str) -> Principal:
    """解析 HS256 访问令牌（sub + role）"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError:
        raise UnauthorizedException("Invalid token")
    try:
        return Principal(user_id=str(payload.get("sub") or ""), role=payload.get("role"))
    except (ValidationError, DomainValidationException):
        raise UnauthorizedException("Invalid token claims")


async def get_optional_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[Principal]:
    if credentials is None or not credentials.credentials:
        return None
    return decode_principal(credentials.credentials)


async def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """获取当前登录主体"""
    if principal is None:
        raise UnauthorizedException("Missing credentials")
    return principal


def require_roles(*roles: Role) -> Callable:
    """限定角色的依赖工厂"""

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise ForbiddenActionException(f"Requires role: {', '.join(roles)}")
        return principal

    return _dependency


async def verify_cron_or_admin(
    x_cron_secret: Optional[str] = Header(default=None, alias="X-Cron-Secret"),
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> str:
    """结算触发：定时任务密钥或管理员令牌二选一"""
    expected = settings.settlement.cron_secret
    if x_cron_secret is not None:
        if expected and hmac.compare_digest(x_cron_secret, expected):
            return "cron"
        raise UnauthorizedException("Invalid cron secret")
    if principal is None:
        raise UnauthorizedException("Missing credentials")
    if not principal.is_admin:
        raise ForbiddenActionException("Requires role: admin")
    return f"admin:{principal.user_id}"


# ----------------------------------------------------------------------
# 服务装配
# ----------------------------------------------------------------------
def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_order_materializer(gateway: PaymentGateway = Depends(get_gateway)) -> OrderMaterializer:
    return OrderMaterializer(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway)


def get_checkout_service(
    gateway: PaymentGateway = Depends(get_gateway),
    materializer: OrderMaterializer = Depends(get_order_materializer),
) -> CheckoutService:
    return CheckoutService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway, materializer=materializer)


def get_adjustment_service(gateway: PaymentGateway = Depends(get_gateway)) -> AdjustmentService:
    return AdjustmentService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway)


def get_webhook_service(
    gateway: PaymentGateway = Depends(get_gateway),
    materializer: OrderMaterializer = Depends(get_order_materializer),
    adjustments: AdjustmentService = Depends(get_adjustment_service),
) -> WebhookService:
    return WebhookService(gateway, materializer, adjustments, SQLAlchemyUnitOfWork)


def get_settlement_service(gateway: PaymentGateway = Depends(get_gateway)) -> SettlementService:
    return SettlementService(uow_factory=SQLAlchemyUnitOfWork, gateway=gateway)


def get_order_service() -> OrderService:
    return OrderService(uow_factory=SQLAlchemyUnitOfWork)
