"""领域层业务异常定义，供领域、应用与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class EmptyCartException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.EMPTY_CART,
            message="Cart is empty",
            error_type="EmptyCart",
            field="items",
        )


class MultipleSellersNotSupportedException(BusinessException):
    def __init__(self, seller_ids: list[str]):
        super().__init__(
            code=BusinessCode.MULTIPLE_SELLERS,
            message="All items in one checkout must belong to the same seller",
            error_type="MultipleSellersNotSupported",
            details={"seller_ids": sorted(seller_ids)},
            field="items",
        )


class ProductNotFoundException(BusinessException):
    def __init__(self, product_id: str):
        super().__init__(
            code=BusinessCode.PRODUCT_NOT_FOUND,
            message=f"Product {product_id} not found",
            error_type="ProductNotFound",
            details={"product_id": product_id},
        )


class SellerNotFoundException(BusinessException):
    def __init__(self, seller_id: str):
        super().__init__(
            code=BusinessCode.SELLER_NOT_FOUND,
            message=f"Seller {seller_id} not found",
            error_type="SellerNotFound",
            details={"seller_id": seller_id},
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_code: Optional[str] = None, **lookup):
        details = {"order_code": order_code} if order_code else {}
        details.update({k: v for k, v in lookup.items() if v is not None})
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details or None,
        )


class InsufficientStockException(BusinessException):
    def __init__(self, product_id: str, requested: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_STOCK,
            message=f"Insufficient stock for product {product_id}",
            error_type="InsufficientStock",
            details={"product_id": product_id, "requested": requested},
        )


class OrderConflictException(BusinessException):
    """订单唯一约束冲突（支付引用重复或订单号/物流号碰撞）"""

    def __init__(self, *, payment_reference: Optional[str] = None, constraint: Optional[str] = None):
        super().__init__(
            code=BusinessCode.ORDER_CONFLICT,
            message="Order already exists or identifier collided",
            error_type="OrderConflict",
            details={"payment_reference": payment_reference, "constraint": constraint},
        )

    @property
    def is_duplicate_payment(self) -> bool:
        return self.details is not None and self.details.get("constraint") == "payment_reference"


class PaymentNotConfirmedException(BusinessException):
    def __init__(self, reference: str, status: Optional[str]):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_CONFIRMED,
            message="Payment has not been completed",
            error_type="PaymentNotConfirmed",
            details={"reference": reference, "status": status},
        )


class RefundNotAllowedException(BusinessException):
    def __init__(self, message: str, *, order_code: Optional[str] = None, amount: Optional[Decimal] = None):
        details = {"order_code": order_code}
        if amount is not None:
            details["amount"] = str(amount)
        super().__init__(
            code=BusinessCode.REFUND_NOT_ALLOWED,
            message=message,
            error_type="RefundNotAllowed",
            details=details,
        )


class NoDisputeException(BusinessException):
    def __init__(self, order_code: str):
        super().__init__(
            code=BusinessCode.NO_DISPUTE,
            message="No dispute found for this order",
            error_type="NoDispute",
            details={"order_code": order_code},
        )


class InvalidStatusTransitionException(BusinessException):
    def __init__(self, message: str, *, current: str, requested: str):
        super().__init__(
            code=BusinessCode.INVALID_STATUS_TRANSITION,
            message=message,
            error_type="InvalidStatusTransition",
            details={"current": current, "requested": requested},
            field="status",
        )


class ForbiddenActionException(BusinessException):
    def __init__(self, message: str = "Not allowed to act on this resource", details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="Forbidden",
            details=details,
        )
