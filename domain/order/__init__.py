"""Order domain exports."""
from .entity import (
    DisputeStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    RefundOutcome,
    TimelineEvent,
)
from .repository import OrderRepository

__all__ = [
    "DisputeStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "RefundOutcome",
    "TimelineEvent",
    "OrderRepository",
]
