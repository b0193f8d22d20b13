"""
买家侧附属记录：积分流水、通知
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from domain.common.timeutils import utcnow


class LoyaltyPointType(str, Enum):
    EARN = "earn"
    REDEEM = "redeem"


class NotificationType(str, Enum):
    ORDER_PLACED = "order_placed"
    ORDER_STATUS_UPDATED = "order_status_updated"
    PAYMENT_RECEIVED = "payment_received"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"


@dataclass
class LoyaltyPointEntry:
    id: Optional[int]
    user_id: str
    points: int
    type: LoyaltyPointType = LoyaltyPointType.EARN
    reason: Optional[str] = None
    reference_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Notification:
    id: Optional[int]
    user_id: str
    type: NotificationType
    title: str
    message: str
    order_code: Optional[str] = None
    product_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)
