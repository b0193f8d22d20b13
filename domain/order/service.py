"""
订单号/物流单号生成

时间戳 + 随机后缀；唯一性最终由数据库唯一索引保证，冲突时由调用方重试生成。
"""
from __future__ import annotations

import secrets
from datetime import datetime
from typing import Optional

from domain.common.timeutils import utcnow


def _epoch_millis(now: Optional[datetime]) -> int:
    now = now or utcnow()
    return int(now.timestamp() * 1000)


def generate_order_code(now: Optional[datetime] = None) -> str:
    return f"ORD-{_epoch_millis(now)}-{secrets.token_hex(3)}"


def generate_tracking_number(now: Optional[datetime] = None) -> str:
    return f"TRK-{_epoch_millis(now)}-{secrets.token_hex(4).upper()}"
