"""
商品（只读视图 + 库存）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.pricing.entity import ItemDiscount


@dataclass
class Product:
    """商品目录中的商品。本服务只读取价格信息并维护库存。"""

    id: str
    seller_id: str
    title: str
    price: Decimal
    stock: int
    discount: Optional[ItemDiscount] = None

    def current_unit_price(self, now: datetime) -> Decimal:
        """目录价扣除生效中的商品折扣（不低于 0）"""
        if self.discount is not None and self.discount.is_active(now):
            return self.discount.apply(self.price)
        return self.price
