"""
订单 → 卖家结算记录的拆分
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.money import ZERO, round_money
from domain.order.entity import Order
from domain.settlement.entity import Settlement, calculate_settlement_date


def build_settlements(order: Order, *, now: Optional[datetime] = None) -> list[Settlement]:
    """
    为订单中出现的每个卖家生成一条 pending 结算记录

    佣金 = 该卖家应分订单额 - 该卖家应摊平台费；按行小计占比拆分，
    最后一个卖家承担舍入余数，保证各行之和等于订单总额与平台费。
    单卖家订单即 佣金 = 总额 - 平台费。
    """
    created_at = now or order.created_at
    scheduled = calculate_settlement_date(created_at)
    seller_ids = order.seller_ids
    items_subtotal = order.items_subtotal

    remaining_total = order.total_amount
    remaining_fee = order.platform_fee
    settlements: list[Settlement] = []
    for index, seller_id in enumerate(seller_ids):
        seller_items = [item for item in order.items if item.seller_id == seller_id]
        if index == len(seller_ids) - 1:
            share_total = remaining_total
            share_fee = remaining_fee
        else:
            seller_subtotal = sum((item.line_total for item in seller_items), ZERO)
            ratio = (seller_subtotal / items_subtotal) if items_subtotal > 0 else Decimal(1) / len(seller_ids)
            share_total = round_money(order.total_amount * ratio)
            share_fee = round_money(order.platform_fee * ratio)
            remaining_total = round_money(remaining_total - share_total)
            remaining_fee = round_money(remaining_fee - share_fee)
        settlements.append(
            Settlement(
                id=None,
                seller_id=seller_id,
                order_id=order.id,
                order_code=order.order_code,
                total_order_amount=share_total,
                platform_fee=share_fee,
                commission_amount=round_money(share_total - share_fee),
                scheduled_settlement_date=scheduled,
                products=[
                    {"product_id": item.product_id, "quantity": item.quantity, "price": str(item.price)}
                    for item in seller_items
                ],
                created_at=created_at,
                updated_at=created_at,
            )
        )
    return settlements
