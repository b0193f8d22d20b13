"""金额工具：统一使用 Decimal，按分四舍五入（ROUND_HALF_UP）。"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """转换为 Decimal；float 先转字符串，避免二进制误差。"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """金额保留两位小数（四舍五入）。"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    """元 → 分（支付渠道使用最小货币单位）。"""
    return int((round_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    """分 → 元。"""
    return round_money(Decimal(int(minor)) / Decimal(100))


def floor_div(amount: Number, divisor: int) -> int:
    """向下取整除法（如积分 = floor(total / 10)）。"""
    if divisor <= 0:
        return 0
    return int((to_decimal(amount) / Decimal(divisor)).to_integral_value(rounding=ROUND_FLOOR))
