"""
支付网关适配器

API 进程与结算 worker 通过 get_payment_gateway() 取得同一个进程级实例；
Stripe SDK 的 api_key / 重试次数是模块级全局配置，只需初始化一次。
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from core.settings import payment_settings


@lru_cache(maxsize=None)
def _build_gateway(name: str) -> PaymentGateway:
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient()
    raise ValueError(f"Unsupported payment provider: {name}")


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    return _build_gateway((provider or payment_settings.default_provider).lower())


__all__ = ["get_payment_gateway"]
