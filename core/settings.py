"""
支付渠道配置（pydantic-settings，嵌套键使用 __ 分隔）

例如 STRIPE__SECRET_KEY、STRIPE__WEBHOOK_TOLERANCE_SECONDS、PAYMENT_RETRY__MAX。
与 core.config.Settings 分开加载，worker 与 API 进程共用。
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentRetry(BaseModel):
    # 同一调用的重试次数（tenacity），同时作为 SDK 自身的网络重试次数
    max: int = 2
    base_backoff: float = 0.2


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None
    webhook_tolerance_seconds: int = 300


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    payment_retry: PaymentRetry = Field(default_factory=PaymentRetry)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
