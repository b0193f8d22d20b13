"""
Base payment client implementing shared concerns: threading, retry, logging, mapping.

Concrete providers subclass and implement provider-specific logic. Provider
SDKs are synchronous, so calls are pushed onto a worker thread to keep the
event loop free.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.payment_gateway import PaymentRecoverableError
from core.logging_config import get_logger
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

T = TypeVar("T")


class BasePaymentClient:
    provider: str = "base"

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    def _translate_error(self, exc: Exception) -> Exception:
        """Map an SDK exception onto the port's error types."""
        return exc

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call in a thread; recoverable failures are retried.

        Every mutating call carries an idempotency key, so retrying is safe.
        """

        async def _once() -> T:
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except Exception as exc:
                mapped = self._translate_error(exc)
                if mapped is exc:
                    raise
                logger.warning(
                    "payment_provider_call_failed",
                    provider=self.provider,
                    operation=operation,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise mapped from exc

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                return await _once()
        raise RuntimeError("unreachable")  # pragma: no cover

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        status = provider_status or ""
        return mapping.get(status, status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
