"""Bounded retry combinator for transactional units of work."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
    wait_none,
)

from core.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    attempts: int = 3,
    backoff_seconds: float = 0.0,
    should_retry: Callable[[BaseException], bool],
    **log_context,
) -> T:
    """Run ``fn`` (one full transaction per call) up to ``attempts`` times.

    Only exceptions accepted by ``should_retry`` trigger another attempt; the
    last exception is re-raised once attempts are exhausted.
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "transaction_retry",
            operation=operation,
            attempt=state.attempt_number,
            max_attempts=attempts,
            error=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
            **log_context,
        )

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_fixed(backoff_seconds) if backoff_seconds > 0 else wait_none(),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise RuntimeError("unreachable")  # pragma: no cover
