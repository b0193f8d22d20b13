"""Common base task for Celery jobs"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def run_async(factory: Callable[[], Awaitable[T]]) -> T:
    """在 worker 进程里运行一个协程；每次任务使用独立事件循环"""

    async def _main() -> T:
        return await factory()

    return asyncio.run(_main())


class BaseTask(Task):
    """失败/成功统一记录结构化日志"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            exc=str(exc),
            exc_type=type(exc).__name__,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval: Any, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
        )
        super().on_success(retval, task_id, args, kwargs)
