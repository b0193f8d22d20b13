"""Celery 应用：仅承载每周卖家结算批次（beat 触发）"""
from __future__ import annotations

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

celery_app = Celery("marketplace", include=list(TASK_PACKAGES))

celery_app.conf.update(
    broker_url=settings.redis.url,
    result_backend=settings.redis.url,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 转账带幂等键，重复投递不会重复打款，可在执行完成后再 ack
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    # 一次批次处理所有卖家，同一时刻只允许一个 worker 消费
    task_queues=(Queue("settlements"),),
    task_default_queue="settlements",
    task_time_limit=30 * 60,
    result_expires=7 * 24 * 3600,
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

if settings.ENVIRONMENT.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # 接管 worker 的 root logger，与 API 进程使用同一 structlog 处理链
    configure_logging()


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queues=[q.name for q in sender.conf.task_queues])
