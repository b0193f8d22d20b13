"""Celery beat schedule configuration.

卖家结算每周三 00:01（UTC）运行一次。
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "weekly-seller-settlements": {
        "task": "settlements.process_due",
        "schedule": crontab(minute=1, hour=0, day_of_week=3),
    },
}
