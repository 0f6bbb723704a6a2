"""Celery application configuration

The broker (Redis) carries sweeper and outbox ticks from beat to the
workers. Deployments that run the in-process sweeper runner instead do not
need a worker at all.
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger

from .beat import CELERY_BEAT_SCHEDULE

logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

broker_url = settings.redis.url or os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")

celery_app = Celery("zavera", broker=broker_url, include=list(TASK_PACKAGES))

celery_app.conf.update(
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 任务完成后再 ack，worker 崩溃时可重投
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    # 一个 tick 可能跑满 tick_budget_seconds，每次只取一个
    worker_prefetch_multiplier=1,
    task_default_queue="sweepers",
    task_queues=(
        Queue("notifications"),
        Queue("sweepers"),
    ),
    task_routes={
        "sweepers.*": {"queue": "sweepers"},
        "notifications.*": {"queue": "notifications"},
    },
    # 单次 tick 的硬性上限
    task_time_limit=int(settings.jobs.tick_budget_seconds) + 60,
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

if settings.ENVIRONMENT.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, queues=[q.name for q in sender.conf.task_queues])
