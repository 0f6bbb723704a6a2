"""
Celery entry points for the background sweepers and the notification outbox.

Each task builds its own container inside `asyncio.run` so the worker never
shares an event loop or a connection pool between tasks.
"""
from __future__ import annotations

import asyncio
import dataclasses
from typing import Any

from celery import shared_task
from pydantic import BaseModel

from application.services.sweepers import SweeperJobs
from core.config import settings
from core.logging_config import get_logger
from infrastructure.container import Container

from ..utils.base_task import BaseTask

logger = get_logger(__name__)


def _summarize(result: Any) -> Any:
    # 结果需要可 JSON 序列化
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if dataclasses.is_dataclass(result):
        return dataclasses.asdict(result)
    return result


async def _run_job(name: str) -> Any:
    container = Container(settings)
    try:
        return await container.jobs.run(name)
    finally:
        await container.aclose()


def _run_sweeper(name: str) -> Any:
    result = _summarize(asyncio.run(_run_job(name)))
    logger.info("sweeper_task_finished", job=name, result=result)
    return result


@shared_task(name="sweepers.order_expiry", bind=True, base=BaseTask)
def expire_orders(self):
    return _run_sweeper(SweeperJobs.ORDER_EXPIRY)


@shared_task(name="sweepers.payment_expiry", bind=True, base=BaseTask)
def expire_payments(self):
    return _run_sweeper(SweeperJobs.PAYMENT_EXPIRY)


@shared_task(name="sweepers.payment_recovery", bind=True, base=BaseTask)
def recover_payments(self):
    return _run_sweeper(SweeperJobs.PAYMENT_RECOVERY)


@shared_task(name="sweepers.tracking_refresh", bind=True, base=BaseTask)
def refresh_tracking(self):
    return _run_sweeper(SweeperJobs.TRACKING_REFRESH)


@shared_task(name="sweepers.auto_complete", bind=True, base=BaseTask)
def auto_complete(self):
    return _run_sweeper(SweeperJobs.AUTO_COMPLETE)


@shared_task(name="sweepers.daily_reconciliation", bind=True, base=BaseTask)
def daily_reconciliation(self):
    return _run_sweeper(SweeperJobs.RECONCILIATION)


@shared_task(name="notifications.publish_pending", bind=True, base=BaseTask, max_retries=3, default_retry_delay=10)
def publish_notifications(self):
    async def _run():
        container = Container(settings)
        try:
            return await container.outbox.publish_pending()
        finally:
            await container.aclose()

    try:
        return asyncio.run(_run())
    except Exception as exc:  # pragma: no cover
        logger.error("notification_publish_failed", error=str(exc))
        raise self.retry(exc=exc)
