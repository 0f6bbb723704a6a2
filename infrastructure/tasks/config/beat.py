"""Celery beat schedule for the background sweepers.

Intervals come from the `jobs` settings group so the beat deployment and the
in-process sweeper runner agree on cadence.
"""
from __future__ import annotations

from celery.schedules import crontab

from core.config import settings

_jobs = settings.jobs

CELERY_BEAT_SCHEDULE = {
    "order-expiry": {
        "task": "sweepers.order_expiry",
        "schedule": _jobs.order_expiry_interval_seconds,
    },
    "payment-expiry": {
        "task": "sweepers.payment_expiry",
        "schedule": _jobs.payment_expiry_interval_seconds,
    },
    "payment-recovery": {
        "task": "sweepers.payment_recovery",
        "schedule": _jobs.payment_recovery_interval_seconds,
    },
    "tracking-refresh": {
        "task": "sweepers.tracking_refresh",
        "schedule": _jobs.tracking_interval_seconds,
    },
    "auto-complete": {
        "task": "sweepers.auto_complete",
        "schedule": _jobs.auto_complete_interval_seconds,
    },
    "daily-reconciliation": {
        "task": "sweepers.daily_reconciliation",
        "schedule": crontab(minute=0, hour=_jobs.reconciliation_hour),
    },
    "notification-outbox": {
        "task": "notifications.publish_pending",
        "schedule": settings.notification.poll_interval_seconds,
    },
}
