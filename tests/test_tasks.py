from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from application.dtos.admin import ReconciliationReport
from application.services.sweepers import SweeperJobs
from infrastructure.tasks import celery_app
from infrastructure.tasks.config import CELERY_BEAT_SCHEDULE
from infrastructure.tasks.tasks import sweepers as sweeper_tasks


def test_every_beat_entry_points_at_a_registered_task():
    registered = set(celery_app.tasks.keys())

    for entry in CELERY_BEAT_SCHEDULE.values():
        assert entry["task"] in registered


def test_beat_covers_every_sweeper_job_and_the_outbox():
    names = {entry["task"] for entry in CELERY_BEAT_SCHEDULE.values()}

    assert names == {f"sweepers.{job}" for job in SweeperJobs.ALL} | {"notifications.publish_pending"}


def test_routes_and_eager_mode_in_tests():
    assert celery_app.conf.task_routes["sweepers.*"] == {"queue": "sweepers"}
    assert celery_app.conf.task_always_eager is True


def test_task_results_are_json_friendly():
    @dataclass
    class Recovered:
        resolved: int
        still_pending: int

    report = ReconciliationReport(
        reconciliation_date=date(2026, 10, 18),
        status="OK",
        total_orders=0,
        total_payments=0,
        order_counts={},
        payment_counts={},
        mismatch_count=0,
        orphan_orders=0,
        orphan_payments=0,
        stuck_payments=0,
        expected_revenue=Decimal("0"),
        actual_revenue=Decimal("0"),
        revenue_variance=Decimal("0"),
        refund_total=Decimal("0"),
    )

    assert sweeper_tasks._summarize(3) == 3
    assert sweeper_tasks._summarize(Recovered(1, 2)) == {"resolved": 1, "still_pending": 2}
    summary = sweeper_tasks._summarize(report)
    assert summary["reconciliation_date"] == "2026-10-18"
    assert summary["status"] == "OK"
