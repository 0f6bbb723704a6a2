import asyncio
from datetime import datetime, timezone

import pytest

from application.services.sweepers import SweeperJobs
from infrastructure.scheduler.periodic import DailySweeper, PeriodicSweeper, SweeperRunner


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped():
    release = asyncio.Event()
    calls = []

    async def job(now):
        calls.append(now)
        await release.wait()
        return len(calls)

    sweeper = PeriodicSweeper("slow", job, interval_seconds=3600)
    assert sweeper.trigger()
    await asyncio.sleep(0)
    assert not sweeper.trigger()

    release.set()
    await sweeper.stop()

    assert sweeper.ticks == 1
    assert sweeper.skipped == 1
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_run_immediately_and_idempotent_stop():
    ran = asyncio.Event()

    async def job(now):
        ran.set()
        return 0

    sweeper = PeriodicSweeper("eager", job, interval_seconds=3600, run_immediately=True)
    sweeper.start()
    await asyncio.wait_for(ran.wait(), timeout=1)
    assert sweeper.running

    await sweeper.stop()
    await sweeper.stop()

    assert not sweeper.running
    assert sweeper.ticks == 1


@pytest.mark.asyncio
async def test_tick_over_budget_is_cancelled_and_failure_is_contained():
    async def hang(now):
        await asyncio.sleep(10)

    async def boom(now):
        raise RuntimeError("db down")

    slow = PeriodicSweeper("hang", hang, interval_seconds=3600, budget_seconds=0.01)
    failing = PeriodicSweeper("boom", boom, interval_seconds=3600)
    slow.trigger()
    failing.trigger()

    await slow.stop()
    await failing.stop()

    assert slow.ticks == 1 and failing.ticks == 1


def test_daily_sweeper_waits_until_configured_hour():
    async def job(now):
        return None

    before = DailySweeper("daily", job, hour=1, clock=lambda: datetime(2026, 10, 19, 0, 30, tzinfo=timezone.utc))
    after = DailySweeper("daily", job, hour=1, clock=lambda: datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc))

    assert before.seconds_until_next_run() == 30 * 60
    assert after.seconds_until_next_run() == 24 * 3600


@pytest.mark.asyncio
async def test_runner_starts_and_stops_every_sweeper():
    async def job(now):
        return 0

    runner = SweeperRunner()
    runner.add(PeriodicSweeper("a", job, interval_seconds=3600))
    runner.add(PeriodicSweeper("b", job, interval_seconds=3600))
    runner.start()

    assert runner.names == ["a", "b"]
    assert runner.get("a").running and runner.get("b").running
    assert runner.get("missing") is None

    await runner.stop()
    assert not runner.get("a").running


@pytest.mark.asyncio
async def test_jobs_are_registered_by_name(container):
    assert set(container.jobs.by_name()) == {
        SweeperJobs.ORDER_EXPIRY,
        SweeperJobs.PAYMENT_EXPIRY,
        SweeperJobs.PAYMENT_RECOVERY,
        SweeperJobs.TRACKING_REFRESH,
        SweeperJobs.AUTO_COMPLETE,
        SweeperJobs.RECONCILIATION,
    }
    assert await container.jobs.run(SweeperJobs.AUTO_COMPLETE) == 0
    with pytest.raises(KeyError):
        await container.jobs.run("vacuum")
    # sweepers are disabled in tests
    assert container.runner.names == []
