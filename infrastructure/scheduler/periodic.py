"""In-process sweeper runner.

One asyncio task per job. A tick that is still running when the next one is
due is skipped, each tick is bounded by a time budget, and `stop()` is
idempotent and waits for the in-flight tick to finish.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from core.logging_config import get_logger
from domain.common.time import utcnow

logger = get_logger(__name__)

Job = Callable[[Optional[datetime]], Awaitable[Any]]
Clock = Callable[[], datetime]


class PeriodicSweeper:
    def __init__(
        self,
        name: str,
        job: Job,
        interval_seconds: float,
        *,
        budget_seconds: float = 300.0,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval_seconds
        self._budget = budget_seconds
        self._run_immediately = run_immediately
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self.ticks = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=f"sweeper-{self.name}")
        logger.info("sweeper_started", sweeper=self.name, interval_seconds=self._interval)

    async def _loop(self) -> None:
        if not self._run_immediately and await self._sleep(self._interval):
            return
        while not self._stopping.is_set():
            self.trigger()
            if await self._sleep(self._interval):
                return

    async def _sleep(self, seconds: float) -> bool:
        """Wait for `seconds` or until stopped. True when stopped."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def trigger(self) -> bool:
        """Start a tick unless one is already running."""
        if self._inflight is not None and not self._inflight.done():
            self.skipped += 1
            logger.warning("sweeper_tick_skipped", sweeper=self.name)
            return False
        self._inflight = asyncio.create_task(self._tick(), name=f"sweeper-{self.name}-tick")
        return True

    async def _tick(self) -> None:
        self.ticks += 1
        started = utcnow()
        try:
            result = await asyncio.wait_for(self._job(started), timeout=self._budget)
            logger.info(
                "sweeper_tick_completed",
                sweeper=self.name,
                duration_ms=int((utcnow() - started).total_seconds() * 1000),
                result=result if isinstance(result, (int, str)) else type(result).__name__,
            )
        except asyncio.TimeoutError:
            logger.error("sweeper_tick_timeout", sweeper=self.name, budget_seconds=self._budget)
        except Exception:
            logger.exception("sweeper_tick_failed", sweeper=self.name)

    async def stop(self) -> None:
        self._stopping.set()
        task, self._task = self._task, None
        if task is not None:
            await task
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            await inflight
        if task is not None:
            logger.info("sweeper_stopped", sweeper=self.name, ticks=self.ticks, skipped=self.skipped)


class DailySweeper(PeriodicSweeper):
    """Fires once a day at `hour`:00 UTC."""

    def __init__(self, name: str, job: Job, hour: int, *, budget_seconds: float = 300.0, clock: Clock = utcnow) -> None:
        super().__init__(name, job, interval_seconds=24 * 3600, budget_seconds=budget_seconds)
        self._hour = hour
        self._clock = clock

    def seconds_until_next_run(self) -> float:
        now = self._clock()
        target = now.replace(hour=self._hour, minute=0, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return (target - now).total_seconds()

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            if await self._sleep(self.seconds_until_next_run()):
                return
            self.trigger()


class SweeperRunner:
    """Owns every sweeper of the process."""

    def __init__(self) -> None:
        self._sweepers: dict[str, PeriodicSweeper] = {}

    def add(self, sweeper: PeriodicSweeper) -> None:
        self._sweepers[sweeper.name] = sweeper

    def get(self, name: str) -> Optional[PeriodicSweeper]:
        return self._sweepers.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._sweepers)

    def start(self) -> None:
        for sweeper in self._sweepers.values():
            sweeper.start()

    async def stop(self) -> None:
        await asyncio.gather(*(sweeper.stop() for sweeper in self._sweepers.values()))
