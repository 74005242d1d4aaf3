"""PeriodicScheduler: runs engine jobs on independent asyncio intervals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from workshop.infrastructure.container import EngineContext

logger = logging.getLogger(__name__)


@dataclass
class PeriodicJob:
    name: str
    interval_s: float
    run: Callable[[], Awaitable[object]]
    runs: int = 0
    failures: int = 0
    last_error: str | None = field(default=None, repr=False)


class PeriodicScheduler:
    """One background task per job. A failing run is logged and the loop keeps going."""

    def __init__(self, jobs: list[PeriodicJob], initial_delay_s: float = 0.0):
        self._jobs = jobs
        self._initial_delay = initial_delay_s
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @classmethod
    def for_engine(cls, engine: EngineContext) -> "PeriodicScheduler":
        s = engine.settings
        return cls(
            [
                PeriodicJob("capacity", s.capacity_interval_s, engine.capacity.execute),
                PeriodicJob("optimizer", s.optimizer_interval_s, engine.optimizer.execute),
                PeriodicJob("delayed_jobs", s.delayed_jobs_interval_s, engine.delayed_jobs.execute),
                PeriodicJob("metrics_flush", s.metrics_flush_interval_s, engine.flush_metrics),
                PeriodicJob(
                    "rate_limit_purge", s.rate_limit_purge_interval_s, engine.rate_limiter.purge_expired
                ),
            ]
        )

    @property
    def jobs(self) -> list[PeriodicJob]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}") for job in self._jobs
        ]
        logger.info("Scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Scheduler stopped")

    async def run_once(self, job: PeriodicJob) -> None:
        try:
            await job.run()
            job.runs += 1
        except Exception as e:
            job.failures += 1
            job.last_error = str(e)
            logger.warning("Scheduled job %s failed: %s", job.name, e)

    async def _loop(self, job: PeriodicJob) -> None:
        if self._initial_delay:
            await asyncio.sleep(self._initial_delay)
        while self._running:
            await self.run_once(job)
            await asyncio.sleep(job.interval_s)
