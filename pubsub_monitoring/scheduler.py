"""
Monitoring Scheduler.

============================================================
PURPOSE
============================================================
Runs the periodic monitoring jobs on the asyncio event loop.

  aggregation     every 60s     MetricsCollector.aggregate_metrics
  alert checks    every 30s     AlertEngine.run_checks
  retention       every 3600s   MetricsCollector.cleanup_metrics

PRINCIPLES:
- Each job has its own loop: run, then sleep for the interval
- Synchronous job functions run in a worker thread so they never
  block the event loop (and therefore never block alert delivery)
- Single-flight: a job that is still running is skipped, not stacked
- A failed run is logged and counted; the loop keeps going
- stop() cancels every loop and waits for in-flight deliveries

============================================================
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .core.clock import ClockProtocol, SystemClock


logger = logging.getLogger(__name__)

JobFunction = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class JobStats:
    """Run statistics of one periodic job."""

    name: str
    interval_seconds: float
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    running: bool = False
    last_run: Optional[datetime] = None
    last_duration_seconds: Optional[float] = None
    last_error: Optional[str] = None


class PeriodicJob:
    """A named function run every `interval_seconds`."""

    def __init__(self, name: str, interval_seconds: float, func: JobFunction):
        if interval_seconds <= 0:
            raise ValueError(f"Job {name}: interval must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self.stats = JobStats(name=name, interval_seconds=interval_seconds)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)


class MonitoringScheduler:
    """
    Periodic job runner.

    Runs as a set of background tasks.
    """

    def __init__(
        self,
        clock: Optional[ClockProtocol] = None,
        on_stop: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """
        Initialize scheduler.

        Args:
            clock: Clock for run timestamps and durations
            on_stop: Awaited after all loops are cancelled
        """
        self._clock = clock or SystemClock()
        self._on_stop = on_stop
        self._jobs: Dict[str, PeriodicJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def add_job(self, name: str, interval_seconds: float, func: JobFunction) -> PeriodicJob:
        """Register a job. Jobs added while running start immediately."""
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")

        job = PeriodicJob(name, interval_seconds, func)
        self._jobs[name] = job
        logger.info(f"Registered monitoring job: {name} (every {interval_seconds:g}s)")

        if self._running:
            self._tasks[name] = asyncio.create_task(self._loop(job), name=f"monitoring-{name}")
        return job

    async def start(self) -> None:
        """Start every job loop."""
        if self._running:
            return

        self._running = True
        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._loop(job), name=f"monitoring-{name}")

        logger.info(f"Monitoring scheduler started with {len(self._jobs)} job(s)")

    async def stop(self) -> None:
        """Stop every job loop and wait for them to exit."""
        if not self._running:
            return

        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._on_stop is not None:
            try:
                await self._on_stop()
            except Exception as e:
                logger.error(f"Scheduler shutdown hook failed: {e}", exc_info=True)

        logger.info("Monitoring scheduler stopped")

    async def run_now(self, name: str) -> bool:
        """
        Run a job once, outside its schedule.

        Returns:
            False if the job was already running and was skipped
        """
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"Unknown job: {name}")
        return await self._run_job(job)

    def get_job_stats(self) -> Dict[str, JobStats]:
        return {name: replace(job.stats) for name, job in self._jobs.items()}

    # ============================================================
    # INTERNAL
    # ============================================================

    async def _loop(self, job: PeriodicJob) -> None:
        while self._running:
            await self._run_job(job)
            await asyncio.sleep(job.interval_seconds)

    async def _run_job(self, job: PeriodicJob) -> bool:
        stats = job.stats
        if stats.running:
            stats.skipped += 1
            logger.warning(f"Job {job.name} still running, skipping this run")
            return False

        stats.running = True
        started = self._clock.monotonic()
        stats.last_run = self._clock.now()

        try:
            if job.is_async:
                result = await job.func()
            else:
                result = await asyncio.to_thread(job.func)
            stats.runs += 1
            stats.last_error = None
            logger.debug(f"Job {job.name} completed: {result!r}")
        except Exception as e:
            stats.failures += 1
            stats.last_error = str(e)
            logger.error(f"Job {job.name} failed: {e}", exc_info=True)
        finally:
            stats.running = False
            stats.last_duration_seconds = self._clock.monotonic() - started

        return True
