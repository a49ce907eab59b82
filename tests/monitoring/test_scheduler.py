"""
Tests for the monitoring scheduler.
"""

import asyncio
import threading
from unittest.mock import AsyncMock

import pytest

from pubsub_monitoring.scheduler import MonitoringScheduler, PeriodicJob


class TestPeriodicJob:
    """Tests for PeriodicJob."""

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PeriodicJob("bad", 0, lambda: None)

    def test_detects_coroutine_function(self):
        async def job():
            return None

        assert PeriodicJob("async", 1, job).is_async
        assert not PeriodicJob("sync", 1, lambda: None).is_async


class TestRunNow:
    """Tests for one-off runs."""

    @pytest.mark.asyncio
    async def test_single_flight(self, clock):
        scheduler = MonitoringScheduler(clock=clock)
        release = asyncio.Event()

        async def slow_job():
            await release.wait()

        scheduler.add_job("slow", 60, slow_job)

        first = asyncio.create_task(scheduler.run_now("slow"))
        await asyncio.sleep(0)

        assert await scheduler.run_now("slow") is False

        release.set()
        assert await first is True

        stats = scheduler.get_job_stats()["slow"]
        assert stats.runs == 1
        assert stats.skipped == 1
        assert not stats.running

    @pytest.mark.asyncio
    async def test_failure_counted(self, clock):
        scheduler = MonitoringScheduler(clock=clock)

        def broken():
            raise RuntimeError("aggregation failed")

        scheduler.add_job("broken", 60, broken)

        assert await scheduler.run_now("broken")

        stats = scheduler.get_job_stats()["broken"]
        assert stats.failures == 1
        assert stats.runs == 0
        assert stats.last_error == "aggregation failed"
        assert stats.last_run == clock.now()

    @pytest.mark.asyncio
    async def test_sync_job_runs_in_worker_thread(self, clock):
        scheduler = MonitoringScheduler(clock=clock)
        seen = []

        scheduler.add_job("sync", 60, lambda: seen.append(threading.get_ident()))
        await scheduler.run_now("sync")

        assert seen and seen[0] != threading.get_ident()

    @pytest.mark.asyncio
    async def test_unknown_job(self, clock):
        scheduler = MonitoringScheduler(clock=clock)

        with pytest.raises(KeyError):
            await scheduler.run_now("missing")

    def test_duplicate_job_rejected(self, clock):
        scheduler = MonitoringScheduler(clock=clock)
        scheduler.add_job("aggregation", 60, lambda: None)

        with pytest.raises(ValueError):
            scheduler.add_job("aggregation", 30, lambda: None)


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_runs_jobs_and_stop_calls_hook(self, clock):
        on_stop = AsyncMock()
        scheduler = MonitoringScheduler(clock=clock, on_stop=on_stop)
        calls = []

        async def job():
            calls.append(1)

        scheduler.add_job("tick", 0.01, job)

        await scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert len(calls) >= 2
        assert not scheduler.is_running
        on_stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_job_added_while_running_starts(self, clock):
        scheduler = MonitoringScheduler(clock=clock)
        started = asyncio.Event()

        async def job():
            started.set()

        await scheduler.start()
        scheduler.add_job("late", 60, job)

        await asyncio.wait_for(started.wait(), timeout=1)
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_failing_job_keeps_looping(self, clock):
        scheduler = MonitoringScheduler(clock=clock)

        async def broken():
            raise RuntimeError("boom")

        scheduler.add_job("broken", 0.01, broken)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.get_job_stats()["broken"].failures >= 2

    @pytest.mark.asyncio
    async def test_stop_hook_failure_is_logged(self, clock, caplog):
        scheduler = MonitoringScheduler(clock=clock, on_stop=AsyncMock(side_effect=RuntimeError("drain failed")))

        await scheduler.start()
        await scheduler.stop()

        assert "drain failed" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
