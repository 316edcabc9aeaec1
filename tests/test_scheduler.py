"""
Tests for the periodic job runner.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from config.base import Settings
from core.infrastructure.logging.context import log_context
from fakes import FixedClock
from notifications.domain.entities import ScanReport
from notifications.domain.exceptions import PersistenceError
from notifications.infrastructure import scheduler as scheduler_module
from notifications.infrastructure.scheduler import (
    NotificationScheduler,
    ScheduledJob,
    run_job,
    run_scans,
    seconds_until_next_run,
)

HALF_PAST_ELEVEN = datetime(2026, 3, 10, 23, 30, tzinfo=UTC)


class _StopLoop(Exception):
    pass


class TestRunJob:
    async def test_returns_job_result(self):
        async def job():
            return 3

        assert await run_job("purge", job) == 3

    async def test_failure_is_logged_not_raised(self):
        async def job():
            raise RuntimeError("redis went away")

        assert await run_job("scans", job) is None

    async def test_job_runs_in_its_own_log_context(self):
        seen = {}

        async def job():
            seen.update(log_context.get())

        await run_job("hourly_digest", job)

        assert seen["job"] == "hourly_digest"
        assert seen["request_id"]
        assert "job" not in log_context.get()


class TestRunScans:
    async def test_failing_scan_does_not_hide_the_other(self, monkeypatch):
        async def failing_stock_scan(settings):
            raise PersistenceError("Could not read products")

        async def slow_expiry_scan(settings):
            await asyncio.sleep(0.01)
            return ScanReport(scan="expiry_scan", examined=2, dispatched=1)

        monkeypatch.setattr(scheduler_module, "run_stock_scan", failing_stock_scan)
        monkeypatch.setattr(scheduler_module, "run_expiry_scan", slow_expiry_scan)

        reports = await run_scans(Settings())

        assert reports == [ScanReport(scan="expiry_scan", examined=2, dispatched=1)]


class TestSecondsUntilNextRun:
    @pytest.mark.parametrize(
        ("interval", "now", "expected"),
        [
            (timedelta(days=1), HALF_PAST_ELEVEN, 1800.0),
            (timedelta(hours=1), datetime(2026, 3, 10, 12, 0, tzinfo=UTC), 3600.0),
            (timedelta(minutes=15), datetime(2026, 3, 10, 12, 5, tzinfo=UTC), 600.0),
        ],
    )
    def test_waits_for_the_next_wall_clock_boundary(self, interval, now, expected):
        assert seconds_until_next_run(interval, now) == expected


class TestNotificationScheduler:
    def test_registers_every_job(self):
        scheduler = NotificationScheduler(Settings(scan_interval_minutes=5))

        jobs = {job.name: job for job in scheduler.jobs()}

        assert set(jobs) == {
            "scans",
            "purge",
            "hourly_digest",
            "daily_digest",
            "daily_report",
            "weekly_report",
        }
        assert jobs["scans"].interval.total_seconds() == 300
        assert jobs["weekly_report"].interval == timedelta(days=7)
        assert {name for name, job in jobs.items() if job.run_at_start} == {"scans", "purge"}

    async def test_startup_job_runs_before_waiting(self):
        events = []

        async def job():
            events.append("run")

        async def sleep(seconds):
            events.append(seconds)
            if len(events) >= 3:
                raise _StopLoop

        scheduler = NotificationScheduler(
            Settings(), clock=FixedClock(HALF_PAST_ELEVEN), sleep=sleep
        )

        with pytest.raises(_StopLoop):
            await scheduler._run_periodically(
                ScheduledJob("purge", timedelta(days=1), job, run_at_start=True)
            )

        assert events == ["run", 1800.0, "run", 1800.0]

    async def test_aligned_job_waits_for_the_boundary(self):
        events = []

        async def job():
            events.append("run")

        async def sleep(seconds):
            events.append(seconds)
            if len(events) >= 3:
                raise _StopLoop

        scheduler = NotificationScheduler(
            Settings(), clock=FixedClock(HALF_PAST_ELEVEN), sleep=sleep
        )

        with pytest.raises(_StopLoop):
            await scheduler._run_periodically(
                ScheduledJob("daily_digest", timedelta(days=1), job)
            )

        assert events == [1800.0, "run", 1800.0]

    async def test_start_and_stop(self):
        scheduler = NotificationScheduler(Settings())

        scheduler.start()
        scheduler.start()
        tasks = list(scheduler._tasks)
        assert len(tasks) == 6

        await scheduler.stop()

        assert scheduler._tasks == []
        assert all(task.cancelled() for task in tasks)
        await asyncio.sleep(0)
