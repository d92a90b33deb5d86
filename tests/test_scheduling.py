"""Tests for background jobs."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from sentinel.scheduling import DailyJob, PeriodicJob, seconds_until_hour


def test_seconds_until_hour_later_today():
    now = datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc)

    assert seconds_until_hour(3, now) == 1800.0


def test_seconds_until_hour_wraps_to_tomorrow():
    now = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)

    assert seconds_until_hour(3, now) == 86400.0
    assert seconds_until_hour(1, now) == 22 * 3600.0


async def test_run_once_reports_failure():
    job = PeriodicJob("flaky", AsyncMock(side_effect=RuntimeError("nope")), interval_seconds=60)

    assert not await job.run_once()
    assert job.runs == 1


async def test_periodic_job_keeps_running_after_failure():
    calls = []

    def fail_first():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first")

    func = AsyncMock(side_effect=fail_first)
    job = PeriodicJob("refresh", func, interval_seconds=0.05)

    job.start()
    await asyncio.sleep(0.2)
    await job.stop()

    assert func.await_count >= 2
    assert job.runs == func.await_count
    assert not job.is_running


async def test_start_is_idempotent_and_stop_without_start():
    job = PeriodicJob("idle", AsyncMock(), interval_seconds=60)
    await job.stop()

    job.start()
    first_task = job._task
    job.start()

    assert job._task is first_task
    await job.stop()
    assert job.runs == 0


def test_daily_job_delay():
    job = DailyJob("training", AsyncMock(), hour=3)

    assert 0 < job.next_delay() <= 86400
