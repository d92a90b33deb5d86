"""
Background jobs for the engine.

Two job shapes are needed: an interval job (baseline refresh, every hour
by default) and a daily job at a fixed UTC hour (model training, 03:00 by
default). A failing run is logged and the job keeps its schedule.

Example:
    >>> job = PeriodicJob("baseline_refresh", engine.update_baselines, interval_seconds=3600)
    >>> job.start()
    >>> await job.stop()
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

import structlog

from sentinel.models.events import utc_now

logger = structlog.get_logger(__name__)

JobCallable = Callable[[], Awaitable[Any]]


def seconds_until_hour(hour: int, now: Optional[datetime] = None) -> float:
    """
    Seconds from ``now`` until the next occurrence of ``hour``:00 UTC.

    Args:
        hour: Target hour of day (0-23).
        now: Reference time, defaults to now.

    Returns:
        float: Strictly positive delay in seconds.

    Example:
        >>> seconds_until_hour(3, datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc))
        1800.0
    """
    now = now or utc_now()
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class PeriodicJob:
    """
    Runs an async callable on a fixed interval.

    The first run happens one interval after ``start``.

    Attributes:
        name: Job name used in logs.
        func: Async callable to run.
        interval_seconds: Delay between runs.
        runs: Completed runs (successful or not).
    """

    def __init__(self, name: str, func: JobCallable, interval_seconds: float) -> None:
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """Whether the job task is alive."""
        return self._task is not None and not self._task.done()

    def next_delay(self) -> float:
        """Seconds to wait before the next run."""
        return self.interval_seconds

    def start(self) -> None:
        """Start the job loop; a no-op if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"job:{self.name}")
        logger.info("job_started", job=self.name, first_run_in=round(self.next_delay(), 1))

    async def run_once(self) -> bool:
        """
        Run the callable once, logging any failure.

        Returns:
            bool: True if the run succeeded.
        """
        try:
            await self.func()
            return True
        except Exception as e:
            logger.error("job_failed", job=self.name, error=str(e))
            return False
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.next_delay())
                await self.run_once()
        except asyncio.CancelledError:
            logger.debug("job_cancelled", job=self.name)

    async def stop(self) -> None:
        """Cancel the job loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("job_stopped", job=self.name, runs=self.runs)


class DailyJob(PeriodicJob):
    """
    Runs an async callable once a day at a fixed UTC hour.

    Attributes:
        hour: UTC hour of day at which the job runs.
    """

    def __init__(self, name: str, func: JobCallable, hour: int) -> None:
        super().__init__(name, func, interval_seconds=86400)
        self.hour = hour

    def next_delay(self) -> float:
        return seconds_until_hour(self.hour)
