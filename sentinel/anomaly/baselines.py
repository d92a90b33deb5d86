"""
Baseline pattern maintenance.

Baselines are the learned "normal" frequencies the source detector compares
against. The periodic refresh recomputes them from recorded event history:

    - source:<name>  events per hour per source, averaged over the last 24 hours
    - hourly:<HH>    event count per hour of day over the last 7 days

Example:
    >>> manager = BaselineManager(store)
    >>> patterns = await manager.update_baselines()
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from sentinel.errors import PersistenceError
from sentinel.models.anomaly import BaselinePattern, PatternType
from sentinel.models.events import utc_now
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)

SOURCE_BASELINE_WINDOW = timedelta(hours=24)
SOURCE_BASELINE_HOURS = SOURCE_BASELINE_WINDOW.total_seconds() / 3600
HOURLY_BASELINE_WINDOW = timedelta(days=7)


class BaselineManager:
    """
    Recomputes and reads baseline patterns.

    Attributes:
        store: Persistence collaborator.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    async def update_baselines(self, now: Optional[datetime] = None) -> List[BaselinePattern]:
        """
        Refresh source and hour-of-day baselines.

        A store failure aborts the refresh; it is logged and the previous
        baselines stay in place.

        Args:
            now: Refresh time, defaults to now.

        Returns:
            List[BaselinePattern]: Patterns written by this refresh.
        """
        now = now or utc_now()
        logger.info("baseline_update_started")

        try:
            source_counts = await self.store.source_counts(now - SOURCE_BASELINE_WINDOW)
            hourly_counts = await self.store.hourly_counts(now - HOURLY_BASELINE_WINDOW, now)

            patterns = [
                BaselinePattern(
                    pattern_type=PatternType.SOURCE,
                    signature=source,
                    frequency_normal=count / SOURCE_BASELINE_HOURS,
                    last_seen=now,
                    occurrence_count=count,
                    is_baseline=True,
                )
                for source, count in source_counts.items()
            ]
            patterns.extend(
                BaselinePattern(
                    pattern_type=PatternType.HOURLY,
                    signature=f"{hour:02d}",
                    frequency_normal=float(count),
                    last_seen=now,
                    occurrence_count=count,
                    is_baseline=True,
                )
                for hour, count in sorted(hourly_counts.items())
            )

            for pattern in patterns:
                await self.store.upsert_baseline_pattern(pattern)

        except PersistenceError as e:
            logger.error("baseline_update_failed", **e.log_fields())
            return []

        logger.info(
            "baseline_update_complete",
            sources=len(source_counts),
            hours=len(hourly_counts),
        )
        return patterns

    async def get_source_baseline(self, source: str) -> Optional[BaselinePattern]:
        """
        Fetch the baseline of a source.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        return await self.store.get_baseline_pattern(PatternType.SOURCE, source)

    async def learn_source(self, source: str, now: Optional[datetime] = None) -> BaselinePattern:
        """
        Record a never-seen source with a frequency of one.

        Raises:
            PersistenceError: If the store cannot be written.
        """
        pattern = BaselinePattern(
            pattern_type=PatternType.SOURCE,
            signature=source,
            frequency_normal=1.0,
            last_seen=now or utc_now(),
            occurrence_count=1,
        )
        await self.store.upsert_baseline_pattern(pattern)
        logger.info("source_baseline_learned", source=source)
        return pattern
