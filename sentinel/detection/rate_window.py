"""
Sliding-window counters for rate-type alert rules.

This module provides the RateWindowTracker class which keeps, per rule id,
the timestamps of qualifying events inside the rule's time window.

Key Features:
    - Appends a timestamp for each qualifying event
    - Prunes expired timestamps lazily on every evaluation call
    - Purely in-memory; windows are lost on restart

Example:
    >>> tracker = RateWindowTracker()
    >>> count = tracker.record("default_1", now, window_seconds=300)
    >>> count = tracker.count("default_1", now, window_seconds=300)
"""

from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List

import structlog

logger = structlog.get_logger(__name__)


class RateWindowTracker:
    """
    Per-rule sliding window of qualifying event timestamps.

    A timestamp stays in the window while it is strictly newer than
    ``now - window_seconds``. Timestamps are assumed to arrive in
    non-decreasing order, so pruning only inspects the left end.

    Attributes:
        _windows: Mapping of rule id to a deque of timestamps.

    Example:
        >>> tracker = RateWindowTracker()
        >>> t0 = datetime(2025, 1, 26, 12, 0, 0, tzinfo=timezone.utc)
        >>> for i in range(5):
        ...     tracker.record("r1", t0 + timedelta(seconds=i), 60)
        5
        >>> tracker.count("r1", t0 + timedelta(seconds=61), 60)
        4
    """

    def __init__(self) -> None:
        self._windows: Dict[str, Deque[datetime]] = {}

        logger.debug("rate_window_tracker_initialized")

    def _prune(
        self,
        window: Deque[datetime],
        now: datetime,
        window_seconds: int,
    ) -> None:
        """Drop timestamps at or before the window start."""
        cutoff = now - timedelta(seconds=window_seconds)
        while window and window[0] <= cutoff:
            window.popleft()

    def record(
        self,
        rule_id: str,
        timestamp: datetime,
        window_seconds: int,
    ) -> int:
        """
        Record a qualifying event and return the pruned window length.

        Args:
            rule_id: Rule the event qualified for.
            timestamp: Evaluation time of the event.
            window_seconds: Window length of the rule.

        Returns:
            int: Number of timestamps inside the window, including this one.
        """
        window = self._windows.setdefault(rule_id, deque())
        window.append(timestamp)
        self._prune(window, timestamp, window_seconds)
        return len(window)

    def count(
        self,
        rule_id: str,
        now: datetime,
        window_seconds: int,
    ) -> int:
        """
        Prune and return the window length without recording.

        Args:
            rule_id: Rule identifier.
            now: Evaluation time.
            window_seconds: Window length of the rule.

        Returns:
            int: Number of timestamps inside the window.
        """
        window = self._windows.get(rule_id)
        if window is None:
            return 0
        self._prune(window, now, window_seconds)
        return len(window)

    def timestamps(self, rule_id: str) -> List[datetime]:
        """Snapshot of a rule's window (unpruned)."""
        return list(self._windows.get(rule_id, ()))

    def clear(self, rule_id: str) -> None:
        """
        Drop a rule's window, e.g., after the rule is updated or deleted.

        Args:
            rule_id: Rule identifier.
        """
        if self._windows.pop(rule_id, None) is not None:
            logger.debug("rate_window_cleared", rule_id=rule_id)
