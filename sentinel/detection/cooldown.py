"""
Per-rule cooldown gate.

A rule that fired is suppressed until ``cooldown_seconds`` have elapsed.
The boundary is exclusive: at exactly ``cooldown_seconds`` after the last
trigger the rule may fire again. A cooldown of 0 never blocks.
"""

from datetime import datetime
from typing import Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class CooldownTracker:
    """
    Tracks when each rule last fired.

    Keyed by rule id, so every condition instance of a rule shares one
    cooldown.

    Example:
        >>> cooldowns = CooldownTracker()
        >>> cooldowns.record("default_1", t0)
        >>> cooldowns.is_cooling_down("default_1", 900, t0 + timedelta(seconds=899))
        True
        >>> cooldowns.is_cooling_down("default_1", 900, t0 + timedelta(seconds=900))
        False
    """

    def __init__(self) -> None:
        self._last_fired: Dict[str, datetime] = {}

    def is_cooling_down(
        self,
        rule_id: str,
        cooldown_seconds: int,
        now: datetime,
    ) -> bool:
        """
        Check whether a rule is inside its cooldown window.

        Args:
            rule_id: Rule identifier.
            cooldown_seconds: Cooldown of the rule.
            now: Evaluation time.

        Returns:
            bool: True if the rule must not fire at ``now``.
        """
        if cooldown_seconds <= 0:
            return False
        last_fired = self._last_fired.get(rule_id)
        if last_fired is None:
            return False
        return (now - last_fired).total_seconds() < cooldown_seconds

    def record(self, rule_id: str, timestamp: datetime) -> None:
        """Record that a rule fired at ``timestamp``."""
        self._last_fired[rule_id] = timestamp

    def seed(self, rule_id: str, timestamp: Optional[datetime]) -> None:
        """
        Seed the last-fired time from persisted rule state.

        Only moves the timestamp forward.

        Args:
            rule_id: Rule identifier.
            timestamp: Persisted last trigger time.
        """
        if timestamp is None:
            return
        current = self._last_fired.get(rule_id)
        if current is None or timestamp > current:
            self._last_fired[rule_id] = timestamp
            logger.debug("cooldown_seeded", rule_id=rule_id, last_fired=timestamp.isoformat())

    def clear(self, rule_id: str) -> None:
        """Forget a rule's cooldown."""
        self._last_fired.pop(rule_id, None)
