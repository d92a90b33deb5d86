"""
Rule evaluator with per-type condition dispatch.

This module provides the RuleEvaluator class which decides, for one event
and one rule, whether the rule fires. The cooldown gate is checked first;
the type-specific predicate runs only for rules that are not cooling down,
so events arriving during a cooldown are not counted in rate windows.

Key Features:
    - Pattern rules: AND of optional severity/category/event-type/regex predicates
    - Rate rules: optional filter plus sliding-window count
    - Per-rule cooldown gate (exclusive at the boundary)
    - Condition evaluators registered per RuleType

Example:
    >>> evaluator = RuleEvaluator()
    >>> if evaluator.evaluate(rule, event, timestamp=now):
    ...     evaluator.record_trigger(rule.id, now)
"""

import re
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol, Type, TypeVar

import structlog

from sentinel.detection.cooldown import CooldownTracker
from sentinel.detection.rate_window import RateWindowTracker
from sentinel.models.events import LogEvent, utc_now
from sentinel.models.rules import AlertRule, PatternCondition, RateCondition, RuleType

logger = structlog.get_logger(__name__)

C = TypeVar("C", PatternCondition, RateCondition)


def _condition(rule: AlertRule, expected: Type[C]) -> C:
    """Return the rule condition, checking it matches the rule type."""
    condition = rule.condition
    if not isinstance(condition, expected):
        raise ValueError(
            f"Rule {rule.id} of type {rule.type.value} carries {type(condition).__name__}"
        )
    return condition


class ConditionEvaluator(Protocol):
    """
    Protocol for rule-type specific predicates.

    ``matches`` may update internal bookkeeping; ``peek`` must not.
    """

    def matches(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        """Evaluate the rule condition, updating bookkeeping."""
        ...

    def peek(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        """Evaluate the rule condition without side effects."""
        ...

    def forget(self, rule_id: str) -> None:
        """Drop any state held for a rule."""
        ...


class PatternEvaluator:
    """Stateless evaluator for pattern rules."""

    def matches(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        condition = _condition(rule, PatternCondition)

        if condition.severity is not None and event.severity not in condition.severity:
            return False

        if condition.categories is not None:
            category = (event.category or "").lower()
            if category not in condition.categories:
                return False

        if condition.event_type is not None and event.event_type != condition.event_type:
            return False

        if condition.pattern is not None:
            if re.search(condition.pattern, event.message, re.IGNORECASE) is None:
                return False

        return True

    def peek(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        return self.matches(rule, event, now)

    def forget(self, rule_id: str) -> None:
        return None


class RateEvaluator:
    """
    Sliding-window evaluator for rate rules.

    Attributes:
        windows: Per-rule timestamp windows.
    """

    def __init__(self, windows: Optional[RateWindowTracker] = None) -> None:
        self.windows = windows or RateWindowTracker()

    def _qualifies(self, condition: RateCondition, event: LogEvent) -> bool:
        """Check the optional severity/category filter."""
        if condition.severity is not None and event.severity not in condition.severity:
            return False
        if condition.category is not None:
            if (event.category or "").lower() not in condition.category:
                return False
        return True

    def matches(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        condition = _condition(rule, RateCondition)

        if not self._qualifies(condition, event):
            # Non-qualifying events still prune but never fire the rule
            self.windows.count(rule.id, now, condition.time_window_seconds)
            return False

        current = self.windows.record(rule.id, now, condition.time_window_seconds)
        if current >= condition.count:
            logger.debug(
                "rate_threshold_reached",
                rule_id=rule.id,
                count=current,
                threshold=condition.count,
                window_seconds=condition.time_window_seconds,
            )
            return True
        return False

    def peek(self, rule: AlertRule, event: LogEvent, now: datetime) -> bool:
        condition = _condition(rule, RateCondition)

        if not self._qualifies(condition, event):
            return False
        cutoff = now - timedelta(seconds=condition.time_window_seconds)
        current = sum(1 for ts in self.windows.timestamps(rule.id) if ts > cutoff)
        return current + 1 >= condition.count

    def forget(self, rule_id: str) -> None:
        self.windows.clear(rule_id)


class RuleEvaluator:
    """
    Evaluates alert rules against events.

    Evaluation order for each rule:
    1. Disabled rules never fire.
    2. Cooldown gate: a rule that fired less than cooldown_seconds ago is
       suppressed (exactly cooldown_seconds later it may fire again).
    3. Type-specific predicate, dispatched through the evaluator registry.

    Attributes:
        cooldowns: Per-rule last-trigger tracker.
        rate_windows: Per-rule sliding windows.
        _evaluators: Mapping of RuleType to its ConditionEvaluator.

    Example:
        >>> evaluator = RuleEvaluator()
        >>> evaluator.evaluate(rule, LogEvent(severity="critical"))
        True
    """

    def __init__(
        self,
        rate_windows: Optional[RateWindowTracker] = None,
        cooldowns: Optional[CooldownTracker] = None,
    ) -> None:
        self.rate_windows = rate_windows or RateWindowTracker()
        self.cooldowns = cooldowns or CooldownTracker()
        self._evaluators: Dict[RuleType, ConditionEvaluator] = {
            RuleType.PATTERN: PatternEvaluator(),
            RuleType.RATE: RateEvaluator(self.rate_windows),
        }

        logger.debug(
            "rule_evaluator_initialized",
            rule_types=[t.value for t in self._evaluators],
        )

    def evaluate(
        self,
        rule: AlertRule,
        event: LogEvent,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """
        Decide whether a rule fires for an event.

        Args:
            rule: Rule to evaluate.
            event: Incoming event.
            timestamp: Evaluation time (defaults to now). Cooldowns and
                       rate windows are measured against this clock.

        Returns:
            bool: True if the rule fires.
        """
        if not rule.enabled:
            return False

        now = timestamp or utc_now()

        if self.cooldowns.is_cooling_down(rule.id, rule.cooldown_seconds, now):
            logger.debug(
                "rule_in_cooldown",
                rule_id=rule.id,
                cooldown_seconds=rule.cooldown_seconds,
            )
            return False

        return self._evaluators[rule.type].matches(rule, event, now)

    def test(
        self,
        rule: AlertRule,
        event: LogEvent,
        timestamp: Optional[datetime] = None,
    ) -> bool:
        """
        Check whether a rule would fire, without touching any state.

        Ignores the enabled flag and cooldown so operators can test rules
        that are currently disabled or cooling down.

        Args:
            rule: Rule to test.
            event: Sample event.
            timestamp: Evaluation time (defaults to now).

        Returns:
            bool: True if the condition matches.
        """
        return self._evaluators[rule.type].peek(rule, event, timestamp or utc_now())

    def record_trigger(self, rule_id: str, timestamp: datetime) -> None:
        """
        Start a rule's cooldown.

        Args:
            rule_id: Rule that fired.
            timestamp: Trigger time.
        """
        self.cooldowns.record(rule_id, timestamp)

    def forget_rule(self, rule_id: str) -> None:
        """
        Drop all per-rule state (cooldown and rate window).

        Args:
            rule_id: Rule identifier.
        """
        self.cooldowns.clear(rule_id)
        for evaluator in self._evaluators.values():
            evaluator.forget(rule_id)


def create_evaluator() -> RuleEvaluator:
    """
    Factory function to create a RuleEvaluator.

    Returns:
        RuleEvaluator: A new evaluator with fresh state.
    """
    return RuleEvaluator()
