"""Tests for rule evaluation, cooldowns and rate windows."""

from datetime import timedelta

import pytest
from conftest import T0, make_event

from sentinel.detection.evaluator import RuleEvaluator
from sentinel.models.rules import AlertRule, PatternCondition, RateCondition, RuleType


def _rate_rule(count=5, window=60, cooldown=300, **condition) -> AlertRule:
    return AlertRule(
        id="rate",
        name="Error burst",
        type=RuleType.RATE,
        condition=RateCondition(count=count, time_window_seconds=window, **condition),
        cooldown_seconds=cooldown,
    )


def _pattern_rule(cooldown=0, **condition) -> AlertRule:
    return AlertRule(
        id="pattern",
        name="Pattern",
        type=RuleType.PATTERN,
        condition=PatternCondition(**condition),
        cooldown_seconds=cooldown,
    )


def _fire(evaluator: RuleEvaluator, rule: AlertRule, event, at) -> bool:
    fired = evaluator.evaluate(rule, event, at)
    if fired:
        evaluator.record_trigger(rule.id, at)
    return fired


class TestRateRules:
    """Sliding-window rate rules."""

    def test_burst_fires_once_before_cooldown(self):
        """Twenty qualifying events inside the cooldown fire exactly once."""
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=5, window=60, cooldown=300, severity=["error"])

        outcomes = [
            _fire(evaluator, rule, make_event(severity="error"), T0 + timedelta(seconds=i))
            for i in range(20)
        ]

        assert outcomes.count(True) == 1
        assert outcomes.index(True) == 4

    def test_below_threshold_does_not_fire(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=5, window=60, severity=["error"])

        outcomes = [
            _fire(evaluator, rule, make_event(severity="error"), T0 + timedelta(seconds=i))
            for i in range(4)
        ]

        assert not any(outcomes)

    def test_events_outside_window_expire(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=3, window=60, severity=["error"])

        for seconds in (0, 30, 90):
            assert not _fire(
                evaluator, rule, make_event(severity="error"), T0 + timedelta(seconds=seconds)
            )

    def test_non_qualifying_events_are_not_counted(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=2, window=60, severity=["error"])

        assert not _fire(evaluator, rule, make_event(severity="error"), T0)
        assert not _fire(evaluator, rule, make_event(severity="info"), T0 + timedelta(seconds=1))
        assert _fire(evaluator, rule, make_event(severity="error"), T0 + timedelta(seconds=2))

    def test_category_filter(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=1, window=60, category=["network"])

        assert not _fire(evaluator, rule, make_event(category="storage"), T0)
        assert _fire(evaluator, rule, make_event(category="Network"), T0)


class TestPatternRules:
    """Predicate rules."""

    def test_severity_only_rule_fires_on_every_match(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(cooldown=0, severity=["critical"])

        outcomes = [
            _fire(evaluator, rule, make_event(severity="CRITICAL"), T0 + timedelta(seconds=i))
            for i in range(5)
        ]

        assert outcomes == [True] * 5

    def test_regex_is_case_insensitive(self):
        """A regex rule matches denied logins and ignores accepted ones."""
        evaluator = RuleEvaluator()
        rule = _pattern_rule(pattern="(failed|denied)")

        assert evaluator.evaluate(rule, make_event("login DENIED for user X"), T0)
        assert not evaluator.evaluate(rule, make_event("login accepted"), T0)

    def test_all_predicates_must_match(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(
            severity=["error"],
            categories=["security"],
            event_type="login",
            pattern="denied",
        )
        good = make_event("access denied", severity="error", category="security", event_type="login")

        assert evaluator.evaluate(rule, good, T0)
        assert not evaluator.evaluate(rule, good.model_copy(update={"event_type": "logout"}), T0)
        assert not evaluator.evaluate(rule, good.model_copy(update={"category": None}), T0)
        assert not evaluator.evaluate(rule, good.model_copy(update={"severity": "warn"}), T0)

    def test_disabled_rule_never_fires(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(severity=["error"]).model_copy(update={"enabled": False})

        assert not evaluator.evaluate(rule, make_event(severity="error"), T0)

    def test_condition_of_another_type_is_rejected(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(severity=["error"]).model_copy(update={"type": RuleType.RATE})

        with pytest.raises(ValueError, match="carries PatternCondition"):
            evaluator.evaluate(rule, make_event(severity="error"), T0)


class TestCooldown:
    """Cooldown gate."""

    def test_boundary_is_exclusive(self):
        """A rule may fire again exactly cooldown_seconds after it fired."""
        evaluator = RuleEvaluator()
        rule = _pattern_rule(cooldown=60, severity=["error"])
        event = make_event(severity="error")

        assert _fire(evaluator, rule, event, T0)
        assert not _fire(evaluator, rule, event, T0 + timedelta(seconds=59))
        assert _fire(evaluator, rule, event, T0 + timedelta(seconds=60))

    def test_events_during_cooldown_do_not_fill_rate_window(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=2, window=600, cooldown=60, severity=["error"])
        event = make_event(severity="error")

        assert not _fire(evaluator, rule, event, T0)
        assert _fire(evaluator, rule, event, T0 + timedelta(seconds=1))
        # Suppressed by cooldown and not recorded
        for seconds in range(2, 60, 10):
            assert not _fire(evaluator, rule, event, T0 + timedelta(seconds=seconds))
        # Window still holds the two events that fired the rule
        assert evaluator.rate_windows.count(rule.id, T0 + timedelta(seconds=61), 600) == 2

    def test_forget_rule_clears_state(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(cooldown=600, severity=["error"])
        event = make_event(severity="error")

        assert _fire(evaluator, rule, event, T0)
        evaluator.forget_rule(rule.id)

        assert _fire(evaluator, rule, event, T0 + timedelta(seconds=1))


class TestDryRun:
    """Side-effect free rule testing."""

    def test_test_does_not_touch_windows_or_cooldowns(self):
        evaluator = RuleEvaluator()
        rule = _rate_rule(count=2, window=60, cooldown=300, severity=["error"])
        event = make_event(severity="error")

        assert not evaluator.test(rule, event, T0)
        assert not evaluator.test(rule, event, T0)
        assert evaluator.rate_windows.timestamps(rule.id) == []

        assert not _fire(evaluator, rule, event, T0)
        assert evaluator.test(rule, event, T0 + timedelta(seconds=1))

    def test_ignores_cooldown_and_enabled_flag(self):
        evaluator = RuleEvaluator()
        rule = _pattern_rule(cooldown=600, severity=["error"])
        event = make_event(severity="error")
        _fire(evaluator, rule, event, T0)

        assert evaluator.test(rule.model_copy(update={"enabled": False}), event, T0)
