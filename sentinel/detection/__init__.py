"""
Rule-based alerting.

This module contains rule evaluation, cooldown and rate-window state,
notification fan-out, escalation and alert lifecycle management.

Components:
    evaluator: RuleEvaluator with per-type condition dispatch
    rate_window: RateWindowTracker for rate rules
    cooldown: CooldownTracker for the per-rule cooldown gate
    rules: RuleStore, the ordered rule registry
    registry: ChannelRegistry for notification channels
    dispatcher: ChannelDispatcher for concurrent fan-out
    escalation: EscalationScheduler for time-delayed follow-ups
    manager: AlertManager for alert lifecycle
    defaults: Built-in rule sets
    channels/: Notification channel variants and transports

Example:
    >>> from sentinel.detection import AlertManager, ChannelDispatcher, RuleEvaluator
    >>>
    >>> evaluator = RuleEvaluator()
    >>> dispatcher = ChannelDispatcher(registry, transport)
    >>> manager = AlertManager(store, rule_store, evaluator, dispatcher)
"""

from sentinel.detection.cooldown import CooldownTracker
from sentinel.detection.defaults import default_alert_rules, default_anomaly_rules
from sentinel.detection.dispatcher import DEFAULT_SEND_TIMEOUT_SECONDS, ChannelDispatcher
from sentinel.detection.escalation import EscalationScheduler
from sentinel.detection.evaluator import (
    ConditionEvaluator,
    PatternEvaluator,
    RateEvaluator,
    RuleEvaluator,
    create_evaluator,
)
from sentinel.detection.manager import DEFAULT_ALERT_CACHE_SIZE, AlertManager, AlertSink
from sentinel.detection.rate_window import RateWindowTracker
from sentinel.detection.registry import ChannelRegistry
from sentinel.detection.rules import RuleStore

__all__ = [
    # Evaluator
    "ConditionEvaluator",
    "PatternEvaluator",
    "RateEvaluator",
    "RuleEvaluator",
    "create_evaluator",
    "CooldownTracker",
    "RateWindowTracker",
    # Registries
    "ChannelRegistry",
    "RuleStore",
    "default_alert_rules",
    "default_anomaly_rules",
    # Dispatch
    "ChannelDispatcher",
    "DEFAULT_SEND_TIMEOUT_SECONDS",
    "EscalationScheduler",
    # Manager
    "AlertManager",
    "AlertSink",
    "DEFAULT_ALERT_CACHE_SIZE",
]
