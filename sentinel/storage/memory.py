"""
In-memory implementation of the AlertStore protocol.

Holds everything in process memory. Suitable for development, single-node
trials and tests; all state is lost on restart.

Example:
    >>> store = InMemoryAlertStore()
    >>> engine = await create_engine(store)
"""

import random
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

import structlog

from sentinel.models.alerts import (
    Alert,
    AlertHistoryFilter,
    AlertStatistics,
    AlertStatus,
)
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyDetectionRule,
    AnomalyStatistics,
    BaselinePattern,
    PatternType,
    StatisticalModel,
)
from sentinel.models.channels import NotificationChannelConfig, NotificationResult
from sentinel.models.events import LogEvent
from sentinel.models.rules import AlertRule
from sentinel.storage.base import EventQuery

logger = structlog.get_logger(__name__)


def _midnight(now: datetime) -> datetime:
    """UTC midnight of the day containing ``now``."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class InMemoryAlertStore:
    """
    Dict- and list-backed store.

    Attributes:
        events: Recorded event history (bounded).
        max_events: Maximum events kept.

    Example:
        >>> store = InMemoryAlertStore(max_events=10_000)
        >>> await store.record_event(LogEvent(message="boot"))
    """

    def __init__(
        self,
        max_events: int = 100_000,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.max_events = max_events
        self.events: Deque[LogEvent] = deque(maxlen=max_events)
        self._rules: Dict[str, AlertRule] = {}
        self._channels: Dict[str, NotificationChannelConfig] = {}
        self._alerts: Dict[str, Alert] = {}
        self._anomaly_rules: Dict[str, AnomalyDetectionRule] = {}
        self._detections: Dict[str, AnomalyDetection] = {}
        self._patterns: Dict[str, BaselinePattern] = {}
        self._models: List[StatisticalModel] = []
        self._rng = rng or random.Random()

        logger.debug("in_memory_store_initialized", max_events=max_events)

    # =========================================================================
    # RULES
    # =========================================================================

    async def load_rules(self, enabled_only: bool = False) -> List[AlertRule]:
        return [r for r in self._rules.values() if r.enabled or not enabled_only]

    async def save_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    async def increment_rule_stats(self, rule_id: str, triggered_at: datetime) -> None:
        rule = self._rules.get(rule_id)
        if rule is not None:
            self._rules[rule_id] = rule.record_trigger(triggered_at)

    # =========================================================================
    # CHANNELS
    # =========================================================================

    async def load_channels(self) -> List[NotificationChannelConfig]:
        return list(self._channels.values())

    async def save_channel(self, channel: NotificationChannelConfig) -> None:
        self._channels[channel.id] = channel

    async def delete_channel(self, channel_id: str) -> bool:
        return self._channels.pop(channel_id, None) is not None

    async def update_channel_usage(
        self, channel_id: str, success: bool, used_at: datetime
    ) -> None:
        channel = self._channels.get(channel_id)
        if channel is not None:
            self._channels[channel_id] = channel.record_usage(success, used_at)

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def save_alert(self, alert: Alert) -> None:
        self._alerts[alert.alert_id] = alert

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    async def update_alert_results(
        self, alert_id: str, results: Dict[str, NotificationResult]
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is not None:
            self._alerts[alert_id] = alert.with_results(results)

    async def update_alert_escalation(
        self,
        alert_id: str,
        level: int,
        results: Dict[str, NotificationResult],
        escalated_at: datetime,
    ) -> None:
        alert = self._alerts.get(alert_id)
        if alert is not None:
            self._alerts[alert_id] = alert.escalate(level, results, escalated_at)

    async def update_alert_status(self, alert: Alert) -> None:
        stored = self._alerts.get(alert.alert_id)
        if stored is None:
            return
        self._alerts[alert.alert_id] = stored.model_copy(
            update={
                "status": alert.status,
                "acknowledged_at": alert.acknowledged_at,
                "acknowledged_by": alert.acknowledged_by,
                "resolved_at": alert.resolved_at,
                "resolved_by": alert.resolved_by,
            }
        )

    async def list_alerts(self, query: AlertHistoryFilter) -> List[Alert]:
        matching = [a for a in self._alerts.values() if query.matches(a)]
        matching.sort(key=lambda a: a.triggered_at, reverse=True)
        return matching[: query.limit]

    async def alert_statistics(self, now: datetime) -> AlertStatistics:
        alerts = list(self._alerts.values())
        start_of_day = _midnight(now)
        statuses = Counter(a.status for a in alerts)
        return AlertStatistics(
            total=len(alerts),
            today=sum(1 for a in alerts if a.triggered_at >= start_of_day),
            active=statuses[AlertStatus.TRIGGERED],
            acknowledged=statuses[AlertStatus.ACKNOWLEDGED],
            resolved=statuses[AlertStatus.RESOLVED],
            by_severity=dict(Counter(a.severity.value for a in alerts)),
        )

    # =========================================================================
    # EVENT HISTORY
    # =========================================================================

    async def record_event(self, event: LogEvent) -> None:
        self.events.append(event)

    async def count_events(self, query: EventQuery) -> int:
        return sum(1 for e in self.events if query.matches(e))

    async def historical_hourly_average(self, query: EventQuery) -> Optional[float]:
        buckets = Counter(
            e.timestamp.replace(minute=0, second=0, microsecond=0)
            for e in self.events
            if query.matches(e)
        )
        if not buckets:
            return None
        return sum(buckets.values()) / len(buckets)

    async def recent_messages(
        self, since: datetime, limit: int, exclude_event_id: Optional[str] = None
    ) -> List[str]:
        recent = [
            e
            for e in self.events
            if e.timestamp > since and e.id != exclude_event_id
        ]
        recent.sort(key=lambda e: e.timestamp, reverse=True)
        return [e.message for e in recent[:limit]]

    async def hourly_counts(self, start: datetime, end: datetime) -> Dict[int, int]:
        return dict(
            Counter(e.timestamp.hour for e in self.events if start < e.timestamp <= end)
        )

    async def source_counts(self, since: datetime) -> Dict[str, int]:
        return dict(
            Counter(e.source or "unknown" for e in self.events if e.timestamp > since)
        )

    async def normal_training_events(self, since: datetime, limit: int) -> List[LogEvent]:
        anomalous = {d.source_event_id for d in self._detections.values()}
        candidates = [
            e
            for e in self.events
            if e.timestamp > since and not e.anomaly_detected and e.id not in anomalous
        ]
        if len(candidates) <= limit:
            return candidates
        return self._rng.sample(candidates, limit)

    # =========================================================================
    # ANOMALIES
    # =========================================================================

    async def load_anomaly_rules(self) -> List[AnomalyDetectionRule]:
        return list(self._anomaly_rules.values())

    async def save_anomaly_rule(self, rule: AnomalyDetectionRule) -> None:
        self._anomaly_rules[rule.id] = rule

    async def increment_anomaly_rule_usage(self, rule_id: str) -> None:
        rule = self._anomaly_rules.get(rule_id)
        if rule is not None:
            self._anomaly_rules[rule_id] = rule.model_copy(
                update={"usage_count": rule.usage_count + 1}
            )

    async def save_anomaly_detection(self, detection: AnomalyDetection) -> None:
        self._detections[detection.id] = detection

    async def get_anomaly_detection(self, detection_id: str) -> Optional[AnomalyDetection]:
        return self._detections.get(detection_id)

    async def update_anomaly_detection(self, detection: AnomalyDetection) -> None:
        if detection.id in self._detections:
            self._detections[detection.id] = detection

    async def anomaly_training_detections(
        self, since: datetime, limit: int
    ) -> List[AnomalyDetection]:
        confirmed = [
            d
            for d in self._detections.values()
            if d.timestamp > since and not d.false_positive
        ]
        confirmed.sort(key=lambda d: d.timestamp, reverse=True)
        return confirmed[:limit]

    async def anomaly_statistics(self, now: datetime) -> AnomalyStatistics:
        detections = list(self._detections.values())
        day_ago = now - timedelta(hours=24)
        week_ago = now - timedelta(days=7)
        top_rules = sorted(
            (r for r in self._anomaly_rules.values() if r.enabled),
            key=lambda r: r.usage_count,
            reverse=True,
        )[:10]
        active_models = [m for m in self._models if m.is_active]
        active_model = None
        if active_models:
            latest = max(active_models, key=lambda m: m.training_date)
            active_model = {
                "name": latest.name,
                "version": latest.version,
                "accuracy_score": latest.accuracy_score,
                "training_date": latest.training_date.isoformat(),
            }
        return AnomalyStatistics(
            total=len(detections),
            last_24h=sum(1 for d in detections if d.timestamp > day_ago),
            unresolved=sum(1 for d in detections if not d.resolved),
            false_positives=sum(1 for d in detections if d.false_positive),
            by_severity=dict(
                Counter(d.severity.value for d in detections if d.timestamp > week_ago)
            ),
            by_type=dict(Counter(d.anomaly_type.value for d in detections)),
            top_rules=[
                {
                    "name": r.name,
                    "usage_count": r.usage_count,
                    "accuracy_rating": r.accuracy_rating,
                }
                for r in top_rules
            ],
            active_model=active_model,
        )

    # =========================================================================
    # BASELINES
    # =========================================================================

    async def load_baseline_patterns(
        self, pattern_type: Optional[PatternType] = None
    ) -> List[BaselinePattern]:
        return [
            p
            for p in self._patterns.values()
            if pattern_type is None or p.pattern_type == pattern_type
        ]

    async def get_baseline_pattern(
        self, pattern_type: PatternType, signature: str
    ) -> Optional[BaselinePattern]:
        return self._patterns.get(f"{pattern_type.value}:{signature}")

    async def upsert_baseline_pattern(self, pattern: BaselinePattern) -> None:
        self._patterns[pattern.key] = pattern

    # =========================================================================
    # MODELS
    # =========================================================================

    async def store_model(self, model: StatisticalModel) -> StatisticalModel:
        same_name = [m for m in self._models if m.name == model.name]
        version = max((m.version for m in same_name), default=0) + 1
        self._models = [
            m.model_copy(update={"is_active": False}) if m.name == model.name else m
            for m in self._models
        ]
        stored = model.model_copy(update={"version": version, "is_active": True})
        self._models.append(stored)
        return stored

    async def load_active_model(self, name: str) -> Optional[StatisticalModel]:
        for model in reversed(self._models):
            if model.name == name and model.is_active:
                return model
        return None

    def model_history(self, name: str) -> List[StatisticalModel]:
        """Every stored version of a model, oldest first."""
        return [m for m in self._models if m.name == name]
