"""
Persistence collaborator interface.

The alerting and anomaly layers never talk to a database directly; they
consume this protocol. Two implementations ship with the package:
InMemoryAlertStore (development and tests) and PostgresAlertStore.

Every method may raise PersistenceError. Callers decide the recovery:
startup reads fall back to defaults, writes are logged and dropped.

Models:
    EventQuery: Filter for counting historical events

Protocols:
    AlertStore: Full persistence surface
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from sentinel.models.alerts import Alert, AlertHistoryFilter, AlertStatistics
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


class EventQuery(BaseModel):
    """
    Filter for historical event counts.

    Attributes:
        start: Only events strictly after this time.
        end: Only events at or before this time (open-ended if None).
        severity: Only events with this severity.
        source: Only events from this source.
        keywords: Only events whose lower-cased message contains any keyword.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    start: datetime
    end: Optional[datetime] = None
    severity: Optional[str] = None
    source: Optional[str] = None
    keywords: Optional[List[str]] = Field(default=None, min_length=1)

    def matches(self, event: LogEvent) -> bool:
        """Check whether an event passes the filter."""
        if event.timestamp <= self.start:
            return False
        if self.end is not None and event.timestamp > self.end:
            return False
        if self.severity is not None and event.severity != self.severity:
            return False
        if self.source is not None and (event.source or "unknown") != self.source:
            return False
        if self.keywords is not None:
            message = event.message.lower()
            if not any(keyword.lower() in message for keyword in self.keywords):
                return False
        return True


class AlertStore(Protocol):
    """Persistence surface consumed by the engine."""

    # Rules
    async def load_rules(self, enabled_only: bool = False) -> List[AlertRule]:
        """Load rules in storage order."""
        ...

    async def save_rule(self, rule: AlertRule) -> None:
        """Insert or replace a rule."""
        ...

    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule; False if it did not exist."""
        ...

    async def increment_rule_stats(self, rule_id: str, triggered_at: datetime) -> None:
        """Bump trigger_count and set last_triggered_at."""
        ...

    # Channels
    async def load_channels(self) -> List[NotificationChannelConfig]:
        """Load all notification channels."""
        ...

    async def save_channel(self, channel: NotificationChannelConfig) -> None:
        """Insert or replace a channel."""
        ...

    async def delete_channel(self, channel_id: str) -> bool:
        """Delete a channel; False if it did not exist."""
        ...

    async def update_channel_usage(
        self, channel_id: str, success: bool, used_at: datetime
    ) -> None:
        """Atomically record a send outcome."""
        ...

    # Alerts
    async def save_alert(self, alert: Alert) -> None:
        """Insert a new alert."""
        ...

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """Fetch an alert by id."""
        ...

    async def update_alert_results(
        self, alert_id: str, results: Dict[str, NotificationResult]
    ) -> None:
        """Store the initial fan-out results."""
        ...

    async def update_alert_escalation(
        self,
        alert_id: str,
        level: int,
        results: Dict[str, NotificationResult],
        escalated_at: datetime,
    ) -> None:
        """Store an executed escalation level."""
        ...

    async def update_alert_status(self, alert: Alert) -> None:
        """Store status, acknowledgment and resolution fields."""
        ...

    async def list_alerts(self, query: AlertHistoryFilter) -> List[Alert]:
        """List alerts matching the filter, newest first."""
        ...

    async def alert_statistics(self, now: datetime) -> AlertStatistics:
        """Aggregate alert counts."""
        ...

    # Event history
    async def record_event(self, event: LogEvent) -> None:
        """Append a processed event to the history."""
        ...

    async def count_events(self, query: EventQuery) -> int:
        """Count events matching the query."""
        ...

    async def historical_hourly_average(self, query: EventQuery) -> Optional[float]:
        """Average count per non-empty hour bucket, None if no events."""
        ...

    async def recent_messages(
        self, since: datetime, limit: int, exclude_event_id: Optional[str] = None
    ) -> List[str]:
        """Messages of events after ``since``, newest first."""
        ...

    async def hourly_counts(self, start: datetime, end: datetime) -> Dict[int, int]:
        """Event counts keyed by hour of day within (start, end]."""
        ...

    async def source_counts(self, since: datetime) -> Dict[str, int]:
        """Event counts keyed by source since ``since``."""
        ...

    async def normal_training_events(self, since: datetime, limit: int) -> List[LogEvent]:
        """Random sample of events without an associated anomaly."""
        ...

    # Anomalies
    async def load_anomaly_rules(self) -> List[AnomalyDetectionRule]:
        """Load anomaly detector rules."""
        ...

    async def save_anomaly_rule(self, rule: AnomalyDetectionRule) -> None:
        """Insert or replace an anomaly detector rule."""
        ...

    async def increment_anomaly_rule_usage(self, rule_id: str) -> None:
        """Bump a detector rule's usage_count."""
        ...

    async def save_anomaly_detection(self, detection: AnomalyDetection) -> None:
        """Insert an anomaly record."""
        ...

    async def get_anomaly_detection(self, detection_id: str) -> Optional[AnomalyDetection]:
        """Fetch an anomaly record."""
        ...

    async def update_anomaly_detection(self, detection: AnomalyDetection) -> None:
        """Store resolution and false-positive flags."""
        ...

    async def anomaly_training_detections(
        self, since: datetime, limit: int
    ) -> List[AnomalyDetection]:
        """Confirmed (non-false-positive) anomalies since ``since``."""
        ...

    async def anomaly_statistics(self, now: datetime) -> AnomalyStatistics:
        """Aggregate anomaly counts."""
        ...

    # Baselines
    async def load_baseline_patterns(
        self, pattern_type: Optional[PatternType] = None
    ) -> List[BaselinePattern]:
        """Load baseline patterns, optionally of one type."""
        ...

    async def get_baseline_pattern(
        self, pattern_type: PatternType, signature: str
    ) -> Optional[BaselinePattern]:
        """Fetch one baseline pattern."""
        ...

    async def upsert_baseline_pattern(self, pattern: BaselinePattern) -> None:
        """Insert or replace a baseline pattern."""
        ...

    # Models
    async def store_model(self, model: StatisticalModel) -> StatisticalModel:
        """Store a model as the active one for its name; return it with its version."""
        ...

    async def load_active_model(self, name: str) -> Optional[StatisticalModel]:
        """Fetch the active model for a name."""
        ...
