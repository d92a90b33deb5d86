"""
Alert data models.

This module defines alert lifecycle structures: severities, statuses, the
alert instance itself with its per-channel notification outcomes, and the
query/aggregate shapes used by the administrative surface.

Models:
    AlertSeverity: Severity levels (info, low, medium, high, critical)
    AlertStatus: Lifecycle status (triggered, acknowledged, resolved)
    Alert: Triggered alert instance
    AlertHistoryFilter: Filters for listing alert history
    AlertStatistics: Aggregate alert counts
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from sentinel.models.channels import NotificationResult
from sentinel.models.events import LogEvent, utc_now


class AlertSeverity(str, Enum):
    """
    Alert severity levels.

    Attributes:
        CRITICAL: Immediate action required.
        HIGH: Action required soon.
        MEDIUM: Investigate.
        LOW: Awareness.
        INFO: Informational only.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class AlertStatus(str, Enum):
    """
    Alert lifecycle status.

    Attributes:
        TRIGGERED: Alert fired and is unhandled.
        ACKNOWLEDGED: An operator has seen the alert.
        RESOLVED: Terminal state; no further escalation.
    """

    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class Alert(BaseModel):
    """
    A triggered alert instance.

    Attributes:
        alert_id: Unique identifier for this alert instance.
        rule_id: Rule that fired.
        rule_name: Rule name at trigger time.
        severity: Alert severity (from the rule).
        status: Lifecycle status.
        triggered_at: When the alert fired.
        event: Snapshot of the triggering event.
        channels: Channel ids targeted by the initial fan-out.
        notification_results: Per-channel outcome of the initial fan-out.
        escalation_level: Highest escalation level executed (0 = none).
        escalation_results: Per-level, per-channel escalation outcomes.
        escalated_at: When the latest escalation level fired.
        acknowledged_at: When the alert was acknowledged.
        acknowledged_by: Who acknowledged the alert.
        resolved_at: When the alert was resolved.
        resolved_by: Who resolved the alert.

    Example:
        >>> alert = Alert(
        ...     rule_id="default_1",
        ...     rule_name="Error Rate Spike",
        ...     severity=AlertSeverity.HIGH,
        ...     triggered_at=utc_now(),
        ...     event=event,
        ...     channels=["default_email", "slack"],
        ... )
    """

    model_config = {"extra": "forbid"}

    alert_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this alert instance",
    )
    rule_id: str = Field(
        ...,
        description="Rule that fired",
    )
    rule_name: str = Field(
        ...,
        description="Rule name at trigger time",
    )
    severity: AlertSeverity = Field(
        ...,
        description="Alert severity",
    )
    status: AlertStatus = Field(
        default=AlertStatus.TRIGGERED,
        description="Lifecycle status",
    )
    triggered_at: datetime = Field(
        default_factory=utc_now,
        description="When the alert fired",
    )
    event: LogEvent = Field(
        ...,
        description="Snapshot of the triggering event",
    )
    channels: List[str] = Field(
        default_factory=list,
        description="Channel ids targeted by the initial fan-out",
    )

    # Notification outcomes
    notification_results: Dict[str, NotificationResult] = Field(
        default_factory=dict,
        description="Per-channel outcome of the initial fan-out",
    )

    # Escalation
    escalation_level: int = Field(
        default=0,
        description="Highest escalation level executed",
        ge=0,
    )
    escalation_results: Dict[int, Dict[str, NotificationResult]] = Field(
        default_factory=dict,
        description="Per-level, per-channel escalation outcomes",
    )
    escalated_at: Optional[datetime] = Field(
        default=None,
        description="When the latest escalation level fired",
    )

    # Lifecycle
    acknowledged_at: Optional[datetime] = Field(
        default=None,
        description="When the alert was acknowledged",
    )
    acknowledged_by: Optional[str] = Field(
        default=None,
        description="Who acknowledged the alert",
    )
    resolved_at: Optional[datetime] = Field(
        default=None,
        description="When the alert was resolved",
    )
    resolved_by: Optional[str] = Field(
        default=None,
        description="Who resolved the alert",
    )

    @property
    def is_resolved(self) -> bool:
        """Check if the alert has reached its terminal state."""
        return self.status == AlertStatus.RESOLVED

    @property
    def successful_channels(self) -> List[str]:
        """Channel ids that accepted the initial notification."""
        return [cid for cid, r in self.notification_results.items() if r.success]

    def with_results(self, results: Dict[str, NotificationResult]) -> "Alert":
        """
        Attach initial fan-out results.

        Args:
            results: Per-channel outcomes.

        Returns:
            Alert: Updated alert.
        """
        return self.model_copy(update={"notification_results": dict(results)})

    def acknowledge(
        self,
        acknowledged_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Mark the alert as acknowledged.

        Acknowledging a resolved alert has no effect.

        Args:
            acknowledged_by: Operator identifier.
            timestamp: Acknowledgment time, defaults to now.

        Returns:
            Alert: Updated alert.
        """
        if self.is_resolved:
            return self
        return self.model_copy(
            update={
                "status": AlertStatus.ACKNOWLEDGED,
                "acknowledged_at": timestamp or utc_now(),
                "acknowledged_by": acknowledged_by,
            }
        )

    def resolve(
        self,
        resolved_by: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Resolve the alert.

        Resolved is terminal; resolving twice keeps the first resolution.

        Args:
            resolved_by: Operator identifier.
            timestamp: Resolution time, defaults to now.

        Returns:
            Alert: Updated alert.
        """
        if self.is_resolved:
            return self
        return self.model_copy(
            update={
                "status": AlertStatus.RESOLVED,
                "resolved_at": timestamp or utc_now(),
                "resolved_by": resolved_by,
            }
        )

    def escalate(
        self,
        level: int,
        results: Dict[str, NotificationResult],
        timestamp: Optional[datetime] = None,
    ) -> "Alert":
        """
        Record an executed escalation level.

        The escalation level never decreases.

        Args:
            level: Escalation level that fired (1-based).
            results: Per-channel outcomes for this level.
            timestamp: Escalation time, defaults to now.

        Returns:
            Alert: Updated alert.
        """
        escalation_results = dict(self.escalation_results)
        escalation_results[level] = dict(results)
        return self.model_copy(
            update={
                "escalation_level": max(self.escalation_level, level),
                "escalation_results": escalation_results,
                "escalated_at": timestamp or utc_now(),
            }
        )


class AlertHistoryFilter(BaseModel):
    """
    Filters for listing alert history.

    Attributes:
        severity: Only alerts of this severity.
        status: Only alerts in this status.
        rule_id: Only alerts fired by this rule.
        start_time: Only alerts triggered at or after this time.
        end_time: Only alerts triggered at or before this time.
        limit: Maximum number of alerts, newest first.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    severity: Optional[AlertSeverity] = None
    status: Optional[AlertStatus] = None
    rule_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    limit: int = Field(default=50, ge=1, le=1000)

    def matches(self, alert: Alert) -> bool:
        """Check whether an alert passes every present filter."""
        if self.severity is not None and alert.severity != self.severity:
            return False
        if self.status is not None and alert.status != self.status:
            return False
        if self.rule_id is not None and alert.rule_id != self.rule_id:
            return False
        if self.start_time is not None and alert.triggered_at < self.start_time:
            return False
        if self.end_time is not None and alert.triggered_at > self.end_time:
            return False
        return True


class AlertStatistics(BaseModel):
    """
    Aggregate alert counts.

    Attributes:
        total: All alerts ever stored.
        today: Alerts triggered since UTC midnight.
        active: Alerts in the triggered state.
        acknowledged: Alerts in the acknowledged state.
        resolved: Alerts in the resolved state.
        by_severity: Alert counts keyed by severity.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    total: int = 0
    today: int = 0
    active: int = 0
    acknowledged: int = 0
    resolved: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
