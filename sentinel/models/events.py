"""
Log event model consumed by the alerting and anomaly layers.

Events arrive from the ingestion pipeline as loosely-typed JSON. This module
normalizes them into an immutable LogEvent so that every rule and detector
sees the same shape.

Models:
    LogEvent: A single log/telemetry event, optionally carrying anomaly fields.

Functions:
    utc_now: Current time as an aware UTC datetime.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Coerce a datetime to aware UTC.

    Naive datetimes are assumed to already be in UTC.

    Args:
        value: Datetime to normalize.

    Returns:
        datetime: Aware datetime in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LogEvent(BaseModel):
    """
    A single log or telemetry event.

    Attributes:
        id: Event identifier assigned by the ingestion pipeline.
        timestamp: When the event occurred (UTC).
        severity: Lower-cased severity (debug, info, warning, error, critical...).
        category: Optional event category (e.g., "security").
        event_type: Optional event type (e.g., "device_status").
        message: Free-text message body.
        source: Originating system or service.
        device_id: Originating device, if any.
        metadata: Any additional fields from the original payload.
        anomaly_detected: Set on synthetic events produced by the anomaly scorer.
        anomaly_confidence: Confidence of the anomaly that produced this event.
        anomaly_description: Description of the anomaly that produced this event.
        anomaly_type: Detector type that produced this event.

    Example:
        >>> event = LogEvent(
        ...     severity="error",
        ...     message="login denied for user bob",
        ...     source="auth-service",
        ... )
    """

    model_config = {"frozen": True, "extra": "ignore"}

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Event identifier",
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)",
    )
    severity: str = Field(
        default="info",
        description="Lower-cased event severity",
    )
    category: Optional[str] = Field(
        default=None,
        description="Event category",
    )
    event_type: Optional[str] = Field(
        default=None,
        description="Event type",
    )
    message: str = Field(
        default="",
        description="Message body",
    )
    source: Optional[str] = Field(
        default=None,
        description="Originating system or service",
    )
    device_id: Optional[str] = Field(
        default=None,
        description="Originating device",
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional payload fields",
    )

    # Synthetic anomaly fields
    anomaly_detected: bool = Field(
        default=False,
        description="Whether this event was synthesized from an anomaly",
    )
    anomaly_confidence: Optional[float] = Field(
        default=None,
        description="Confidence of the originating anomaly",
        ge=0.0,
        le=1.0,
    )
    anomaly_description: Optional[str] = Field(
        default=None,
        description="Description of the originating anomaly",
    )
    anomaly_type: Optional[str] = Field(
        default=None,
        description="Detector type of the originating anomaly",
    )

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> str:
        """Lower-case severity; missing severity becomes 'info'."""
        if v is None or v == "":
            return "info"
        return str(v).strip().lower()

    @field_validator("message", mode="before")
    @classmethod
    def coerce_message(cls, v: Any) -> str:
        """Treat a missing message as empty."""
        if v is None:
            return ""
        return str(v)

    @field_validator("timestamp", mode="after")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store timestamps as aware UTC."""
        return ensure_utc(v)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LogEvent":
        """
        Build an event from a raw ingestion payload.

        Accepts the common aliases used by log shippers ("level" for
        severity, "type" for event_type, "device" for device_id) and keeps
        unrecognized keys in metadata.

        Args:
            payload: Decoded JSON payload.

        Returns:
            LogEvent: Normalized event.
        """
        known = set(cls.model_fields)
        data: Dict[str, Any] = {k: v for k, v in payload.items() if k in known}
        if "severity" not in data and "level" in payload:
            data["severity"] = payload["level"]
        if "event_type" not in data and "type" in payload:
            data["event_type"] = payload["type"]
        if "device_id" not in data and "device" in payload:
            data["device_id"] = payload["device"]
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        extras = {
            k: v
            for k, v in payload.items()
            if k not in known and k not in ("level", "type", "device")
        }
        if extras:
            data["metadata"] = {**extras, **data.get("metadata", {})}
        return cls.model_validate(data)

    def as_anomaly(
        self,
        confidence: float,
        description: str,
        anomaly_type: str,
    ) -> "LogEvent":
        """
        Derive the synthetic event that carries an anomaly into alerting.

        Args:
            confidence: Anomaly confidence in [0, 1].
            description: Anomaly description.
            anomaly_type: Detector type that fired.

        Returns:
            LogEvent: Copy of this event with anomaly fields set.
        """
        return self.model_copy(
            update={
                "anomaly_detected": True,
                "anomaly_confidence": confidence,
                "anomaly_description": description,
                "anomaly_type": anomaly_type,
            }
        )
