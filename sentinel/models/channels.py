"""
Notification channel data models.

Models:
    ChannelType: Supported channel variants
    NotificationChannelConfig: Configured channel with usage counters
    NotificationResult: Outcome of a single channel send
    RenderedMessage: Channel-agnostic message rendered from an alert
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from sentinel.models.events import utc_now


class ChannelType(str, Enum):
    """
    Notification channel variants.

    Attributes:
        EMAIL: SMTP email.
        SMS: Twilio SMS.
        SLACK: Slack incoming webhook.
        DISCORD: Discord webhook.
        WEBHOOK: Generic JSON webhook.
        PUSHOVER: Pushover push notification.
        TELEGRAM: Telegram bot message.
    """

    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"
    DISCORD = "discord"
    WEBHOOK = "webhook"
    PUSHOVER = "pushover"
    TELEGRAM = "telegram"


class NotificationChannelConfig(BaseModel):
    """
    A configured notification channel.

    The config map is opaque at this level; each channel variant validates
    the keys it needs before sending.

    Attributes:
        id: Unique channel identifier referenced by rules.
        name: Human-readable name.
        type: Channel variant.
        config: Variant-specific settings (webhook_url, to, from, ...).
        enabled: Whether the channel accepts sends.
        rate_limit_seconds: Minimum seconds between successful sends (0 = none).
        last_used_at: Time of the last successful send.
        usage_count: Number of successful sends.
        failure_count: Number of failed sends.

    Example:
        >>> channel = NotificationChannelConfig(
        ...     id="ops_slack",
        ...     name="Ops Slack",
        ...     type=ChannelType.SLACK,
        ...     config={"webhook_url": "https://hooks.slack.com/services/..."},
        ...     rate_limit_seconds=60,
        ... )
    """

    model_config = {"extra": "forbid"}

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique channel identifier",
        min_length=1,
    )
    name: str = Field(
        ...,
        description="Human-readable name",
        min_length=1,
    )
    type: ChannelType = Field(
        ...,
        description="Channel variant",
    )
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Variant-specific settings",
    )
    enabled: bool = Field(
        default=True,
        description="Whether the channel accepts sends",
    )
    rate_limit_seconds: int = Field(
        default=0,
        description="Minimum seconds between sends (0 disables rate limiting)",
        ge=0,
    )
    last_used_at: Optional[datetime] = Field(
        default=None,
        description="Time of the last successful send",
    )
    usage_count: int = Field(
        default=0,
        description="Number of successful sends",
        ge=0,
    )
    failure_count: int = Field(
        default=0,
        description="Number of failed sends",
        ge=0,
    )

    def is_rate_limited(self, now: Optional[datetime] = None) -> bool:
        """
        Check whether a send right now would violate the rate limit.

        Args:
            now: Current time, defaults to utc now.

        Returns:
            bool: True if the channel was used less than rate_limit_seconds ago.
        """
        if self.rate_limit_seconds <= 0 or self.last_used_at is None:
            return False
        elapsed = ((now or utc_now()) - self.last_used_at).total_seconds()
        return elapsed < self.rate_limit_seconds

    def record_usage(
        self,
        success: bool,
        timestamp: Optional[datetime] = None,
    ) -> "NotificationChannelConfig":
        """
        Record the outcome of a send.

        Args:
            success: Whether the send succeeded.
            timestamp: Send time, defaults to utc now.

        Returns:
            NotificationChannelConfig: Updated channel.
        """
        if success:
            return self.model_copy(
                update={
                    "last_used_at": timestamp or utc_now(),
                    "usage_count": self.usage_count + 1,
                }
            )
        return self.model_copy(update={"failure_count": self.failure_count + 1})


class NotificationResult(BaseModel):
    """
    Outcome of one channel send.

    Attributes:
        success: Whether the message was delivered.
        detail: Transport-specific detail on success (message id, status...).
        error: Error message on failure.
        rate_limited: True when the send was skipped by the channel rate limit.

    Example:
        >>> NotificationResult.ok(status=200)
        >>> NotificationResult.failed("Channel disabled")
    """

    model_config = {"frozen": True, "extra": "forbid"}

    success: bool = Field(
        ...,
        description="Whether the message was delivered",
    )
    detail: Dict[str, Any] = Field(
        default_factory=dict,
        description="Transport detail on success",
    )
    error: Optional[str] = Field(
        default=None,
        description="Error message on failure",
    )
    rate_limited: bool = Field(
        default=False,
        description="Whether the send was skipped by the rate limit",
    )

    @classmethod
    def ok(cls, **detail: Any) -> "NotificationResult":
        """Build a successful result."""
        return cls(success=True, detail=detail)

    @classmethod
    def failed(cls, error: str, rate_limited: bool = False) -> "NotificationResult":
        """Build a failed result."""
        return cls(success=False, error=error, rate_limited=rate_limited)


class RenderedMessage(BaseModel):
    """
    Channel-agnostic rendering of an alert.

    Every channel variant builds its payload from this message.

    Attributes:
        alert_id: Alert identifier.
        title: Message title (e.g., "🚨 Error Rate Spike").
        description: Message body.
        severity: Alert severity.
        log_severity: Severity of the triggering event.
        source: Event source.
        device: Event device.
        timestamp: Formatted event timestamp.
        alert_time: Formatted alert trigger time.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    alert_id: str
    title: str
    description: str
    severity: str
    log_severity: str
    source: str
    device: str
    timestamp: str
    alert_time: str
