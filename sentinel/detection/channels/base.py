"""
Notification channel abstraction.

Each channel variant turns a RenderedMessage into a delivery request
(HTTP call or SMTP message). Delivery itself is delegated to a
NotificationTransport so that variants stay pure and testable.

Models:
    HttpRequest: Outbound HTTP call built by a channel
    EmailRequest: Outbound SMTP message built by a channel
    DeliveryResponse: What the transport got back

Classes:
    NotificationChannel: Base class for channel variants

Functions:
    render_message: Render an alert into a RenderedMessage
    severity_color: Hex color for a severity
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional, Protocol, Tuple, Union

import structlog
from pydantic import BaseModel, Field

from sentinel.errors import ConfigurationError
from sentinel.models.alerts import Alert
from sentinel.models.channels import (
    ChannelType,
    NotificationChannelConfig,
    NotificationResult,
    RenderedMessage,
)

logger = structlog.get_logger(__name__)


SEVERITY_COLORS: Dict[str, str] = {
    "critical": "#dc2626",
    "high": "#ef4444",
    "error": "#ef4444",
    "medium": "#f59e0b",
    "warning": "#f59e0b",
    "low": "#3b82f6",
    "info": "#3b82f6",
    "debug": "#6b7280",
}


def severity_color(severity: Optional[str]) -> str:
    """
    Get the display color for a severity.

    Args:
        severity: Alert or event severity (case-insensitive).

    Returns:
        str: Hex color; unknown severities use the info color.
    """
    return SEVERITY_COLORS.get((severity or "").lower(), SEVERITY_COLORS["info"])


def format_timestamp(value: datetime) -> str:
    """Format a timestamp for human-readable notifications."""
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_message(
    alert: Alert,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> RenderedMessage:
    """
    Render an alert into the channel-agnostic message.

    Args:
        alert: Alert being notified.
        title: Override for the title (escalations use their own).
        description: Override for the description.

    Returns:
        RenderedMessage: Message every channel variant formats from.

    Example:
        >>> message = render_message(alert)
        >>> message.title
        '🚨 Error Rate Spike'
    """
    event = alert.event
    return RenderedMessage(
        alert_id=alert.alert_id,
        title=title or f"🚨 {alert.rule_name}",
        description=description or event.message or "No message",
        severity=alert.severity.value,
        log_severity=event.severity or "unknown",
        source=event.source or "unknown",
        device=event.device_id or "unknown",
        timestamp=format_timestamp(event.timestamp),
        alert_time=format_timestamp(alert.triggered_at),
    )


class HttpRequest(BaseModel):
    """
    Outbound HTTP call.

    Attributes:
        method: HTTP method.
        url: Target URL.
        json_body: JSON payload (mutually exclusive with form).
        form: Form-encoded payload.
        headers: Extra request headers.
        auth: Basic auth (user, password).
    """

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["http"] = "http"
    method: str = "POST"
    url: str
    json_body: Optional[Dict[str, Any]] = None
    form: Optional[Dict[str, str]] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    auth: Optional[Tuple[str, str]] = None


class EmailRequest(BaseModel):
    """
    Outbound SMTP message.

    SMTP settings left as None fall back to the transport defaults.

    Attributes:
        sender: From address.
        recipients: To addresses.
        subject: Subject line.
        text: Plain-text body.
        html: HTML body.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["email"] = "email"
    sender: str
    recipients: List[str] = Field(..., min_length=1)
    subject: str
    text: str
    html: str
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: Optional[bool] = None


DeliveryRequest = Union[HttpRequest, EmailRequest]


class DeliveryResponse(BaseModel):
    """
    Transport-level response.

    Attributes:
        status: HTTP status, or 250 for an accepted SMTP message.
        body: Decoded response body (JSON when possible).
    """

    model_config = {"frozen": True}

    status: int
    body: Any = None


class NotificationTransport(Protocol):
    """Delivers requests built by channel variants."""

    async def deliver(self, request: DeliveryRequest) -> DeliveryResponse:
        """
        Deliver a request.

        Raises:
            TransportError: If delivery fails.
        """
        ...


class NotificationChannel(ABC):
    """
    Base class for channel variants.

    Subclasses declare their ChannelType and required config keys, and
    build the delivery request for a rendered message.

    Example:
        >>> handler = SlackChannel()
        >>> result = await handler.send(channel_config, message, transport)
    """

    channel_type: ClassVar[ChannelType]
    required_keys: ClassVar[Tuple[str, ...]] = ()

    def validate_config(self, config: Dict[str, Any]) -> None:
        """
        Check the channel config carries the keys this variant needs.

        Raises:
            ConfigurationError: If a required key is missing or empty.
        """
        missing = [key for key in self.required_keys if not config.get(key)]
        if missing:
            raise ConfigurationError(
                f"{self.channel_type.value} channel missing config: {', '.join(missing)}",
                channel_type=self.channel_type.value,
                missing=missing,
            )

    @abstractmethod
    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> DeliveryRequest:
        """Build the delivery request for a message."""

    def to_result(self, response: DeliveryResponse) -> NotificationResult:
        """Convert a transport response into a result (override for ids)."""
        return NotificationResult.ok(status=response.status)

    async def send(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
        transport: NotificationTransport,
    ) -> NotificationResult:
        """
        Validate, build and deliver a message.

        Args:
            channel: Configured channel.
            message: Rendered alert message.
            transport: Delivery transport.

        Returns:
            NotificationResult: Successful result.

        Raises:
            ConfigurationError: If the channel config is incomplete.
            TransportError: If delivery fails.
        """
        self.validate_config(channel.config)
        request = self.build_request(channel, message)
        response = await transport.deliver(request)

        logger.debug(
            "notification_delivered",
            channel_id=channel.id,
            channel_type=self.channel_type.value,
            alert_id=message.alert_id,
            status=response.status,
        )

        return self.to_result(response)
