"""
Email notification channel.

Builds a multipart (text + HTML) message delivered by the SMTP transport.

Config keys:
    from: Sender address (required).
    to: Recipient address or list of addresses (required).
    subject_prefix: Subject prefix, defaults to "[ALERT]".
    smtp_host, smtp_port, username, password, use_tls: Optional overrides
        of the transport's SMTP settings.
"""

from html import escape
from typing import List, Union

from sentinel.detection.channels.base import (
    DeliveryResponse,
    EmailRequest,
    NotificationChannel,
    severity_color,
)
from sentinel.models.channels import (
    ChannelType,
    NotificationChannelConfig,
    NotificationResult,
    RenderedMessage,
)

_CELL = 'style="border: 1px solid #ddd; padding: 8px;"'


def _recipients(value: Union[str, List[str]]) -> List[str]:
    if isinstance(value, str):
        return [addr.strip() for addr in value.split(",") if addr.strip()]
    return [str(addr) for addr in value]


def _detail_rows(message: RenderedMessage) -> List[tuple]:
    return [
        ("Log Severity", message.log_severity),
        ("Source", message.source),
        ("Device", message.device),
        ("Timestamp", message.timestamp),
        ("Alert ID", message.alert_id),
    ]


class EmailChannel(NotificationChannel):
    """SMTP email with plain-text and HTML bodies."""

    channel_type = ChannelType.EMAIL
    required_keys = ("from", "to")

    def subject(self, channel: NotificationChannelConfig, message: RenderedMessage) -> str:
        """Build the subject line: '{prefix} {title} - {SEVERITY}'."""
        prefix = channel.config.get("subject_prefix") or "[ALERT]"
        return f"{prefix} {message.title} - {message.severity.upper()}"

    def text_body(self, message: RenderedMessage) -> str:
        details = "\n".join(f"- {label}: {value}" for label, value in _detail_rows(message))
        return (
            f"{message.title}\n\n"
            f"Severity: {message.severity.upper()}\n"
            f"Description: {message.description}\n\n"
            f"Details:\n{details}"
        )

    def html_body(self, message: RenderedMessage) -> str:
        rows = "\n".join(
            f"<tr><td {_CELL}><strong>{label}:</strong></td>"
            f"<td {_CELL}>{escape(str(value))}</td></tr>"
            for label, value in _detail_rows(message)
        )
        return (
            f"<h2>{escape(message.title)}</h2>\n"
            f"<p><strong>Severity:</strong> "
            f'<span style="color: {severity_color(message.severity)}">'
            f"{message.severity.upper()}</span></p>\n"
            f"<p><strong>Description:</strong> {escape(message.description)}</p>\n"
            f"<hr>\n"
            f'<table style="border-collapse: collapse; width: 100%;">\n{rows}\n</table>'
        )

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> EmailRequest:
        config = channel.config
        return EmailRequest(
            sender=config["from"],
            recipients=_recipients(config["to"]),
            subject=self.subject(channel, message),
            text=self.text_body(message),
            html=self.html_body(message),
            smtp_host=config.get("smtp_host"),
            smtp_port=config.get("smtp_port"),
            username=config.get("username"),
            password=config.get("password"),
            use_tls=config.get("use_tls"),
        )

    def to_result(self, response: DeliveryResponse) -> NotificationResult:
        body = response.body or {}
        return NotificationResult.ok(message_id=body.get("message_id"))
