"""
SMS notification channel (Twilio Messages API).

Config keys:
    account_sid: Twilio account SID (required).
    auth_token: Twilio auth token (required).
    from: Sending phone number (required).
    to: Destination phone number (required).
"""

from sentinel.detection.channels.base import (
    DeliveryResponse,
    HttpRequest,
    NotificationChannel,
)
from sentinel.models.channels import (
    ChannelType,
    NotificationChannelConfig,
    NotificationResult,
    RenderedMessage,
)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class SmsChannel(NotificationChannel):
    """Short text message through Twilio's REST API."""

    channel_type = ChannelType.SMS
    required_keys = ("account_sid", "auth_token", "from", "to")

    def body(self, message: RenderedMessage) -> str:
        return (
            f"{message.title}\n\n"
            f"Severity: {message.severity.upper()}\n"
            f"{message.description}\n\n"
            f"Source: {message.source}\n"
            f"Time: {message.timestamp}"
        )

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> HttpRequest:
        config = channel.config
        account_sid = config["account_sid"]
        return HttpRequest(
            url=f"{TWILIO_API_BASE}/Accounts/{account_sid}/Messages.json",
            form={
                "From": str(config["from"]),
                "To": str(config["to"]),
                "Body": self.body(message),
            },
            auth=(account_sid, config["auth_token"]),
        )

    def to_result(self, response: DeliveryResponse) -> NotificationResult:
        body = response.body if isinstance(response.body, dict) else {}
        return NotificationResult.ok(status=response.status, message_id=body.get("sid"))
