"""
Telegram notification channel (Bot API sendMessage).

Config keys:
    bot_token: Bot token (required).
    chat_id: Target chat id (required).
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

TELEGRAM_API_BASE = "https://api.telegram.org"


class TelegramChannel(NotificationChannel):
    """Plain-text bot message."""

    channel_type = ChannelType.TELEGRAM
    required_keys = ("bot_token", "chat_id")

    def text(self, message: RenderedMessage) -> str:
        return (
            f"{message.title}\n\n"
            f"Severity: {message.severity.upper()}\n"
            f"{message.description}\n\n"
            f"Source: {message.source}\n"
            f"Device: {message.device}\n"
            f"Time: {message.timestamp}\n"
            f"Alert ID: {message.alert_id}"
        )

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> HttpRequest:
        config = channel.config
        return HttpRequest(
            url=f"{TELEGRAM_API_BASE}/bot{config['bot_token']}/sendMessage",
            json_body={
                "chat_id": config["chat_id"],
                "text": self.text(message),
                "disable_web_page_preview": True,
            },
        )

    def to_result(self, response: DeliveryResponse) -> NotificationResult:
        body = response.body if isinstance(response.body, dict) else {}
        result = body.get("result") or {}
        return NotificationResult.ok(status=response.status, message_id=result.get("message_id"))
