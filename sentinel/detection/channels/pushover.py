"""
Pushover notification channel.

Config keys:
    token: Application API token (required).
    user: User or group key (required).
    device: Optional device name.
    sound: Optional notification sound.
"""

from typing import Dict

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

PUSHOVER_API_URL = "https://api.pushover.net/1/messages.json"

# Pushover priorities: -1 quiet, 0 normal, 1 high (bypasses quiet hours)
PRIORITY_BY_SEVERITY: Dict[str, int] = {
    "critical": 1,
    "high": 1,
    "medium": 0,
    "low": -1,
    "info": -1,
}


class PushoverChannel(NotificationChannel):
    """Push notification with priority derived from alert severity."""

    channel_type = ChannelType.PUSHOVER
    required_keys = ("token", "user")

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> HttpRequest:
        config = channel.config
        form = {
            "token": str(config["token"]),
            "user": str(config["user"]),
            "title": message.title,
            "message": (
                f"{message.description}\n\n"
                f"Source: {message.source}\n"
                f"Device: {message.device}\n"
                f"Time: {message.timestamp}"
            ),
            "priority": str(PRIORITY_BY_SEVERITY.get(message.severity, 0)),
        }
        for optional in ("device", "sound"):
            if config.get(optional):
                form[optional] = str(config[optional])
        return HttpRequest(url=PUSHOVER_API_URL, form=form)

    def to_result(self, response: DeliveryResponse) -> NotificationResult:
        body = response.body if isinstance(response.body, dict) else {}
        return NotificationResult.ok(status=response.status, request_id=body.get("request"))
