"""
Discord notification channel (webhook with an embed).

Config keys:
    webhook_url: Discord webhook URL (required).
    username: Optional display name override.
"""

from typing import Any, Dict

from sentinel.detection.channels.base import HttpRequest, NotificationChannel, severity_color
from sentinel.models.channels import ChannelType, NotificationChannelConfig, RenderedMessage


class DiscordChannel(NotificationChannel):
    """Discord message carrying one embed."""

    channel_type = ChannelType.DISCORD
    required_keys = ("webhook_url",)

    def payload(self, channel: NotificationChannelConfig, message: RenderedMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "content": message.title,
            "embeds": [
                {
                    "title": message.title,
                    "description": message.description,
                    # Discord wants the color as an integer
                    "color": int(severity_color(message.severity).lstrip("#"), 16),
                    "fields": [
                        {"name": "Alert Severity", "value": message.severity.upper(), "inline": True},
                        {"name": "Log Severity", "value": message.log_severity, "inline": True},
                        {"name": "Source", "value": message.source, "inline": True},
                        {"name": "Device", "value": message.device, "inline": True},
                        {"name": "Timestamp", "value": message.timestamp, "inline": False},
                    ],
                    "footer": {"text": f"Alert ID: {message.alert_id}"},
                }
            ],
        }
        if channel.config.get("username"):
            payload["username"] = channel.config["username"]
        return payload

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> HttpRequest:
        return HttpRequest(
            url=channel.config["webhook_url"],
            json_body=self.payload(channel, message),
        )
