"""
Slack notification channel (incoming webhook).

Config keys:
    webhook_url: Incoming webhook URL (required).
    channel: Optional channel override (e.g., "#ops-alerts").
"""

import time
from typing import Any, Dict

from sentinel.detection.channels.base import HttpRequest, NotificationChannel, severity_color
from sentinel.models.channels import ChannelType, NotificationChannelConfig, RenderedMessage


class SlackChannel(NotificationChannel):
    """Slack message with a colored attachment."""

    channel_type = ChannelType.SLACK
    required_keys = ("webhook_url",)

    def payload(self, channel: NotificationChannelConfig, message: RenderedMessage) -> Dict[str, Any]:
        """
        Build the webhook payload.

        Args:
            channel: Configured channel.
            message: Rendered alert message.

        Returns:
            Dict[str, Any]: Slack message with one attachment.
        """
        payload: Dict[str, Any] = {
            "text": message.title,
            "attachments": [
                {
                    "color": severity_color(message.severity),
                    "title": message.title,
                    "text": message.description,
                    "fields": [
                        {"title": "Alert Severity", "value": message.severity.upper(), "short": True},
                        {"title": "Log Severity", "value": message.log_severity, "short": True},
                        {"title": "Source", "value": message.source, "short": True},
                        {"title": "Device", "value": message.device, "short": True},
                        {"title": "Timestamp", "value": message.timestamp, "short": False},
                        {"title": "Alert ID", "value": message.alert_id, "short": False},
                    ],
                    "ts": int(time.time()),
                }
            ],
        }
        if channel.config.get("channel"):
            payload["channel"] = channel.config["channel"]
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
