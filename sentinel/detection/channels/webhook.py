"""
Generic JSON webhook channel.

Posts the rendered message as JSON.

Config keys:
    url: Target URL (required).
    method: HTTP method, defaults to POST.
    headers: Extra request headers (e.g., an Authorization token).
"""

from sentinel.detection.channels.base import HttpRequest, NotificationChannel
from sentinel.models.channels import ChannelType, NotificationChannelConfig, RenderedMessage


class WebhookChannel(NotificationChannel):
    """JSON POST of the rendered message to an arbitrary endpoint."""

    channel_type = ChannelType.WEBHOOK
    required_keys = ("url",)

    def build_request(
        self,
        channel: NotificationChannelConfig,
        message: RenderedMessage,
    ) -> HttpRequest:
        config = channel.config
        headers = {"Content-Type": "application/json"}
        headers.update({str(k): str(v) for k, v in (config.get("headers") or {}).items()})
        return HttpRequest(
            method=str(config.get("method", "POST")).upper(),
            url=config["url"],
            json_body={"type": "alert", **message.model_dump()},
            headers=headers,
        )
