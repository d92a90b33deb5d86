"""
Notification channel variants.

One class per ChannelType builds the delivery request for a rendered
alert; transports perform the actual delivery.

Components:
    base: NotificationChannel base class, request models, message rendering
    email, sms, slack, discord, webhook, pushover, telegram: Channel variants
    transport: aiohttp and smtplib delivery transports

Example:
    >>> handlers = default_channel_handlers()
    >>> handler = handlers[ChannelType.SLACK]
    >>> result = await handler.send(channel_config, render_message(alert), transport)
"""

from typing import Dict

from sentinel.detection.channels.base import (
    DeliveryRequest,
    DeliveryResponse,
    EmailRequest,
    HttpRequest,
    NotificationChannel,
    NotificationTransport,
    format_timestamp,
    render_message,
    severity_color,
)
from sentinel.detection.channels.discord import DiscordChannel
from sentinel.detection.channels.email import EmailChannel
from sentinel.detection.channels.pushover import PushoverChannel
from sentinel.detection.channels.slack import SlackChannel
from sentinel.detection.channels.sms import SmsChannel
from sentinel.detection.channels.telegram import TelegramChannel
from sentinel.detection.channels.transport import (
    DeliveryTransport,
    HttpTransport,
    SmtpTransport,
    create_transport,
)
from sentinel.detection.channels.webhook import WebhookChannel
from sentinel.models.channels import ChannelType


def default_channel_handlers() -> Dict[ChannelType, NotificationChannel]:
    """
    Build one handler per supported channel type.

    Returns:
        Dict[ChannelType, NotificationChannel]: Handler registry.
    """
    handlers = [
        EmailChannel(),
        SmsChannel(),
        SlackChannel(),
        DiscordChannel(),
        WebhookChannel(),
        PushoverChannel(),
        TelegramChannel(),
    ]
    return {handler.channel_type: handler for handler in handlers}


__all__ = [
    # Base
    "DeliveryRequest",
    "DeliveryResponse",
    "EmailRequest",
    "HttpRequest",
    "NotificationChannel",
    "NotificationTransport",
    "format_timestamp",
    "render_message",
    "severity_color",
    # Variants
    "DiscordChannel",
    "EmailChannel",
    "PushoverChannel",
    "SlackChannel",
    "SmsChannel",
    "TelegramChannel",
    "WebhookChannel",
    "default_channel_handlers",
    # Transports
    "DeliveryTransport",
    "HttpTransport",
    "SmtpTransport",
    "create_transport",
]
