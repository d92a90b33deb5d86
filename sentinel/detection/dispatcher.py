"""
Channel dispatcher for fanning alerts out to notification channels.

This module provides the ChannelDispatcher class which sends one rendered
message to a list of channel ids concurrently. Every channel produces an
independent NotificationResult; one failing channel never affects the
others.

Key Features:
    - Concurrent fan-out with a bounded per-send timeout
    - Per-channel outcome: not found, disabled, rate limited, failed, ok
    - Channel usage counters updated after each real send attempt

Example:
    >>> dispatcher = ChannelDispatcher(registry, transport=create_transport())
    >>> results = await dispatcher.dispatch(["default_email", "slack"], message)
    >>> results["slack"].success
    True
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

import structlog

from sentinel.detection.channels import NotificationChannel, default_channel_handlers
from sentinel.detection.channels.base import NotificationTransport
from sentinel.detection.registry import ChannelRegistry
from sentinel.errors import SentinelError
from sentinel.models.channels import ChannelType, NotificationResult, RenderedMessage
from sentinel.models.events import utc_now

logger = structlog.get_logger(__name__)


# Default upper bound for a single channel send
DEFAULT_SEND_TIMEOUT_SECONDS = 10.0


class ChannelDispatcher:
    """
    Sends rendered alerts to notification channels.

    Attributes:
        registry: Channel registry (configs and usage counters).
        transport: Delivery transport.
        handlers: Channel variant handlers keyed by ChannelType.
        send_timeout_seconds: Upper bound for a single send.

    Example:
        >>> dispatcher = ChannelDispatcher(registry, transport, send_timeout_seconds=5)
        >>> await dispatcher.dispatch(rule.channels, render_message(alert))
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        transport: NotificationTransport,
        handlers: Optional[Dict[ChannelType, NotificationChannel]] = None,
        send_timeout_seconds: float = DEFAULT_SEND_TIMEOUT_SECONDS,
    ) -> None:
        self.registry = registry
        self.transport = transport
        self.handlers = handlers or default_channel_handlers()
        self.send_timeout_seconds = send_timeout_seconds

        logger.info(
            "channel_dispatcher_initialized",
            channel_types=[t.value for t in self.handlers],
            send_timeout_seconds=send_timeout_seconds,
        )

    async def send(
        self,
        channel_id: str,
        message: RenderedMessage,
        now: Optional[datetime] = None,
    ) -> NotificationResult:
        """
        Send a message to one channel.

        Args:
            channel_id: Target channel id.
            message: Rendered alert message.
            now: Send time used for rate limiting and usage, defaults to now.

        Returns:
            NotificationResult: Outcome of this channel; never raises.
        """
        now = now or utc_now()
        channel = self.registry.get(channel_id)
        if channel is None:
            logger.warning(
                "channel_not_found",
                channel_id=channel_id,
                alert_id=message.alert_id,
            )
            return NotificationResult.failed("Channel not found")

        if not channel.enabled:
            return NotificationResult.failed("Channel disabled")

        if channel.is_rate_limited(now):
            logger.debug(
                "channel_rate_limited",
                channel_id=channel_id,
                alert_id=message.alert_id,
                rate_limit_seconds=channel.rate_limit_seconds,
            )
            return NotificationResult.failed("Rate limited", rate_limited=True)

        handler = self.handlers.get(channel.type)
        if handler is None:
            result = NotificationResult.failed(f"Unsupported channel type: {channel.type.value}")
            await self.registry.record_usage(channel_id, False, now)
            return result

        try:
            result = await asyncio.wait_for(
                handler.send(channel, message, self.transport),
                timeout=self.send_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "channel_send_timeout",
                channel_id=channel_id,
                alert_id=message.alert_id,
                timeout_seconds=self.send_timeout_seconds,
            )
            result = NotificationResult.failed(
                f"Send timed out after {self.send_timeout_seconds}s"
            )
        except SentinelError as e:
            logger.error(
                "channel_send_failed",
                channel_id=channel_id,
                channel_type=channel.type.value,
                alert_id=message.alert_id,
                error=e.message,
            )
            result = NotificationResult.failed(e.message)
        except Exception as e:
            logger.error(
                "channel_send_failed",
                channel_id=channel_id,
                channel_type=channel.type.value,
                alert_id=message.alert_id,
                error=str(e),
            )
            result = NotificationResult.failed(str(e) or type(e).__name__)

        await self.registry.record_usage(channel_id, result.success, now)
        return result

    async def dispatch(
        self,
        channel_ids: List[str],
        message: RenderedMessage,
        now: Optional[datetime] = None,
    ) -> Dict[str, NotificationResult]:
        """
        Fan a message out to several channels concurrently.

        Args:
            channel_ids: Target channel ids (duplicates are sent once).
            message: Rendered alert message.
            now: Send time, defaults to now.

        Returns:
            Dict[str, NotificationResult]: Outcome keyed by channel id.
        """
        now = now or utc_now()
        targets = list(dict.fromkeys(channel_ids))
        if not targets:
            return {}

        outcomes = await asyncio.gather(
            *(self.send(channel_id, message, now) for channel_id in targets)
        )
        results = dict(zip(targets, outcomes))

        logger.info(
            "alert_dispatch_complete",
            alert_id=message.alert_id,
            dispatched_to=sum(1 for r in outcomes if r.success),
            total_channels=len(targets),
        )
        return results
