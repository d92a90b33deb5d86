"""Shared test fixtures."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from sentinel.config.models import AnomalyConfig, AppConfig, RulesConfig
from sentinel.detection.channels.base import DeliveryRequest, DeliveryResponse, HttpRequest
from sentinel.errors import TransportError
from sentinel.models.channels import ChannelType, NotificationChannelConfig
from sentinel.models.events import LogEvent
from sentinel.models.rules import AlertRule
from sentinel.storage.memory import InMemoryAlertStore

# Monday 2024-03-04 12:00 UTC
T0 = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Records delivery requests instead of sending them."""

    def __init__(self, fail_urls: Sequence[str] = (), delay: float = 0.0):
        self.requests: List[DeliveryRequest] = []
        self.fail_urls = set(fail_urls)
        self.delay = delay

    async def deliver(self, request: DeliveryRequest) -> DeliveryResponse:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.requests.append(request)
        if isinstance(request, HttpRequest) and request.url in self.fail_urls:
            raise TransportError(f"HTTP 500 from {request.url}")
        return DeliveryResponse(status=200, body={"ok": True})

    def urls(self) -> List[str]:
        return [r.url for r in self.requests if isinstance(r, HttpRequest)]


def webhook_channel(
    channel_id: str,
    enabled: bool = True,
    rate_limit_seconds: int = 0,
) -> NotificationChannelConfig:
    """A webhook channel posting to https://hooks.example.com/<id>."""
    return NotificationChannelConfig(
        id=channel_id,
        name=f"Webhook {channel_id}",
        type=ChannelType.WEBHOOK,
        enabled=enabled,
        rate_limit_seconds=rate_limit_seconds,
        config={"url": hook_url(channel_id)},
    )


def hook_url(channel_id: str) -> str:
    return f"https://hooks.example.com/{channel_id}"


def make_event(
    message: str = "service started",
    severity: str = "info",
    at: Optional[datetime] = None,
    **fields,
) -> LogEvent:
    """Build a LogEvent stamped at ``at`` (default T0)."""
    return LogEvent(message=message, severity=severity, timestamp=at or T0, **fields)


def make_config(
    rules: Sequence[AlertRule] = (),
    channels: Sequence[NotificationChannelConfig] = (),
    anomaly_enabled: bool = False,
) -> AppConfig:
    """AppConfig with explicit seed rules and channels."""
    return AppConfig(
        rules=RulesConfig(rules=list(rules), channels=list(channels)),
        anomaly=AnomalyConfig(enabled=anomaly_enabled),
    )


@pytest.fixture
def store() -> InMemoryAlertStore:
    """Fresh in-memory store."""
    return InMemoryAlertStore()


@pytest.fixture
def transport() -> FakeTransport:
    """Recording transport."""
    return FakeTransport()


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def history_events() -> List[LogEvent]:
    """Three days of steady info traffic from one source, 2 events per hour."""
    events = []
    start = T0.replace(hour=0) - timedelta(days=3)
    for hour in range(72):
        for minute in (10, 40):
            events.append(
                make_event(
                    message="heartbeat ok from worker",
                    source="worker",
                    at=start + timedelta(hours=hour, minutes=minute),
                )
            )
    return events
