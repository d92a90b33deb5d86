"""Tests for the Redis alert mirror and announcements."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import T0, make_event
from redis.exceptions import RedisError

from sentinel.config.models import RedisConnectionConfig
from sentinel.errors import TransportError
from sentinel.models.alerts import Alert, AlertSeverity
from sentinel.storage.redis_client import (
    ALERT_MIRROR_TTL_SECONDS,
    ALERTS_CHANNEL,
    OPEN_ALERTS_KEY,
    RedisClient,
    alert_mirror_key,
)


def _alert() -> Alert:
    return Alert(
        rule_id="default_3",
        rule_name="Critical System Alert",
        severity=AlertSeverity.CRITICAL,
        triggered_at=T0,
        event=make_event("database offline", severity="critical"),
    )


@pytest.fixture
def pipe() -> MagicMock:
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])
    return pipe


@pytest.fixture
def bridge(pipe) -> RedisClient:
    """A client wired to a mocked connection."""
    connection = MagicMock()
    connection.pipeline.return_value.__aenter__.return_value = pipe
    connection.publish = AsyncMock(return_value=2)

    client = RedisClient(RedisConnectionConfig())
    client._client = connection
    client._connected = True
    return client


class TestAlertMirror:
    async def test_open_alert_joins_open_set(self, bridge, pipe):
        alert = _alert()

        await bridge.mirror_alert(alert)

        key = alert_mirror_key(alert.alert_id)
        fields = pipe.hset.call_args.kwargs["mapping"]
        assert pipe.hset.call_args.args == (key,)
        assert fields["status"] == "triggered"
        assert fields["severity"] == "critical"
        assert json.loads(fields["document"])["alert_id"] == alert.alert_id
        pipe.expire.assert_called_once_with(key, ALERT_MIRROR_TTL_SECONDS)
        pipe.sadd.assert_called_once_with(OPEN_ALERTS_KEY, alert.alert_id)
        pipe.srem.assert_not_called()

    async def test_resolved_alert_leaves_open_set(self, bridge, pipe):
        alert = _alert().acknowledge("alice", T0).resolve("bob", T0)

        await bridge.mirror_alert(alert)

        assert pipe.hset.call_args.kwargs["mapping"]["status"] == "resolved"
        pipe.srem.assert_called_once_with(OPEN_ALERTS_KEY, alert.alert_id)
        pipe.sadd.assert_not_called()

    async def test_redis_failure_becomes_transport_error(self, bridge, pipe):
        pipe.execute.side_effect = RedisError("READONLY")

        with pytest.raises(TransportError, match="Could not mirror alert"):
            await bridge.mirror_alert(_alert())


class TestAnnouncements:
    async def test_publish_alert_returns_receivers(self, bridge):
        alert = _alert()

        receivers = await bridge.publish_alert(alert)

        assert receivers == 2
        channel, payload = bridge._client.publish.await_args.args
        assert channel == ALERTS_CHANNEL
        assert json.loads(payload)["rule_id"] == "default_3"

    async def test_use_before_connect_is_rejected(self):
        client = RedisClient(RedisConnectionConfig())

        with pytest.raises(TransportError):
            await client.publish_alert(_alert())
        with pytest.raises(TransportError):
            await client.mirror_alert(_alert())

    async def test_disconnect_is_repeatable(self, bridge):
        connection = bridge._client
        connection.aclose = AsyncMock()

        await bridge.disconnect()
        await bridge.disconnect()

        connection.aclose.assert_awaited_once()
        with pytest.raises(TransportError):
            await bridge.publish_alert(_alert())
