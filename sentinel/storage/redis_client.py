"""
Redis bridge between the alert engine and the rest of the platform.

Inbound, log events arrive as JSON on a pub/sub channel. Outbound, the
engine mirrors every alert it owns into Redis so dashboards can read the
open alerts without touching PostgreSQL, and announces alerts and anomalies
on pub/sub channels.

Key Layout:
    - `sentinel:alert:{alert_id}`  hash: status, severity, rule_id, rule_name,
                                   triggered_at, document (alert JSON); expires
    - `sentinel:alerts:open`       set of alert ids that are not resolved
    - `events:logs`                inbound log events (configurable)
    - `sentinel:alerts`            outbound alert announcements
    - `sentinel:anomalies`         outbound anomaly announcements

Example:
    >>> bridge = RedisClient(RedisConnectionConfig(url="redis://localhost:6379"))
    >>> await bridge.connect()
    >>> async with bridge.subscribe([bridge.events_channel]) as feed:
    ...     async for message in feed:
    ...         event = LogEvent.from_payload(message["data"])
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from sentinel.config.models import RedisConnectionConfig
from sentinel.errors import TransportError
from sentinel.models.alerts import Alert
from sentinel.models.anomaly import AnomalyDetection

logger = structlog.get_logger(__name__)

NAMESPACE = "sentinel"

OPEN_ALERTS_KEY = f"{NAMESPACE}:alerts:open"
ALERTS_CHANNEL = f"{NAMESPACE}:alerts"
ANOMALIES_CHANNEL = f"{NAMESPACE}:anomalies"

# Mirrored alert hashes outlive a working day of triage
ALERT_MIRROR_TTL_SECONDS = 86400


def alert_mirror_key(alert_id: str) -> str:
    """Hash key holding the mirrored copy of an alert."""
    return f"{NAMESPACE}:alert:{alert_id}"


def alert_mirror_fields(alert: Alert) -> Dict[str, str]:
    """
    Flatten an alert into the string fields of its mirror hash.

    The scalar fields let dashboards filter without decoding the document.
    """
    return {
        "status": alert.status.value,
        "severity": alert.severity.value,
        "rule_id": alert.rule_id,
        "rule_name": alert.rule_name,
        "triggered_at": alert.triggered_at.isoformat(),
        "document": alert.model_dump_json(),
    }


class RedisClient:
    """
    Event feed subscriber and alert mirror.

    Attributes:
        config: Connection settings, including the inbound events channel.
        _pool: Shared connection pool, created by ``connect``.
        _client: Client bound to the pool.
        _connected: Set once a PING has succeeded.

    Example:
        >>> bridge = RedisClient(config)
        >>> await bridge.connect()
        >>> await bridge.mirror_alert(alert)
        >>> await bridge.publish_alert(alert)
        >>> await bridge.disconnect()
    """

    def __init__(self, config: RedisConnectionConfig) -> None:
        self.config = config
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None  # type: ignore[type-arg]
        self._connected: bool = False

    @property
    def events_channel(self) -> str:
        """Pub/sub channel carrying inbound log events."""
        return self.config.events_channel

    async def connect(self) -> None:
        """
        Open the connection pool and verify the server answers.

        Raises:
            TransportError: If Redis is unreachable.
        """
        if self._connected:
            return

        try:
            self._pool = ConnectionPool.from_url(
                self.config.url,
                db=self.config.db,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_timeout,
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            self._connected = False
            logger.error("event_bus_unreachable", url=self.config.url, error=str(e))
            raise TransportError(f"Redis unreachable at {self.config.url}: {e}", cause=e) from e

        self._connected = True
        logger.info(
            "event_bus_connected",
            url=self.config.url,
            db=self.config.db,
            events_channel=self.events_channel,
        )

    async def disconnect(self) -> None:
        """Release the client and its pool; repeated calls are harmless."""
        client, pool = self._client, self._pool
        self._client = None
        self._pool = None
        self._connected = False

        for name, closable in (("client", client), ("pool", pool)):
            if closable is None:
                continue
            try:
                await closable.aclose()
            except (RedisError, OSError) as e:
                logger.warning("event_bus_release_failed", resource=name, error=str(e))

        logger.info("event_bus_disconnected")

    def _connection(self) -> Redis:  # type: ignore[type-arg]
        client = self._client
        if not self._connected or client is None:
            raise TransportError("Redis bridge used before connect()")
        return client

    # =========================================================================
    # ALERT MIRROR
    # =========================================================================

    async def mirror_alert(self, alert: Alert) -> None:
        """
        Write the current state of an alert into its mirror hash.

        Unresolved alerts are members of the open set; resolving an alert
        removes it. Every write pushes the hash expiry forward.

        Raises:
            TransportError: If not connected or Redis rejects the write.
        """
        client = self._connection()
        key = alert_mirror_key(alert.alert_id)

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=alert_mirror_fields(alert))
                pipe.expire(key, ALERT_MIRROR_TTL_SECONDS)
                if alert.is_resolved:
                    pipe.srem(OPEN_ALERTS_KEY, alert.alert_id)
                else:
                    pipe.sadd(OPEN_ALERTS_KEY, alert.alert_id)
                await pipe.execute()
        except RedisError as e:
            logger.error(
                "alert_mirror_failed",
                alert_id=alert.alert_id,
                status=alert.status.value,
                error=str(e),
            )
            raise TransportError(f"Could not mirror alert {alert.alert_id}: {e}", cause=e) from e

        logger.debug("alert_mirrored", alert_id=alert.alert_id, status=alert.status.value)

    # =========================================================================
    # ANNOUNCEMENTS
    # =========================================================================

    async def _announce(self, channel: str, payload: str) -> int:
        client = self._connection()
        try:
            receivers = await client.publish(channel, payload)
        except RedisError as e:
            logger.error("announcement_failed", channel=channel, error=str(e))
            raise TransportError(f"Could not publish on {channel}: {e}", cause=e) from e
        return int(receivers)

    async def publish_alert(self, alert: Alert) -> int:
        """
        Announce a new or updated alert.

        Returns:
            int: Subscribers that received the announcement.

        Raises:
            TransportError: If not connected or the publish fails.
        """
        receivers = await self._announce(ALERTS_CHANNEL, alert.model_dump_json())
        logger.debug(
            "alert_announced",
            alert_id=alert.alert_id,
            status=alert.status.value,
            receivers=receivers,
        )
        return receivers

    async def publish_anomaly(self, detection: AnomalyDetection) -> int:
        """
        Announce a detected anomaly.

        Returns:
            int: Subscribers that received the announcement.

        Raises:
            TransportError: If not connected or the publish fails.
        """
        receivers = await self._announce(ANOMALIES_CHANNEL, detection.model_dump_json())
        logger.debug(
            "anomaly_announced",
            detection_id=detection.id,
            anomaly_type=detection.anomaly_type.value,
            receivers=receivers,
        )
        return receivers

    # =========================================================================
    # EVENT FEED
    # =========================================================================

    @asynccontextmanager
    async def subscribe(
        self, channels: List[str]
    ) -> AsyncIterator[AsyncIterator[Dict[str, Any]]]:
        """
        Listen on pub/sub channels for the lifetime of the context.

        Payloads are decoded from JSON; undecodable payloads are logged and
        dropped so one bad producer cannot stall the feed.

        Args:
            channels: Channels to listen on.

        Yields:
            AsyncIterator[Dict[str, Any]]: ``{"channel": ..., "data": ...}`` items.

        Raises:
            TransportError: If not connected.
        """
        pubsub: PubSub = self._connection().pubsub()
        await pubsub.subscribe(*channels)
        logger.info("event_feed_listening", channels=channels)

        async def decoded() -> AsyncIterator[Dict[str, Any]]:
            async for raw in pubsub.listen():
                if raw["type"] != "message":
                    continue
                try:
                    data = json.loads(raw["data"])
                except json.JSONDecodeError as e:
                    logger.warning("event_feed_payload_dropped", channel=raw["channel"], error=str(e))
                    continue
                yield {"channel": raw["channel"], "data": data}

        try:
            yield decoded()
        finally:
            await pubsub.unsubscribe(*channels)
            await pubsub.aclose()
            logger.info("event_feed_closed", channels=channels)
