"""
Async PostgreSQL implementation of the AlertStore protocol.

This module provides the PostgresAlertStore class which persists rules,
channels, alerts, the processed event history, anomaly records, baseline
patterns and trained models. Entities are stored as JSONB documents next to
the columns that queries filter and aggregate on.

Key Tables:
    - alert_rules: Alert rule definitions with trigger statistics
    - notification_channels: Channel configurations with usage counters
    - alerts: Alert lifecycle documents
    - log_events: Processed event history used by the anomaly detectors
    - anomaly_rules: Anomaly detector rules
    - anomaly_detections: Detected anomalies with operator feedback
    - anomaly_patterns: Baseline patterns
    - anomaly_models: Trained statistical models, every version retained

Example:
    >>> from sentinel.config.models import PostgresConnectionConfig
    >>> from sentinel.storage.postgres_client import PostgresAlertStore
    >>>
    >>> store = PostgresAlertStore(PostgresConnectionConfig(url="postgresql://..."))
    >>> await store.connect()
    >>> await store.create_schema()
    >>> rules = await store.load_rules(enabled_only=True)
"""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

try:
    import asyncpg
    from asyncpg import Connection, Pool, Record
    from asyncpg.exceptions import (
        ConnectionDoesNotExistError,
        InterfaceError,
        PostgresError,
        TooManyConnectionsError,
    )
except ImportError as e:
    raise ImportError(
        "asyncpg is required for PostgresAlertStore. Install with: pip install asyncpg"
    ) from e

from sentinel.config.models import PostgresConnectionConfig
from sentinel.errors import PersistenceError
from sentinel.models.alerts import Alert, AlertHistoryFilter, AlertStatistics
from sentinel.models.anomaly import (
    AnomalyDetection,
    AnomalyDetectionRule,
    AnomalyStatistics,
    BaselinePattern,
    PatternType,
    StatisticalModel,
)
from sentinel.models.channels import NotificationChannelConfig, NotificationResult
from sentinel.models.events import LogEvent
from sentinel.models.rules import AlertRule
from sentinel.storage.base import EventQuery

logger = structlog.get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS alert_rules (
    id TEXT PRIMARY KEY,
    position BIGSERIAL,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    definition JSONB NOT NULL,
    trigger_count INTEGER NOT NULL DEFAULT 0,
    last_triggered_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS notification_channels (
    id TEXT PRIMARY KEY,
    definition JSONB NOT NULL,
    usage_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    last_used_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS alerts (
    alert_id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL,
    severity TEXT NOT NULL,
    status TEXT NOT NULL,
    triggered_at TIMESTAMPTZ NOT NULL,
    document JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS alerts_triggered_at_idx ON alerts (triggered_at DESC);

CREATE TABLE IF NOT EXISTS log_events (
    id TEXT PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL,
    severity TEXT NOT NULL,
    source TEXT,
    message TEXT NOT NULL,
    anomaly_detected BOOLEAN NOT NULL DEFAULT FALSE,
    document JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS log_events_timestamp_idx ON log_events (timestamp DESC);

CREATE TABLE IF NOT EXISTS anomaly_rules (
    id TEXT PRIMARY KEY,
    position BIGSERIAL,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    definition JSONB NOT NULL,
    usage_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS anomaly_detections (
    id TEXT PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL,
    source_event_id TEXT NOT NULL,
    rule_id TEXT,
    anomaly_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    confidence_score DOUBLE PRECISION NOT NULL,
    resolved BOOLEAN NOT NULL DEFAULT FALSE,
    false_positive BOOLEAN NOT NULL DEFAULT FALSE,
    document JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS anomaly_detections_event_idx ON anomaly_detections (source_event_id);

CREATE TABLE IF NOT EXISTS anomaly_patterns (
    pattern_type TEXT NOT NULL,
    signature TEXT NOT NULL,
    frequency_normal DOUBLE PRECISION NOT NULL,
    last_seen TIMESTAMPTZ NOT NULL,
    occurrence_count INTEGER NOT NULL DEFAULT 0,
    is_baseline BOOLEAN NOT NULL DEFAULT FALSE,
    PRIMARY KEY (pattern_type, signature)
);

CREATE TABLE IF NOT EXISTS anomaly_models (
    name TEXT NOT NULL,
    version INTEGER NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    accuracy_score DOUBLE PRECISION NOT NULL,
    training_date TIMESTAMPTZ NOT NULL,
    document JSONB NOT NULL,
    PRIMARY KEY (name, version)
);
"""


def _document(model: Any) -> Dict[str, Any]:
    """Serialize a pydantic model into a JSONB-ready dict."""
    return model.model_dump(mode="json")


class PostgresAlertStore:
    """
    Async PostgreSQL store for the alerting and anomaly layers.

    Every public method raises PersistenceError on failure; transient
    errors are retried first.

    Attributes:
        config: PostgreSQL connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _connected: Whether the store is connected.

    Example:
        >>> store = PostgresAlertStore(config)
        >>> await store.connect()
        >>> try:
        ...     await store.save_alert(alert)
        ... finally:
        ...     await store.disconnect()
    """

    # Maximum retries for transient errors
    MAX_RETRIES = 3

    # Retry delay in seconds
    RETRY_DELAY = 0.5

    def __init__(self, config: PostgresConnectionConfig) -> None:
        """
        Initialize the PostgreSQL store.

        Args:
            config: PostgreSQL connection configuration containing URL and pool settings.
        """
        self.config = config
        self._pool: Optional[Pool] = None
        self._connected: bool = False

        logger.info(
            "postgres_store_initialized",
            url=self._sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    def _sanitize_url(self, url: str) -> str:
        """Sanitize URL for logging (remove password)."""
        if "@" in url:
            parts = url.split("@")
            if ":" in parts[0]:
                user_part = parts[0].rsplit(":", 1)[0]
                return f"{user_part}:***@{parts[1]}"
        return url

    @property
    def is_connected(self) -> bool:
        """Whether the connection pool is open."""
        return self._connected and self._pool is not None

    # =========================================================================
    # CONNECTION
    # =========================================================================

    async def connect(self) -> None:
        """
        Establish the connection pool.

        Raises:
            PersistenceError: If the connection fails.
        """
        if self._connected:
            logger.warning("postgres_already_connected")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size + self.config.max_overflow,
                command_timeout=self.config.pool_timeout,
                init=self._init_connection,
            )

            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            self._connected = True
            logger.info("postgres_connected", url=self._sanitize_url(self.config.url))

        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.error(
                "postgres_connection_failed",
                url=self._sanitize_url(self.config.url),
                error=str(e),
            )
            raise PersistenceError(f"Failed to connect to PostgreSQL: {e}", cause=e) from e

    async def _init_connection(self, conn: Connection) -> None:
        """Use UTC and decode JSONB columns into Python objects."""
        await conn.execute("SET timezone = 'UTC'")
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def disconnect(self) -> None:
        """Close the connection pool. Safe to call multiple times."""
        if self._pool is not None:
            try:
                await self._pool.close()
            except Exception as e:
                logger.warning("postgres_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("postgres_disconnected")

    async def ping(self) -> bool:
        """
        Check PostgreSQL connection health.

        Returns:
            bool: True if PostgreSQL responds, False otherwise.
        """
        if not self._pool:
            return False

        try:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.warning("postgres_ping_failed", error=str(e))
            return False

    async def create_schema(self) -> None:
        """Create the tables and indexes if they do not exist."""

        async def _create() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(SCHEMA)

        await self._execute_with_retry("create_schema", _create)
        logger.info("postgres_schema_ready")

    @asynccontextmanager
    async def _acquire_connection(self) -> AsyncIterator[Connection]:
        """
        Acquire a connection from the pool with error handling.

        Yields:
            Connection: asyncpg connection from the pool.

        Raises:
            PersistenceError: If not connected or the pool is exhausted.
        """
        if not self._connected or self._pool is None:
            raise PersistenceError("PostgreSQL store is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise PersistenceError(f"Connection pool exhausted: {e}", cause=e) from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.error("postgres_connection_lost", error=str(e))
            self._connected = False
            raise PersistenceError(f"Connection lost: {e}", cause=e) from e

    async def _execute_with_retry(
        self,
        operation: str,
        func: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Execute a database operation with retry logic for transient errors.

        Args:
            operation: Name of the operation for logging.
            func: Async function to execute.

        Returns:
            Any: Result of the function call.

        Raises:
            PersistenceError: If all retries fail.
        """
        last_error: Optional[Exception] = None
        start_time = time.monotonic()

        for attempt in range(self.MAX_RETRIES):
            try:
                result = await func()
                logger.debug(
                    "postgres_operation_complete",
                    operation=operation,
                    elapsed_ms=round((time.monotonic() - start_time) * 1000, 2),
                )
                return result
            except (PostgresError, ConnectionDoesNotExistError, InterfaceError) as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        "postgres_operation_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        max_retries=self.MAX_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAY * (attempt + 1))
                else:
                    logger.error(
                        "postgres_operation_failed",
                        operation=operation,
                        error=str(e),
                    )

        raise PersistenceError(
            f"Operation '{operation}' failed after {self.MAX_RETRIES} attempts: {last_error}",
            cause=last_error,
            operation=operation,
        )

    async def _fetch(self, operation: str, query: str, *args: Any) -> List[Record]:
        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(query, *args)

        return await self._execute_with_retry(operation, _query)

    async def _fetchrow(self, operation: str, query: str, *args: Any) -> Optional[Record]:
        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(query, *args)

        return await self._execute_with_retry(operation, _query)

    async def _execute(self, operation: str, query: str, *args: Any) -> str:
        async def _run() -> str:
            async with self._acquire_connection() as conn:
                return await conn.execute(query, *args)

        return await self._execute_with_retry(operation, _run)

    # =========================================================================
    # RULES
    # =========================================================================

    async def load_rules(self, enabled_only: bool = False) -> List[AlertRule]:
        rows = await self._fetch(
            "load_rules",
            """
            SELECT definition, trigger_count, last_triggered_at
            FROM alert_rules
            WHERE enabled OR NOT $1
            ORDER BY position
            """,
            enabled_only,
        )

        rules = []
        for row in rows:
            try:
                rules.append(
                    AlertRule.model_validate(
                        {
                            **row["definition"],
                            "trigger_count": row["trigger_count"],
                            "last_triggered_at": row["last_triggered_at"],
                        }
                    )
                )
            except ValueError as e:
                logger.warning(
                    "rule_parse_failed",
                    rule_id=row["definition"].get("id"),
                    error=str(e),
                )
        return rules

    async def save_rule(self, rule: AlertRule) -> None:
        await self._execute(
            "save_rule",
            """
            INSERT INTO alert_rules (id, enabled, definition, trigger_count, last_triggered_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                enabled = EXCLUDED.enabled,
                definition = EXCLUDED.definition,
                updated_at = NOW()
            """,
            rule.id,
            rule.enabled,
            _document(rule),
            rule.trigger_count,
            rule.last_triggered_at,
        )

    async def delete_rule(self, rule_id: str) -> bool:
        status = await self._execute(
            "delete_rule", "DELETE FROM alert_rules WHERE id = $1", rule_id
        )
        return status.endswith(" 1")

    async def increment_rule_stats(self, rule_id: str, triggered_at: datetime) -> None:
        await self._execute(
            "increment_rule_stats",
            """
            UPDATE alert_rules
            SET trigger_count = trigger_count + 1,
                last_triggered_at = $2,
                updated_at = NOW()
            WHERE id = $1
            """,
            rule_id,
            triggered_at,
        )

    # =========================================================================
    # CHANNELS
    # =========================================================================

    async def load_channels(self) -> List[NotificationChannelConfig]:
        rows = await self._fetch(
            "load_channels",
            """
            SELECT definition, usage_count, failure_count, last_used_at
            FROM notification_channels
            ORDER BY id
            """,
        )

        channels = []
        for row in rows:
            try:
                channels.append(
                    NotificationChannelConfig.model_validate(
                        {
                            **row["definition"],
                            "usage_count": row["usage_count"],
                            "failure_count": row["failure_count"],
                            "last_used_at": row["last_used_at"],
                        }
                    )
                )
            except ValueError as e:
                logger.warning(
                    "channel_parse_failed",
                    channel_id=row["definition"].get("id"),
                    error=str(e),
                )
        return channels

    async def save_channel(self, channel: NotificationChannelConfig) -> None:
        await self._execute(
            "save_channel",
            """
            INSERT INTO notification_channels (
                id, definition, usage_count, failure_count, last_used_at
            ) VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                definition = EXCLUDED.definition,
                updated_at = NOW()
            """,
            channel.id,
            _document(channel),
            channel.usage_count,
            channel.failure_count,
            channel.last_used_at,
        )

    async def delete_channel(self, channel_id: str) -> bool:
        status = await self._execute(
            "delete_channel",
            "DELETE FROM notification_channels WHERE id = $1",
            channel_id,
        )
        return status.endswith(" 1")

    async def update_channel_usage(
        self, channel_id: str, success: bool, used_at: datetime
    ) -> None:
        await self._execute(
            "update_channel_usage",
            """
            UPDATE notification_channels
            SET usage_count = usage_count + 1,
                failure_count = failure_count + CASE WHEN $2 THEN 0 ELSE 1 END,
                last_used_at = $3,
                updated_at = NOW()
            WHERE id = $1
            """,
            channel_id,
            success,
            used_at,
        )

    # =========================================================================
    # ALERTS
    # =========================================================================

    async def save_alert(self, alert: Alert) -> None:
        await self._execute(
            "save_alert",
            """
            INSERT INTO alerts (alert_id, rule_id, severity, status, triggered_at, document)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (alert_id) DO NOTHING
            """,
            alert.alert_id,
            alert.rule_id,
            alert.severity.value,
            alert.status.value,
            alert.triggered_at,
            _document(alert),
        )
        logger.debug("alert_inserted", alert_id=alert.alert_id, rule_id=alert.rule_id)

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        row = await self._fetchrow(
            "get_alert", "SELECT document FROM alerts WHERE alert_id = $1", alert_id
        )
        if row is None:
            return None
        return Alert.model_validate(row["document"])

    async def _update_alert(
        self,
        operation: str,
        alert_id: str,
        mutate: Callable[[Alert], Alert],
    ) -> None:
        """Read-modify-write an alert document inside one transaction."""

        async def _update() -> None:
            async with self._acquire_connection() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        "SELECT document FROM alerts WHERE alert_id = $1 FOR UPDATE",
                        alert_id,
                    )
                    if row is None:
                        return
                    updated = mutate(Alert.model_validate(row["document"]))
                    await conn.execute(
                        """
                        UPDATE alerts
                        SET status = $2, document = $3, updated_at = NOW()
                        WHERE alert_id = $1
                        """,
                        alert_id,
                        updated.status.value,
                        _document(updated),
                    )

        await self._execute_with_retry(operation, _update)

    async def update_alert_results(
        self, alert_id: str, results: Dict[str, NotificationResult]
    ) -> None:
        await self._update_alert(
            "update_alert_results",
            alert_id,
            lambda alert: alert.with_results(results),
        )

    async def update_alert_escalation(
        self,
        alert_id: str,
        level: int,
        results: Dict[str, NotificationResult],
        escalated_at: datetime,
    ) -> None:
        await self._update_alert(
            "update_alert_escalation",
            alert_id,
            lambda alert: alert.escalate(level, results, escalated_at),
        )

    async def update_alert_status(self, alert: Alert) -> None:
        await self._update_alert(
            "update_alert_status",
            alert.alert_id,
            lambda stored: stored.model_copy(
                update={
                    "status": alert.status,
                    "acknowledged_at": alert.acknowledged_at,
                    "acknowledged_by": alert.acknowledged_by,
                    "resolved_at": alert.resolved_at,
                    "resolved_by": alert.resolved_by,
                }
            ),
        )
        logger.debug("alert_status_updated", alert_id=alert.alert_id, status=alert.status.value)

    async def list_alerts(self, query: AlertHistoryFilter) -> List[Alert]:
        conditions: List[str] = []
        params: List[Any] = []

        def add(clause: str, value: Any) -> None:
            params.append(value)
            conditions.append(clause.format(f"${len(params)}"))

        if query.severity is not None:
            add("severity = {}", query.severity.value)
        if query.status is not None:
            add("status = {}", query.status.value)
        if query.rule_id is not None:
            add("rule_id = {}", query.rule_id)
        if query.start_time is not None:
            add("triggered_at >= {}", query.start_time)
        if query.end_time is not None:
            add("triggered_at <= {}", query.end_time)

        params.append(query.limit)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self._fetch(
            "list_alerts",
            f"""
            SELECT document FROM alerts
            {where}
            ORDER BY triggered_at DESC
            LIMIT ${len(params)}
            """,
            *params,
        )

        alerts = []
        for row in rows:
            try:
                alerts.append(Alert.model_validate(row["document"]))
            except ValueError as e:
                logger.warning(
                    "alert_parse_failed",
                    alert_id=row["document"].get("alert_id"),
                    error=str(e),
                )
        return alerts

    async def alert_statistics(self, now: datetime) -> AlertStatistics:
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        totals = await self._fetchrow(
            "alert_statistics",
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE triggered_at >= $1) AS today,
                COUNT(*) FILTER (WHERE status = 'triggered') AS active,
                COUNT(*) FILTER (WHERE status = 'acknowledged') AS acknowledged,
                COUNT(*) FILTER (WHERE status = 'resolved') AS resolved
            FROM alerts
            """,
            midnight,
        )
        severities = await self._fetch(
            "alert_statistics_by_severity",
            "SELECT severity, COUNT(*) AS count FROM alerts GROUP BY severity",
        )
        return AlertStatistics(
            total=totals["total"],
            today=totals["today"],
            active=totals["active"],
            acknowledged=totals["acknowledged"],
            resolved=totals["resolved"],
            by_severity={row["severity"]: row["count"] for row in severities},
        )

    # =========================================================================
    # EVENT HISTORY
    # =========================================================================

    async def record_event(self, event: LogEvent) -> None:
        await self._execute(
            "record_event",
            """
            INSERT INTO log_events (
                id, timestamp, severity, source, message, anomaly_detected, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (id) DO NOTHING
            """,
            event.id,
            event.timestamp,
            event.severity,
            event.source,
            event.message,
            event.anomaly_detected,
            _document(event),
        )

    @staticmethod
    def _event_filter(query: EventQuery) -> Tuple[str, List[Any]]:
        """Build the WHERE clause and parameters for an EventQuery."""
        conditions = ["timestamp > $1"]
        params: List[Any] = [query.start]

        def add(clause: str, value: Any) -> None:
            params.append(value)
            conditions.append(clause.format(f"${len(params)}"))

        if query.end is not None:
            add("timestamp <= {}", query.end)
        if query.severity is not None:
            add("severity = {}", query.severity)
        if query.source is not None:
            add("COALESCE(source, 'unknown') = {}", query.source)
        if query.keywords is not None:
            add(
                "LOWER(message) LIKE ANY({}::text[])",
                [f"%{keyword.lower()}%" for keyword in query.keywords],
            )
        return " AND ".join(conditions), params

    async def count_events(self, query: EventQuery) -> int:
        where, params = self._event_filter(query)
        row = await self._fetchrow(
            "count_events",
            f"SELECT COUNT(*) AS count FROM log_events WHERE {where}",
            *params,
        )
        return int(row["count"]) if row else 0

    async def historical_hourly_average(self, query: EventQuery) -> Optional[float]:
        where, params = self._event_filter(query)
        row = await self._fetchrow(
            "historical_hourly_average",
            f"""
            SELECT AVG(hourly_count) AS average
            FROM (
                SELECT COUNT(*) AS hourly_count
                FROM log_events
                WHERE {where}
                GROUP BY date_trunc('hour', timestamp)
            ) hourly_data
            """,
            *params,
        )
        if row is None or row["average"] is None:
            return None
        return float(row["average"])

    async def recent_messages(
        self, since: datetime, limit: int, exclude_event_id: Optional[str] = None
    ) -> List[str]:
        rows = await self._fetch(
            "recent_messages",
            """
            SELECT message FROM log_events
            WHERE timestamp > $1 AND ($2::text IS NULL OR id <> $2)
            ORDER BY timestamp DESC
            LIMIT $3
            """,
            since,
            exclude_event_id,
            limit,
        )
        return [row["message"] for row in rows]

    async def hourly_counts(self, start: datetime, end: datetime) -> Dict[int, int]:
        rows = await self._fetch(
            "hourly_counts",
            """
            SELECT EXTRACT(HOUR FROM timestamp)::int AS hour, COUNT(*) AS count
            FROM log_events
            WHERE timestamp > $1 AND timestamp <= $2
            GROUP BY 1
            """,
            start,
            end,
        )
        return {row["hour"]: row["count"] for row in rows}

    async def source_counts(self, since: datetime) -> Dict[str, int]:
        rows = await self._fetch(
            "source_counts",
            """
            SELECT COALESCE(source, 'unknown') AS source, COUNT(*) AS count
            FROM log_events
            WHERE timestamp > $1
            GROUP BY 1
            """,
            since,
        )
        return {row["source"]: row["count"] for row in rows}

    async def normal_training_events(self, since: datetime, limit: int) -> List[LogEvent]:
        rows = await self._fetch(
            "normal_training_events",
            """
            SELECT e.document
            FROM log_events e
            LEFT JOIN anomaly_detections d ON d.source_event_id = e.id
            WHERE d.id IS NULL
              AND NOT e.anomaly_detected
              AND e.timestamp > $1
            ORDER BY random()
            LIMIT $2
            """,
            since,
            limit,
        )
        return [LogEvent.model_validate(row["document"]) for row in rows]

    # =========================================================================
    # ANOMALIES
    # =========================================================================

    async def load_anomaly_rules(self) -> List[AnomalyDetectionRule]:
        rows = await self._fetch(
            "load_anomaly_rules",
            "SELECT definition, usage_count FROM anomaly_rules ORDER BY position",
        )

        rules = []
        for row in rows:
            try:
                rules.append(
                    AnomalyDetectionRule.model_validate(
                        {**row["definition"], "usage_count": row["usage_count"]}
                    )
                )
            except ValueError as e:
                logger.warning(
                    "anomaly_rule_parse_failed",
                    rule_id=row["definition"].get("id"),
                    error=str(e),
                )
        return rules

    async def save_anomaly_rule(self, rule: AnomalyDetectionRule) -> None:
        await self._execute(
            "save_anomaly_rule",
            """
            INSERT INTO anomaly_rules (id, enabled, definition, usage_count)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET
                enabled = EXCLUDED.enabled,
                definition = EXCLUDED.definition
            """,
            rule.id,
            rule.enabled,
            _document(rule),
            rule.usage_count,
        )

    async def increment_anomaly_rule_usage(self, rule_id: str) -> None:
        await self._execute(
            "increment_anomaly_rule_usage",
            "UPDATE anomaly_rules SET usage_count = usage_count + 1 WHERE id = $1",
            rule_id,
        )

    async def save_anomaly_detection(self, detection: AnomalyDetection) -> None:
        await self._execute(
            "save_anomaly_detection",
            """
            INSERT INTO anomaly_detections (
                id, timestamp, source_event_id, rule_id, anomaly_type, severity,
                confidence_score, resolved, false_positive, document
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (id) DO NOTHING
            """,
            detection.id,
            detection.timestamp,
            detection.source_event_id,
            detection.rule_id,
            detection.anomaly_type.value,
            detection.severity.value,
            detection.confidence_score,
            detection.resolved,
            detection.false_positive,
            _document(detection),
        )

    async def get_anomaly_detection(self, detection_id: str) -> Optional[AnomalyDetection]:
        row = await self._fetchrow(
            "get_anomaly_detection",
            "SELECT document FROM anomaly_detections WHERE id = $1",
            detection_id,
        )
        if row is None:
            return None
        return AnomalyDetection.model_validate(row["document"])

    async def update_anomaly_detection(self, detection: AnomalyDetection) -> None:
        await self._execute(
            "update_anomaly_detection",
            """
            UPDATE anomaly_detections
            SET resolved = $2, false_positive = $3, document = $4
            WHERE id = $1
            """,
            detection.id,
            detection.resolved,
            detection.false_positive,
            _document(detection),
        )

    async def anomaly_training_detections(
        self, since: datetime, limit: int
    ) -> List[AnomalyDetection]:
        rows = await self._fetch(
            "anomaly_training_detections",
            """
            SELECT document FROM anomaly_detections
            WHERE NOT false_positive AND timestamp > $1
            ORDER BY timestamp DESC
            LIMIT $2
            """,
            since,
            limit,
        )
        return [AnomalyDetection.model_validate(row["document"]) for row in rows]

    async def anomaly_statistics(self, now: datetime) -> AnomalyStatistics:
        totals = await self._fetchrow(
            "anomaly_statistics",
            """
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE timestamp > $1::timestamptz - INTERVAL '24 hours') AS last_24h,
                COUNT(*) FILTER (WHERE NOT resolved) AS unresolved,
                COUNT(*) FILTER (WHERE false_positive) AS false_positives
            FROM anomaly_detections
            """,
            now,
        )
        severities = await self._fetch(
            "anomaly_statistics_by_severity",
            """
            SELECT severity, COUNT(*) AS count
            FROM anomaly_detections
            WHERE timestamp > $1::timestamptz - INTERVAL '7 days'
            GROUP BY severity
            """,
            now,
        )
        types = await self._fetch(
            "anomaly_statistics_by_type",
            "SELECT anomaly_type, COUNT(*) AS count FROM anomaly_detections GROUP BY anomaly_type",
        )
        top_rules = await self._fetch(
            "anomaly_statistics_top_rules",
            """
            SELECT definition->>'name' AS name, usage_count,
                   (definition->>'accuracy_rating')::float AS accuracy_rating
            FROM anomaly_rules
            WHERE enabled
            ORDER BY usage_count DESC
            LIMIT 10
            """,
        )
        model = await self._fetchrow(
            "anomaly_statistics_active_model",
            """
            SELECT name, version, accuracy_score, training_date
            FROM anomaly_models
            WHERE is_active
            ORDER BY training_date DESC
            LIMIT 1
            """,
        )

        return AnomalyStatistics(
            total=totals["total"],
            last_24h=totals["last_24h"],
            unresolved=totals["unresolved"],
            false_positives=totals["false_positives"],
            by_severity={row["severity"]: row["count"] for row in severities},
            by_type={row["anomaly_type"]: row["count"] for row in types},
            top_rules=[dict(row) for row in top_rules],
            active_model=(
                {
                    "name": model["name"],
                    "version": model["version"],
                    "accuracy_score": model["accuracy_score"],
                    "training_date": model["training_date"].isoformat(),
                }
                if model
                else None
            ),
        )

    # =========================================================================
    # BASELINES
    # =========================================================================

    @staticmethod
    def _row_to_pattern(row: Record) -> BaselinePattern:
        return BaselinePattern(
            pattern_type=PatternType(row["pattern_type"]),
            signature=row["signature"],
            frequency_normal=row["frequency_normal"],
            last_seen=row["last_seen"],
            occurrence_count=row["occurrence_count"],
            is_baseline=row["is_baseline"],
        )

    async def load_baseline_patterns(
        self, pattern_type: Optional[PatternType] = None
    ) -> List[BaselinePattern]:
        rows = await self._fetch(
            "load_baseline_patterns",
            """
            SELECT * FROM anomaly_patterns
            WHERE $1::text IS NULL OR pattern_type = $1
            ORDER BY pattern_type, signature
            """,
            pattern_type.value if pattern_type else None,
        )
        return [self._row_to_pattern(row) for row in rows]

    async def get_baseline_pattern(
        self, pattern_type: PatternType, signature: str
    ) -> Optional[BaselinePattern]:
        row = await self._fetchrow(
            "get_baseline_pattern",
            "SELECT * FROM anomaly_patterns WHERE pattern_type = $1 AND signature = $2",
            pattern_type.value,
            signature,
        )
        return self._row_to_pattern(row) if row else None

    async def upsert_baseline_pattern(self, pattern: BaselinePattern) -> None:
        await self._execute(
            "upsert_baseline_pattern",
            """
            INSERT INTO anomaly_patterns (
                pattern_type, signature, frequency_normal,
                last_seen, occurrence_count, is_baseline
            ) VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (pattern_type, signature) DO UPDATE SET
                frequency_normal = EXCLUDED.frequency_normal,
                last_seen = EXCLUDED.last_seen,
                occurrence_count = EXCLUDED.occurrence_count,
                is_baseline = EXCLUDED.is_baseline
            """,
            pattern.pattern_type.value,
            pattern.signature,
            pattern.frequency_normal,
            pattern.last_seen,
            pattern.occurrence_count,
            pattern.is_baseline,
        )

    # =========================================================================
    # MODELS
    # =========================================================================

    async def store_model(self, model: StatisticalModel) -> StatisticalModel:
        async def _store() -> StatisticalModel:
            async with self._acquire_connection() as conn:
                async with conn.transaction():
                    version = await conn.fetchval(
                        "SELECT COALESCE(MAX(version), 0) + 1 FROM anomaly_models WHERE name = $1",
                        model.name,
                    )
                    await conn.execute(
                        "UPDATE anomaly_models SET is_active = FALSE WHERE name = $1",
                        model.name,
                    )
                    stored = model.model_copy(update={"version": version, "is_active": True})
                    await conn.execute(
                        """
                        INSERT INTO anomaly_models (
                            name, version, is_active, accuracy_score, training_date, document
                        ) VALUES ($1, $2, TRUE, $3, $4, $5)
                        """,
                        stored.name,
                        stored.version,
                        stored.accuracy_score,
                        stored.training_date,
                        _document(stored),
                    )
                    return stored

        stored = await self._execute_with_retry("store_model", _store)
        logger.info("model_stored", model_name=stored.name, version=stored.version)
        return stored

    async def load_active_model(self, name: str) -> Optional[StatisticalModel]:
        row = await self._fetchrow(
            "load_active_model",
            """
            SELECT document FROM anomaly_models
            WHERE name = $1 AND is_active
            ORDER BY version DESC
            LIMIT 1
            """,
            name,
        )
        if row is None:
            return None
        return StatisticalModel.model_validate(row["document"])
