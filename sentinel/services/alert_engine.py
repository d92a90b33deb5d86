"""
Alert Engine Service entry point.

This service is responsible for:
- Subscribing to Redis pub/sub for log events
- Evaluating every event against the alert rules
- Scoring every event with the anomaly detectors
- Dispatching notifications and scheduling escalations
- Publishing triggered alerts and detected anomalies
- Refreshing baselines hourly and training the model daily

Usage:
    python -m sentinel.services.alert_engine

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379)
    DATABASE_URL: PostgreSQL connection URL (postgres storage backend)
    LOG_LEVEL: Logging level (default: INFO)
    LOG_FORMAT: json or text (default: json)
    SENTINEL_CONFIG_PATH: Path to config directory (default: config)
    SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD: Default SMTP settings
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from sentinel import __version__
from sentinel.engine import SentinelEngine, create_engine
from sentinel.errors import TransportError
from sentinel.models.alerts import Alert
from sentinel.models.anomaly import AnomalyDetection
from sentinel.models.events import LogEvent
from sentinel.scheduling import DailyJob, PeriodicJob
from sentinel.services import ServiceRunner, setup_logging

logger = structlog.get_logger(__name__)


class AlertEngineService(ServiceRunner):
    """
    Alerting and anomaly detection service.

    Consumes log events from Redis, runs them through the SentinelEngine
    and publishes the outcome.

    Attributes:
        engine: The alerting and anomaly engine.
        jobs: Background jobs (baseline refresh, model training).
        events_processed: Events handled since start.
    """

    def __init__(self, config_path: str = "config") -> None:
        """Initialize the alert engine service."""
        super().__init__(config_path)
        self.engine: Optional[SentinelEngine] = None
        self.jobs: List[PeriodicJob] = []
        self.events_processed = 0

    @property
    def service_name(self) -> str:
        """Return service name."""
        return "alert-engine"

    async def _initialize(self) -> None:
        """Build the engine and its background jobs."""
        if self.config is None or self.redis_client is None or self.store is None:
            raise RuntimeError("Service not properly initialized")

        self.engine = create_engine(
            self.store,
            self.config,
            alert_sink=self._publish_alert,
            status_sink=self._publish_alert,
        )
        await self.engine.initialize()

        schedule = self.config.anomaly.schedule
        if self.config.anomaly.enabled:
            self.jobs.append(
                PeriodicJob(
                    "baseline_refresh",
                    self.engine.update_baselines,
                    interval_seconds=schedule.baseline_interval_seconds,
                )
            )
            if schedule.training_enabled:
                self.jobs.append(
                    DailyJob("model_training", self.engine.train_model, hour=schedule.training_hour)
                )

        self.logger.info(
            "alert_engine_initialized",
            events_channel=self.redis_client.events_channel,
            jobs=[job.name for job in self.jobs],
        )

    async def _publish_alert(self, alert: Alert) -> None:
        """Mirror a triggered or status-changed alert and announce it."""
        if self.redis_client is None:
            return
        await self.redis_client.mirror_alert(alert)
        await self.redis_client.publish_alert(alert)

    async def _publish_anomalies(self, detections: List[AnomalyDetection]) -> None:
        if self.redis_client is None:
            return
        for detection in detections:
            try:
                await self.redis_client.publish_anomaly(detection)
            except TransportError as e:
                self.logger.warning(
                    "anomaly_publish_failed",
                    detection_id=detection.id,
                    error=str(e),
                )

    async def _process_message(self, message: Dict[str, Any]) -> None:
        """Parse one pub/sub message and run it through the engine."""
        if self.engine is None:
            return

        data = message["data"]
        if not isinstance(data, dict):
            self.logger.warning("event_payload_not_object", channel=message["channel"])
            return

        try:
            event = LogEvent.from_payload(data)
        except ValidationError as e:
            self.logger.warning("event_payload_invalid", error=str(e))
            return

        result = await self.engine.process_event(event)
        self.events_processed += 1

        if result.anomalies:
            await self._publish_anomalies(result.anomalies)

        if result.alerts or result.anomalies:
            self.logger.info(
                "event_processed",
                event_id=event.id,
                alerts=len(result.alerts),
                anomalies=len(result.anomalies),
            )

    async def _run(self) -> None:
        """Main service loop - subscribe to log events and process them."""
        if self.redis_client is None or self.engine is None:
            raise RuntimeError("Service not properly initialized")

        for job in self.jobs:
            job.start()

        try:
            async with self.redis_client.subscribe([self.redis_client.events_channel]) as messages:
                async for message in messages:
                    if self.shutdown_event.is_set():
                        break

                    try:
                        await self._process_message(message)
                    except Exception as e:
                        self.logger.error(
                            "event_processing_error",
                            error=str(e),
                        )

        except asyncio.CancelledError:
            self.logger.info("pubsub_cancelled")

        finally:
            for job in self.jobs:
                await job.stop()

    async def _cleanup(self) -> None:
        """Service-specific cleanup."""
        if self.engine is not None:
            self.logger.info(
                "cleanup_state",
                events_processed=self.events_processed,
                **self.engine.status(),
            )
            await self.engine.shutdown()


async def main() -> None:
    """Main entry point."""
    # Set up initial logging
    setup_logging()

    config_path = os.getenv("SENTINEL_CONFIG_PATH", "config")

    logger.info(
        "alert_engine_service_starting",
        version=__version__,
        config_path=config_path,
    )

    service = AlertEngineService(config_path=config_path)

    try:
        await service.run()
    except Exception as e:
        logger.error("service_failed", error=str(e))
        sys.exit(1)


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
