"""
Service runner infrastructure.

Provides the ServiceRunner base class used by long-running services and the
structlog configuration they share. A service subclasses ServiceRunner,
names itself, and implements ``_initialize``, ``_run`` and ``_cleanup``;
the runner owns configuration, connections, signal handling and shutdown.

Example:
    >>> class MyService(ServiceRunner):
    ...     @property
    ...     def service_name(self) -> str:
    ...         return "my-service"
    ...     async def _initialize(self) -> None: ...
    ...     async def _run(self) -> None: ...
    ...     async def _cleanup(self) -> None: ...
    >>>
    >>> await MyService(config_path="config").run()
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Optional

import structlog

from sentinel.config import AppConfig, LogFormat, StorageBackend, load_config
from sentinel.storage import AlertStore, InMemoryAlertStore, PostgresAlertStore, RedisClient


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Configure structured logging.

    Args:
        level: Log level name (default: LOG_LEVEL env var or INFO).
        fmt: "json" or "text" (default: LOG_FORMAT env var or json).
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_format = (fmt or os.getenv("LOG_FORMAT", LogFormat.JSON.value)).lower()

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == LogFormat.TEXT.value
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level, logging.INFO),
    )

    # Reduce noise from aiohttp access logs
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class ServiceRunner(ABC):
    """
    Base class for long-running services.

    Lifecycle of ``run()``:
    1. Load configuration and configure logging
    2. Connect Redis and the alert store (PostgreSQL or in-memory)
    3. ``_initialize()``
    4. ``_run()`` until it returns or SIGINT/SIGTERM sets the shutdown event
    5. ``_cleanup()`` then close connections

    Attributes:
        config_path: Configuration directory.
        config: Loaded configuration.
        logger: Logger bound to the service name.
        shutdown_event: Set when the service should stop.
        redis_client: Redis client.
        store: Alert store.
    """

    def __init__(self, config_path: str = "config") -> None:
        self.config_path = config_path
        self.config: Optional[AppConfig] = None
        self.logger = structlog.get_logger(self.service_name)
        self.shutdown_event = asyncio.Event()
        self.redis_client: Optional[RedisClient] = None
        self.store: Optional[AlertStore] = None
        self._postgres: Optional[PostgresAlertStore] = None
        self._main_task: Optional[asyncio.Task] = None

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Service name used in logs."""

    @abstractmethod
    async def _initialize(self) -> None:
        """Build service components once connections are up."""

    @abstractmethod
    async def _run(self) -> None:
        """Main service loop."""

    async def _cleanup(self) -> None:
        """Service-specific cleanup, before connections close."""

    async def _connect(self) -> None:
        if self.config is None:
            raise RuntimeError("Configuration not loaded")

        self.redis_client = RedisClient(self.config.redis)
        await self.redis_client.connect()

        if self.config.storage.backend == StorageBackend.POSTGRES:
            self._postgres = PostgresAlertStore(self.config.postgres)
            await self._postgres.connect()
            await self._postgres.create_schema()
            self.store = self._postgres
        else:
            self.store = InMemoryAlertStore()

        self.logger.info(
            "service_connected",
            storage_backend=self.config.storage.backend.value,
        )

    async def _disconnect(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.disconnect()
        if self._postgres is not None:
            await self._postgres.disconnect()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except NotImplementedError:
                # Not supported on this platform
                pass

    def request_shutdown(self, reason: str = "requested") -> None:
        """Set the shutdown event and interrupt the main loop."""
        if self.shutdown_event.is_set():
            return
        self.logger.info("shutdown_requested", reason=reason)
        self.shutdown_event.set()
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()

    async def run(self) -> None:
        """
        Run the service until shutdown.

        Raises:
            SentinelError: If configuration or connections fail at startup.
        """
        self.config = load_config(self.config_path)
        setup_logging(self.config.logging.level.value, self.config.logging.format.value)
        self.logger.info("service_starting", service=self.service_name)

        try:
            await self._connect()
            await self._initialize()
            self._install_signal_handlers()

            self._main_task = asyncio.create_task(self._run())
            try:
                await self._main_task
            except asyncio.CancelledError:
                self.logger.info("service_main_cancelled")
        finally:
            try:
                await self._cleanup()
            except Exception as e:
                self.logger.error("service_cleanup_error", error=str(e))
            await self._disconnect()
            self.logger.info("service_stopped", service=self.service_name)


__all__ = ["ServiceRunner", "setup_logging"]
