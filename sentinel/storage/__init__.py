"""
Storage collaborators for the alerting and anomaly layers.

Components:
    base: AlertStore protocol and EventQuery filter
    memory: In-memory AlertStore for development and tests
    postgres_client: Async PostgreSQL AlertStore
    redis_client: Async Redis client for the event feed and pub/sub updates
"""

from sentinel.storage.base import AlertStore, EventQuery
from sentinel.storage.memory import InMemoryAlertStore
from sentinel.storage.postgres_client import PostgresAlertStore
from sentinel.storage.redis_client import RedisClient

__all__: list[str] = [
    # Protocol
    "AlertStore",
    "EventQuery",
    # Stores
    "InMemoryAlertStore",
    "PostgresAlertStore",
    # Redis
    "RedisClient",
]
