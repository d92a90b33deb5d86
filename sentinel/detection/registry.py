"""
Notification channel registry.

Holds the configured channels by id with their usage counters. Startup
loads from the store and merges in the configured seed channels that the
store does not know yet.

Example:
    >>> registry = ChannelRegistry(store)
    >>> await registry.load(seed_channels=config.rules.channels)
    >>> channel = registry.get("default_email")
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from sentinel.errors import PersistenceError
from sentinel.models.channels import NotificationChannelConfig
from sentinel.models.events import utc_now
from sentinel.storage.base import AlertStore

logger = structlog.get_logger(__name__)


class ChannelRegistry:
    """
    Registry of notification channels keyed by id.

    Attributes:
        store: Persistence collaborator.
        _channels: Channels keyed by id.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store
        self._channels: Dict[str, NotificationChannelConfig] = {}

    async def load(
        self,
        seed_channels: Optional[Sequence[NotificationChannelConfig]] = None,
    ) -> List[NotificationChannelConfig]:
        """
        Load channels from the store and add missing seed channels.

        Args:
            seed_channels: Configured channels; stored versions win.

        Returns:
            List[NotificationChannelConfig]: Registered channels.
        """
        store_available = True
        try:
            stored = await self.store.load_channels()
        except PersistenceError as e:
            logger.error("channel_load_failed", **e.log_fields())
            stored = []
            store_available = False

        self._channels = {channel.id: channel for channel in stored}

        for seed in seed_channels or []:
            if seed.id in self._channels:
                continue
            self._channels[seed.id] = seed
            if store_available:
                await self._persist(seed)

        logger.info(
            "channels_loaded",
            count=len(self._channels),
            from_store=len(stored),
        )
        return self.all()

    async def _persist(self, channel: NotificationChannelConfig) -> None:
        try:
            await self.store.save_channel(channel)
        except PersistenceError as e:
            logger.warning("channel_persist_failed", channel_id=channel.id, error=str(e))

    def get(self, channel_id: str) -> Optional[NotificationChannelConfig]:
        """Get a channel by id."""
        return self._channels.get(channel_id)

    def all(self) -> List[NotificationChannelConfig]:
        """All registered channels."""
        return list(self._channels.values())

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    async def create(self, channel: NotificationChannelConfig) -> NotificationChannelConfig:
        """
        Register a channel, replacing any channel with the same id.

        Returns:
            NotificationChannelConfig: The registered channel.
        """
        self._channels[channel.id] = channel
        await self._persist(channel)
        logger.info("channel_created", channel_id=channel.id, type=channel.type.value)
        return channel

    async def update(
        self,
        channel_id: str,
        updates: Dict[str, Any],
    ) -> Optional[NotificationChannelConfig]:
        """
        Apply a partial update to a channel.

        Usage counters are kept from the current version.

        Returns:
            Optional[NotificationChannelConfig]: Updated channel, or None if unknown.

        Raises:
            pydantic.ValidationError: If the merged channel is invalid.
        """
        current = self._channels.get(channel_id)
        if current is None:
            return None
        data = current.model_dump()
        protected = {"id", "usage_count", "failure_count", "last_used_at"}
        data.update({k: v for k, v in updates.items() if k not in protected})
        updated = NotificationChannelConfig.model_validate(data)
        self._channels[channel_id] = updated
        await self._persist(updated)
        logger.info("channel_updated", channel_id=channel_id, fields=sorted(updates))
        return updated

    async def delete(self, channel_id: str) -> bool:
        """
        Remove a channel.

        Returns:
            bool: True if the channel existed.
        """
        if self._channels.pop(channel_id, None) is None:
            return False
        try:
            await self.store.delete_channel(channel_id)
        except PersistenceError as e:
            logger.warning("channel_delete_persist_failed", channel_id=channel_id, error=str(e))
        logger.info("channel_deleted", channel_id=channel_id)
        return True

    async def record_usage(
        self,
        channel_id: str,
        success: bool,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Record a send outcome in memory and in the store.

        Args:
            channel_id: Channel that was used.
            success: Whether the send succeeded.
            timestamp: Send time, defaults to now.
        """
        ts = timestamp or utc_now()
        channel = self._channels.get(channel_id)
        if channel is not None:
            self._channels[channel_id] = channel.record_usage(success, ts)
        try:
            await self.store.update_channel_usage(channel_id, success, ts)
        except PersistenceError as e:
            logger.warning("channel_usage_persist_failed", channel_id=channel_id, error=str(e))
