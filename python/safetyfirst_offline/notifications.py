"""
Messages from the offline layer to connected applications.

Every connected application joins one channel-layer group
(``SAFETYFIRST_OFFLINE['notification_group']``). Per-item events go out as
``offline.message`` and the batched sync summary as ``offline.notification``;
``OfflineSyncConsumer`` relays both to its WebSocket.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from channels.layers import get_channel_layer

from .config import config as offline_config

logger = logging.getLogger(__name__)

# Posted to applications
OFFLINE_REQUEST_QUEUED = "OFFLINE_REQUEST_QUEUED"
SYNC_SUCCESS = "SYNC_SUCCESS"
SYNC_FAILED = "SYNC_FAILED"
SYNC_CONFLICT = "SYNC_CONFLICT"
SYNC_ABANDONED = "SYNC_ABANDONED"
SW_UPDATED = "SW_UPDATED"
NOTIFICATION = "NOTIFICATION"

# Replies to host commands
PENDING_SYNC_COUNT = "PENDING_SYNC_COUNT"
CACHE_CLEARED = "CACHE_CLEARED"
SYNC_COMPLETE = "SYNC_COMPLETE"
ABANDONED_RETRIED = "ABANDONED_RETRIED"
PENDING_DISCARDED = "PENDING_DISCARDED"
ERROR = "ERROR"


class Notifier(ABC):
    """Where per-item messages and the sync summary notification go."""

    @abstractmethod
    async def post_message(self, message: Dict[str, Any]) -> None:
        """Deliver ``message`` to every connected application."""
        ...

    @abstractmethod
    async def show_notification(
        self, title: str, body: str, tag: Optional[str] = None, **options
    ) -> None:
        """Raise a user-facing notification."""
        ...


class ChannelLayerNotifier(Notifier):
    """
    Broadcasts through the Django Channels layer.

    Without a configured channel layer, messages are logged and dropped: the
    queue and the sync pass must keep working when nobody is listening.
    """

    def __init__(self, group: Optional[str] = None, channel_layer=None):
        self.group = group or offline_config.get("notification_group")
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def _group_send(self, event: Dict[str, Any]) -> None:
        layer = self.channel_layer
        if layer is None:
            logger.debug("No channel layer configured, dropping %s", event["type"])
            return
        await layer.group_send(self.group, event)

    async def post_message(self, message: Dict[str, Any]) -> None:
        await self._group_send({"type": "offline.message", "message": message})

    async def show_notification(
        self, title: str, body: str, tag: Optional[str] = None, **options
    ) -> None:
        notification = {"title": title, "body": body, "tag": tag, **options}
        await self._group_send({"type": "offline.notification", "notification": notification})
