"""
WebSocket consumer connecting applications to the offline worker.

Applications send host commands (``FORCE_SYNC``, ``GET_PENDING_SYNC_COUNT``,
``CLEAR_CACHE``, ...) as JSON and get the reply on the same socket. Every
connection also joins the notification group, so per-item sync messages and
the sync summary reach it as they happen.
"""

import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from . import notifications
from .config import config as offline_config
from .worker import get_worker

logger = logging.getLogger(__name__)


class OfflineSyncConsumer(AsyncJsonWebsocketConsumer):
    # Set via as_asgi(worker=...) to bypass the process-wide worker
    worker = None

    def get_worker(self):
        return self.worker or get_worker()

    async def connect(self):
        self.group_name = offline_config.get("notification_group")
        if self.channel_layer is not None:
            await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        logger.debug("Offline sync client connected: %s", self.channel_name)

    async def disconnect(self, close_code):
        if self.channel_layer is not None:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self.send_json(
                {"type": notifications.ERROR, "error": "Expected a JSON object"}
            )
            return
        reply = await self.get_worker().handle_message(content)
        if reply is not None:
            await self.send_json(reply)

    # Channel layer handlers

    async def offline_message(self, event):
        await self.send_json(event["message"])

    async def offline_notification(self, event):
        await self.send_json({"type": notifications.NOTIFICATION, **event["notification"]})
