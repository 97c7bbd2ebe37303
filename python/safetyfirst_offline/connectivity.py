"""
Connectivity status provider.

The worker never reads a global online flag. Whoever knows about the
network (a health probe, the host application, a test) owns a
``ConnectivityStatus`` and flips it; every intercepted request reads it once
and passes the value down explicitly.
"""

import logging
from typing import Awaitable, Callable, List

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], Awaitable[None]]


class ConnectivityStatus:
    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> None:
        """Register a coroutine function called with the new value on every change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            await listener(online)
