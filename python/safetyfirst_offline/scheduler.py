"""
Task scheduling for work that outlives the request that started it.

- ``TaskScheduler`` runs fire-and-forget coroutines (background cache
  refreshes) and keeps a reference to each until it finishes.
- ``BackgroundSync`` holds one-shot sync tags that fire when the worker is
  next online.
- ``run_periodic`` drives the optional recurring wake-up.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class TaskScheduler:
    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed: %s", task.get_name(), exc, exc_info=exc
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class BackgroundSync:
    """
    One-shot sync registrations.

    Registering the same tag twice keeps a single registration. Tags are
    consumed when they fire. ``on_register`` is called on every
    ``register()``, so the owner can fire straight away when it is online.
    ``keep()`` holds a tag for the next trigger without calling it.
    """

    def __init__(self, on_register: Optional[Callable[[str], None]] = None):
        self._tags: List[str] = []
        self.on_register = on_register

    def register(self, tag: str) -> None:
        self.keep(tag)
        if self.on_register is not None:
            self.on_register(tag)

    def keep(self, tag: str) -> None:
        if tag not in self._tags:
            self._tags.append(tag)
            logger.debug("Registered background sync: %s", tag)

    def get_tags(self) -> List[str]:
        return list(self._tags)

    async def fire(self, handler: Callable[[str], Awaitable]) -> List[str]:
        """
        Hand every registered tag to ``handler``, in registration order.

        Tags registered while the handler runs wait for the next fire. If the
        handler raises, that tag and the ones after it stay registered.
        """
        tags, self._tags = self._tags, []
        fired = []
        for i, tag in enumerate(tags):
            try:
                await handler(tag)
            except Exception:
                for leftover in tags[i:]:
                    self.keep(leftover)
                raise
            fired.append(tag)
        return fired


async def run_periodic(callback: Callable[[], Awaitable], interval: float) -> None:
    """Await ``callback`` every ``interval`` seconds until cancelled."""
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                await callback()
            except Exception as e:
                logger.exception("Error in periodic sync: %s", e)
    except asyncio.CancelledError:
        pass
