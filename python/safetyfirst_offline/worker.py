"""
OfflineWorker: wires the caches, queue, sync pass and host events together.

The worker owns one instance of each component and exposes the lifecycle
the hosting process drives:

- ``install()`` / ``activate()`` / ``skip_waiting()``
- ``handle_sync(tag)`` and ``handle_periodic_sync(tag)``
- ``handle_message(data)`` for commands from connected applications
- connectivity changes, via the injected ``ConnectivityStatus``
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx

from . import notifications
from .cache import CachedResponse, ResponseCache
from .config import OfflineConfig
from .config import config as offline_config
from .conflicts import ConflictDetector, ConflictResolver
from .connectivity import ConnectivityStatus
from .exceptions import MutationNotFoundError
from .interceptor import OfflineTransport, RequestClassifier
from .network import Network
from .policies import ConflictPolicy, RoutePriority, RouteTable
from .queue import OfflineMutationQueue
from .scheduler import BackgroundSync, TaskScheduler, run_periodic
from .storage.base import MutationStatus, PendingMutation, QueueStore
from .storage.registry import get_queue_store
from .strategies import ApiCacheStrategy, CacheStrategies
from .sync import SyncOrchestrator, SyncResult
from .utils import now_ms

logger = logging.getLogger(__name__)

CACHE_KINDS = ("static", "dynamic", "api", "images")

# Host commands accepted by handle_message()
SKIP_WAITING = "SKIP_WAITING"
GET_PENDING_SYNC_COUNT = "GET_PENDING_SYNC_COUNT"
CLEAR_CACHE = "CLEAR_CACHE"
FORCE_SYNC = "FORCE_SYNC"
RETRY_ABANDONED = "RETRY_ABANDONED"
DISCARD_PENDING = "DISCARD_PENDING"


class OfflineWorker:
    """
    Offline-first layer in front of the remote API.

    Args:
        transport: The real network transport, e.g. ``httpx.AsyncHTTPTransport()``
        store: Durable queue store (default: the configured ``queue_backend``)
        notifier: Where messages to applications go (default: channel layer)
        connectivity: Online/offline status provider
        clock: Returns the current time in milliseconds
        config: OfflineConfig to read settings from (default: the global one)
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        store: Optional[QueueStore] = None,
        notifier: Optional[notifications.Notifier] = None,
        connectivity: Optional[ConnectivityStatus] = None,
        clock: Optional[Callable[[], int]] = None,
        config: Optional[OfflineConfig] = None,
        caches: Optional[ResponseCache] = None,
    ):
        self.config = config or offline_config
        self.clock = clock or now_ms
        self.connectivity = connectivity or ConnectivityStatus()
        self.store = store if store is not None else get_queue_store()
        self.notifier = notifier or notifications.ChannelLayerNotifier(
            self.config.get("notification_group")
        )
        self.caches = caches or ResponseCache()
        self.network = Network(transport)
        self.scheduler = TaskScheduler()
        self.background_sync = BackgroundSync(on_register=self._on_sync_registered)

        self.routes = RouteTable.from_config(self.config)
        self.policy = ConflictPolicy.from_config(self.config)
        self.cache_names = {kind: self.config.cache_name(kind) for kind in CACHE_KINDS}
        self.origin = self.config.get("origin")
        self.active = False

        self.api_strategy = ApiCacheStrategy(
            self.caches,
            self.network,
            self.scheduler,
            self.routes,
            self.clock,
            cache_name=self.cache_names["api"],
            max_items=self.config.get("max_api_cache_items"),
            timeout=self.config.get("fetch_timeout"),
        )
        self.strategies = CacheStrategies(
            self.caches,
            self.network,
            self.scheduler,
            self.cache_names,
            max_dynamic_items=self.config.get("max_dynamic_cache_items"),
            max_image_items=self.config.get("max_image_cache_items"),
            offline_page=self.config.get("offline_page"),
        )
        self.mutation_queue = OfflineMutationQueue(
            self.store,
            self.network,
            self.policy,
            self.notifier,
            self.clock,
            background_sync=self.background_sync,
            sync_tag=self.config.get("sync_tag"),
            api_prefix=self.config.get("api_prefix"),
        )
        self.orchestrator = SyncOrchestrator(
            self.store,
            self.network,
            ConflictDetector(self.network),
            ConflictResolver(self.policy.strategy_for("default")),
            self.notifier,
            max_retries=self.config.get("max_retries"),
            notification_title=self.config.get("notification_title"),
        )
        self._transport = OfflineTransport(
            self.network,
            self.connectivity,
            RequestClassifier(
                api_prefix=self.config.get("api_prefix"),
                static_files=self.config.get("static_files", []),
                image_extensions=self.config.get("image_extensions"),
            ),
            self.api_strategy,
            self.strategies,
            self.mutation_queue,
        )
        self._periodic_task: Optional[asyncio.Task] = None
        self.connectivity.add_listener(self._on_connectivity_change)

    @property
    def transport(self) -> OfflineTransport:
        return self._transport

    def client(self, **kwargs) -> httpx.AsyncClient:
        """An AsyncClient whose traffic goes through the offline layer."""
        kwargs.setdefault("base_url", self.origin)
        return httpx.AsyncClient(transport=self.transport, **kwargs)

    def _absolute(self, url: str, origin: Optional[str] = None) -> httpx.URL:
        return httpx.URL(origin or self.origin).join(url)

    # Lifecycle

    async def install(self, origin: Optional[str] = None) -> bool:
        """
        Precache every configured static file.

        All or nothing: if any file cannot be fetched, nothing is stored and
        False is returned. On success the worker activates straight away.
        """
        requests = [
            httpx.Request("GET", self._absolute(url, origin))
            for url in self.config.get("static_files", [])
        ]
        responses = await asyncio.gather(
            *(self.network.fetch(r) for r in requests), return_exceptions=True
        )
        for request, response in zip(requests, responses):
            if isinstance(response, BaseException):
                logger.error(
                    "Install failed, could not fetch %s: %s",
                    request.url,
                    response,
                    exc_info=response,
                )
                return False

        failed = [str(r.request.url) for r in responses if not r.is_success]
        if failed:
            logger.error("Install failed, could not precache: %s", ", ".join(failed))
            return False

        cache = await self.caches.open(self.cache_names["static"])
        for request, response in zip(requests, responses):
            await cache.put(request, CachedResponse.from_response(response))
        logger.info(
            "Installed offline worker %s, %d static files cached",
            self.config.get("cache_version"),
            len(requests),
        )
        await self.skip_waiting()
        return True

    async def activate(self) -> List[str]:
        """Delete caches left by older versions and announce the new one. Returns the purged names."""
        prefix = f"{self.config.get('cache_prefix')}-"
        current = set(self.cache_names.values())
        purged = []
        for name in await self.caches.names():
            if name.startswith(prefix) and name not in current:
                await self.caches.delete(name)
                purged.append(name)
        if purged:
            logger.info("Purged old caches: %s", ", ".join(purged))

        self.active = True
        version = self.config.get("cache_version")
        await self.notifier.post_message({"type": notifications.SW_UPDATED, "version": version})

        interval = self.config.get("periodic_sync_interval", 0)
        if interval:
            self.start_periodic_sync(interval)
        return purged

    async def skip_waiting(self) -> None:
        """Take over immediately instead of waiting for old clients to go away."""
        if not self.active:
            await self.activate()

    # Sync triggers

    async def sync_now(self) -> SyncResult:
        return await self.orchestrator.run()

    async def handle_sync(self, tag: str) -> Optional[SyncResult]:
        if tag == self.config.get("sync_tag"):
            result = await self.sync_now()
            if await self.store.count(MutationStatus.PENDING.value):
                # Retryable records left behind wait for the next trigger
                self.background_sync.keep(tag)
            return result
        logger.debug("Ignoring unknown sync tag %s", tag)
        return None

    async def handle_periodic_sync(self, tag: str) -> Optional[int]:
        if tag == self.config.get("periodic_sync_tag"):
            if self.connectivity.is_online():
                await self.fire_background_sync()
            return await self.refresh_critical_data()
        logger.debug("Ignoring unknown periodic sync tag %s", tag)
        return None

    async def refresh_critical_data(self) -> int:
        """Re-fetch every high-priority API route."""
        return await self.refresh_routes(
            self.routes.routes_where(lambda route: route.priority is RoutePriority.HIGH)
        )

    async def refresh_routes(self, prefixes: Iterable[str]) -> int:
        """Re-fetch and re-cache each route. Failures are skipped. Returns the number refreshed."""
        refreshed = 0
        for prefix in prefixes:
            request = httpx.Request("GET", self._absolute(prefix))
            try:
                response = await self.api_strategy.fetch_and_store(request)
            except httpx.TransportError as e:
                logger.debug("Refresh of %s failed: %s", prefix, e)
                continue
            if response.is_success:
                refreshed += 1
        return refreshed

    async def _on_connectivity_change(self, online: bool) -> None:
        if not online:
            return
        await self.fire_background_sync()
        await self.refresh_routes(
            self.routes.routes_where(lambda route: route.sync_on_reconnect)
        )

    async def fire_background_sync(self) -> List[str]:
        """Run every registered background sync tag now. Returns the tags fired."""
        fired = await self.background_sync.fire(self.handle_sync)
        if fired:
            logger.info("Ran background sync: %s", ", ".join(fired))
        return fired

    def _on_sync_registered(self, tag: str) -> None:
        if self.connectivity.is_online():
            self.scheduler.spawn(self.fire_background_sync(), name=f"background sync {tag}")

    def start_periodic_sync(self, interval: Optional[float] = None) -> asyncio.Task:
        """Fire the periodic sync tag every ``interval`` seconds."""
        if self._periodic_task is not None and not self._periodic_task.done():
            return self._periodic_task
        interval = interval or self.config.get("periodic_sync_interval")
        tag = self.config.get("periodic_sync_tag")
        self._periodic_task = asyncio.create_task(
            run_periodic(lambda: self.handle_periodic_sync(tag), interval)
        )
        return self._periodic_task

    async def stop_periodic_sync(self) -> None:
        task, self._periodic_task = self._periodic_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # Queue management

    async def pending_mutations(self) -> List[PendingMutation]:
        mutations = await self.store.all()
        mutations.sort(key=lambda m: (m.timestamp, m.id))
        return mutations

    async def retry_abandoned(self) -> int:
        """Put abandoned mutations back in line with a fresh retry budget."""
        count = 0
        for mutation in await self.store.all():
            if not mutation.is_abandoned:
                continue
            mutation.status = MutationStatus.PENDING.value
            mutation.retry_count = 0
            mutation.last_error = ""
            await self.store.put(mutation)
            count += 1
        if count:
            self.background_sync.register(self.config.get("sync_tag"))
            logger.info("Re-queued %d abandoned mutations", count)
        return count

    async def discard_pending(self, mutation_id: str) -> None:
        if not await self.store.delete(mutation_id):
            raise MutationNotFoundError(mutation_id)
        logger.info("Discarded pending mutation %s", mutation_id)

    async def clear_caches(self) -> None:
        """Drop the API and page caches. Static assets and images are kept."""
        await self.caches.delete(self.cache_names["api"])
        await self.caches.delete(self.cache_names["dynamic"])

    # Host commands

    async def handle_message(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Handle a command from a connected application.

        Returns the reply to send back, or None for commands without one.
        Unknown commands get an ``ERROR`` reply.
        """
        command = data.get("type") if isinstance(data, dict) else None

        if command == SKIP_WAITING:
            await self.skip_waiting()
            return None
        elif command == GET_PENDING_SYNC_COUNT:
            return {
                "type": notifications.PENDING_SYNC_COUNT,
                "count": await self.store.count(),
                "abandoned": await self.store.count(MutationStatus.ABANDONED.value),
            }
        elif command == CLEAR_CACHE:
            await self.clear_caches()
            return {"type": notifications.CACHE_CLEARED}
        elif command == FORCE_SYNC:
            result = await self.sync_now()
            return {"type": notifications.SYNC_COMPLETE, "results": result.to_dict()}
        elif command == RETRY_ABANDONED:
            count = await self.retry_abandoned()
            return {"type": notifications.ABANDONED_RETRIED, "count": count}
        elif command == DISCARD_PENDING:
            mutation_id = data.get("id")
            try:
                await self.discard_pending(mutation_id)
            except MutationNotFoundError as e:
                return {"type": notifications.ERROR, "error": e.message}
            return {"type": notifications.PENDING_DISCARDED, "id": mutation_id}

        logger.warning("Unknown offline command: %r", command)
        return {"type": notifications.ERROR, "error": f"Unknown command: {command!r}"}

    async def aclose(self) -> None:
        await self.stop_periodic_sync()
        await self.scheduler.drain()
        await self.network.aclose()


_worker: Optional[OfflineWorker] = None


def get_worker() -> OfflineWorker:
    """Get or create the process-wide worker, talking to the real network."""
    global _worker
    if _worker is None:
        _worker = OfflineWorker(httpx.AsyncHTTPTransport())
    return _worker


def set_worker(worker: OfflineWorker) -> None:
    """Manually set the worker (useful for testing)."""
    global _worker
    _worker = worker


def reset_worker() -> None:
    global _worker
    _worker = None
