"""
Read strategies: how a GET is answered from cache, network, or a fallback.

- ``ApiCacheStrategy``: network-first with a per-route freshness window,
  stale copy or a 503 JSON body when the network fails.
- ``CacheStrategies``: cache-first for static assets, cache-first with
  background refresh for images, stale-while-revalidate for everything else.
"""

import logging
from typing import Callable, Dict, Optional

import httpx

from .cache import CachedResponse, ResponseCache
from .network import Network
from .policies import RoutePriority, RouteTable
from .scheduler import TaskScheduler

logger = logging.getLogger(__name__)

SERVED_FROM_HEADER = "X-Served-From"
CACHE_AGE_HEADER = "X-Cache-Age"
CACHE_STALE_HEADER = "X-Cache-Stale"

OFFLINE_PLACEHOLDER_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="100" height="100">'
    '<rect fill="#e2e8f0" width="100" height="100"/>'
    '<text x="50" y="50" text-anchor="middle" fill="#94a3b8" '
    'font-family="sans-serif" font-size="12">Offline</text></svg>'
)

OFFLINE_PAGE_HTML = (
    "<!DOCTYPE html><html><head><title>Offline</title>"
    '<meta name="viewport" content="width=device-width,initial-scale=1">'
    "<style>body{font-family:system-ui;display:flex;align-items:center;"
    "justify-content:center;min-height:100vh;margin:0;background:#f1f5f9}"
    ".c{text-align:center;padding:2rem;background:#fff;border-radius:1rem;"
    "box-shadow:0 10px 40px rgba(0,0,0,.1)}h1{color:#1e293b;margin-bottom:.5rem}"
    "p{color:#64748b;margin-bottom:1.5rem}button{background:#3b82f6;color:#fff;"
    "border:none;padding:.875rem 2rem;border-radius:.5rem;cursor:pointer;font-size:1rem}"
    "</style></head><body><div class=\"c\"><h1>You're Offline</h1>"
    "<p>Changes will sync when reconnected.</p>"
    '<button onclick="location.reload()">Retry</button></div></body></html>'
)


def offline_api_response(message: str, request: Optional[httpx.Request] = None) -> httpx.Response:
    """Synthesized 503 for an API read that has neither network nor cache."""
    return httpx.Response(
        503,
        json={"error": "You are offline", "offline": True, "message": message},
        request=request,
    )


def offline_image_response(request: Optional[httpx.Request] = None) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Type": "image/svg+xml"},
        content=OFFLINE_PLACEHOLDER_SVG.encode(),
        request=request,
    )


def _age_seconds(age_ms: int) -> str:
    return str(int(age_ms / 1000 + 0.5))


class ApiCacheStrategy:
    """
    Serves API reads with per-route freshness.

    A cached copy younger than the route's ``max_age`` is returned as is (and,
    for high-priority routes while online, refreshed in the background).
    Anything older goes to the network with a timeout; if that fails the
    stale copy is returned with ``X-Cache-Stale: true``, or a 503 JSON body
    when nothing is cached.
    """

    def __init__(
        self,
        caches: ResponseCache,
        network: Network,
        scheduler: TaskScheduler,
        routes: RouteTable,
        clock: Callable[[], int],
        cache_name: str,
        max_items: int = 100,
        timeout: Optional[float] = 10.0,
    ):
        self.caches = caches
        self.network = network
        self.scheduler = scheduler
        self.routes = routes
        self.clock = clock
        self.cache_name = cache_name
        self.max_items = max_items
        self.timeout = timeout

    async def handle(self, request: httpx.Request, online: bool) -> httpx.Response:
        route = self.routes.lookup(request.url.path)
        cache = await self.caches.open(self.cache_name)
        cached = await cache.match(request)

        age = None
        if cached is not None and cached.cached_at is not None:
            age = self.clock() - cached.cached_at

        if age is not None and age < route.max_age:
            if route.priority is RoutePriority.HIGH and online:
                self.scheduler.spawn(self.refresh(request), name=f"refresh {request.url.path}")
            logger.debug("API cache hit for %s (age %dms)", request.url.path, age)
            return cached.to_response(
                request, {SERVED_FROM_HEADER: "cache", CACHE_AGE_HEADER: _age_seconds(age)}
            )

        try:
            response = await self.fetch_and_store(request, timeout=self.timeout)
        except httpx.TransportError as e:
            logger.debug("API fetch failed for %s: %s", request.url.path, e)
            if cached is not None:
                headers = {SERVED_FROM_HEADER: "cache", CACHE_STALE_HEADER: "true"}
                if age is not None:
                    headers[CACHE_AGE_HEADER] = _age_seconds(age)
                return cached.to_response(request, headers)
            return offline_api_response("API request failed while offline", request)

        response.headers[SERVED_FROM_HEADER] = "network"
        return response

    async def fetch_and_store(
        self, request: httpx.Request, timeout: Optional[float] = None
    ) -> httpx.Response:
        """Fetch ``request``; a 2xx answer is cached with a fresh capture time."""
        response = await self.network.fetch(request, timeout=timeout)
        if response.is_success:
            await self.store(request, response)
        return response

    async def store(self, request: httpx.Request, response: httpx.Response) -> None:
        cache = await self.caches.open(self.cache_name)
        await cache.put(request, CachedResponse.from_response(response, cached_at=self.clock()))
        await cache.trim(self.max_items)

    async def refresh(self, request: httpx.Request) -> bool:
        """Background refresh. Network errors are ignored; the next read tries again."""
        try:
            response = await self.fetch_and_store(request)
        except httpx.TransportError as e:
            logger.debug("Background refresh of %s failed: %s", request.url, e)
            return False
        return response.is_success


class CacheStrategies:
    """Strategies for non-API reads: static assets, images and pages."""

    def __init__(
        self,
        caches: ResponseCache,
        network: Network,
        scheduler: TaskScheduler,
        cache_names: Dict[str, str],
        max_dynamic_items: int = 50,
        max_image_items: int = 100,
        offline_page: str = "/app.html",
    ):
        self.caches = caches
        self.network = network
        self.scheduler = scheduler
        self.cache_names = cache_names
        self.max_dynamic_items = max_dynamic_items
        self.max_image_items = max_image_items
        self.offline_page = offline_page

    async def _fetch_and_cache(
        self, request: httpx.Request, kind: str, max_items: Optional[int] = None
    ) -> httpx.Response:
        response = await self.network.fetch(request)
        if response.is_success:
            cache = await self.caches.open(self.cache_names[kind])
            await cache.put(request, CachedResponse.from_response(response))
            if max_items is not None:
                await cache.trim(max_items)
        return response

    async def _revalidate(self, request: httpx.Request, kind: str, max_items: int) -> None:
        try:
            await self._fetch_and_cache(request, kind, max_items)
        except httpx.TransportError as e:
            logger.debug("Revalidation of %s failed: %s", request.url, e)

    async def static(self, request: httpx.Request, online: bool = True) -> httpx.Response:
        """Strict cache-first."""
        cache = await self.caches.open(self.cache_names["static"])
        cached = await cache.match(request)
        if cached is not None:
            return cached.to_response(request)
        try:
            return await self._fetch_and_cache(request, "static")
        except httpx.TransportError:
            return await self.offline_fallback(request)

    async def image(self, request: httpx.Request, online: bool = True) -> httpx.Response:
        """Cache-first; a hit is refreshed in the background while online."""
        cache = await self.caches.open(self.cache_names["images"])
        cached = await cache.match(request)
        if cached is not None:
            if online:
                self.scheduler.spawn(
                    self._revalidate(request, "images", self.max_image_items),
                    name=f"refresh {request.url.path}",
                )
            return cached.to_response(request)
        try:
            return await self._fetch_and_cache(request, "images", self.max_image_items)
        except httpx.TransportError:
            return offline_image_response(request)

    async def stale_while_revalidate(
        self, request: httpx.Request, online: bool = True
    ) -> httpx.Response:
        cache = await self.caches.open(self.cache_names["dynamic"])
        cached = await cache.match(request)
        if cached is not None:
            if online:
                self.scheduler.spawn(
                    self._revalidate(request, "dynamic", self.max_dynamic_items),
                    name=f"revalidate {request.url.path}",
                )
            return cached.to_response(request)
        try:
            return await self._fetch_and_cache(request, "dynamic", self.max_dynamic_items)
        except httpx.TransportError:
            return await self.offline_fallback(request)

    async def offline_fallback(self, request: httpx.Request) -> httpx.Response:
        """
        Last resort for a read that reached neither cache nor network.

        Page navigations get the cached offline page, or an inline one if it was
        never precached; everything else gets a plain 503.
        """
        path = request.url.path
        navigation = request.headers.get("sec-fetch-mode") == "navigate"
        if path.endswith(".html") or path == "/" or navigation:
            page_request = httpx.Request("GET", request.url.join(self.offline_page))
            static = await self.caches.open(self.cache_names["static"])
            cached = await static.match(page_request)
            if cached is not None:
                return cached.to_response(request)
            return httpx.Response(
                200,
                headers={"Content-Type": "text/html"},
                content=OFFLINE_PAGE_HTML.encode(),
                request=request,
            )
        return httpx.Response(
            503, headers={"Content-Type": "text/plain"}, content=b"Offline", request=request
        )
