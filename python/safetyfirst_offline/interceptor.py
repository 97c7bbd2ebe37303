"""
Request interceptor: the single entry point for the application's HTTP traffic.

``OfflineTransport`` is an httpx transport. Install it on a client and every
request is classified and handed to the matching strategy::

    client = httpx.AsyncClient(transport=worker.transport)
    await client.post("https://ehs.example.com/api/incidents", json={...})
"""

import logging
import re
from enum import Enum
from typing import Iterable

import httpx

from .connectivity import ConnectivityStatus
from .network import Network
from .policies import SAFE_METHODS, is_api_request
from .queue import OfflineMutationQueue
from .strategies import ApiCacheStrategy, CacheStrategies

logger = logging.getLogger(__name__)


class RequestKind(str, Enum):
    PASSTHROUGH = "passthrough"
    MUTATION = "mutation"
    API = "api"
    IMAGE = "image"
    STATIC = "static"
    DYNAMIC = "dynamic"


class RequestClassifier:
    """Decides which strategy handles a request, from method, URL and headers."""

    def __init__(
        self,
        api_prefix: str = "/api/",
        static_files: Iterable[str] = (),
        image_extensions: Iterable[str] = ("jpg", "jpeg", "png", "gif", "webp", "svg"),
    ):
        self.api_prefix = api_prefix
        self.static_paths = set()
        self.static_urls = set()
        for entry in static_files:
            if entry.startswith(("http://", "https://")):
                self.static_urls.add(str(httpx.URL(entry)))
            else:
                self.static_paths.add(entry)
        extensions = "|".join(re.escape(ext) for ext in image_extensions)
        self.image_re = re.compile(rf"\.({extensions})$", re.IGNORECASE)

    def classify(self, request: httpx.Request) -> RequestKind:
        url = request.url
        if url.scheme not in ("http", "https"):
            return RequestKind.PASSTHROUGH

        method = request.method.upper()
        if method != "GET":
            # HEAD and OPTIONS are neither cached nor queued
            if method not in SAFE_METHODS and is_api_request(url, self.api_prefix):
                return RequestKind.MUTATION
            return RequestKind.PASSTHROUGH

        if is_api_request(url, self.api_prefix):
            return RequestKind.API
        if request.headers.get("sec-fetch-dest") == "image" or self.image_re.search(url.path):
            return RequestKind.IMAGE
        if url.path in self.static_paths or str(url) in self.static_urls:
            return RequestKind.STATIC
        return RequestKind.DYNAMIC


class OfflineTransport(httpx.AsyncBaseTransport):
    """
    httpx transport that answers requests from cache, network or the offline queue.

    Connectivity is read once per request and passed down, so a request that
    started online is handled as online throughout.
    """

    def __init__(
        self,
        network: Network,
        connectivity: ConnectivityStatus,
        classifier: RequestClassifier,
        api_strategy: ApiCacheStrategy,
        strategies: CacheStrategies,
        mutation_queue: OfflineMutationQueue,
    ):
        self.network = network
        self.connectivity = connectivity
        self.classifier = classifier
        self.api_strategy = api_strategy
        self.strategies = strategies
        self.mutation_queue = mutation_queue

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        kind = self.classifier.classify(request)
        online = self.connectivity.is_online()
        logger.debug("%s %s -> %s (online=%s)", request.method, request.url.path, kind.value, online)

        if kind is RequestKind.PASSTHROUGH:
            return await self.network.transport.handle_async_request(request)
        if kind is RequestKind.MUTATION:
            return await self.mutation_queue.submit(request, online)
        if kind is RequestKind.API:
            return await self.api_strategy.handle(request, online)
        if kind is RequestKind.IMAGE:
            return await self.strategies.image(request, online)
        if kind is RequestKind.STATIC:
            return await self.strategies.static(request, online)
        return await self.strategies.stale_while_revalidate(request, online)

    async def aclose(self) -> None:
        await self.network.aclose()
