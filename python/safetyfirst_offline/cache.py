"""
Named response caches.

A ``ResponseCache`` holds several ``CacheNamespace`` objects (static,
dynamic, api, images), each an insertion-ordered map from request identity to
a ``CachedResponse``. Eviction is count-based, oldest entry first.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

CACHED_AT_HEADER = "x-cached-at"


def cache_key(request: httpx.Request) -> str:
    """Request identity used as the cache key: method plus full URL."""
    return f"{request.method.upper()} {request.url}"


@dataclass
class CachedResponse:
    """A stored HTTP response, body fully read."""

    status_code: int
    headers: List[tuple] = field(default_factory=list)
    content: bytes = b""

    @classmethod
    def from_response(
        cls, response: httpx.Response, cached_at: Optional[int] = None
    ) -> "CachedResponse":
        """
        Snapshot a response that has already been read.

        When ``cached_at`` is given the capture-time header is (re)written;
        otherwise any header already on the response is kept as is.
        """
        headers = [
            (name, value)
            for name, value in response.headers.items()
            if cached_at is None or name.lower() != CACHED_AT_HEADER
        ]
        if cached_at is not None:
            headers.append((CACHED_AT_HEADER, str(cached_at)))
        return cls(response.status_code, headers, response.content)

    @property
    def cached_at(self) -> Optional[int]:
        """Capture time in milliseconds, or None when the entry was never stamped."""
        for name, value in self.headers:
            if name.lower() == CACHED_AT_HEADER:
                try:
                    return int(value)
                except ValueError:
                    return None
        return None

    def to_response(
        self, request: Optional[httpx.Request] = None, extra_headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        headers = httpx.Headers(self.headers)
        for name, value in (extra_headers or {}).items():
            headers[name] = value
        return httpx.Response(
            self.status_code, headers=headers, content=self.content, request=request
        )


class CacheNamespace:
    """One named cache. Re-putting a key moves it to the newest position."""

    def __init__(self, name: str):
        self.name = name
        self._entries: "OrderedDict[str, CachedResponse]" = OrderedDict()

    async def match(self, request: httpx.Request) -> Optional[CachedResponse]:
        return self._entries.get(cache_key(request))

    async def put(self, request: httpx.Request, entry: CachedResponse) -> None:
        key = cache_key(request)
        self._entries.pop(key, None)
        self._entries[key] = entry

    async def delete(self, request: httpx.Request) -> bool:
        return self._entries.pop(cache_key(request), None) is not None

    async def keys(self) -> List[str]:
        return list(self._entries)

    async def trim(self, max_items: int) -> int:
        """Evict oldest entries until at most ``max_items`` remain. Returns the number evicted."""
        evicted = 0
        while len(self._entries) > max_items:
            key, _ = self._entries.popitem(last=False)
            evicted += 1
            logger.debug("Evicted %s from cache %s", key, self.name)
        return evicted

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self):
        return len(self._entries)


class ResponseCache:
    """Registry of cache namespaces, opened lazily by name."""

    def __init__(self):
        self._namespaces: Dict[str, CacheNamespace] = {}

    async def open(self, name: str) -> CacheNamespace:
        namespace = self._namespaces.get(name)
        if namespace is None:
            namespace = self._namespaces[name] = CacheNamespace(name)
        return namespace

    async def delete(self, name: str) -> bool:
        return self._namespaces.pop(name, None) is not None

    async def names(self) -> List[str]:
        return list(self._namespaces)

    async def match(self, request: httpx.Request) -> Optional[CachedResponse]:
        """Look ``request`` up across every namespace, oldest-opened first."""
        for namespace in list(self._namespaces.values()):
            entry = await namespace.match(request)
            if entry is not None:
                return entry
        return None
