"""
Testing utilities for code built on the offline sync layer.

Provides stand-ins for everything the worker talks to:
- FakeApi: an in-process remote API for ``httpx.MockTransport``, with an
  offline switch and scripted responses
- FakeClock: a millisecond clock that only moves when told to
- RecordingNotifier: captures messages and notifications instead of sending them

Example usage:
    from safetyfirst_offline.testing import FakeApi, FakeClock, RecordingNotifier
    from safetyfirst_offline.worker import OfflineWorker

    async def test_offline_create():
        api = FakeApi()
        worker = OfflineWorker(api.transport(), store=InMemoryQueueStore(),
                               notifier=RecordingNotifier(), clock=FakeClock())
        api.offline = True
        async with worker.client() as client:
            response = await client.post("/api/incidents", json={"title": "Spill"})
        assert response.status_code == 202
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from .notifications import Notifier

DEFAULT_START_MS = 1_700_000_000_000

ScriptedResponse = Union[int, Tuple[int, Any], httpx.Response, Exception]


def iso_timestamp(ms: int) -> str:
    """ISO-8601 UTC string for epoch milliseconds, the way the API serializes them."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


class FakeClock:
    """Millisecond clock for deterministic freshness and ordering."""

    def __init__(self, start: int = DEFAULT_START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingNotifier(Notifier):
    """Notifier that keeps everything it is given."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self.notifications: List[Dict[str, Any]] = []

    async def post_message(self, message: Dict[str, Any]) -> None:
        self.messages.append(message)

    async def show_notification(
        self, title: str, body: str, tag: Optional[str] = None, **options
    ) -> None:
        self.notifications.append({"title": title, "body": body, "tag": tag, **options})

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == message_type]

    def clear(self) -> None:
        self.messages.clear()
        self.notifications.clear()


class FakeApi:
    """
    In-process remote API.

    Default behavior:
    - GET of a path in ``entities`` returns that entity as JSON
    - other GETs under /api/ return ``{"path": ..., "hits": n}``; non-API GETs
      return a small text body
    - POST returns 201 echoing the body; PUT/PATCH update ``entities``;
      DELETE removes the entity and returns 204

    ``script()`` queues responses for one method and path ahead of the
    defaults. While ``offline`` is True every request raises
    ``httpx.ConnectError`` and nothing is recorded.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.entities: Dict[str, Dict[str, Any]] = {}
        self.responses: Dict[Tuple[str, str], List[ScriptedResponse]] = {}
        self.offline = False
        self._hits: Dict[str, int] = {}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def script(self, method: str, path: str, *responses: ScriptedResponse) -> None:
        """Queue responses for ``method path``, used once each in order."""
        self.responses.setdefault((method.upper(), path), []).extend(responses)

    def requests_for(self, method: str, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method.upper() and (path is None or r.url.path == path)
        ]

    @staticmethod
    def json_body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("Network is unreachable", request=request)
        self.requests.append(request)

        key = (request.method.upper(), request.url.path)
        scripted = self.responses.get(key)
        if scripted:
            return self._build(scripted.pop(0), request)
        return self._default(request)

    def _build(self, item: ScriptedResponse, request: httpx.Request) -> httpx.Response:
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        if isinstance(item, tuple):
            status, body = item
            return httpx.Response(status, json=body)
        return httpx.Response(item, json={"status": item})

    def _default(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method.upper()

        if method == "GET":
            if path in self.entities:
                return httpx.Response(200, json=self.entities[path])
            self._hits[path] = self._hits.get(path, 0) + 1
            if path.startswith("/api/"):
                return httpx.Response(200, json={"path": path, "hits": self._hits[path]})
            return httpx.Response(200, text=f"content of {path} #{self._hits[path]}")

        try:
            body = self.json_body(request)
        except ValueError:
            body = None
        if method == "POST":
            return httpx.Response(201, json=body if body is not None else {})
        if method in ("PUT", "PATCH"):
            entity = dict(self.entities.get(path, {}))
            if isinstance(body, dict):
                entity.update(body)
            self.entities[path] = entity
            return httpx.Response(200, json=entity)
        if method == "DELETE":
            self.entities.pop(path, None)
            return httpx.Response(204)
        return httpx.Response(405)
