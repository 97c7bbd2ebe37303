"""
Offline mutation queue: captures API writes that cannot reach the server.
"""

import json
import logging
from typing import Any, Callable, Optional, Tuple

import httpx

from . import notifications
from .network import Network
from .policies import ConflictPolicy, extract_entity_type
from .scheduler import BackgroundSync
from .signals import mutation_queued
from .storage.base import RAW_BODY_KEY, PendingMutation, QueueStore
from .utils import generate_pending_id

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Changes saved offline. Will sync when reconnected."


def parse_body(content: bytes) -> Tuple[Any, bool]:
    """
    Decode a request body for storage.

    Returns ``(body, is_raw)``. JSON payloads are parsed; anything else is
    kept verbatim under ``rawBody`` and flagged raw. An empty body is None.
    """
    if not content:
        return None, False
    text = content.decode("utf-8", errors="replace")
    try:
        return json.loads(text), False
    except ValueError:
        return {RAW_BODY_KEY: text}, True


class OfflineMutationQueue:
    """
    Accepts mutating API requests.

    While online the request is sent straight through; only a transport
    failure makes it fall through to the queue. A queued request is answered
    with ``202 Accepted`` and ``offline: true`` so the caller knows the write
    is not confirmed yet.
    """

    def __init__(
        self,
        store: QueueStore,
        network: Network,
        policy: ConflictPolicy,
        notifier: notifications.Notifier,
        clock: Callable[[], int],
        background_sync: Optional[BackgroundSync] = None,
        sync_tag: str = "sync-pending-requests",
        api_prefix: str = "/api/",
    ):
        self.store = store
        self.network = network
        self.policy = policy
        self.notifier = notifier
        self.clock = clock
        self.background_sync = background_sync
        self.sync_tag = sync_tag
        self.api_prefix = api_prefix

    async def submit(self, request: httpx.Request, online: bool) -> httpx.Response:
        if online:
            try:
                return await self.network.fetch(request)
            except httpx.TransportError as e:
                logger.debug("%s %s failed, queueing: %s", request.method, request.url.path, e)

        mutation = await self.enqueue(request)
        return httpx.Response(
            202,
            json={
                "success": True,
                "offline": True,
                "pendingId": mutation.id,
                "message": QUEUED_MESSAGE,
                "queuedAt": mutation.timestamp,
            },
            request=request,
        )

    async def enqueue(self, request: httpx.Request) -> PendingMutation:
        """Persist ``request`` as a PendingMutation and tell listeners about it."""
        body, body_is_raw = parse_body(await request.aread())
        timestamp = self.clock()
        entity_type = extract_entity_type(request.url, self.api_prefix)
        mutation = PendingMutation(
            id=generate_pending_id(timestamp),
            url=str(request.url),
            method=request.method.upper(),
            headers=dict(request.headers),
            body=body,
            body_is_raw=body_is_raw,
            timestamp=timestamp,
            entity_type=entity_type,
            conflict_strategy=self.policy.strategy_for(entity_type).value,
        )
        await self.store.add(mutation)
        logger.warning(
            "Queued offline %s %s as %s (%s)",
            mutation.method,
            request.url.path,
            mutation.id,
            entity_type,
        )

        if self.background_sync is not None:
            self.background_sync.register(self.sync_tag)

        await self.notifier.post_message(
            {
                "type": notifications.OFFLINE_REQUEST_QUEUED,
                "requestId": mutation.id,
                "entityType": entity_type,
            }
        )
        await mutation_queued.asend(sender=self.__class__, mutation=mutation)
        return mutation
