"""
Sync orchestrator: drains the offline queue once connectivity returns.

One pass loads every pending mutation, replays them oldest first, and
settles each one:

- 2xx or 409: delete, count as synced
- 5xx or network error: count as failed, persist the retry; at the retry
  ceiling the record is marked abandoned and left for manual resolution
- any other 4xx: delete, count as failed (permanent rejection)
- conflict resolved as skip: delete without replaying, count as conflict

Updates whose strategy is not ``client-wins`` are checked for conflicts
first.
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

import httpx

from . import notifications
from .conflicts import ConflictDetector, ConflictResolver
from .network import Network
from .signals import mutation_abandoned, sync_completed
from .storage.base import RAW_BODY_KEY, MutationStatus, PendingMutation, QueueStore

logger = logging.getLogger(__name__)

SYNC_HEADER = "X-Offline-Sync"
TIMESTAMP_HEADER = "X-Offline-Timestamp"

# Recomputed by httpx for the replayed body
_REPLAY_EXCLUDED_HEADERS = frozenset({"content-length", "transfer-encoding"})


@dataclass
class SyncResult:
    """Counts from one sync pass."""

    synced: int = 0
    failed: int = 0
    conflicts: int = 0
    abandoned: int = 0

    def summary(self) -> str:
        """Notification text, e.g. ``"3 changes synced. 1 conflicts resolved."``."""
        parts = []
        if self.synced:
            parts.append(f"{self.synced} changes synced.")
        if self.conflicts:
            parts.append(f"{self.conflicts} conflicts resolved.")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def replay_request(mutation: PendingMutation) -> httpx.Request:
    """Rebuild the HTTP request for ``mutation`` with the sync marker headers."""
    headers = {
        name: value
        for name, value in mutation.headers.items()
        if name.lower() not in _REPLAY_EXCLUDED_HEADERS
    }
    headers[SYNC_HEADER] = "true"
    headers[TIMESTAMP_HEADER] = str(mutation.timestamp)

    content = None
    if mutation.has_raw_body:
        content = mutation.body[RAW_BODY_KEY].encode("utf-8")
    elif mutation.body is not None:
        content = json.dumps(mutation.body).encode("utf-8")
        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = "application/json"

    return httpx.Request(mutation.method, mutation.url, headers=headers, content=content)


class SyncOrchestrator:
    def __init__(
        self,
        store: QueueStore,
        network: Network,
        detector: ConflictDetector,
        resolver: ConflictResolver,
        notifier: notifications.Notifier,
        max_retries: int = 5,
        notification_title: str = "SafetyFirst EHS Sync",
    ):
        self.store = store
        self.network = network
        self.detector = detector
        self.resolver = resolver
        self.notifier = notifier
        self.max_retries = max_retries
        self.notification_title = notification_title
        self._lock = asyncio.Lock()

    async def pending(self) -> List[PendingMutation]:
        """Mutations the next pass will replay, in replay order."""
        mutations = [m for m in await self.store.all() if not m.is_abandoned]
        mutations.sort(key=lambda m: (m.timestamp, m.id))
        return mutations

    async def run(self) -> SyncResult:
        """
        Run one sync pass and return its counts.

        Passes never overlap: a pass started while another is running waits
        for it and then only sees what is still queued.
        """
        async with self._lock:
            return await self._run()

    async def _run(self) -> SyncResult:
        result = SyncResult()
        mutations = await self.pending()
        if mutations:
            logger.info("Syncing %d pending mutations", len(mutations))

        for mutation in mutations:
            await self._sync_one(mutation, result)

        if result.synced or result.conflicts:
            await self.notifier.show_notification(
                self.notification_title, result.summary(), tag="sync-results"
            )
        if mutations:
            logger.info(
                "Sync pass finished: %d synced, %d failed, %d conflicts, %d abandoned",
                result.synced,
                result.failed,
                result.conflicts,
                result.abandoned,
            )

        await sync_completed.asend(sender=self.__class__, result=result)
        return result

    async def _sync_one(self, mutation: PendingMutation, result: SyncResult) -> None:
        if self.detector.applies_to(mutation):
            conflict = await self.detector.detect(mutation)
            if conflict is not None:
                resolution = self.resolver.resolve(mutation, conflict)
                if resolution.skip:
                    await self.store.delete(mutation.id)
                    result.conflicts += 1
                    logger.info(
                        "Dropped %s after conflict: %s", mutation.id, resolution.reason
                    )
                    await self.notifier.post_message(
                        {
                            "type": notifications.SYNC_CONFLICT,
                            "requestId": mutation.id,
                            "entityType": mutation.entity_type,
                            "reason": resolution.reason,
                        }
                    )
                    return
                mutation.body = resolution.resolved_body

        try:
            response = await self.network.fetch(replay_request(mutation))
        except httpx.TransportError as e:
            logger.warning("Replay of %s failed: %s", mutation.id, e)
            await self._record_failure(mutation, str(e) or e.__class__.__name__, result)
            return

        status = response.status_code
        if response.is_success or status == 409:
            await self.store.delete(mutation.id)
            result.synced += 1
            await self.notifier.post_message(
                {
                    "type": notifications.SYNC_SUCCESS,
                    "requestId": mutation.id,
                    "entityType": mutation.entity_type,
                }
            )
        elif status >= 500:
            logger.warning("Replay of %s got %d, will retry", mutation.id, status)
            await self._record_failure(mutation, f"Server returned {status}", result)
        else:
            await self.store.delete(mutation.id)
            result.failed += 1
            logger.warning("Replay of %s rejected with %d, discarding", mutation.id, status)
            await self.notifier.post_message(
                {
                    "type": notifications.SYNC_FAILED,
                    "requestId": mutation.id,
                    "entityType": mutation.entity_type,
                    "error": f"Server returned {status}",
                }
            )

    async def _record_failure(
        self, mutation: PendingMutation, error: str, result: SyncResult
    ) -> None:
        """Count a transient failure and persist the new retry count."""
        mutation.retry_count += 1
        mutation.last_error = error
        result.failed += 1

        if mutation.retry_count < self.max_retries:
            await self.store.put(mutation)
            return

        mutation.status = MutationStatus.ABANDONED.value
        await self.store.put(mutation)
        result.abandoned += 1
        logger.warning(
            "Abandoned %s %s (%s) after %d attempts: %s",
            mutation.method,
            mutation.entity_type,
            mutation.id,
            mutation.retry_count,
            error,
        )
        await self.notifier.post_message(
            {
                "type": notifications.SYNC_ABANDONED,
                "requestId": mutation.id,
                "entityType": mutation.entity_type,
                "error": error,
                "retryCount": mutation.retry_count,
            }
        )
        await mutation_abandoned.asend(sender=self.__class__, mutation=mutation)
