"""
Tests for the sync orchestrator.

Tests cover:
- Replay order and the marker headers on replayed requests
- Settling by response class (2xx, 409, 4xx, 5xx, network error)
- Retry persistence and abandonment at the retry ceiling
- Conflict skips, the summary notification and the completion signal
"""

import json

import httpx
import pytest

from safetyfirst_offline import notifications
from safetyfirst_offline.signals import mutation_abandoned, sync_completed
from safetyfirst_offline.storage import MutationStatus, PendingMutation
from safetyfirst_offline.sync import SyncResult, replay_request
from safetyfirst_offline.testing import iso_timestamp

ENTITY_ID = "65f1a2b3c4d5e6f7a8b9c0d1"
T = 1_700_000_000_000


def mutation(
    suffix="a",
    method="POST",
    path="/api/incidents",
    body=None,
    timestamp=T,
    strategy="server-wins",
    **extra,
):
    return PendingMutation(
        id=f"{timestamp}-{suffix}",
        url=f"https://ehs.test{path}",
        method=method,
        headers={"content-type": "application/json", "authorization": "Bearer t"},
        body={"title": suffix} if body is None else body,
        timestamp=timestamp,
        entity_type=path.split("/")[2],
        conflict_strategy=strategy,
        **extra,
    )


class TestReplayRequest:
    def test_marker_headers(self):
        request = replay_request(mutation())
        assert request.headers["x-offline-sync"] == "true"
        assert request.headers["x-offline-timestamp"] == str(T)
        assert request.headers["authorization"] == "Bearer t"

    def test_json_body(self):
        request = replay_request(mutation(body={"title": "Spill", "severity": 3}))
        assert json.loads(request.content) == {"title": "Spill", "severity": 3}

    def test_raw_body_sent_verbatim(self):
        request = replay_request(
            mutation(body={"rawBody": "note=slippery floor"}, body_is_raw=True)
        )
        assert request.content == b"note=slippery floor"

    def test_json_body_with_raw_key_sent_as_json(self):
        request = replay_request(mutation(body={"rawBody": "hello"}))
        assert json.loads(request.content) == {"rawBody": "hello"}
        assert request.headers["content-type"] == "application/json"

    def test_no_body(self):
        request = replay_request(
            PendingMutation(
                id="1-x",
                url=f"https://ehs.test/api/permits/{ENTITY_ID}",
                method="DELETE",
                headers={},
                body=None,
                timestamp=1,
                entity_type="permits",
                conflict_strategy="server-wins",
            )
        )
        assert request.content == b""

    def test_stale_content_length_dropped(self):
        m = mutation(body={"title": "a much longer title than before"})
        m.headers["content-length"] = "3"
        request = replay_request(m)
        assert int(request.headers["content-length"]) == len(request.content)


class TestSyncPass:
    @pytest.mark.asyncio
    async def test_replayed_oldest_first(self, worker, store, api):
        await store.add(mutation("c", timestamp=T + 20))
        await store.add(mutation("a", timestamp=T))
        await store.add(mutation("b", timestamp=T + 10))

        await worker.sync_now()

        titles = [api.json_body(r)["title"] for r in api.requests_for("POST")]
        assert titles == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_success_and_already_applied_are_removed(self, worker, store, api, notifier):
        await store.add(mutation("a"))
        await store.add(mutation("b", timestamp=T + 1))
        api.script("POST", "/api/incidents", 201, 409)

        result = await worker.sync_now()

        assert result == SyncResult(synced=2)
        assert await store.count() == 0
        assert [m["requestId"] for m in notifier.of_type(notifications.SYNC_SUCCESS)] == [
            f"{T}-a",
            f"{T + 1}-b",
        ]

    @pytest.mark.asyncio
    async def test_client_error_discarded(self, worker, store, api, notifier):
        await store.add(mutation("a"))
        api.script("POST", "/api/incidents", 422)

        result = await worker.sync_now()

        assert result.failed == 1
        assert await store.count() == 0
        (failed,) = notifier.of_type(notifications.SYNC_FAILED)
        assert failed["requestId"] == f"{T}-a"
        assert failed["error"] == "Server returned 422"

    @pytest.mark.asyncio
    async def test_server_error_persists_retry(self, worker, store, api):
        await store.add(mutation("a"))
        api.script("POST", "/api/incidents", 503)

        result = await worker.sync_now()

        assert result.failed == 1
        stored = await store.get(f"{T}-a")
        assert stored.retry_count == 1
        assert stored.last_error == "Server returned 503"
        assert stored.status == MutationStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_network_error_persists_retry(self, worker, store, api):
        await store.add(mutation("a"))
        api.script("POST", "/api/incidents", httpx.ReadTimeout("timed out"))

        result = await worker.sync_now()

        assert result.failed == 1
        assert (await store.get(f"{T}-a")).retry_count == 1

    @pytest.mark.asyncio
    async def test_abandoned_at_retry_ceiling(self, worker, store, api, notifier):
        abandoned = []

        def receiver(sender, mutation, **kwargs):
            abandoned.append(mutation.id)

        await store.add(mutation("a"))
        api.script("POST", "/api/incidents", *[500] * 6)

        mutation_abandoned.connect(receiver)
        try:
            results = [await worker.sync_now() for _ in range(6)]
        finally:
            mutation_abandoned.disconnect(receiver)

        assert [r.failed for r in results] == [1, 1, 1, 1, 1, 0]
        assert results[4].abandoned == 1
        assert len(api.requests_for("POST")) == 5

        stored = await store.get(f"{T}-a")
        assert stored.is_abandoned
        assert stored.retry_count == 5
        (message,) = notifier.of_type(notifications.SYNC_ABANDONED)
        assert message["retryCount"] == 5
        assert message["error"] == "Server returned 500"
        assert abandoned == [f"{T}-a"]

    @pytest.mark.asyncio
    async def test_empty_queue(self, worker, api, notifier):
        result = await worker.sync_now()
        assert result == SyncResult()
        assert api.requests == []
        assert notifier.notifications == []


class TestConflictsDuringSync:
    path = f"/api/incidents/{ENTITY_ID}"

    @pytest.mark.asyncio
    async def test_newer_server_copy_skips_update(self, worker, store, api, notifier):
        api.entities[self.path] = {"title": "server", "updatedAt": iso_timestamp(T + 60000)}
        await store.add(mutation("a", method="PUT", path=self.path))

        result = await worker.sync_now()

        assert result.conflicts == 1
        assert result.synced == 0
        assert api.requests_for("PUT") == []
        assert await store.count() == 0
        (message,) = notifier.of_type(notifications.SYNC_CONFLICT)
        assert message["reason"] == "Server data is newer"

    @pytest.mark.asyncio
    async def test_merge_replays_merged_body(self, worker, store, api):
        path = f"/api/action-items/{ENTITY_ID}"
        api.entities[path] = {
            "status": "open",
            "owner": "kim",
            "updatedAt": iso_timestamp(T + 1000),
        }
        await store.add(
            mutation("a", method="PATCH", path=path, body={"status": "done"}, strategy="merge")
        )

        result = await worker.sync_now()

        assert result.synced == 1
        (patch,) = api.requests_for("PATCH")
        assert api.json_body(patch)["owner"] == "kim"
        assert api.json_body(patch)["status"] == "done"

    @pytest.mark.asyncio
    async def test_client_wins_never_probes(self, worker, store, api):
        await store.add(mutation("a", method="PUT", path=self.path, strategy="client-wins"))
        await worker.sync_now()
        assert api.requests_for("GET") == []
        assert len(api.requests_for("PUT")) == 1


class TestSyncReporting:
    @pytest.mark.asyncio
    async def test_summary_notification(self, worker, store, notifier):
        await store.add(mutation("a"))
        await store.add(mutation("b", timestamp=T + 1))
        await worker.sync_now()

        (shown,) = notifier.notifications
        assert shown["title"] == "SafetyFirst EHS Sync"
        assert shown["body"] == "2 changes synced."
        assert shown["tag"] == "sync-results"

    @pytest.mark.asyncio
    async def test_no_notification_when_only_failures(self, worker, store, api, notifier):
        await store.add(mutation("a"))
        api.script("POST", "/api/incidents", 500)
        await worker.sync_now()
        assert notifier.notifications == []

    @pytest.mark.asyncio
    async def test_completion_signal(self, worker, store):
        results = []

        def receiver(sender, result, **kwargs):
            results.append(result)

        await store.add(mutation("a"))
        sync_completed.connect(receiver)
        try:
            await worker.sync_now()
        finally:
            sync_completed.disconnect(receiver)

        assert results == [SyncResult(synced=1)]

    def test_summary_text(self):
        assert SyncResult(synced=3, conflicts=1).summary() == "3 changes synced. 1 conflicts resolved."
        assert SyncResult(conflicts=2).summary() == "2 conflicts resolved."
        assert SyncResult(failed=4).summary() == ""
