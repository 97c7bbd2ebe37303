"""
Tests for the worker lifecycle, sync triggers and host commands.
"""

import asyncio

import httpx
import pytest

from safetyfirst_offline import notifications
from safetyfirst_offline.cache import CachedResponse
from safetyfirst_offline.exceptions import MutationNotFoundError
from safetyfirst_offline.storage import MutationStatus, PendingMutation
from safetyfirst_offline.worker import (
    OfflineWorker,
    get_worker,
    reset_worker,
    set_worker,
)

T = 1_700_000_000_000


def queued(suffix, status=MutationStatus.PENDING.value, retry_count=0):
    return PendingMutation(
        id=f"{T}-{suffix}",
        url="https://ehs.test/api/incidents",
        method="POST",
        headers={},
        body={"title": suffix},
        timestamp=T,
        entity_type="incidents",
        conflict_strategy="server-wins",
        status=status,
        retry_count=retry_count,
        last_error="Server returned 500" if retry_count else "",
    )


class TestInstall:
    @pytest.mark.asyncio
    async def test_precaches_static_files_and_activates(self, worker, notifier):
        assert await worker.install() is True

        cache = await worker.caches.open(worker.cache_names["static"])
        assert len(cache) == 3
        assert worker.active is True
        assert notifier.of_type(notifications.SW_UPDATED) == [
            {"type": notifications.SW_UPDATED, "version": "v1.1.0"}
        ]

    @pytest.mark.asyncio
    async def test_all_or_nothing_on_bad_status(self, worker, api):
        api.script("GET", "/manifest.json", 404)

        assert await worker.install() is False
        assert await worker.caches.names() == []
        assert worker.active is False

    @pytest.mark.asyncio
    async def test_all_or_nothing_offline(self, worker, api):
        api.offline = True
        assert await worker.install() is False
        assert await worker.caches.names() == []

    @pytest.mark.asyncio
    async def test_all_or_nothing_when_one_fetch_raises(self, worker, api):
        api.script("GET", "/app.html", httpx.ConnectError("reset"))

        assert await worker.install() is False
        assert sorted(r.url.path for r in api.requests) == ["/", "/app.html", "/manifest.json"]
        assert await worker.caches.names() == []
        assert worker.active is False

    @pytest.mark.asyncio
    async def test_origin_override(self, worker, api):
        await worker.install(origin="https://staging.ehs.test")
        assert {r.url.host for r in api.requests} == {"staging.ehs.test"}


class TestActivate:
    @pytest.mark.asyncio
    async def test_purges_old_versions_only(self, worker):
        for name in ("safetyfirst-api-v1.0.0", "safetyfirst-static-v0.9", "someone-else"):
            await worker.caches.open(name)
        await worker.caches.open(worker.cache_names["api"])

        purged = await worker.activate()

        assert sorted(purged) == ["safetyfirst-api-v1.0.0", "safetyfirst-static-v0.9"]
        assert sorted(await worker.caches.names()) == sorted(
            ["someone-else", worker.cache_names["api"]]
        )

    @pytest.mark.asyncio
    async def test_skip_waiting_activates_once(self, worker, notifier):
        await worker.skip_waiting()
        await worker.skip_waiting()
        assert len(notifier.of_type(notifications.SW_UPDATED)) == 1


class TestSyncTriggers:
    @pytest.mark.asyncio
    async def test_handle_sync_known_tag(self, worker, store, api):
        await store.add(queued("a"))
        result = await worker.handle_sync("sync-pending-requests")
        assert result.synced == 1

    @pytest.mark.asyncio
    async def test_handle_sync_unknown_tag(self, worker, store, api):
        await store.add(queued("a"))
        assert await worker.handle_sync("something-else") is None
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_registering_while_online_syncs_right_away(self, worker, store, api):
        await store.add(queued("a"))
        worker.background_sync.register("sync-pending-requests")
        await worker.scheduler.drain()

        assert len(api.requests_for("POST", "/api/incidents")) == 1
        assert await store.count() == 0
        assert worker.background_sync.get_tags() == []

    @pytest.mark.asyncio
    async def test_tag_kept_while_records_remain(self, worker, store, api):
        await store.add(queued("a"))
        api.script("POST", "/api/incidents", 503)

        result = await worker.handle_sync("sync-pending-requests")

        assert result.failed == 1
        assert (await store.get(f"{T}-a")).retry_count == 1
        assert worker.background_sync.get_tags() == ["sync-pending-requests"]

    @pytest.mark.asyncio
    async def test_periodic_wake_up_fires_leftover_tags(self, worker, store, api):
        await store.add(queued("a"))
        worker.background_sync.keep("sync-pending-requests")

        await worker.handle_periodic_sync("refresh-critical-data")

        assert len(api.requests_for("POST", "/api/incidents")) == 1
        assert await store.count() == 0
        assert worker.background_sync.get_tags() == []

    @pytest.mark.asyncio
    async def test_periodic_wake_up_offline_leaves_tags(self, worker, connectivity, store, api):
        await store.add(queued("a"))
        await connectivity.set_online(False)
        worker.background_sync.register("sync-pending-requests")

        await worker.handle_periodic_sync("refresh-critical-data")

        assert api.requests_for("POST") == []
        assert worker.background_sync.get_tags() == ["sync-pending-requests"]

    @pytest.mark.asyncio
    async def test_periodic_refreshes_high_priority_routes(self, worker, api, clock):
        refreshed = await worker.handle_periodic_sync("refresh-critical-data")

        paths = sorted(r.url.path for r in api.requests_for("GET"))
        assert paths == ["/api/action-items", "/api/claims", "/api/dashboard", "/api/incidents"]
        assert refreshed == 4

        cache = await worker.caches.open(worker.cache_names["api"])
        cached = await cache.match(httpx.Request("GET", "https://ehs.test/api/dashboard"))
        assert cached.cached_at == clock.now

    @pytest.mark.asyncio
    async def test_periodic_unknown_tag(self, worker, api):
        assert await worker.handle_periodic_sync("nope") is None
        assert api.requests == []

    @pytest.mark.asyncio
    async def test_refresh_skips_failures(self, worker, api):
        api.script("GET", "/api/dashboard", httpx.ConnectError("reset"))
        api.script("GET", "/api/claims", 500)
        assert await worker.refresh_critical_data() == 2

    @pytest.mark.asyncio
    async def test_periodic_task_runs_until_stopped(self, worker, api):
        worker.start_periodic_sync(0.01)
        await asyncio.sleep(0.05)
        await worker.stop_periodic_sync()

        count = len(api.requests_for("GET", "/api/dashboard"))
        assert count >= 1
        await asyncio.sleep(0.03)
        assert len(api.requests_for("GET", "/api/dashboard")) == count

    @pytest.mark.asyncio
    async def test_going_offline_does_nothing(self, worker, connectivity, api, store):
        await store.add(queued("a"))
        await connectivity.set_online(False)
        worker.background_sync.register("sync-pending-requests")
        await worker.scheduler.drain()
        assert api.requests == []
        assert await store.count() == 1
        assert worker.background_sync.get_tags() == ["sync-pending-requests"]


class TestHostCommands:
    @pytest.mark.asyncio
    async def test_skip_waiting(self, worker):
        assert await worker.handle_message({"type": "SKIP_WAITING"}) is None
        assert worker.active is True

    @pytest.mark.asyncio
    async def test_pending_count(self, worker, store):
        await store.add(queued("a"))
        await store.add(queued("b", status=MutationStatus.ABANDONED.value, retry_count=5))

        reply = await worker.handle_message({"type": "GET_PENDING_SYNC_COUNT"})

        assert reply == {"type": notifications.PENDING_SYNC_COUNT, "count": 2, "abandoned": 1}

    @pytest.mark.asyncio
    async def test_clear_cache_keeps_static_and_images(self, worker):
        for kind in ("static", "api", "dynamic", "images"):
            cache = await worker.caches.open(worker.cache_names[kind])
            await cache.put(
                httpx.Request("GET", f"https://ehs.test/{kind}"),
                CachedResponse.from_response(httpx.Response(200, text=kind)),
            )

        reply = await worker.handle_message({"type": "CLEAR_CACHE"})

        assert reply == {"type": notifications.CACHE_CLEARED}
        assert sorted(await worker.caches.names()) == sorted(
            [worker.cache_names["static"], worker.cache_names["images"]]
        )

    @pytest.mark.asyncio
    async def test_force_sync(self, worker, store):
        await store.add(queued("a"))
        reply = await worker.handle_message({"type": "FORCE_SYNC"})
        assert reply == {
            "type": notifications.SYNC_COMPLETE,
            "results": {"synced": 1, "failed": 0, "conflicts": 0, "abandoned": 0},
        }

    @pytest.mark.asyncio
    async def test_retry_abandoned(self, worker, store, api):
        await store.add(queued("a", status=MutationStatus.ABANDONED.value, retry_count=5))

        reply = await worker.handle_message({"type": "RETRY_ABANDONED"})

        assert reply == {"type": notifications.ABANDONED_RETRIED, "count": 1}
        stored = await store.get(f"{T}-a")
        assert stored.status == MutationStatus.PENDING.value
        assert stored.retry_count == 0
        assert stored.last_error == ""

        # Re-queued while online, so the replay starts without a FORCE_SYNC
        await worker.scheduler.drain()
        assert len(api.requests_for("POST", "/api/incidents")) == 1
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_discard_pending(self, worker, store):
        await store.add(queued("a"))
        reply = await worker.handle_message({"type": "DISCARD_PENDING", "id": f"{T}-a"})
        assert reply == {"type": notifications.PENDING_DISCARDED, "id": f"{T}-a"}
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_discard_missing(self, worker):
        reply = await worker.handle_message({"type": "DISCARD_PENDING", "id": "nope"})
        assert reply["type"] == notifications.ERROR
        assert "nope" in reply["error"]

        with pytest.raises(MutationNotFoundError):
            await worker.discard_pending("nope")

    @pytest.mark.asyncio
    async def test_unknown_command(self, worker):
        reply = await worker.handle_message({"type": "REBOOT"})
        assert reply == {"type": notifications.ERROR, "error": "Unknown command: 'REBOOT'"}

    @pytest.mark.asyncio
    async def test_pending_mutations_in_replay_order(self, worker, store):
        later = queued("later")
        later.timestamp = T + 5
        await store.add(later)
        await store.add(queued("first"))
        assert [m.id for m in await worker.pending_mutations()] == [f"{T}-first", f"{T}-later"]


class TestWorkerRegistry:
    def test_set_and_reset(self, worker):
        set_worker(worker)
        assert get_worker() is worker
        reset_worker()

    def test_default_worker_reads_settings(self):
        worker = get_worker()
        assert isinstance(worker, OfflineWorker)
        assert get_worker() is worker
        assert worker.origin == "https://ehs.test"
