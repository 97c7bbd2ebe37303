"""Tests for background task scheduling and sync registrations."""

import asyncio

import pytest

from safetyfirst_offline.connectivity import ConnectivityStatus
from safetyfirst_offline.scheduler import BackgroundSync, TaskScheduler, run_periodic


class TestTaskScheduler:
    @pytest.mark.asyncio
    async def test_drain_waits_for_spawned_work(self):
        scheduler = TaskScheduler()
        done = []

        async def work():
            await asyncio.sleep(0)
            done.append(1)

        scheduler.spawn(work(), name="work")
        assert scheduler.pending == 1
        await scheduler.drain()
        assert done == [1]
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, caplog):
        scheduler = TaskScheduler()

        async def boom():
            raise RuntimeError("refresh failed")

        scheduler.spawn(boom(), name="boom")
        await scheduler.drain()
        assert "Background task boom failed" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        scheduler = TaskScheduler()
        task = scheduler.spawn(asyncio.sleep(10))
        await scheduler.cancel_all()
        assert task.cancelled()


class TestBackgroundSync:
    def test_register_is_idempotent(self):
        sync = BackgroundSync()
        sync.register("sync-pending-requests")
        sync.register("sync-pending-requests")
        assert sync.get_tags() == ["sync-pending-requests"]

    @pytest.mark.asyncio
    async def test_fire_consumes_tags(self):
        sync = BackgroundSync()
        sync.register("a")
        sync.register("b")
        seen = []

        async def handler(tag):
            seen.append(tag)

        assert await sync.fire(handler) == ["a", "b"]
        assert seen == ["a", "b"]
        assert sync.get_tags() == []

    @pytest.mark.asyncio
    async def test_failed_tag_stays_registered(self):
        sync = BackgroundSync()
        sync.register("a")

        async def handler(tag):
            raise RuntimeError("store unavailable")

        with pytest.raises(RuntimeError):
            await sync.fire(handler)
        assert sync.get_tags() == ["a"]

    def test_register_calls_hook_every_time(self):
        heard = []
        sync = BackgroundSync(on_register=heard.append)
        sync.register("sync-pending-requests")
        sync.register("sync-pending-requests")
        assert heard == ["sync-pending-requests", "sync-pending-requests"]
        assert sync.get_tags() == ["sync-pending-requests"]

    def test_keep_skips_hook(self):
        heard = []
        sync = BackgroundSync(on_register=heard.append)
        sync.keep("sync-pending-requests")
        assert heard == []
        assert sync.get_tags() == ["sync-pending-requests"]

    @pytest.mark.asyncio
    async def test_tag_kept_by_handler_waits_for_next_fire(self):
        sync = BackgroundSync()
        sync.register("a")
        calls = []

        async def handler(tag):
            calls.append(tag)
            sync.keep(tag)

        assert await sync.fire(handler) == ["a"]
        assert calls == ["a"]
        assert sync.get_tags() == ["a"]

    @pytest.mark.asyncio
    async def test_failed_tag_does_not_call_hook(self):
        heard = []
        sync = BackgroundSync(on_register=heard.append)
        sync.keep("a")
        sync.keep("b")

        async def handler(tag):
            raise RuntimeError("store unavailable")

        with pytest.raises(RuntimeError):
            await sync.fire(handler)
        assert sync.get_tags() == ["a", "b"]
        assert heard == []


class TestRunPeriodic:
    @pytest.mark.asyncio
    async def test_keeps_running_after_errors(self):
        calls = []

        async def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first wake-up failed")

        task = asyncio.create_task(run_periodic(callback, 0.005))
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert len(calls) >= 2


class TestConnectivityStatus:
    @pytest.mark.asyncio
    async def test_listeners_only_hear_changes(self):
        status = ConnectivityStatus(online=True)
        heard = []

        async def listener(online):
            heard.append(online)

        status.add_listener(listener)
        await status.set_online(True)
        await status.set_online(False)
        await status.set_online(False)
        await status.set_online(True)
        status.remove_listener(listener)
        await status.set_online(False)

        assert heard == [False, True]
        assert status.is_online() is False
