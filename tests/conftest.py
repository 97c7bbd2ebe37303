"""
Pytest configuration and fixtures for the offline sync layer tests.
"""

import pytest

from safetyfirst_offline.config import config
from safetyfirst_offline.connectivity import ConnectivityStatus
from safetyfirst_offline.storage import InMemoryQueueStore, reset_queue_store
from safetyfirst_offline.testing import FakeApi, FakeClock, RecordingNotifier
from safetyfirst_offline.worker import OfflineWorker, reset_worker


@pytest.fixture(autouse=True)
def reset_offline_state():
    """Start every test from settings defaults with no cached store or worker."""
    config.reset()
    reset_queue_store()
    reset_worker()
    yield
    config.reset()
    reset_queue_store()
    reset_worker()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemoryQueueStore()


@pytest.fixture
def connectivity():
    return ConnectivityStatus(online=True)


@pytest.fixture
def worker(api, store, notifier, connectivity, clock):
    return OfflineWorker(
        api.transport(),
        store=store,
        notifier=notifier,
        connectivity=connectivity,
        clock=clock,
    )


class Link:
    """Takes the fake API and the connectivity status down and up together."""

    def __init__(self, api, connectivity):
        self.api = api
        self.connectivity = connectivity

    async def down(self):
        self.api.offline = True
        await self.connectivity.set_online(False)

    async def up(self):
        self.api.offline = False
        await self.connectivity.set_online(True)


@pytest.fixture
def link(api, connectivity):
    return Link(api, connectivity)
