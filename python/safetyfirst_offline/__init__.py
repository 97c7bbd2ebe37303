"""
SafetyFirst offline sync layer.

Offline-first HTTP layer for the SafetyFirst EHS API: caches reads, queues
writes made while disconnected, and replays them in order on reconnect with
per-entity conflict resolution.

Quick start::

    # settings.py
    INSTALLED_APPS = [..., "channels", "safetyfirst_offline"]
    SAFETYFIRST_OFFLINE = {"queue_backend": "database", "origin": "https://ehs.example.com"}

    # application code
    from safetyfirst_offline import get_worker

    worker = get_worker()
    await worker.install()
    async with worker.client() as client:
        response = await client.post("/api/incidents", json={"title": "Spill"})
        if response.status_code == 202 and response.json().get("offline"):
            ...  # saved offline, pending sync

    # when the network comes back
    await worker.connectivity.set_online(True)
"""

__version__ = "1.1.0"


def __getattr__(name):
    # Worker wiring imports Django-dependent modules; load it on first use
    if name in ("OfflineWorker", "get_worker", "set_worker", "reset_worker"):
        from . import worker

        return getattr(worker, name)
    if name == "SyncResult":
        from .sync import SyncResult

        return SyncResult
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "OfflineWorker",
    "SyncResult",
    "get_worker",
    "set_worker",
    "reset_worker",
]
