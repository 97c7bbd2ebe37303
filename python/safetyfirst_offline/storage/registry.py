"""
Global queue store registry.

Reads SAFETYFIRST_OFFLINE['queue_backend']:
    'memory' (default): InMemoryQueueStore
    'database': DatabaseQueueStore
"""

import logging
from typing import Optional

from ..config import config as offline_config
from ..exceptions import ConfigurationError
from .base import QueueStore

logger = logging.getLogger(__name__)

QUEUE_BACKENDS = ("memory", "database")

_store: Optional[QueueStore] = None


def get_queue_store() -> QueueStore:
    """
    Get or initialize the configured queue store.

    Configuration in settings.py::

        SAFETYFIRST_OFFLINE = {
            'queue_backend': 'database',
        }
    """
    global _store
    if _store is not None:
        return _store

    backend_type = offline_config.get("queue_backend", "memory")

    if backend_type == "database":
        from .database import DatabaseQueueStore

        _store = DatabaseQueueStore()
    elif backend_type == "memory":
        from .memory import InMemoryQueueStore

        _store = InMemoryQueueStore()
    else:
        raise ConfigurationError("queue_backend", backend_type, f"one of {QUEUE_BACKENDS}")

    logger.info("Initialized queue store: %s", backend_type)
    return _store


def set_queue_store(store: QueueStore) -> None:
    """Manually set the queue store (useful for testing)."""
    global _store
    _store = store


def reset_queue_store() -> None:
    """Reset to force re-initialization on next access."""
    global _store
    _store = None
