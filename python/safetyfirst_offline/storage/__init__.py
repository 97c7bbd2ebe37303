"""
Durable queue stores for pending offline mutations.
"""

from .base import RAW_BODY_KEY, MutationStatus, PendingMutation, QueueStore
from .memory import InMemoryQueueStore
from .registry import get_queue_store, reset_queue_store, set_queue_store

__all__ = [
    "RAW_BODY_KEY",
    "MutationStatus",
    "PendingMutation",
    "QueueStore",
    "InMemoryQueueStore",
    "get_queue_store",
    "set_queue_store",
    "reset_queue_store",
]
