"""
In-memory queue store for development, tests and single-process workers.
"""

import copy
import logging
from threading import RLock
from typing import Any, Dict, List, Optional

from ..exceptions import DuplicateMutationError
from .base import PendingMutation, QueueStore

logger = logging.getLogger(__name__)


class InMemoryQueueStore(QueueStore):
    """
    Dict-backed pending mutation store.

    Records are stored as plain dicts and copied on the way in and out, so
    callers see the same copy semantics as the database store.

    Limitations:
        - Single-process only.
        - Data lost on restart.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = RLock()

    async def add(self, mutation: PendingMutation) -> None:
        with self._lock:
            if mutation.id in self._records:
                raise DuplicateMutationError(mutation.id)
            self._records[mutation.id] = copy.deepcopy(mutation.to_dict())
        logger.debug("Queued pending mutation %s", mutation.id)

    async def put(self, mutation: PendingMutation) -> None:
        with self._lock:
            self._records[mutation.id] = copy.deepcopy(mutation.to_dict())

    async def get(self, mutation_id: str) -> Optional[PendingMutation]:
        with self._lock:
            record = self._records.get(mutation_id)
            return PendingMutation.from_dict(copy.deepcopy(record)) if record else None

    async def delete(self, mutation_id: str) -> bool:
        with self._lock:
            return self._records.pop(mutation_id, None) is not None

    async def all(self) -> List[PendingMutation]:
        with self._lock:
            return [
                PendingMutation.from_dict(copy.deepcopy(record))
                for record in self._records.values()
            ]

    async def count(self, status: Optional[str] = None) -> int:
        with self._lock:
            if status is None:
                return len(self._records)
            return sum(1 for record in self._records.values() if record["status"] == status)

    async def clear(self) -> int:
        with self._lock:
            removed = len(self._records)
            self._records.clear()
        return removed

    def health_check(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._records)
        return {"status": "healthy", "backend": "memory", "pending_mutations": total}
