"""
Django ORM queue store: pending mutations survive process restarts.

Each operation runs in its own ``transaction.atomic()`` block on a worker
thread via ``sync_to_async``, so the store can be awaited from the event loop.
"""

import logging
from typing import Any, Dict, List, Optional

from asgiref.sync import sync_to_async
from django.db import DatabaseError, IntegrityError, transaction

from ..exceptions import DuplicateMutationError, QueueStoreError
from .base import PendingMutation, QueueStore

logger = logging.getLogger(__name__)


def _record_to_mutation(record) -> PendingMutation:
    return PendingMutation(
        id=record.id,
        url=record.url,
        method=record.method,
        headers=record.headers or {},
        body=record.body,
        timestamp=record.timestamp,
        entity_type=record.entity_type,
        conflict_strategy=record.conflict_strategy,
        retry_count=record.retry_count,
        status=record.status,
        last_error=record.last_error,
        body_is_raw=record.body_is_raw,
    )


class DatabaseQueueStore(QueueStore):
    """Pending mutation store backed by the PendingMutationRecord model."""

    def __init__(self, using: str = "default") -> None:
        self.using = using

    @property
    def _manager(self):
        from ..models import PendingMutationRecord

        return PendingMutationRecord.objects.using(self.using)

    # Sync implementations, run in a thread by the async wrappers below

    def _add(self, mutation: PendingMutation) -> None:
        try:
            with transaction.atomic(using=self.using):
                if self._manager.filter(pk=mutation.id).exists():
                    raise DuplicateMutationError(mutation.id)
                self._manager.create(**mutation.to_dict())
        except IntegrityError as e:
            raise DuplicateMutationError(mutation.id) from e
        except DatabaseError as e:
            raise QueueStoreError(f"Could not queue mutation {mutation.id}: {e}") from e

    def _put(self, mutation: PendingMutation) -> None:
        data = mutation.to_dict()
        mutation_id = data.pop("id")
        try:
            with transaction.atomic(using=self.using):
                self._manager.update_or_create(pk=mutation_id, defaults=data)
        except DatabaseError as e:
            raise QueueStoreError(f"Could not update mutation {mutation_id}: {e}") from e

    def _get(self, mutation_id: str) -> Optional[PendingMutation]:
        record = self._manager.filter(pk=mutation_id).first()
        return _record_to_mutation(record) if record else None

    def _delete(self, mutation_id: str) -> bool:
        with transaction.atomic(using=self.using):
            deleted, _ = self._manager.filter(pk=mutation_id).delete()
        return deleted > 0

    def _all(self) -> List[PendingMutation]:
        return [_record_to_mutation(record) for record in self._manager.all()]

    def _count(self, status: Optional[str] = None) -> int:
        queryset = self._manager.all()
        if status is not None:
            queryset = queryset.filter(status=status)
        return queryset.count()

    def _clear(self) -> int:
        with transaction.atomic(using=self.using):
            deleted, _ = self._manager.all().delete()
        if deleted:
            logger.info("Cleared %d pending mutations", deleted)
        return deleted

    # QueueStore interface

    async def add(self, mutation: PendingMutation) -> None:
        await sync_to_async(self._add)(mutation)

    async def put(self, mutation: PendingMutation) -> None:
        await sync_to_async(self._put)(mutation)

    async def get(self, mutation_id: str) -> Optional[PendingMutation]:
        return await sync_to_async(self._get)(mutation_id)

    async def delete(self, mutation_id: str) -> bool:
        return await sync_to_async(self._delete)(mutation_id)

    async def all(self) -> List[PendingMutation]:
        return await sync_to_async(self._all)()

    async def count(self, status: Optional[str] = None) -> int:
        return await sync_to_async(self._count)(status)

    async def clear(self) -> int:
        return await sync_to_async(self._clear)()

    def health_check(self) -> Dict[str, Any]:
        try:
            total = self._count()
        except DatabaseError as e:
            logger.error("Queue store health check failed: %s", e, exc_info=True)
            return {"status": "unhealthy", "backend": "database", "error": str(e)}
        return {"status": "healthy", "backend": "database", "pending_mutations": total}
