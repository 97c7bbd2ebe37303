"""
Pending mutation record and the abstract durable queue store.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..policies import MutationKind

RAW_BODY_KEY = "rawBody"


class MutationStatus(str, Enum):
    PENDING = "pending"
    # Retry ceiling reached; kept for manual resolution, skipped by sync passes
    ABANDONED = "abandoned"


@dataclass
class PendingMutation:
    """
    A mutating API request captured while offline, waiting to be replayed.

    Attributes:
        id: ``"{timestamp}-{random}"``, assigned at enqueue time
        url: Absolute request URL
        method: HTTP method (POST, PUT, PATCH, DELETE)
        headers: Request headers as captured
        body: Parsed JSON payload, ``{"rawBody": text}`` when the body was
            not JSON, or None when the request had no body
        body_is_raw: True when ``body`` wraps request text that was not JSON
        timestamp: Client enqueue time in milliseconds; replay order and the
            client version in conflict checks
        retry_count: Failed replay attempts so far
        entity_type: API path segment after the prefix, e.g. ``incidents``
        conflict_strategy: Strategy name resolved at enqueue time
        status: ``pending`` or ``abandoned``
        last_error: Reason for the most recent failed replay
    """

    id: str
    url: str
    method: str
    headers: Dict[str, str]
    body: Any
    timestamp: int
    entity_type: str
    conflict_strategy: str
    retry_count: int = 0
    status: str = MutationStatus.PENDING.value
    last_error: str = ""
    body_is_raw: bool = False

    @property
    def kind(self) -> MutationKind:
        return MutationKind.for_method(self.method)

    @property
    def is_abandoned(self) -> bool:
        return self.status == MutationStatus.ABANDONED.value

    @property
    def has_raw_body(self) -> bool:
        return self.body_is_raw and isinstance(self.body, dict) and RAW_BODY_KEY in self.body

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingMutation":
        """Create from dictionary."""
        return cls(**data)


class QueueStore(ABC):
    """
    Abstract interface for the durable pending-mutation store.

    Every method is one short transaction. Records handed out are copies:
    changing one has no effect until it is written back with ``put()``.
    """

    @abstractmethod
    async def add(self, mutation: PendingMutation) -> None:
        """Insert a new record. Raises DuplicateMutationError if the id exists."""
        ...

    @abstractmethod
    async def put(self, mutation: PendingMutation) -> None:
        """Insert or replace a record."""
        ...

    @abstractmethod
    async def get(self, mutation_id: str) -> Optional[PendingMutation]:
        ...

    @abstractmethod
    async def delete(self, mutation_id: str) -> bool:
        """Remove a record. Returns False if it was not queued."""
        ...

    @abstractmethod
    async def all(self) -> List[PendingMutation]:
        """Every queued record, in no particular order."""
        ...

    @abstractmethod
    async def count(self, status: Optional[str] = None) -> int:
        ...

    @abstractmethod
    async def clear(self) -> int:
        """Remove every record. Returns the number removed."""
        ...

    def health_check(self) -> Dict[str, Any]:
        """Check store health. Override for backend-specific checks."""
        return {"status": "healthy", "backend": self.__class__.__name__}


__all__ = [
    "RAW_BODY_KEY",
    "MutationStatus",
    "PendingMutation",
    "QueueStore",
]
