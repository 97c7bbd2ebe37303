"""
Exceptions raised by the offline sync layer.

Each exception carries an optional ``hint`` with an actionable suggestion
for the developer wiring the layer up.
"""

from typing import Optional


class OfflineError(Exception):
    """Base exception for offline sync errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class ConfigurationError(OfflineError):
    """Raised when SAFETYFIRST_OFFLINE holds a value the layer cannot use."""

    def __init__(self, key: str, value, expected: str):
        message = f"Invalid SAFETYFIRST_OFFLINE[{key!r}]: {value!r}. Expected {expected}."
        hint = (
            "\n    Fix the value in settings.py, or run `python manage.py check` "
            "to list every configuration problem at once."
        )
        super().__init__(message, hint)
        self.key = key
        self.value = value


class QueueStoreError(OfflineError):
    """Raised when the durable queue store cannot complete an operation."""


class DuplicateMutationError(QueueStoreError):
    """Raised when a pending mutation is added under an id that already exists."""

    def __init__(self, mutation_id: str):
        super().__init__(
            f"Pending mutation '{mutation_id}' is already queued.",
            hint="\n    Use put() to replace an existing record instead of add().",
        )
        self.mutation_id = mutation_id


class MutationNotFoundError(QueueStoreError):
    """Raised when an operation targets a pending mutation that is not queued."""

    def __init__(self, mutation_id: str):
        super().__init__(f"Pending mutation '{mutation_id}' is not in the queue.")
        self.mutation_id = mutation_id


__all__ = [
    "OfflineError",
    "ConfigurationError",
    "QueueStoreError",
    "DuplicateMutationError",
    "MutationNotFoundError",
]
