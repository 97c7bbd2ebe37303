"""
Small helpers shared by the offline sync modules: clocks, ids, timestamps.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from django.utils.dateparse import parse_datetime


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_pending_id(timestamp: int) -> str:
    """
    Build a pending-mutation id from its enqueue time plus a random suffix.

    Ids sort roughly by time and stay unique when two writes are queued
    within the same millisecond.
    """
    return f"{timestamp}-{uuid.uuid4().hex[:9]}"


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """
    Convert an entity timestamp to milliseconds since the epoch.

    Accepts ISO-8601 strings (``2024-03-01T10:00:00Z``), datetimes and
    numeric epoch milliseconds. Naive datetimes are taken as UTC. Returns
    None for anything that cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = parse_datetime(value.strip())
        except ValueError:
            return None
        if parsed is None:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)
