"""
Conflict detection and resolution for queued updates.

Before an update is replayed, ``ConflictDetector`` reads the entity's current
server copy and compares its ``updatedAt`` (or ``createdAt``) with the time
the edit was queued. If the server copy is newer, ``ConflictResolver``
applies the mutation's conflict strategy and decides whether to replay, and
with which body.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .network import Network
from .policies import ConflictStrategy, MutationKind, entity_url, extract_entity_id
from .storage.base import PendingMutation
from .utils import parse_timestamp_ms

logger = logging.getLogger(__name__)

CONFLICT_CHECK_HEADER = "X-Conflict-Check"

# Dropped from the probe: they describe the queued write's body, not the GET
_PROBE_EXCLUDED_HEADERS = frozenset({"content-type", "content-length", "transfer-encoding"})


@dataclass
class Conflict:
    """The server copy of an entity changed after the client queued its edit."""

    server_data: Dict[str, Any]
    server_timestamp: int
    client_timestamp: int


@dataclass
class Resolution:
    skip: bool
    reason: str = ""
    resolved_body: Any = None


def merge_objects(server: Dict[str, Any], client: Dict[str, Any]) -> Dict[str, Any]:
    """
    Field-level merge of a client edit onto the server copy.

    Client values win, except None which never overwrites. Where both sides
    hold a dict the two are merged recursively; lists are replaced whole.
    """
    merged = dict(server)
    for key, value in client.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_objects(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConflictDetector:
    """
    Probes the server before an update is replayed.

    Every failure mode (no id in the URL, network error, non-2xx status, a
    body that is not a JSON object, no usable timestamp) reports no conflict,
    so the write is attempted rather than blocked.
    """

    def __init__(self, network: Network):
        self.network = network

    @staticmethod
    def applies_to(mutation: PendingMutation) -> bool:
        return (
            mutation.kind is MutationKind.UPDATE
            and mutation.conflict_strategy != ConflictStrategy.CLIENT_WINS.value
        )

    def probe_request(self, mutation: PendingMutation, entity_id: str) -> httpx.Request:
        headers = {
            name: value
            for name, value in mutation.headers.items()
            if name.lower() not in _PROBE_EXCLUDED_HEADERS
        }
        headers[CONFLICT_CHECK_HEADER] = "true"
        return httpx.Request("GET", entity_url(mutation.url, entity_id), headers=headers)

    async def detect(self, mutation: PendingMutation) -> Optional[Conflict]:
        entity_id = extract_entity_id(mutation.url)
        if entity_id is None:
            return None

        request = self.probe_request(mutation, entity_id)
        try:
            response = await self.network.fetch(request)
        except httpx.TransportError as e:
            logger.debug("Conflict probe for %s failed: %s", mutation.id, e)
            return None
        if not response.is_success:
            logger.debug(
                "Conflict probe for %s returned %s", mutation.id, response.status_code
            )
            return None

        try:
            server_data = response.json()
        except ValueError:
            return None
        if not isinstance(server_data, dict):
            return None

        raw_timestamp = server_data.get("updatedAt")
        if raw_timestamp is None:
            raw_timestamp = server_data.get("createdAt")
        server_timestamp = parse_timestamp_ms(raw_timestamp)
        if server_timestamp is None:
            return None

        if server_timestamp > mutation.timestamp:
            logger.info(
                "Conflict on %s %s: server copy is %dms newer",
                mutation.entity_type,
                entity_id,
                server_timestamp - mutation.timestamp,
            )
            return Conflict(server_data, server_timestamp, mutation.timestamp)
        return None


class ConflictResolver:
    """Decides what happens to a mutation whose entity changed on the server."""

    def __init__(self, default_strategy: ConflictStrategy = ConflictStrategy.SERVER_WINS):
        self.default_strategy = default_strategy

    def resolve(self, mutation: PendingMutation, conflict: Conflict) -> Resolution:
        if not mutation.conflict_strategy:
            strategy = self.default_strategy
        else:
            try:
                strategy = ConflictStrategy(mutation.conflict_strategy)
            except ValueError:
                # Written by an older release, or edited by hand
                return Resolution(skip=True, reason="Unknown strategy")

        if strategy is ConflictStrategy.SERVER_WINS:
            return Resolution(skip=True, reason="Server data is newer")
        elif strategy is ConflictStrategy.CLIENT_WINS:
            return Resolution(skip=False, resolved_body=mutation.body)
        elif strategy is ConflictStrategy.CLIENT_WINS_DRAFT:
            if conflict.server_data.get("status") == "draft":
                return Resolution(skip=False, resolved_body=mutation.body)
            return Resolution(skip=True, reason="Server record no longer draft")
        elif strategy is ConflictStrategy.MERGE:
            if mutation.has_raw_body:
                return Resolution(skip=True, reason="Cannot merge a non-JSON body")
            if not isinstance(mutation.body, dict):
                return Resolution(skip=True, reason="Cannot merge a non-object body")
            return Resolution(
                skip=False, resolved_body=merge_objects(conflict.server_data, mutation.body)
            )
        return Resolution(skip=True, reason="Unknown strategy")
