"""
Static policy tables: API route freshness and per-entity conflict strategies.

Both tables are built once from configuration and never change while the
worker runs.
"""

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import httpx


# Mongo-style object ids, the id shape the remote API uses
ENTITY_ID_RE = re.compile(r"/([a-f0-9]{24})(?=/|$)", re.IGNORECASE)

CACHEABLE_METHODS = frozenset({"GET"})
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class ConflictStrategy(str, Enum):
    """How a queued update is reconciled with a newer server copy."""

    SERVER_WINS = "server-wins"
    CLIENT_WINS = "client-wins"
    CLIENT_WINS_DRAFT = "client-wins-draft"
    MERGE = "merge"


class RoutePriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MutationKind(str, Enum):
    """CRUD verb a mutating HTTP method maps to."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def for_method(cls, method: str) -> "MutationKind":
        method = method.upper()
        if method in ("PUT", "PATCH"):
            return cls.UPDATE
        if method == "DELETE":
            return cls.DELETE
        return cls.CREATE


@dataclass(frozen=True)
class RouteConfig:
    """Freshness settings for one API route prefix."""

    max_age: int  # milliseconds
    priority: RoutePriority = RoutePriority.LOW
    sync_on_reconnect: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RouteConfig":
        return cls(
            max_age=int(data["max_age"]),
            priority=RoutePriority(data.get("priority", "low")),
            sync_on_reconnect=bool(data.get("sync_on_reconnect", False)),
        )


class RouteTable:
    """
    Longest-prefix lookup of API route settings.

    Routes not in the table get ``default``.
    """

    def __init__(self, routes: Mapping[str, RouteConfig], default: RouteConfig):
        self._routes = MappingProxyType(dict(routes))
        self.default = default

    @classmethod
    def from_config(cls, config) -> "RouteTable":
        routes = {
            prefix: RouteConfig.from_dict(data)
            for prefix, data in (config.get("api_routes") or {}).items()
        }
        default = RouteConfig.from_dict(
            config.get("default_route") or {"max_age": 60000, "priority": "low"}
        )
        return cls(routes, default)

    def lookup(self, path: str) -> RouteConfig:
        match = None
        for prefix in self._routes:
            if path.startswith(prefix) and (match is None or len(prefix) > len(match)):
                match = prefix
        return self._routes[match] if match is not None else self.default

    def items(self) -> Iterator[Tuple[str, RouteConfig]]:
        return iter(self._routes.items())

    def routes_where(self, predicate) -> list:
        return [prefix for prefix, route in self._routes.items() if predicate(route)]


class ConflictPolicy:
    """Maps entity types to conflict strategies, with a ``default`` fallback."""

    def __init__(self, strategies: Mapping[str, str]):
        table: Dict[str, ConflictStrategy] = {}
        for entity_type, name in strategies.items():
            table[entity_type] = ConflictStrategy(name)
        table.setdefault("default", ConflictStrategy.SERVER_WINS)
        self._table = MappingProxyType(table)

    @classmethod
    def from_config(cls, config) -> "ConflictPolicy":
        return cls(config.get("conflict_strategies") or {})

    def strategy_for(self, entity_type: str) -> ConflictStrategy:
        return self._table.get(entity_type, self._table["default"])

    def as_dict(self) -> Dict[str, str]:
        return {entity_type: strategy.value for entity_type, strategy in self._table.items()}


def extract_entity_type(url, api_prefix: str = "/api/") -> str:
    """
    The path segment right after the API prefix, e.g. ``incidents`` for
    ``/api/incidents/65f...``. Returns ``unknown`` for non-API paths.
    """
    path = httpx.URL(str(url)).path
    index = path.find(api_prefix)
    if index < 0:
        return "unknown"
    segment = path[index + len(api_prefix):].split("/", 1)[0]
    return segment or "unknown"


def extract_entity_id(url) -> Optional[str]:
    """The last id-shaped path segment of ``url``, or None."""
    matches = ENTITY_ID_RE.findall(httpx.URL(str(url)).path)
    return matches[-1] if matches else None


def entity_url(url, entity_id: str) -> str:
    """Canonical GET location of an entity: the mutation URL cut after its id."""
    parsed = httpx.URL(str(url))
    path = parsed.path
    marker = f"/{entity_id}"
    index = path.rfind(marker)
    if index >= 0:
        path = path[: index + len(marker)]
    else:
        path = path.rsplit("/", 1)[0] + marker
    return str(parsed.copy_with(path=path, query=None, fragment=None))


def is_api_request(url, api_prefix: str = "/api/") -> bool:
    return httpx.URL(str(url)).path.startswith(api_prefix)
