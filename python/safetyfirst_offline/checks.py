"""
Django system checks for the offline sync layer.

Run with every ``manage.py`` command and via ``python manage.py check``.
They validate ``SAFETYFIRST_OFFLINE`` so a bad value fails at startup rather
than in the middle of a sync pass.
"""

from django.core.checks import Error, Warning, register

from .config import config as offline_config
from .policies import ConflictStrategy, RoutePriority
from .storage.registry import QUEUE_BACKENDS

_STRATEGIES = [strategy.value for strategy in ConflictStrategy]
_PRIORITIES = [priority.value for priority in RoutePriority]


@register("safetyfirst_offline")
def check_offline_configuration(app_configs, **kwargs):
    """Validate SAFETYFIRST_OFFLINE."""
    from django.conf import settings

    errors = []
    strategies = offline_config.get("conflict_strategies") or {}

    # E001 -- unknown conflict strategy name
    for entity_type, name in strategies.items():
        if name not in _STRATEGIES:
            errors.append(
                Error(
                    f"Unknown conflict strategy {name!r} for entity type {entity_type!r}.",
                    hint=f"Use one of: {', '.join(_STRATEGIES)}.",
                    id="safetyfirst_offline.E001",
                )
            )

    # E002 -- unknown route priority or missing max_age
    for prefix, route in (offline_config.get("api_routes") or {}).items():
        if route.get("priority", "low") not in _PRIORITIES:
            errors.append(
                Error(
                    f"API route {prefix!r} has unknown priority {route.get('priority')!r}.",
                    hint=f"Use one of: {', '.join(_PRIORITIES)}.",
                    id="safetyfirst_offline.E002",
                )
            )
        if not isinstance(route.get("max_age"), int) or route["max_age"] <= 0:
            errors.append(
                Error(
                    f"API route {prefix!r} needs a positive integer max_age (milliseconds).",
                    id="safetyfirst_offline.E002",
                )
            )

    # E003 -- retry ceiling
    max_retries = offline_config.get("max_retries")
    if not isinstance(max_retries, int) or max_retries < 1:
        errors.append(
            Error(
                f"max_retries must be a positive integer, got {max_retries!r}.",
                hint="The default is 5.",
                id="safetyfirst_offline.E003",
            )
        )

    # E004 -- queue backend
    backend = offline_config.get("queue_backend")
    if backend not in QUEUE_BACKENDS:
        errors.append(
            Error(
                f"Unknown queue_backend {backend!r}.",
                hint=f"Use one of: {', '.join(QUEUE_BACKENDS)}.",
                id="safetyfirst_offline.E004",
            )
        )

    # W001 -- no channel layer, applications will not hear about sync results
    if not getattr(settings, "CHANNEL_LAYERS", None):
        errors.append(
            Warning(
                "CHANNEL_LAYERS is not configured; sync notifications will be dropped.",
                hint=(
                    "For development: CHANNEL_LAYERS = "
                    "{'default': {'BACKEND': 'channels.layers.InMemoryChannelLayer'}}"
                ),
                id="safetyfirst_offline.W001",
            )
        )

    # W002 -- no default conflict strategy
    if "default" not in strategies:
        errors.append(
            Warning(
                "conflict_strategies has no 'default' entry; unlisted entity types use server-wins.",
                id="safetyfirst_offline.W002",
            )
        )

    return errors
