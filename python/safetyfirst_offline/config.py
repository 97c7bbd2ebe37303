"""
Configuration system for the SafetyFirst offline sync layer

Provides centralized configuration for:
- Cache namespaces and their item caps
- API route freshness windows and refresh priorities
- Per-entity conflict resolution policies
- Replay limits, sync tags and the notification channel group
"""

import copy
from typing import Any, Dict


class OfflineConfig:
    """
    Central configuration for offline caching and sync behavior.

    Usage:
        # In settings.py
        SAFETYFIRST_OFFLINE = {
            'cache_version': 'v1.2.0',
            'queue_backend': 'database',
            'conflict_strategies': {'permits': 'merge', 'default': 'server-wins'},
        }

        # Or programmatically
        from safetyfirst_offline.config import config
        config.set('fetch_timeout', 5.0)
    """

    _defaults = {
        # Cache namespaces: "{cache_prefix}-{kind}-{cache_version}"
        "cache_prefix": "safetyfirst",
        "cache_version": "v1.1.0",
        "max_api_cache_items": 100,
        "max_dynamic_cache_items": 50,
        "max_image_cache_items": 100,
        # Requests under this path prefix are API traffic
        "api_prefix": "/api/",
        # Freshness window for API routes missing from api_routes
        "default_route": {"max_age": 60000, "priority": "low"},
        # Longest matching prefix wins; max_age is in milliseconds
        "api_routes": {
            "/api/dashboard": {"max_age": 300000, "priority": "high", "sync_on_reconnect": True},
            "/api/incidents": {"max_age": 180000, "priority": "high", "sync_on_reconnect": True},
            "/api/action-items": {
                "max_age": 180000,
                "priority": "high",
                "sync_on_reconnect": True,
            },
            "/api/inspections": {
                "max_age": 300000,
                "priority": "medium",
                "sync_on_reconnect": True,
            },
            "/api/training": {"max_age": 600000, "priority": "medium", "sync_on_reconnect": False},
            "/api/documents": {"max_age": 600000, "priority": "low", "sync_on_reconnect": False},
            "/api/users": {"max_age": 3600000, "priority": "low", "sync_on_reconnect": False},
            "/api/observations": {
                "max_age": 300000,
                "priority": "medium",
                "sync_on_reconnect": True,
            },
            "/api/jsa": {"max_age": 600000, "priority": "low", "sync_on_reconnect": False},
            "/api/permits": {"max_age": 300000, "priority": "medium", "sync_on_reconnect": True},
            "/api/contractors": {
                "max_age": 3600000,
                "priority": "low",
                "sync_on_reconnect": False,
            },
            "/api/chemicals": {"max_age": 3600000, "priority": "low", "sync_on_reconnect": False},
            "/api/claims": {"max_age": 300000, "priority": "high", "sync_on_reconnect": True},
            "/api/inspection-templates/library": {
                "max_age": 86400000,
                "priority": "low",
                "sync_on_reconnect": False,
            },
            "/api/organization": {
                "max_age": 3600000,
                "priority": "low",
                "sync_on_reconnect": False,
            },
        },
        # Entity type -> conflict strategy; "default" covers everything else
        "conflict_strategies": {
            "incidents": "server-wins",
            "action-items": "merge",
            "inspections": "client-wins-draft",
            "observations": "client-wins",
            "default": "server-wins",
        },
        # Precached on install and served cache-first
        "static_files": [
            "/",
            "/app.html",
            "/index.html",
            "/manifest.json",
            "https://cdn.tailwindcss.com",
            "https://unpkg.com/react@18/umd/react.production.min.js",
            "https://unpkg.com/react-dom@18/umd/react-dom.production.min.js",
            "https://unpkg.com/@babel/standalone/babel.min.js",
            "https://cdn.jsdelivr.net/npm/recharts@2.8.0/umd/Recharts.min.js",
            "https://fonts.googleapis.com/css2?family=Inter:wght@300;400;500;600;700;800&display=swap",
        ],
        "offline_page": "/app.html",
        # Base URL for relative static paths and background route refreshes
        "origin": "http://localhost",
        "image_extensions": ["jpg", "jpeg", "png", "gif", "webp", "svg"],
        # Network leg of the API strategy, in seconds
        "fetch_timeout": 10.0,
        # Failed replays before a mutation is abandoned
        "max_retries": 5,
        # Background sync
        "sync_tag": "sync-pending-requests",
        "periodic_sync_tag": "refresh-critical-data",
        "periodic_sync_interval": 0,  # seconds, 0 = disabled
        # 'memory' or 'database'
        "queue_backend": "memory",
        # Channel layer group every connected application joins
        "notification_group": "safetyfirst_offline",
        "notification_title": "SafetyFirst EHS Sync",
    }

    def __init__(self):
        self._config = copy.deepcopy(self._defaults)
        self._loaded = False

    def _load_from_settings(self):
        """Load configuration from Django settings if available"""
        self._loaded = True
        try:
            from django.conf import settings
            from django.core.exceptions import ImproperlyConfigured
        except ImportError:
            return

        try:
            overrides = getattr(settings, "SAFETYFIRST_OFFLINE", None)
        except ImproperlyConfigured:
            # Settings not configured yet; retry on the next access
            self._loaded = False
            return

        if overrides:
            self._config.update(copy.deepcopy(overrides))

    def _ensure_loaded(self):
        if not self._loaded:
            self._load_from_settings()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key (supports dot notation for nested values)
            default: Default value if key not found

        Example:
            config.get('max_retries')  # 5
            config.get('default_route.max_age')  # 60000
        """
        self._ensure_loaded()
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any):
        """
        Set a configuration value.

        Example:
            config.set('fetch_timeout', 5.0)
            config.set('conflict_strategies.permits', 'merge')
        """
        self._ensure_loaded()
        keys = key.split(".")

        target = self._config
        for k in keys[:-1]:
            if k not in target:
                target[k] = {}
            target = target[k]

        target[keys[-1]] = value

    def update(self, config_dict: Dict[str, Any]):
        """Update multiple configuration values at once."""
        self._ensure_loaded()
        self._config.update(config_dict)

    def reset(self):
        """Reset configuration to defaults plus settings overrides"""
        self._config = copy.deepcopy(self._defaults)
        self._load_from_settings()

    def cache_name(self, kind: str) -> str:
        """Versioned cache namespace name, e.g. ``safetyfirst-api-v1.1.0``."""
        return f"{self.get('cache_prefix')}-{kind}-{self.get('cache_version')}"

    def as_dict(self) -> Dict[str, Any]:
        """Get the entire configuration as a dictionary"""
        self._ensure_loaded()
        return copy.deepcopy(self._config)


# Global configuration instance
config = OfflineConfig()


def get_config() -> OfflineConfig:
    """Get the global configuration instance"""
    return config
