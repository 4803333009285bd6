"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from consultant.core.settings.loader import get_consul_settings

    settings = get_consul_settings()  # First call: loads and validates
    settings = get_consul_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the caches to force a reload after changing the environment:
    clear_all_caches()
"""

from __future__ import annotations

from functools import lru_cache

from .consul import ConsulSettings
from .identity import IdentitySettings
from .logs import LoggingSettings


@lru_cache(maxsize=1)
def get_consul_settings() -> ConsulSettings:
    """Get cached Consul agent settings.

    Returns:
        Validated and frozen ConsulSettings instance.
    """
    return ConsulSettings()


@lru_cache(maxsize=1)
def get_identity_settings() -> IdentitySettings:
    """Get cached service identity settings.

    Returns:
        Validated and frozen IdentitySettings instance.
    """
    return IdentitySettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    In production, prefer process restarts over cache clearing.
    """
    get_consul_settings.cache_clear()
    get_identity_settings.cache_clear()
    get_logging_settings.cache_clear()
