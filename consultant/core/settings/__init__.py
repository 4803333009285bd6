"""Pydantic Settings v2 configuration.

Settings follow 12-factor principles: environment variables are the single
source of truth, each concern has its own frozen settings model, and loaders
are LRU-cached.

    from consultant.core.settings import get_consul_settings

    settings = get_consul_settings()
    print(settings.base_url)

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .consul import ConsulSettings
from .identity import IdentitySettings
from .loader import (
    clear_all_caches,
    get_consul_settings,
    get_identity_settings,
    get_logging_settings,
)
from .logs import LoggingSettings

__all__ = [
    "ConsulSettings",
    "IdentitySettings",
    "LoggingSettings",
    "clear_all_caches",
    "get_consul_settings",
    "get_identity_settings",
    "get_logging_settings",
]
