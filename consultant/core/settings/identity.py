"""Service identity settings.

Environment variables use SERVICE_ prefix:
SERVICE_NAME, SERVICE_DC, SERVICE_HOST, SERVICE_INSTANCE.
"""

from __future__ import annotations

import socket

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_host() -> str | None:
    try:
        return socket.gethostname() or None
    except OSError:
        return None


class IdentitySettings(BaseSettings):
    """Identity of this process, used when the builder is not told explicitly."""

    name: str | None = Field(
        default=None,
        description="Service name; selects the config/<name>/ key prefix",
    )

    dc: str | None = Field(
        default=None,
        description="Datacenter this process runs in",
    )

    host: str | None = Field(
        default_factory=_default_host,
        description="Host name (defaults to the machine hostname)",
    )

    instance: str | None = Field(
        default=None,
        description="Instance name, to tell apart several processes on one host",
    )

    model_config = SettingsConfigDict(
        env_prefix="SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
