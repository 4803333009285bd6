"""Consul agent connection settings.

Environment variables use CONSUL_ prefix.
Example: CONSUL_HOST=http://localhost, CONSUL_TOKEN=secret

The host may be given as a bare hostname (``consul.local``), a host with
port (``consul.local:8500``) or a full URL (``https://consul.local``).
CONSUL_PORT only applies when the host carries no port of its own.
"""

from __future__ import annotations

import httpx
from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConsulSettings(BaseSettings):
    """Consul agent settings used by the config watcher and locator."""

    # ──────────────────────────────────────────────────────────────
    # Consul agent connection
    # ──────────────────────────────────────────────────────────────

    host: str = Field(
        default="127.0.0.1",
        description="Consul agent hostname, host:port or full URL",
    )

    port: int = Field(
        default=8500,
        ge=1,
        le=65535,
        description="Consul agent HTTP API port (used when host has no port)",
    )

    scheme: str = Field(
        default="http",
        pattern=r"^https?$",
        description="HTTP scheme for Consul API (used when host has no scheme)",
    )

    token: SecretStr | None = Field(
        default=None,
        description="Consul ACL token for authentication",
    )

    verify_ssl: bool = Field(
        default=True,
        description="Verify SSL certificates when using HTTPS",
    )

    connect_timeout: float = Field(
        default=5.0,
        ge=0.5,
        le=30.0,
        description="HTTP connection timeout in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Blocking queries
    # ──────────────────────────────────────────────────────────────

    wait_seconds: int = Field(
        default=300,
        ge=1,
        le=600,
        description="Maximum time Consul holds a blocking KV query open",
    )

    error_retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=300.0,
        description="Initial pause in seconds after a quick poll failure; doubles per consecutive failure",
    )

    error_retry_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        le=600.0,
        description="Upper bound in seconds for the pause between failed polls",
    )

    # ──────────────────────────────────────────────────────────────
    # Computed properties
    # ──────────────────────────────────────────────────────────────

    @computed_field
    @property
    def base_url(self) -> str:
        """Build Consul agent base URL."""
        raw = self.host if "://" in self.host else f"{self.scheme}://{self.host}"
        url = httpx.URL(raw)
        if url.port is None:
            url = url.copy_with(port=self.port)
        return str(url).rstrip("/")

    @property
    def wait(self) -> str:
        """Blocking query wait in Consul's duration format, e.g. ``300s``."""
        return f"{self.wait_seconds}s"

    @property
    def read_timeout(self) -> float:
        """HTTP read timeout for blocking queries.

        Consul adds up to wait/16 of jitter to a blocking query, so the read
        timeout leaves room for that plus the connect timeout.
        """
        return self.wait_seconds + self.wait_seconds / 16 + self.connect_timeout

    # ──────────────────────────────────────────────────────────────
    # Helper methods
    # ──────────────────────────────────────────────────────────────

    def get_auth_headers(self) -> dict[str, str]:
        """Get HTTP headers for Consul API authentication.

        Returns:
            Dictionary with X-Consul-Token header if token is set.
        """
        if self.token:
            return {"X-Consul-Token": self.token.get_secret_value()}
        return {}

    model_config = SettingsConfigDict(
        env_prefix="CONSUL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
