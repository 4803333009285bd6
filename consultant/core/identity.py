"""Service identity used to scope configuration lookups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from consultant.core.exceptions import ConsultantConfigurationError

if TYPE_CHECKING:
    from consultant.core.settings.identity import IdentitySettings

CONFIG_ROOT = "config"


@dataclass(frozen=True)
class ServiceIdentifier:
    """Identifies "who is asking" when reading configuration from Consul.

    Two identifiers are equal (and hash equally) when all four fields match.

    Attributes:
        service: Logical service name, e.g. "oauth".
        datacenter: Datacenter the process runs in, e.g. "eu-central".
        host: Host name of the machine, e.g. "web-1".
        instance: Instance name on that host, e.g. "master".
    """

    service: str
    datacenter: str | None = None
    host: str | None = None
    instance: str | None = None

    def __post_init__(self) -> None:
        if not self.service:
            raise ConsultantConfigurationError(
                detail="A service name is required to identify this process",
                extra={"env": "SERVICE_NAME"},
            )

    @classmethod
    def from_settings(cls, settings: IdentitySettings) -> ServiceIdentifier:
        """Build an identifier from SERVICE_* environment settings."""
        return cls(
            service=settings.name or "",
            datacenter=settings.dc,
            host=settings.host,
            instance=settings.instance,
        )

    @property
    def config_prefix(self) -> str:
        """Key prefix watched in Consul's KV store, e.g. ``config/oauth/``."""
        return f"{CONFIG_ROOT}/{self.service}/"

    def __str__(self) -> str:
        parts = [self.service, self.datacenter, self.host, self.instance]
        return "/".join(part or "-" for part in parts)
