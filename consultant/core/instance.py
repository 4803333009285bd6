"""Resolvable network endpoint of a service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True)
class ServiceInstance:
    """One healthy instance of a service as reported by Consul.

    Attributes:
        id: Consul service ID, unique per agent.
        service: Logical service name.
        address: IP address or hostname to connect to.
        port: Port to connect to.
        datacenter: Datacenter the instance was found in.
        node: Consul node the instance is registered on.
        tags: Service tags.
        meta: Service metadata (read-only).
    """

    id: str
    service: str
    address: str
    port: int
    datacenter: str | None = None
    node: str | None = None
    tags: tuple[str, ...] = ()
    meta: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), compare=False)

    def url(self, scheme: str = "http") -> str:
        """Base URL of the instance, e.g. ``http://10.0.0.5:8080``."""
        return f"{scheme}://{self.address}:{self.port}"

    @classmethod
    def from_health_entry(
        cls, entry: dict[str, Any], datacenter: str | None = None
    ) -> ServiceInstance:
        """Build an instance from one ``/v1/health/service/<name>`` entry.

        The service address falls back to the node address when the service
        was registered without one.
        """
        node = entry.get("Node") or {}
        service = entry.get("Service") or {}
        address = service.get("Address") or node.get("Address") or ""
        return cls(
            id=service.get("ID") or service.get("Service", ""),
            service=service.get("Service", ""),
            address=address,
            port=int(service.get("Port") or 0),
            datacenter=node.get("Datacenter") or datacenter,
            node=node.get("Node"),
            tags=tuple(service.get("Tags") or ()),
            meta=MappingProxyType(dict(service.get("Meta") or {})),
        )
