"""Protocol definitions for the Consul collaborators.

The config watcher and the routing strategies only depend on these
protocols, which allows for:
- Easy testing with MockConsulClient
- Dependency injection of different client implementations
- A clear contract for what operations are supported
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from consultant.core.instance import ServiceInstance


@dataclass(frozen=True)
class KVResponse:
    """Result of one blocking KV read.

    Attributes:
        index: Value of the X-Consul-Index header.
        entries: Raw KV entries as returned by Consul (``Key``/``Value`` dicts,
            values base64-encoded).
    """

    index: int
    entries: list[dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class ConfigFetcherProtocol(Protocol):
    """Blocking reader of a KV prefix.

    Implementations must not raise: timeouts and transport errors are
    reported by returning None so the caller simply polls again.
    """

    def fetch_config(self, prefix: str, index: int = 0) -> KVResponse | None:
        """Read every key below ``prefix``, blocking until ``index`` changes.

        Args:
            prefix: KV key prefix, e.g. ``config/oauth/``.
            index: Last seen X-Consul-Index; 0 for a non-blocking first read.

        Returns:
            KVResponse with the new index, or None on timeout or failure.
        """
        ...

    def close(self) -> None:
        """Release any resources held by the fetcher."""
        ...


@runtime_checkable
class InstanceBackendProtocol(Protocol):
    """Source of healthy service instances for the routing strategies."""

    def list_healthy_instances(
        self, service_name: str, datacenter: str | None = None
    ) -> list[ServiceInstance]:
        """Return the passing instances of a service.

        Args:
            service_name: Logical service name.
            datacenter: Datacenter to query; None means the agent's own.

        Returns:
            Instances in the order Consul returned them; empty on failure.
        """
        ...

    def list_datacenters(self) -> list[str]:
        """Return all known datacenters; empty on failure."""
        ...


@runtime_checkable
class ConsulClientProtocol(ConfigFetcherProtocol, InstanceBackendProtocol, Protocol):
    """Everything the Consultant agent needs from a Consul client.

    Implemented by ConsulClient and MockConsulClient.
    """

    def register_service(
        self,
        service_id: str,
        service_name: str,
        address: str | None,
        port: int,
        tags: list[str] | None = None,
        meta: dict[str, str] | None = None,
    ) -> bool:
        """Register a service with the local agent; True on success."""
        ...

    def deregister_service(self, service_id: str) -> bool:
        """Deregister a service from the local agent; True on success."""
        ...
