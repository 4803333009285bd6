"""Routing strategies building ServiceLocator chains from Consul health data.

Each strategy produces a chain that starts with the healthy instances in the
caller's own datacenter and falls back to the other datacenters in the order
Consul lists them (nearest first). Remote datacenters are only queried once
the local instances are exhausted.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from consultant.features.locator.locator import ServiceLocator

if TYPE_CHECKING:
    from consultant.core.instance import ServiceInstance
    from consultant.infra.discovery.protocols import InstanceBackendProtocol

logger = logging.getLogger(__name__)


@runtime_checkable
class RoutingStrategy(Protocol):
    """Decides in which order instances of a service are tried."""

    def locate(self, service_name: str) -> ServiceLocator:
        """Build a fresh locator for one request against ``service_name``."""
        ...


def datacenter_chain(
    backend: InstanceBackendProtocol,
    service_name: str,
    datacenter: str | None,
) -> ServiceLocator:
    """Chain of the local datacenter's instances followed by every other datacenter.

    Without a known local datacenter only the agent's own datacenter is used.
    """

    def remote_chain() -> ServiceLocator | None:
        if datacenter is None:
            return None
        remotes = [dc for dc in backend.list_datacenters() if dc != datacenter]
        logger.debug(
            "Falling back to remote datacenters",
            extra={"service_name": service_name, "datacenters": remotes},
        )
        return _chain_from(backend, service_name, remotes, 0)

    return ServiceLocator(
        lambda: backend.list_healthy_instances(service_name, datacenter),
        fallback=remote_chain,
    )


def _chain_from(
    backend: InstanceBackendProtocol,
    service_name: str,
    datacenters: list[str],
    position: int,
) -> ServiceLocator | None:
    if position >= len(datacenters):
        return None
    dc = datacenters[position]
    return ServiceLocator(
        lambda: backend.list_healthy_instances(service_name, dc),
        fallback=lambda: _chain_from(backend, service_name, datacenters, position + 1),
    )


class RandomizedStrategy:
    """Tries instances in random order, datacenter by datacenter.

    Example:
        strategy = RandomizedStrategy(consul_client, datacenter="eu-central")
        locator = strategy.locate("billing")
        instance = locator.next()
    """

    def __init__(
        self,
        backend: InstanceBackendProtocol,
        datacenter: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._backend = backend
        self._datacenter = datacenter
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

    def _shuffle(self, instances: Iterator[ServiceInstance]) -> list[ServiceInstance]:
        shuffled = list(instances)
        with self._rng_lock:
            self._rng.shuffle(shuffled)
        return shuffled

    def locate(self, service_name: str) -> ServiceLocator:
        return datacenter_chain(self._backend, service_name, self._datacenter).map(self._shuffle)


class RoundRobinStrategy:
    """Spreads requests by starting after the instance emitted last time.

    Instances are ordered by ID and rotated so the one following the
    most recently emitted instance of the service comes first. A listener on
    the chain records every emitted instance, so retries within one request
    also move the starting point along.
    """

    def __init__(self, backend: InstanceBackendProtocol, datacenter: str | None = None) -> None:
        self._backend = backend
        self._datacenter = datacenter
        self._last_emitted: dict[str, str] = {}
        self._lock = threading.Lock()

    def last_emitted(self, service_name: str) -> str | None:
        """ID of the instance most recently handed out for ``service_name``."""
        with self._lock:
            return self._last_emitted.get(service_name)

    def locate(self, service_name: str) -> ServiceLocator:
        def rotate(instances: Iterator[ServiceInstance]) -> list[ServiceInstance]:
            ordered = sorted(instances, key=lambda instance: instance.id)
            last_id = self.last_emitted(service_name)
            ids = [instance.id for instance in ordered]
            if last_id not in ids:
                return ordered
            start = ids.index(last_id) + 1
            return ordered[start:] + ordered[:start]

        def record(instance: ServiceInstance) -> None:
            with self._lock:
                self._last_emitted[service_name] = instance.id

        chain = datacenter_chain(self._backend, service_name, self._datacenter)
        return chain.map(rotate).set_listener(record)
