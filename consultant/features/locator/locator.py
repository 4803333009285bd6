"""Lazy, fallback-chained sequence of service instances.

A ServiceLocator hands out instances one at a time for client-side load
balancing. Each locator drains its own instances first and then defers to a
fallback locator, e.g. "instances in my datacenter, then the nearest other
datacenter, then the next one"::

    locator = ServiceLocator(local_instances, fallback=lambda: remote_locator())
    while (instance := locator.next()) is not None:
        if try_request(instance):
            break
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from consultant.core.instance import ServiceInstance

logger = logging.getLogger(__name__)

InstanceSupplier = Callable[[], Iterable["ServiceInstance"]]
InstanceListener = Callable[["ServiceInstance"], object]
InstanceMapper = Callable[[Iterator["ServiceInstance"]], Iterable["ServiceInstance"]]
FallbackSupplier = Callable[[], Union["ServiceLocator", None]]

_UNRESOLVED = object()


class ServiceLocator:
    """One node of a fallback chain of service instances.

    The node's instances are obtained from ``instance_supplier`` on the first
    call to next() and are then consumed through a single cursor; the node
    never restarts. When they run out, next() continues with the fallback
    node. A deferred fallback (a callable) is resolved at most once and the
    result, including "no fallback", is cached.

    A locator is meant to be consumed by one caller at a time.

    Attributes:
        instance_supplier: Produces this node's instances when first needed.
    """

    def __init__(
        self,
        instance_supplier: InstanceSupplier,
        fallback: ServiceLocator | FallbackSupplier | None = None,
    ) -> None:
        """Create a locator node.

        Args:
            instance_supplier: Zero-arg callable returning this node's instances.
            fallback: A fixed fallback locator, a zero-arg callable producing
                one lazily (or None), or None for no fallback.
        """
        self.instance_supplier = instance_supplier
        self._instances: Iterator[ServiceInstance] | None = None
        self._listener: InstanceListener | None = None

        self._fallback_supplier: FallbackSupplier | None
        self._fallback: ServiceLocator | None | object
        if fallback is None or isinstance(fallback, ServiceLocator):
            self._fallback_supplier = None
            self._fallback = fallback
        else:
            self._fallback_supplier = fallback
            self._fallback = _UNRESOLVED

    def set_listener(self, listener: InstanceListener | None) -> ServiceLocator:
        """Call ``listener`` with every instance just before next() returns it.

        The listener is attached to every fallback node of the chain,
        including deferred ones once they are resolved, so it observes each
        emitted instance exactly once in emission order.

        Args:
            listener: Callback receiving each emitted instance, or None to detach.

        Returns:
            This locator, for chaining.
        """
        node: ServiceLocator | None = self
        while node is not None:
            node._listener = listener
            fallback = node._fallback
            node = fallback if isinstance(fallback, ServiceLocator) else None
        return self

    def map(self, mapper: InstanceMapper) -> ServiceLocator:
        """Create a locator emitting this node's instances reordered by ``mapper``.

        ``mapper`` receives an iterator over one node's instances and returns
        the same instances in the order they should be tried. It is applied
        lazily, once per node, and recursively to the whole fallback chain.
        The new chain has its own cursors and does not consume this one.

        Args:
            mapper: Reordering function, e.g. a shuffle or a rotation.

        Returns:
            The newly created locator.
        """
        supplier = self.instance_supplier

        def mapped_instances() -> Iterable[ServiceInstance]:
            return mapper(iter(supplier()))

        fallback = self._fallback
        mapped_fallback: ServiceLocator | FallbackSupplier | None
        if isinstance(fallback, ServiceLocator):
            mapped_fallback = fallback.map(mapper)
        elif fallback is _UNRESOLVED:
            fallback_supplier = self._fallback_supplier

            def mapped_fallback_supplier() -> ServiceLocator | None:
                resolved = fallback_supplier() if fallback_supplier else None
                return resolved.map(mapper) if resolved is not None else None

            mapped_fallback = mapped_fallback_supplier
        else:
            mapped_fallback = None

        locator = ServiceLocator(mapped_instances, mapped_fallback)
        if self._listener is not None:
            locator.set_listener(self._listener)
        return locator

    def next(self) -> ServiceInstance | None:
        """Return the next instance to try.

        Returns:
            The next ServiceInstance, or None when this node and every
            fallback node are exhausted.
        """
        node: ServiceLocator | None = self
        visited: set[int] = set()
        while node is not None and id(node) not in visited:
            visited.add(id(node))
            instance = node._next_own()
            if instance is not None:
                if node._listener is not None:
                    node._listener(instance)
                return instance
            node = node._resolve_fallback()
        return None

    def __iter__(self) -> Iterator[ServiceInstance]:
        while (instance := self.next()) is not None:
            yield instance

    def _next_own(self) -> ServiceInstance | None:
        if self._instances is None:
            self._instances = iter(self.instance_supplier())
        return next(self._instances, None)

    def _resolve_fallback(self) -> ServiceLocator | None:
        if self._fallback is _UNRESOLVED:
            supplier = self._fallback_supplier
            self._fallback_supplier = None
            resolved = supplier() if supplier is not None else None
            if resolved is not None and self._listener is not None:
                resolved.set_listener(self._listener)
            self._fallback = resolved
            logger.debug(
                "Resolved fallback locator",
                extra={"has_fallback": resolved is not None},
            )
        return self._fallback  # type: ignore[return-value]
