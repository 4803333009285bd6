"""Client-side load balancing over Consul service instances."""

from consultant.features.locator.locator import ServiceLocator
from consultant.features.locator.strategies import (
    RandomizedStrategy,
    RoundRobinStrategy,
    RoutingStrategy,
    datacenter_chain,
)

__all__ = [
    "RandomizedStrategy",
    "RoundRobinStrategy",
    "RoutingStrategy",
    "ServiceLocator",
    "datacenter_chain",
]
