"""Consul-backed configuration and service location for Python services.

    from consultant import Consultant

    with Consultant.builder().identify_as("oauth").build() as consultant:
        consultant.wait_for_first_config(timeout=10)
        pool_size = consultant.properties.get("pool.size", "8")
        billing = consultant.locate_all("billing").next()
"""

from consultant.agent import Consultant, ConsultantBuilder
from consultant.core.exceptions import (
    ConfigDecodeError,
    ConfigValidationError,
    ConsultantConfigurationError,
    ConsultantError,
)
from consultant.core.identity import ServiceIdentifier
from consultant.core.instance import ServiceInstance
from consultant.features.config.snapshot import ConfigSnapshot
from consultant.features.locator.locator import ServiceLocator
from consultant.features.locator.strategies import RandomizedStrategy, RoundRobinStrategy

__version__ = "0.1.0"

__all__ = [
    "ConfigDecodeError",
    "ConfigSnapshot",
    "ConfigValidationError",
    "Consultant",
    "ConsultantBuilder",
    "ConsultantConfigurationError",
    "ConsultantError",
    "RandomizedStrategy",
    "RoundRobinStrategy",
    "ServiceIdentifier",
    "ServiceInstance",
    "ServiceLocator",
    "__version__",
]
