"""Consultant agent: configuration watching and service location in one object.

Usage:
    consultant = (
        Consultant.builder()
        .with_consul_host("http://localhost")
        .identify_as("oauth", "eu-central", "web-1", "master")
        .validate_config_with(check_config)
        .on_valid_config(lambda config: pool.resize(int(config["pool.size"])))
        .build()
    )

    properties = consultant.properties        # live, updated in place
    billing = consultant.locate_all("billing").next()

    consultant.shutdown()

Identity fields not passed to identify_as() come from the environment:
SERVICE_NAME, SERVICE_DC, SERVICE_HOST, SERVICE_INSTANCE; the Consul host
from CONSUL_HOST.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from consultant.core.identity import ServiceIdentifier
from consultant.core.settings import get_consul_settings, get_identity_settings
from consultant.features.config.watcher import ConfigCallback, ConfigValidator, ConfigWatcher
from consultant.features.locator.strategies import RandomizedStrategy
from consultant.infra.discovery.client import ConsulClient

if TYPE_CHECKING:
    import httpx

    from consultant.core.settings.consul import ConsulSettings
    from consultant.features.config.snapshot import ConfigSnapshot
    from consultant.features.locator.locator import ServiceLocator
    from consultant.features.locator.strategies import RoutingStrategy
    from consultant.infra.discovery.protocols import ConsulClientProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registration:
    """How this process advertises itself in Consul's catalog."""

    port: int
    address: str | None = None
    tags: tuple[str, ...] = ()
    meta: dict[str, str] = field(default_factory=dict)


class Consultant:
    """Running agent returned by ConsultantBuilder.build().

    Owns the config watcher thread and, unless one was injected, the Consul
    client. Use as a context manager or call shutdown() when done.
    """

    def __init__(
        self,
        identifier: ServiceIdentifier,
        client: ConsulClientProtocol,
        watcher: ConfigWatcher,
        owns_client: bool = False,
        registration: Registration | None = None,
    ) -> None:
        self._identifier = identifier
        self._client = client
        self._watcher = watcher
        self._owns_client = owns_client
        self._registration = registration
        self._registered = False
        self._default_strategy = RandomizedStrategy(client, identifier.datacenter)
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    @staticmethod
    def builder() -> ConsultantBuilder:
        return ConsultantBuilder()

    # ──────────────────────────────────────────────────────────────
    # Accessors
    # ──────────────────────────────────────────────────────────────

    @property
    def properties(self) -> ConfigSnapshot:
        """Live configuration; the same object for the agent's whole lifetime."""
        return self._watcher.properties

    def get_properties(self) -> ConfigSnapshot:
        return self.properties

    @property
    def service_identifier(self) -> ServiceIdentifier:
        return self._identifier

    def get_service_identifier(self) -> ServiceIdentifier:
        return self._identifier

    @property
    def service_id(self) -> str:
        """ID used when registering this process in Consul."""
        parts = [self._identifier.service, self._identifier.host, self._identifier.instance]
        return "-".join(part for part in parts if part)

    def wait_for_first_config(self, timeout: float | None = None) -> bool:
        """Block until a valid configuration was published; False on timeout."""
        return self._watcher.wait_for_first_config(timeout)

    # ──────────────────────────────────────────────────────────────
    # Service location
    # ──────────────────────────────────────────────────────────────

    def locate_all(
        self, service_name: str, strategy: RoutingStrategy | None = None
    ) -> ServiceLocator:
        """Locator over the healthy instances of ``service_name``.

        Args:
            service_name: Logical name of the service to call.
            strategy: Ordering strategy; defaults to randomized order within
                this process's datacenter, then other datacenters.

        Returns:
            A fresh ServiceLocator; instances are queried on its first next().
        """
        return (strategy or self._default_strategy).locate(service_name)

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    def _register(self) -> None:
        registration = self._registration
        if registration is None:
            return
        self._registered = self._client.register_service(
            service_id=self.service_id,
            service_name=self._identifier.service,
            address=registration.address,
            port=registration.port,
            tags=list(registration.tags),
            meta=dict(registration.meta),
        )
        if not self._registered:
            logger.warning(
                "Failed to register with Consul, continuing without registration",
                extra={"service_id": self.service_id},
            )

    def shutdown(self) -> None:
        """Stop the watcher, deregister and release the Consul client.

        Blocks until the watcher thread has exited. Idempotent.
        """
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

        self._watcher.shutdown()

        if self._registered:
            self._client.deregister_service(self.service_id)
            self._registered = False

        if self._owns_client:
            self._client.close()

        logger.debug("Consultant shut down", extra={"identity": str(self._identifier)})

    def __enter__(self) -> Consultant:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


class ConsultantBuilder:
    """Collects options for a Consultant; build() starts it."""

    def __init__(self) -> None:
        self._settings: ConsulSettings | None = None
        self._consul_host: str | None = None
        self._http_client: httpx.Client | None = None
        self._client: ConsulClientProtocol | None = None
        self._service: str | None = None
        self._datacenter: str | None = None
        self._host: str | None = None
        self._instance: str | None = None
        self._subscribers: list[ConfigCallback] = []
        self._validator: ConfigValidator | None = None
        self._pull_config = True
        self._registration: Registration | None = None

    def with_settings(self, settings: ConsulSettings) -> ConsultantBuilder:
        """Use these Consul settings instead of CONSUL_* environment variables."""
        self._settings = settings
        return self

    def with_consul_host(self, host: str) -> ConsultantBuilder:
        """Consul agent address, e.g. ``http://localhost`` or ``consul:8500``."""
        self._consul_host = host
        return self

    def using_http_client(self, http_client: httpx.Client) -> ConsultantBuilder:
        """Send Consul requests through this httpx client (left open on shutdown)."""
        self._http_client = http_client
        return self

    def using_consul_client(self, client: ConsulClientProtocol) -> ConsultantBuilder:
        """Use a ready-made Consul client, e.g. MockConsulClient in tests."""
        self._client = client
        return self

    def identify_as(
        self,
        service: str,
        datacenter: str | None = None,
        host: str | None = None,
        instance: str | None = None,
    ) -> ConsultantBuilder:
        """Set the identity explicitly; omitted fields fall back to SERVICE_* variables."""
        self._service = service
        self._datacenter = datacenter
        self._host = host
        self._instance = instance
        return self

    def on_valid_config(self, callback: ConfigCallback) -> ConsultantBuilder:
        """Call ``callback`` with every configuration that passed validation."""
        self._subscribers.append(callback)
        return self

    def validate_config_with(self, validator: ConfigValidator) -> ConsultantBuilder:
        """Reject candidate configurations for which ``validator`` raises."""
        self._validator = validator
        return self

    def pull_config(self, enabled: bool = True) -> ConsultantBuilder:
        """Disable to use the agent for service location only."""
        self._pull_config = enabled
        return self

    def register_as(
        self,
        port: int,
        address: str | None = None,
        tags: list[str] | None = None,
        meta: dict[str, str] | None = None,
    ) -> ConsultantBuilder:
        """Register this process in Consul on build() and deregister on shutdown()."""
        self._registration = Registration(
            port=port,
            address=address,
            tags=tuple(tags or ()),
            meta=dict(meta or {}),
        )
        return self

    def _resolve_identifier(self) -> ServiceIdentifier:
        env = get_identity_settings()
        return ServiceIdentifier(
            service=self._service or env.name or "",
            datacenter=self._datacenter or env.dc,
            host=self._host or env.host,
            instance=self._instance or env.instance,
        )

    def _resolve_settings(self) -> ConsulSettings:
        settings = self._settings or get_consul_settings()
        if self._consul_host:
            settings = settings.model_copy(update={"host": self._consul_host})
        return settings

    def build(self) -> Consultant:
        """Create the agent and start watching configuration.

        Raises:
            ConsultantConfigurationError: If no service name is configured.
        """
        identifier = self._resolve_identifier()
        settings = self._resolve_settings()

        owns_client = self._client is None
        client: ConsulClientProtocol = self._client or ConsulClient(
            settings, http_client=self._http_client
        )

        watcher = ConfigWatcher(
            fetcher=client,
            identifier=identifier,
            validator=self._validator,
            subscribers=self._subscribers,
            error_retry_delay=settings.error_retry_delay,
            error_retry_max_delay=settings.error_retry_max_delay,
        )
        consultant = Consultant(
            identifier=identifier,
            client=client,
            watcher=watcher,
            owns_client=owns_client,
            registration=self._registration,
        )

        consultant._register()
        if self._pull_config:
            watcher.start()

        logger.info(
            "Consultant started",
            extra={
                "identity": str(identifier),
                "consul": settings.base_url,
                "pull_config": self._pull_config,
            },
        )
        return consultant
