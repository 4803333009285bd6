"""Consul HTTP API client with observability.

This module provides the real Consul client used by the config watcher and
the routing strategies. It:
- Uses httpx for synchronous HTTP operations (the watcher owns a thread)
- Includes OpenTelemetry tracing for all API calls
- Records Prometheus metrics for monitoring
- Handles errors gracefully without raising exceptions
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
from opentelemetry import trace

from consultant.core.instance import ServiceInstance
from consultant.infra.discovery.metrics import (
    consul_operation_duration_seconds,
    consul_operation_errors_total,
)
from consultant.infra.discovery.protocols import KVResponse

if TYPE_CHECKING:
    from consultant.core.settings.consul import ConsulSettings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INDEX_HEADER = "X-Consul-Index"


class ConsulClient:
    """HTTP client for the Consul KV, health and agent APIs.

    This client implements ConfigFetcherProtocol and InstanceBackendProtocol:
    - Blocking KV reads for config watching
    - Health queries for service location
    - Service (de)registration on the local agent
    - Graceful error handling (returns None/False/[], doesn't raise)

    Example:
        client = ConsulClient(get_consul_settings())

        response = client.fetch_config("config/oauth/", index=0)
        if response is not None:
            print(response.index, response.entries)

        client.close()
    """

    def __init__(
        self,
        settings: ConsulSettings,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the Consul client.

        Args:
            settings: ConsulSettings instance with connection configuration.
            http_client: Optional pre-configured httpx client. When given, the
                caller owns it and close() leaves it open.
        """
        self._settings = settings
        self._base_url = settings.base_url
        self._headers = settings.get_auth_headers()
        self._owns_client = http_client is None

        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(settings.connect_timeout),
            verify=settings.verify_ssl,
        )

        logger.debug(
            "ConsulClient initialized",
            extra={"base_url": self._base_url},
        )

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        span: trace.Span,
        **kwargs: Any,
    ) -> httpx.Response | None:
        """Issue one API call, recording duration and transport errors.

        Returns:
            The response, or None when the request timed out or failed to
            connect (already logged and counted).
        """
        start_time = time.perf_counter()
        try:
            return self._client.request(
                method,
                f"{self._base_url}{path}",
                headers=self._headers,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            span.set_attribute("consul.success", False)
            span.record_exception(e)
            consul_operation_errors_total.labels(
                operation=operation, error_type="timeout"
            ).inc()
            logger.warning(
                "Consul %s timed out",
                operation,
                extra={"path": path, "error": str(e)},
            )
            return None
        except httpx.HTTPError as e:
            span.set_attribute("consul.success", False)
            span.record_exception(e)
            consul_operation_errors_total.labels(
                operation=operation, error_type="connection"
            ).inc()
            logger.warning(
                "Consul %s connection error",
                operation,
                extra={"path": path, "error": str(e)},
            )
            return None
        finally:
            consul_operation_duration_seconds.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

    def _http_error(
        self, operation: str, response: httpx.Response, span: trace.Span, **context: Any
    ) -> None:
        span.set_attribute("consul.success", False)
        span.set_attribute("consul.status_code", response.status_code)
        consul_operation_errors_total.labels(
            operation=operation, error_type="http_error"
        ).inc()
        logger.warning(
            "Consul %s failed",
            operation,
            extra={
                **context,
                "status_code": response.status_code,
                "response": response.text[:200],
            },
        )

    def _decode_error(
        self, operation: str, span: trace.Span, error: Exception, **context: Any
    ) -> None:
        span.set_attribute("consul.success", False)
        span.record_exception(error)
        consul_operation_errors_total.labels(
            operation=operation, error_type="decode"
        ).inc()
        logger.warning(
            "Consul %s returned an unreadable body",
            operation,
            extra={**context, "error": str(error)},
        )

    def fetch_config(self, prefix: str, index: int = 0) -> KVResponse | None:
        """Blocking read of every key below a prefix.

        Consul holds the request open until the prefix changes past
        ``index`` or the configured wait elapses.

        Args:
            prefix: KV key prefix, e.g. ``config/oauth/``.
            index: Last seen X-Consul-Index; 0 returns immediately.

        Returns:
            KVResponse on success (a missing prefix yields no entries), None on
            timeout, transport error, unexpected status or unreadable body.
        """
        params: dict[str, Any] = {"recurse": "true", "wait": self._settings.wait}
        if index > 0:
            params["index"] = index
        timeout = httpx.Timeout(
            self._settings.connect_timeout, read=self._settings.read_timeout
        )

        with tracer.start_as_current_span("consul.kv_read") as span:
            span.set_attribute("consul.prefix", prefix)
            span.set_attribute("consul.index", index)

            response = self._request(
                "kv_read",
                "GET",
                f"/v1/kv/{prefix}",
                span,
                params=params,
                timeout=timeout,
            )
            if response is None:
                return None

            if response.status_code not in (200, 404):
                self._http_error("kv_read", response, span, prefix=prefix)
                return None

            try:
                new_index = int(response.headers[INDEX_HEADER])
            except (KeyError, ValueError) as e:
                self._decode_error("kv_read", span, e, prefix=prefix)
                return None

            if response.status_code == 404:
                # Consul answers 404 (with an index) when no key exists below the prefix
                entries: list[dict[str, Any]] = []
            else:
                try:
                    entries = response.json()
                except ValueError as e:
                    self._decode_error("kv_read", span, e, prefix=prefix)
                    return None
                if not isinstance(entries, list):
                    self._decode_error(
                        "kv_read",
                        span,
                        TypeError(f"expected a list, got {type(entries).__name__}"),
                        prefix=prefix,
                    )
                    return None

            span.set_attribute("consul.success", True)
            span.set_attribute("consul.new_index", new_index)
            logger.debug(
                "Consul KV read completed",
                extra={"prefix": prefix, "index": new_index, "keys": len(entries)},
            )
            return KVResponse(index=new_index, entries=entries)

    def list_healthy_instances(
        self, service_name: str, datacenter: str | None = None
    ) -> list[ServiceInstance]:
        """Query the passing instances of a service.

        Args:
            service_name: Logical service name.
            datacenter: Datacenter to query; None means the agent's own.

        Returns:
            Instances in Consul's order; empty list on failure.
        """
        params: dict[str, Any] = {"passing": "true"}
        if datacenter:
            params["dc"] = datacenter

        with tracer.start_as_current_span("consul.health_service") as span:
            span.set_attribute("consul.service_name", service_name)
            if datacenter:
                span.set_attribute("consul.datacenter", datacenter)

            response = self._request(
                "health", "GET", f"/v1/health/service/{service_name}", span, params=params
            )
            if response is None:
                return []
            if response.status_code != 200:
                self._http_error(
                    "health", response, span, service_name=service_name, datacenter=datacenter
                )
                return []

            try:
                instances = [
                    ServiceInstance.from_health_entry(entry, datacenter)
                    for entry in response.json()
                ]
            except (ValueError, TypeError, AttributeError) as e:
                self._decode_error("health", span, e, service_name=service_name)
                return []

            span.set_attribute("consul.success", True)
            span.set_attribute("consul.instances", len(instances))
            return instances

    def list_datacenters(self) -> list[str]:
        """Return all datacenters known to the Consul cluster.

        Returns:
            Datacenter names (Consul sorts them by estimated round trip
            time); empty list on failure.
        """
        with tracer.start_as_current_span("consul.catalog_datacenters") as span:
            response = self._request("datacenters", "GET", "/v1/catalog/datacenters", span)
            if response is None:
                return []
            if response.status_code != 200:
                self._http_error("datacenters", response, span)
                return []
            try:
                datacenters = [str(dc) for dc in response.json()]
            except (ValueError, TypeError) as e:
                self._decode_error("datacenters", span, e)
                return []
            span.set_attribute("consul.success", True)
            return datacenters

    def register_service(
        self,
        service_id: str,
        service_name: str,
        address: str | None,
        port: int,
        tags: list[str] | None = None,
        meta: dict[str, str] | None = None,
    ) -> bool:
        """Register a service with the local Consul agent.

        Args:
            service_id: Unique identifier for this service instance.
            service_name: Logical name of the service.
            address: Address to advertise; None lets the agent use its own.
            port: Port number to advertise.
            tags: Tags for filtering and routing.
            meta: Key-value metadata for the service.

        Returns:
            True if registration succeeded, False otherwise.
        """
        payload: dict[str, Any] = {
            "ID": service_id,
            "Name": service_name,
            "Port": port,
            "Tags": list(tags or []),
            "Meta": dict(meta or {}),
        }
        if address:
            payload["Address"] = address

        with tracer.start_as_current_span("consul.register_service") as span:
            span.set_attribute("consul.service_id", service_id)
            span.set_attribute("consul.service_name", service_name)
            span.set_attribute("consul.port", port)

            response = self._request(
                "register", "PUT", "/v1/agent/service/register", span, json=payload
            )
            if response is None:
                return False
            if response.status_code != 200:
                self._http_error("register", response, span, service_id=service_id)
                return False

            span.set_attribute("consul.success", True)
            logger.info(
                "Service registered with Consul",
                extra={
                    "service_id": service_id,
                    "service_name": service_name,
                    "address": address,
                    "port": port,
                },
            )
            return True

    def deregister_service(self, service_id: str) -> bool:
        """Deregister a service from the local Consul agent.

        Args:
            service_id: The service instance ID to deregister.

        Returns:
            True if deregistration succeeded, False otherwise.
        """
        with tracer.start_as_current_span("consul.deregister_service") as span:
            span.set_attribute("consul.service_id", service_id)

            response = self._request(
                "deregister", "PUT", f"/v1/agent/service/deregister/{service_id}", span
            )
            if response is None:
                return False
            if response.status_code != 200:
                self._http_error("deregister", response, span, service_id=service_id)
                return False

            span.set_attribute("consul.success", True)
            logger.info(
                "Service deregistered from Consul",
                extra={"service_id": service_id},
            )
            return True

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()
        logger.debug("ConsulClient closed")
