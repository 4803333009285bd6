"""Consul access for config watching and service location.

This package provides:
- Blocking KV reads (X-Consul-Index based long polling)
- Health queries returning ServiceInstance values
- Agent service (de)registration
- OpenTelemetry tracing and Prometheus metrics
- Mock client for testing

Key characteristics:
- Never raises on Consul unavailability: callers get None/False/[]
- Usable with an injected httpx.Client

Configuration:
    # Environment variables
    CONSUL_HOST=http://consul.service.consul
    CONSUL_PORT=8500
    CONSUL_TOKEN=...

Testing:
    from consultant.infra.discovery import MockConsulClient

    mock_client = MockConsulClient()
    mock_client.queue_config(1000, {"config/oauth/some.key": "some-value"})
"""

from consultant.infra.discovery.client import ConsulClient
from consultant.infra.discovery.mock_client import MockConsulClient
from consultant.infra.discovery.protocols import (
    ConfigFetcherProtocol,
    ConsulClientProtocol,
    InstanceBackendProtocol,
    KVResponse,
)

__all__ = [
    # Protocols
    "ConfigFetcherProtocol",
    "ConsulClientProtocol",
    "InstanceBackendProtocol",
    "KVResponse",
    # Clients
    "ConsulClient",
    "MockConsulClient",
]
