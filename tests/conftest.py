"""Pytest configuration and shared fixtures.

Organization:
    - Environment Fixtures: isolate tests from CONSUL_*/SERVICE_*/LOG_* variables
    - Consul Fixtures: in-memory Consul client and httpx transport helpers
    - Domain Fixtures: identities and service instances
    - Utility Fixtures: polling helpers for the background watcher thread

Tests never talk to a real Consul agent: config watching is driven through
MockConsulClient, and the HTTP client is exercised with httpx.MockTransport.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Iterator

import pytest

from consultant.core.identity import ServiceIdentifier
from consultant.core.instance import ServiceInstance
from consultant.core.settings import clear_all_caches
from consultant.infra.discovery.mock_client import MockConsulClient

ENV_PREFIXES = ("CONSUL_", "SERVICE_", "LOG_")


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove consultant-related environment variables and reset settings caches."""
    for key in list(os.environ):
        if key.upper().startswith(ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    # Keep the machine hostname out of identities unless a test sets one
    monkeypatch.setenv("SERVICE_HOST", "test-host")
    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Consul Fixtures
# ============================================================================


@pytest.fixture
def mock_consul() -> Iterator[MockConsulClient]:
    """In-memory Consul client with a short simulated long-poll wait."""
    client = MockConsulClient(poll_wait=0.005)
    yield client
    client.close()


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def identifier() -> ServiceIdentifier:
    """Identity of the oauth master process on web-1 in eu-central."""
    return ServiceIdentifier(
        service="oauth",
        datacenter="eu-central",
        host="web-1",
        instance="master",
    )


@pytest.fixture
def make_instance() -> Callable[..., ServiceInstance]:
    """Factory for ServiceInstance values."""

    def _make(
        instance_id: str,
        service: str = "billing",
        datacenter: str | None = None,
        port: int = 8080,
    ) -> ServiceInstance:
        return ServiceInstance(
            id=instance_id,
            service=service,
            address=f"10.0.0.{abs(hash(instance_id)) % 250 + 1}",
            port=port,
            datacenter=datacenter,
        )

    return _make


# ============================================================================
# Utility Fixtures
# ============================================================================


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout elapses."""

    def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.005)
        return predicate()

    return _wait_for
