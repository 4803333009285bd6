"""Mock Consul client for testing without a real Consul instance.

This module provides a MockConsulClient that implements the fetcher and
instance-backend protocols and keeps all state in memory, making it ideal for
unit tests of the config watcher and the service locator.

Usage in tests:
    from consultant.infra.discovery.mock_client import MockConsulClient

    @pytest.fixture
    def mock_consul():
        return MockConsulClient()

    def test_initial_config(mock_consul):
        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})
        response = mock_consul.fetch_config("config/oauth/", 0)
        assert response.index == 1000
"""

from __future__ import annotations

import base64
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from consultant.core.instance import ServiceInstance
from consultant.infra.discovery.protocols import KVResponse

logger = logging.getLogger(__name__)


@dataclass
class CallRecord:
    """Record of a method call for assertion in tests."""

    method: str
    args: dict[str, Any]
    success: bool


def kv_entries(values: dict[str, str | None]) -> list[dict[str, Any]]:
    """Encode a key -> value dict the way Consul's KV API returns it."""
    entries: list[dict[str, Any]] = []
    for key, value in values.items():
        encoded = None if value is None else base64.b64encode(value.encode("utf-8")).decode("ascii")
        entries.append({"Key": key, "Value": encoded, "Flags": 0})
    return entries


class MockConsulClient:
    """In-memory mock Consul client for testing.

    Scripted KV responses are handed out in order, one per fetch_config()
    call. Once the script is exhausted, fetch_config() behaves like a blocking
    query that sees no change: it waits ``poll_wait`` seconds and returns the
    caller's index unchanged, or None when no index was seen yet.

    Attributes:
        instances: Registered instances per (service, datacenter).
        datacenters: Datacenters reported by list_datacenters().
        call_history: List of all method calls for assertion.
        fail_next_call: Set to True to simulate a failure on next call.
        closed: Whether close() has been called.
    """

    def __init__(self, poll_wait: float = 0.01, local_datacenter: str | None = None) -> None:
        """Initialize the mock client with empty state.

        Args:
            poll_wait: Seconds a fetch waits when no scripted response is left.
            local_datacenter: Datacenter used when a query passes none.
        """
        self.poll_wait = poll_wait
        self.local_datacenter = local_datacenter
        self.instances: dict[tuple[str, str | None], list[ServiceInstance]] = {}
        self.datacenters: list[str] = []
        self.services: dict[str, dict[str, Any]] = {}
        self.call_history: list[CallRecord] = []
        self.fail_next_call: bool = False
        self.closed: bool = False
        self._responses: deque[KVResponse | None] = deque()
        self._lock = threading.Lock()
        self._idle = threading.Event()

    def _should_fail(self) -> bool:
        """Check if the next call should fail and reset flag."""
        if self.fail_next_call:
            self.fail_next_call = False
            return True
        return False

    def _record(self, method: str, args: dict[str, Any], success: bool) -> None:
        with self._lock:
            self.call_history.append(CallRecord(method, args, success))

    # ──────────────────────────────────────────────────────────────
    # Scripting helpers
    # ──────────────────────────────────────────────────────────────

    def queue_config(self, index: int, values: dict[str, str | None]) -> None:
        """Script a KV response with plain-text values (test helper)."""
        self.queue_response(KVResponse(index=index, entries=kv_entries(values)))

    def queue_response(self, response: KVResponse | None) -> None:
        """Script a raw KV response, or None for a timed-out poll (test helper)."""
        with self._lock:
            self._responses.append(response)
            self._idle.clear()

    def wait_until_drained(self, timeout: float = 5.0) -> bool:
        """Block until every scripted response was fetched (test helper)."""
        return self._idle.wait(timeout)

    def add_instance(self, instance: ServiceInstance) -> None:
        """Register an instance for health queries (test helper)."""
        key = (instance.service, instance.datacenter)
        self.instances.setdefault(key, []).append(instance)
        if instance.datacenter and instance.datacenter not in self.datacenters:
            self.datacenters.append(instance.datacenter)

    # ──────────────────────────────────────────────────────────────
    # ConfigFetcherProtocol
    # ──────────────────────────────────────────────────────────────

    def fetch_config(self, prefix: str, index: int = 0) -> KVResponse | None:
        """Hand out the next scripted response, or simulate an idle blocking query."""
        call_args = {"prefix": prefix, "index": index}

        if self._should_fail():
            self._record("fetch_config", call_args, False)
            logger.debug("MockConsulClient: fetch_config failed (simulated)")
            return None

        with self._lock:
            scripted = bool(self._responses)
            response = self._responses.popleft() if scripted else None
            if not self._responses:
                self._idle.set()

        if not scripted:
            # Nothing changed: Consul holds the query open, then repeats the index
            time.sleep(self.poll_wait)
            if index > 0:
                response = KVResponse(index=index, entries=[])

        self._record("fetch_config", call_args, response is not None)
        return response

    # ──────────────────────────────────────────────────────────────
    # InstanceBackendProtocol
    # ──────────────────────────────────────────────────────────────

    def list_healthy_instances(
        self, service_name: str, datacenter: str | None = None
    ) -> list[ServiceInstance]:
        """Return registered instances of a service in a datacenter."""
        call_args = {"service_name": service_name, "datacenter": datacenter}
        if self._should_fail():
            self._record("list_healthy_instances", call_args, False)
            return []
        self._record("list_healthy_instances", call_args, True)
        return list(self.instances.get((service_name, datacenter or self.local_datacenter), []))

    def list_datacenters(self) -> list[str]:
        """Return the datacenters seen so far."""
        if self._should_fail():
            self._record("list_datacenters", {}, False)
            return []
        self._record("list_datacenters", {}, True)
        return list(self.datacenters)

    # ──────────────────────────────────────────────────────────────
    # Agent API
    # ──────────────────────────────────────────────────────────────

    def register_service(
        self,
        service_id: str,
        service_name: str,
        address: str | None,
        port: int,
        tags: list[str] | None = None,
        meta: dict[str, str] | None = None,
    ) -> bool:
        """Register a service in memory."""
        call_args = {
            "service_id": service_id,
            "service_name": service_name,
            "address": address,
            "port": port,
            "tags": list(tags or []),
            "meta": dict(meta or {}),
        }
        if self._should_fail():
            self._record("register_service", call_args, False)
            return False
        self.services[service_id] = call_args
        self._record("register_service", call_args, True)
        return True

    def deregister_service(self, service_id: str) -> bool:
        """Deregister a service from memory."""
        call_args = {"service_id": service_id}
        if self._should_fail():
            self._record("deregister_service", call_args, False)
            return False
        self.services.pop(service_id, None)
        self._record("deregister_service", call_args, True)
        return True

    def close(self) -> None:
        """Mark the client as closed."""
        self.closed = True
        self._record("close", {}, True)
        logger.debug("MockConsulClient: closed")

    # ──────────────────────────────────────────────────────────────
    # Test helper methods
    # ──────────────────────────────────────────────────────────────

    def get_calls(self, method: str | None = None) -> list[CallRecord]:
        """Get call history, optionally filtered by method (test helper).

        Args:
            method: Optional method name to filter by.

        Returns:
            List of CallRecord objects.
        """
        with self._lock:
            calls = list(self.call_history)
        if method is None:
            return calls
        return [c for c in calls if c.method == method]
