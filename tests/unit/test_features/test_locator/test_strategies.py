"""Tests for the datacenter-aware routing strategies."""

from __future__ import annotations

import random

import pytest

from consultant.features.locator.strategies import (
    RandomizedStrategy,
    RoundRobinStrategy,
    RoutingStrategy,
    datacenter_chain,
)
from consultant.infra.discovery.mock_client import MockConsulClient


def ids(locator):
    return [instance.id for instance in locator]


@pytest.fixture
def backend(make_instance):
    client = MockConsulClient()
    for instance_id in ("eu-1", "eu-2", "eu-3"):
        client.add_instance(make_instance(instance_id, datacenter="eu-central"))
    for instance_id in ("us-1", "us-2"):
        client.add_instance(make_instance(instance_id, datacenter="us-east"))
    client.add_instance(make_instance("ap-1", datacenter="ap-south"))
    return client


@pytest.mark.unit
class TestDatacenterChain:
    """Test the local-then-remote chain."""

    def test_local_first_then_remote_in_consul_order(self, backend):
        """Test local instances come first, then remote datacenters in Consul order."""
        locator = datacenter_chain(backend, "billing", "eu-central")

        assert ids(locator) == ["eu-1", "eu-2", "eu-3", "us-1", "us-2", "ap-1"]

    def test_remote_datacenters_queried_only_when_needed(self, backend):
        """Test remote datacenters are not queried while local instances remain."""
        locator = datacenter_chain(backend, "billing", "eu-central")

        locator.next()

        assert backend.get_calls("list_datacenters") == []
        assert [c.args["datacenter"] for c in backend.get_calls("list_healthy_instances")] == [
            "eu-central"
        ]

    def test_remote_datacenters_queried_lazily_one_by_one(self, backend):
        """Test each remote datacenter is queried only when the previous runs out."""
        locator = datacenter_chain(backend, "billing", "eu-central")

        for _ in range(4):
            locator.next()

        queried = [c.args["datacenter"] for c in backend.get_calls("list_healthy_instances")]
        assert queried == ["eu-central", "us-east"]
        assert len(backend.get_calls("list_datacenters")) == 1

    def test_without_local_datacenter_no_fallback(self, make_instance):
        """Test no remote fallback without a local datacenter."""
        client = MockConsulClient(local_datacenter="eu-central")
        client.add_instance(make_instance("eu-1", datacenter="eu-central"))
        client.add_instance(make_instance("us-1", datacenter="us-east"))

        locator = datacenter_chain(client, "billing", None)

        assert ids(locator) == ["eu-1"]
        assert client.get_calls("list_datacenters") == []

    def test_unknown_service_is_empty(self, backend):
        """Test an unknown service yields no instances."""
        assert ids(datacenter_chain(backend, "unknown", "eu-central")) == []

    def test_backend_failure_skips_datacenter(self, backend):
        """Test a failed query skips that datacenter."""
        backend.fail_next_call = True

        locator = datacenter_chain(backend, "billing", "eu-central")

        assert ids(locator) == ["us-1", "us-2", "ap-1"]


@pytest.mark.unit
class TestRandomizedStrategy:
    """Test randomized ordering."""

    def test_is_a_routing_strategy(self, backend):
        """Test RandomizedStrategy satisfies RoutingStrategy."""
        assert isinstance(RandomizedStrategy(backend, "eu-central"), RoutingStrategy)

    def test_shuffles_within_each_datacenter(self, backend):
        """Test shuffling never mixes datacenters."""
        strategy = RandomizedStrategy(backend, "eu-central", rng=random.Random(42))

        result = ids(strategy.locate("billing"))

        assert sorted(result[:3]) == ["eu-1", "eu-2", "eu-3"]
        assert sorted(result[3:5]) == ["us-1", "us-2"]
        assert result[5] == "ap-1"

    def test_order_varies_between_locators(self, backend):
        """Test different locators see different orders."""
        strategy = RandomizedStrategy(backend, "eu-central", rng=random.Random(7))

        orders = {tuple(ids(strategy.locate("billing"))[:3]) for _ in range(30)}

        assert len(orders) > 1

    def test_each_locate_is_fresh(self, backend):
        """Test a new locate() yields every instance again."""
        strategy = RandomizedStrategy(backend, "eu-central")

        first = strategy.locate("billing")
        ids(first)

        assert len(ids(strategy.locate("billing"))) == 6


@pytest.mark.unit
class TestRoundRobinStrategy:
    """Test round-robin ordering."""

    def test_rotates_between_requests(self, backend):
        """Test consecutive requests start at the next instance."""
        strategy = RoundRobinStrategy(backend, "eu-central")

        firsts = [strategy.locate("billing").next().id for _ in range(4)]

        assert firsts == ["eu-1", "eu-2", "eu-3", "eu-1"]

    def test_retries_continue_rotation(self, backend):
        """Test retries within a request continue the rotation."""
        strategy = RoundRobinStrategy(backend, "eu-central")

        locator = strategy.locate("billing")
        locator.next()
        locator.next()

        assert strategy.last_emitted("billing") == "eu-2"
        assert strategy.locate("billing").next().id == "eu-3"

    def test_full_traversal_covers_every_instance(self, backend):
        """Test a full traversal returns every instance once."""
        strategy = RoundRobinStrategy(backend, "eu-central")
        strategy.locate("billing").next()

        result = ids(strategy.locate("billing"))

        assert result[:3] == ["eu-2", "eu-3", "eu-1"]
        assert sorted(result[3:]) == ["ap-1", "us-1", "us-2"]

    def test_services_tracked_separately(self, backend, make_instance):
        """Test each service keeps its own rotation."""
        backend.add_instance(make_instance("pay-1", service="payments", datacenter="eu-central"))
        strategy = RoundRobinStrategy(backend, "eu-central")

        strategy.locate("billing").next()

        assert strategy.last_emitted("billing") == "eu-1"
        assert strategy.last_emitted("payments") is None
        assert strategy.locate("payments").next().id == "pay-1"

    def test_unknown_last_instance_starts_from_first(self, backend):
        """Test rotation restarts when the last instance disappeared."""
        strategy = RoundRobinStrategy(backend, "eu-central")
        locator = strategy.locate("billing")
        ids(locator)

        # Last emitted is ap-1, which is not in the local datacenter
        assert strategy.last_emitted("billing") == "ap-1"
        assert strategy.locate("billing").next().id == "eu-1"
