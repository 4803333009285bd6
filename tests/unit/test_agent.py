"""Tests for the Consultant agent and its builder."""

from __future__ import annotations

import threading

import httpx
import pytest

from consultant import Consultant, ServiceIdentifier
from consultant.core.exceptions import ConsultantConfigurationError
from consultant.core.settings import ConsulSettings, IdentitySettings
from consultant.features.locator.strategies import RoundRobinStrategy
from consultant.infra.discovery.mock_client import kv_entries


def always_reject(config):
    raise ValueError("invalid config")


@pytest.fixture
def builder(mock_consul):
    return Consultant.builder().using_consul_client(mock_consul)


@pytest.mark.unit
class TestConfigWatching:
    """Test configuration delivered through the agent."""

    def test_initial_config(self, builder, mock_consul):
        """Test the first configuration is visible through properties."""
        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})

        with builder.identify_as("oauth", "eu-central", "web-1", "master").build() as consultant:
            assert consultant.wait_for_first_config(timeout=2)
            assert consultant.properties == {"some.key": "some-value"}

    def test_rejected_config_never_delivered(self, builder, mock_consul):
        """Test a config failing validation reaches neither snapshot nor subscribers."""
        received = []
        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})

        consultant = (
            builder.identify_as("oauth", "eu-central", "web-1", "master")
            .validate_config_with(always_reject)
            .on_valid_config(received.append)
            .build()
        )
        try:
            assert not consultant.wait_for_first_config(timeout=2)
            assert received == []
            assert consultant.properties == {}
        finally:
            consultant.shutdown()

    def test_update_delivered_to_same_object(self, builder, mock_consul, wait_for):
        """Test updates mutate the snapshot handed out earlier."""
        received = []
        first_seen = threading.Event()
        release = threading.Event()

        def subscriber(config):
            received.append(dict(config))
            first_seen.set()
            release.wait(2)

        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})
        mock_consul.queue_config(1001, {"config/oauth/some.key": "some-other-value"})

        consultant = (
            builder.identify_as("oauth", "eu-central", "web-1", "master")
            .on_valid_config(subscriber)
            .build()
        )
        try:
            properties = consultant.get_properties()

            assert first_seen.wait(2)
            assert properties["some.key"] == "some-value"

            release.set()

            assert wait_for(lambda: len(received) == 2)
            assert consultant.get_properties() is properties
            assert properties["some.key"] == "some-other-value"
            assert [config["some.key"] for config in received] == [
                "some-value",
                "some-other-value",
            ]
        finally:
            release.set()
            consultant.shutdown()

    def test_multiple_subscribers_in_order(self, builder, mock_consul):
        """Test subscribers are called in registration order."""
        calls = []
        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})

        with (
            builder.identify_as("oauth")
            .on_valid_config(lambda config: calls.append("first"))
            .on_valid_config(lambda config: calls.append("second"))
            .build()
        ) as consultant:
            assert consultant.wait_for_first_config(timeout=2)
            mock_consul.wait_until_drained()

        assert calls == ["first", "second"]

    def test_pull_config_disabled(self, builder, mock_consul):
        """Test no configuration is fetched when pulling is turned off."""
        mock_consul.queue_config(1000, {"config/oauth/some.key": "some-value"})

        with builder.identify_as("oauth").pull_config(False).build() as consultant:
            assert not consultant.wait_for_first_config(timeout=0.05)

        assert mock_consul.get_calls("fetch_config") == []

    def test_over_http(self):
        """Full path through ConsulClient with a transport playing Consul."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "index" in request.url.params:
                # Nothing changed; answer like an expired blocking query
                threading.Event().wait(0.01)
            return httpx.Response(
                200,
                headers={"X-Consul-Index": "1000"},
                json=kv_entries({"config/oauth/some.key": "some-value"}),
            )

        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        try:
            with (
                Consultant.builder()
                .using_http_client(http_client)
                .with_consul_host("http://consul.local")
                .identify_as("oauth", "eu-central", "web-1", "master")
                .build()
            ) as consultant:
                assert consultant.wait_for_first_config(timeout=2)
                assert consultant.properties == {"some.key": "some-value"}

            assert requests[0].url.host == "consul.local"
            assert requests[0].url.path == "/v1/kv/config/oauth/"
            assert not http_client.is_closed
        finally:
            http_client.close()


@pytest.mark.unit
class TestIdentity:
    """Test identity resolution in build()."""

    def test_identity_from_environment(self, builder, monkeypatch):
        """Test SERVICE_* variables fill in the identity."""
        monkeypatch.setenv("CONSUL_HOST", "http://consul.local")
        monkeypatch.setenv("SERVICE_NAME", "oauth")
        monkeypatch.setenv("SERVICE_DC", "eu-central")
        monkeypatch.setenv("SERVICE_HOST", "web-1")
        monkeypatch.setenv("SERVICE_INSTANCE", "master")

        with builder.pull_config(False).build() as consultant:
            identifier = consultant.get_service_identifier()

        assert identifier == ServiceIdentifier("oauth", "eu-central", "web-1", "master")
        assert identifier == ServiceIdentifier.from_settings(IdentitySettings())

    def test_explicit_identity_wins(self, builder, monkeypatch):
        """Test identify_as() values override the environment."""
        monkeypatch.setenv("SERVICE_NAME", "from-env")
        monkeypatch.setenv("SERVICE_DC", "us-east")
        monkeypatch.setenv("SERVICE_INSTANCE", "replica")

        with builder.identify_as("oauth", "eu-central").pull_config(False).build() as consultant:
            identifier = consultant.service_identifier

        assert identifier == ServiceIdentifier("oauth", "eu-central", "test-host", "replica")

    def test_missing_service_name_raises(self, builder, mock_consul):
        """Test build() fails without a service name."""
        with pytest.raises(ConsultantConfigurationError):
            builder.build()

        assert mock_consul.get_calls() == []

    def test_watches_service_prefix(self, builder, mock_consul, wait_for):
        """Test the watcher polls config/<service>/."""
        with builder.identify_as("billing").build():
            assert wait_for(lambda: mock_consul.get_calls("fetch_config"))

        assert mock_consul.get_calls("fetch_config")[0].args["prefix"] == "config/billing/"


@pytest.mark.unit
class TestSettings:
    """Test Consul connection options."""

    def test_consul_host_override(self):
        """Test with_consul_host() replaces the configured host."""
        consultant = (
            Consultant.builder()
            .with_settings(ConsulSettings(host="ignored.local", port=8600))
            .with_consul_host("consul.local")
            .identify_as("oauth")
            .pull_config(False)
            .build()
        )
        try:
            assert consultant._client._base_url == "http://consul.local:8600"
        finally:
            consultant.shutdown()

    def test_owned_client_closed_on_shutdown(self):
        """Test a client created by build() is closed on shutdown."""
        consultant = Consultant.builder().identify_as("oauth").pull_config(False).build()
        http_client = consultant._client._client

        consultant.shutdown()

        assert http_client.is_closed

    def test_injected_client_not_closed(self, builder, mock_consul):
        """Test a caller-supplied client stays open after shutdown."""
        builder.identify_as("oauth").pull_config(False).build().shutdown()

        assert not mock_consul.closed


@pytest.mark.unit
class TestLocateAll:
    """Test service location through the agent."""

    @pytest.fixture
    def backend(self, mock_consul, make_instance):
        mock_consul.add_instance(make_instance("eu-1", datacenter="eu-central"))
        mock_consul.add_instance(make_instance("eu-2", datacenter="eu-central"))
        mock_consul.add_instance(make_instance("us-1", datacenter="us-east"))
        return mock_consul

    def test_default_strategy_local_first(self, builder, backend):
        """Test locate_all() prefers the local datacenter by default."""
        with builder.identify_as("oauth", "eu-central").pull_config(False).build() as consultant:
            locator = consultant.locate_all("billing")
            result = [instance.id for instance in locator]

        assert sorted(result[:2]) == ["eu-1", "eu-2"]
        assert result[2:] == ["us-1"]

    def test_custom_strategy(self, builder, backend):
        """Test locate_all() uses the strategy it is given."""
        with builder.identify_as("oauth", "eu-central").pull_config(False).build() as consultant:
            strategy = RoundRobinStrategy(backend, "eu-central")
            firsts = [consultant.locate_all("billing", strategy).next().id for _ in range(3)]

        assert firsts == ["eu-1", "eu-2", "eu-1"]

    def test_unknown_service(self, builder, backend):
        """Test locating an unregistered service yields nothing."""
        with builder.identify_as("oauth", "eu-central").pull_config(False).build() as consultant:
            assert consultant.locate_all("unknown").next() is None


@pytest.mark.unit
class TestRegistration:
    """Test registering the process in Consul."""

    def test_register_and_deregister(self, builder, mock_consul):
        """Test register_as() registers on build and deregisters on shutdown."""
        consultant = (
            builder.identify_as("oauth", "eu-central", "web-1", "master")
            .register_as(8080, address="10.0.0.5", tags=["v1"], meta={"zone": "a"})
            .pull_config(False)
            .build()
        )

        assert consultant.service_id == "oauth-web-1-master"
        assert mock_consul.services["oauth-web-1-master"] == {
            "service_id": "oauth-web-1-master",
            "service_name": "oauth",
            "address": "10.0.0.5",
            "port": 8080,
            "tags": ["v1"],
            "meta": {"zone": "a"},
        }

        consultant.shutdown()

        assert mock_consul.services == {}

    def test_failed_registration_is_not_fatal(self, builder, mock_consul):
        """Test a failed registration is logged and skipped at shutdown."""
        mock_consul.fail_next_call = True

        consultant = builder.identify_as("oauth").register_as(8080).pull_config(False).build()
        consultant.shutdown()

        assert mock_consul.get_calls("deregister_service") == []

    def test_no_registration_by_default(self, builder, mock_consul):
        """Test nothing is registered unless register_as() was called."""
        builder.identify_as("oauth").pull_config(False).build().shutdown()

        assert mock_consul.get_calls("register_service") == []


@pytest.mark.unit
class TestShutdown:
    """Test agent shutdown."""

    def test_stops_polling(self, builder, mock_consul, wait_for):
        """Test no fetch happens after shutdown returns."""
        consultant = builder.identify_as("oauth").build()
        assert wait_for(lambda: mock_consul.get_calls("fetch_config"))

        consultant.shutdown()
        polls = len(mock_consul.get_calls("fetch_config"))
        threading.Event().wait(0.05)

        assert len(mock_consul.get_calls("fetch_config")) == polls

    def test_idempotent(self, builder, mock_consul):
        """Test a second shutdown does not deregister again."""
        consultant = builder.identify_as("oauth").register_as(8080).build()

        consultant.shutdown()
        consultant.shutdown()

        assert len(mock_consul.get_calls("deregister_service")) == 1
