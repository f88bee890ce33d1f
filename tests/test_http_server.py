# -*- encoding: utf-8 -*-
"""
Tests for the status HTTP endpoints via falcon.testing (no real socket needed).
"""

import falcon
import falcon.testing
import pytest

from evm_failover.errors import NETWORK_UNAVAILABLE_MESSAGE
from evm_failover.http_server import create_app


@pytest.fixture
def client_for(make_gateway):
    def _make(**kwargs):
        return falcon.testing.TestClient(create_app(make_gateway(**kwargs)))
    return _make


class TestHealthEndpoint:
    """Test GET /health."""

    def test_reports_cache_without_probing(self, network, client_for):
        """Without probe the cache state is reported and nothing is probed."""
        network.add("P0", 0)
        result = client_for().simulate_get("/health")

        assert result.status == falcon.HTTP_200
        assert result.json["status"] == "ok"
        assert result.json["cache"]["general"]["endpoint"] is None
        assert network.probes == []

    def test_probe_selects_endpoint(self, network, client_for):
        """With probe a healthy endpoint is selected."""
        network.add("P0", 0, healthy=False)
        network.add("P1", 1)
        result = client_for().simulate_get("/health", params={"probe": "true"})

        assert result.status == falcon.HTTP_200
        assert result.json["endpoint"] == "P1"
        assert result.json["cache"]["general"]["endpoint"] == "P1"

    def test_probe_unavailable(self, network, client_for):
        """With probe and no healthy endpoint the answer is 503."""
        network.add("P0", 0, healthy=False)
        result = client_for().simulate_get("/health", params={"probe": "true"})

        assert result.status == falcon.HTTP_503
        assert result.json["status"] == "unavailable"
        assert result.json["error"] == NETWORK_UNAVAILABLE_MESSAGE


class TestEndpointsEndpoint:
    """Test GET /endpoints."""

    def test_lists_registry(self, network, client_for):
        """The registry is listed in priority order with capabilities."""
        network.add("P1", 1, supports_logs=False)
        network.add("P0", 0)
        result = client_for().simulate_get("/endpoints")

        assert result.status == falcon.HTTP_200
        assert [e["name"] for e in result.json] == ["P0", "P1"]
        assert result.json[1]["supports_logs"] is False
