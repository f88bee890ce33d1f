# -*- encoding: utf-8 -*-
"""
Tests for the HealthChecker module.

Verifies:
  - A live endpoint with a positive height passes
  - Connection failures, slow answers and implausible heights fail
  - Probes never raise
  - first_responsive_url falls back to the first URL
"""

import random

from web3 import Web3
from web3 import exceptions as w3exc

from evm_failover.health import (
    ProviderHandle,
    first_responsive_url,
    is_plausible_block_number,
    make_web3_handle,
)
from evm_failover.registry import make_endpoint


class TestProbe:
    """Test HealthChecker.probe()."""

    def test_healthy_endpoint(self, network, checker):
        """An endpoint with a positive height passes."""
        network.add("Live", 0)
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle) is True

    def test_connection_refused(self, network, checker):
        """A refused connection fails the probe."""
        network.add("Dead", 0, healthy=False)
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle) is False

    def test_slow_endpoint(self, network, checker):
        """An endpoint slower than the timeout fails the probe."""
        node = network.add("Slow", 0)
        node.delay = 0.5
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle, timeout=0.05) is False

    def test_zero_height_is_implausible(self, network, checker):
        """A zero block height fails the probe."""
        network.add("Fresh", 0, height=0)
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle) is False

    def test_malformed_height(self, network, checker):
        """A non-integer height fails the probe."""
        node = network.add("Garbled", 0)
        node.script("block_number", "0x10")
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle) is False

    def test_rpc_error_does_not_raise(self, network, checker):
        """JSON-RPC errors fail the probe without raising."""
        node = network.add("Limited", 0)
        node.script("block_number", w3exc.Web3RPCError("rate limited"))
        handle = network.factory(network.endpoints[0])
        assert checker.probe(handle) is False


class TestPlausibleBlockNumber:
    """Test the block height sanity check."""

    def test_values(self):
        """Only positive integers are plausible heights."""
        assert is_plausible_block_number(1)
        assert not is_plausible_block_number(0)
        assert not is_plausible_block_number(-5)
        assert not is_plausible_block_number(True)
        assert not is_plausible_block_number(None)
        assert not is_plausible_block_number(12.5)


class TestProviderHandle:
    """Test Web3-backed provider handles."""

    def test_web3_handle_is_bound_to_endpoint(self):
        """make_web3_handle() binds a Web3 instance to the endpoint."""
        endpoint = make_endpoint("http://127.0.0.1:19999", 0, "Local")
        handle = make_web3_handle(endpoint, timeout=1.0)
        assert isinstance(handle, ProviderHandle)
        assert isinstance(handle.w3, Web3)
        assert handle.endpoint is endpoint
        assert handle.eth is handle.w3.eth


class TestFirstResponsiveUrl:
    """Test the standalone working-URL helper."""

    def test_returns_responsive_url(self, network, checker):
        """The first URL that answers is returned."""
        network.add("Dead", 0, healthy=False)
        network.add("Live", 1)
        urls = [e.url for e in network.endpoints]
        by_url = {e.url: e for e in network.endpoints}

        url = first_responsive_url(
            urls,
            checker=checker,
            handle_factory=lambda e: network.factory(by_url[e.url]),
            rng=random.Random(7),
        )
        assert url == "https://live.rpc.test"

    def test_falls_back_to_first(self, network, checker):
        """With no URL answering the first one is returned."""
        network.add("DeadA", 0, healthy=False)
        network.add("DeadB", 1, healthy=False)
        urls = [e.url for e in network.endpoints]
        by_url = {e.url: e for e in network.endpoints}

        url = first_responsive_url(
            urls,
            checker=checker,
            handle_factory=lambda e: network.factory(by_url[e.url]),
        )
        assert url == urls[0]
        assert sorted(network.probes) == ["DeadA", "DeadB"]
