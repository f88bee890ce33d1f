# -*- encoding: utf-8 -*-
"""
EVM Failover Test Configuration

Shared pytest fixtures for the RPC access layer test suite.

Endpoints are simulated in-process: each FakeNode answers the handful of
eth_* calls the layer issues, with scripted results or real web3/requests
exceptions. Handles are built through the same handle_factory seam the
production code uses, so no patching is needed.

No mocks, no monkeypatching.
"""

import time

import pytest
import requests

from evm_failover.gateway import RPCGateway
from evm_failover.health import HealthChecker
from evm_failover.registry import EndpointRegistry, make_endpoint
from evm_failover.timeouts import TimeoutGuard


# ---------------------------------------------------------------------------
# Fake endpoints
# ---------------------------------------------------------------------------

class FakeNode:
    """Scripted behaviour of a single simulated endpoint."""

    def __init__(self, name, healthy=True, height=1_000_000):
        self.name = name
        self.healthy = healthy
        self.height = height
        self.delay = 0.0
        self.probe_count = 0
        self.calls = []
        self.log_queries = []
        self.logs = []
        self._scripts = {}

    def script(self, method, *outcomes):
        """Queue outcomes for method. The last outcome repeats forever.

        An outcome that is an exception instance is raised.
        """
        self._scripts[method] = list(outcomes)

    def respond(self, method, default=None):
        queue = self._scripts.get(method)
        if not queue:
            return default
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeEth:
    """The subset of web3's `eth` namespace the layer touches."""

    def __init__(self, node, network):
        self._node = node
        self._network = network

    @property
    def block_number(self):
        node = self._node
        node.probe_count += 1
        self._network.probes.append(node.name)
        if node.delay:
            time.sleep(node.delay)
        if not node.healthy:
            raise requests.exceptions.ConnectionError(f"{node.name} refused connection")
        return node.respond("block_number", node.height)

    def get_transaction_receipt(self, tx_hash):
        self._node.calls.append(("get_transaction_receipt", tx_hash))
        return self._node.respond("get_transaction_receipt")

    def get_transaction(self, tx_hash):
        self._node.calls.append(("get_transaction", tx_hash))
        return self._node.respond("get_transaction")

    def get_block(self, block_identifier, full_transactions=False):
        self._node.calls.append(("get_block", block_identifier))
        return self._node.respond("get_block")

    def get_logs(self, filter_params):
        node = self._node
        start, end = filter_params["fromBlock"], filter_params["toBlock"]
        node.log_queries.append((start, end))
        node.respond("get_logs")
        return [log for log in node.logs if start <= log["blockNumber"] <= end]


class FakeW3:
    def __init__(self, eth):
        self.eth = eth


class FakeHandle:
    def __init__(self, endpoint, eth):
        self.endpoint = endpoint
        self.eth = eth
        self.w3 = FakeW3(eth)


class FakeNetwork:
    """A set of simulated endpoints plus a handle factory over them."""

    def __init__(self):
        self.nodes = {}
        self.endpoints = []
        self.probes = []
        self.handles = []

    def add(self, name, priority, healthy=True, supports_logs=True, **kwargs):
        url = f"https://{name.lower()}.rpc.test"
        node = FakeNode(name, healthy=healthy, **kwargs)
        self.nodes[url] = node
        self.endpoints.append(make_endpoint(url, priority, name, supports_logs))
        return node

    def node(self, name):
        for node in self.nodes.values():
            if node.name == name:
                return node
        raise KeyError(name)

    def registry(self):
        return EndpointRegistry(self.endpoints)

    def factory(self, endpoint):
        handle = FakeHandle(endpoint, FakeEth(self.nodes[endpoint.url], self))
        self.handles.append(handle)
        return handle


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Recorded backoff delays; pass sleeps.append as the sleep function."""
    return []


@pytest.fixture
def guard():
    g = TimeoutGuard(default_timeout=2.0)
    yield g
    g.shutdown()


@pytest.fixture
def checker(guard):
    return HealthChecker(guard=guard, timeout=2.0)


@pytest.fixture
def make_gateway(network, clock, sleeps):
    """Factory building an RPCGateway over the fake network.

    Selection order is strict priority (jitter=0) unless overridden.
    """
    gateways = []

    def _make(**kwargs):
        kwargs.setdefault("handle_factory", network.factory)
        kwargs.setdefault("jitter", 0)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", sleeps.append)
        kwargs.setdefault("timeout", 2.0)
        gateway = RPCGateway(network.registry(), **kwargs)
        gateways.append(gateway)
        return gateway

    yield _make
    for gateway in gateways:
        gateway.close()
