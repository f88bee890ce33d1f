# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.health module

Liveness probes for candidate endpoints.

A probe asks for the current chain height under a deadline. It answers
True only for a plausible positive block number and False for everything
else. Probes never raise: one flaky endpoint must not abort a selection
loop over the others.
"""

import logging
import random

from web3 import Web3

from evm_failover.errors import RPCAccessError
from evm_failover.registry import make_endpoint
from evm_failover.timeouts import DEFAULT_TIMEOUT, default_guard

logger = logging.getLogger(__name__)


class ProviderHandle:
    """A Web3 connection bound to exactly one Endpoint."""

    __slots__ = ("endpoint", "w3")

    def __init__(self, endpoint, w3):
        self.endpoint = endpoint
        self.w3 = w3

    @property
    def eth(self):
        return self.w3.eth

    def __repr__(self):
        return f"ProviderHandle({self.endpoint.name!r}, {self.endpoint.url!r})"


def make_web3_handle(endpoint, timeout=DEFAULT_TIMEOUT):
    """Create a ProviderHandle over an HTTP Web3 provider.

    The provider's own request retries are disabled; retrying is the job
    of the retry engine, which also rotates endpoints.
    """
    provider = Web3.HTTPProvider(
        endpoint.url,
        request_kwargs={"timeout": timeout},
        exception_retry_configuration=None,
    )
    return ProviderHandle(endpoint, Web3(provider))


def is_plausible_block_number(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class HealthChecker:
    """Issues bounded-time chain-height probes.

    Args:
        guard: TimeoutGuard used to bound each probe.
        timeout: default probe deadline in seconds.
    """

    def __init__(self, guard=None, timeout=DEFAULT_TIMEOUT):
        self.guard = guard if guard is not None else default_guard()
        self.timeout = timeout

    def probe(self, handle, timeout=None):
        """Return True if the handle's endpoint answers with a plausible height."""
        if timeout is None:
            timeout = self.timeout
        endpoint = handle.endpoint
        try:
            height = self.guard.run(
                lambda: handle.eth.block_number,
                timeout=timeout,
                endpoint=endpoint,
            )
        except RPCAccessError as exc:
            logger.debug("Probe of %s failed: %s", endpoint.name, exc)
            return False

        if not is_plausible_block_number(height):
            logger.debug("Probe of %s returned implausible height %r", endpoint.name, height)
            return False

        logger.debug("Probe of %s ok at block %d", endpoint.name, height)
        return True


def first_responsive_url(urls, checker=None, handle_factory=None, rng=None):
    """Return the first URL, in random order, that passes a probe.

    Load is spread by shuffling before probing. When nothing answers the
    first URL in the given order is returned as a last resort, so callers
    always get something to point a client at.

    Args:
        urls: list of JSON-RPC URLs.
        checker: HealthChecker; a default one is created when None.
        handle_factory: callable(Endpoint) -> ProviderHandle.
        rng: random.Random used for shuffling.
    """
    if not urls:
        raise ValueError("At least one RPC URL is required")
    checker = checker or HealthChecker()
    handle_factory = handle_factory or make_web3_handle
    rng = rng or random.Random()

    shuffled = list(urls)
    rng.shuffle(shuffled)
    for url in shuffled:
        handle = handle_factory(make_endpoint(url, 0))
        if checker.probe(handle):
            logger.info("Using RPC endpoint: %s", url)
            return url
        logger.warning("RPC endpoint %s failed, trying next...", url)

    logger.warning("All RPC endpoints failed, using first one as fallback")
    return urls[0]
