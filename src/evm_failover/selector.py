# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.selector module

Failover selection of a healthy endpoint, backed by a ProviderCache.

acquire() first re-probes the cached endpoint. If that passes the cached
handle is returned. Otherwise the registry is walked in a jittered
priority order, each candidate is probed, and the first healthy one is
committed to the cache.

Only one thread runs the selection walk at a time. Threads that queued
behind it reuse the fresh entry instead of starting a walk of their own.
"""

import logging
import random
import threading

from evm_failover.cache import ProviderCache
from evm_failover.errors import NoHealthyEndpoint
from evm_failover.health import make_web3_handle

logger = logging.getLogger(__name__)

DEFAULT_SELECTION_JITTER = 1.5  # priority units


def jittered_order(endpoints, jitter, rng):
    """Order endpoints by priority plus a uniform random offset in [0, jitter).

    Endpoints whose priorities differ by less than jitter can swap places,
    so load spreads over neighbours while lower priorities still tend to
    come first. jitter=0 gives strict priority order.
    """
    if jitter <= 0:
        return sorted(endpoints, key=lambda e: e.priority)
    keyed = [(e.priority + rng.uniform(0, jitter), i, e) for i, e in enumerate(endpoints)]
    keyed.sort()
    return [e for _, _, e in keyed]


class FailoverSelector:
    """Selects and caches a healthy ProviderHandle.

    Args:
        registry: EndpointRegistry with the candidates.
        checker: HealthChecker used for every probe.
        cache: ProviderCache slot owned by this selector.
        capability: None, or registry.LOGS to restrict candidates.
        handle_factory: callable(Endpoint) -> ProviderHandle.
        jitter: priority jitter window, see jittered_order().
        rng: random.Random used for the jitter.
    """

    def __init__(self, registry, checker, cache=None, capability=None,
                 handle_factory=make_web3_handle,
                 jitter=DEFAULT_SELECTION_JITTER, rng=None):
        self.registry = registry
        self.checker = checker
        self.cache = cache if cache is not None else ProviderCache()
        self.capability = capability
        self.handle_factory = handle_factory
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._select_lock = threading.Lock()

    def acquire(self):
        """Return a handle bound to a healthy endpoint.

        Raises:
            NoHealthyEndpoint: no candidate passed its probe.
        """
        entry = self.cache.entry
        if self.cache.is_usable(entry):
            if self.checker.probe(entry.handle):
                return entry.handle
            failures = self.cache.record_failure(entry)
            logger.warning(
                "Cached RPC endpoint %s failed health check (%d consecutive), "
                "trying alternatives",
                entry.endpoint.name, failures,
            )

        with self._select_lock:
            # Another caller stored a fresh selection while we waited.
            current = self.cache.entry
            if current is not entry and self.cache.is_usable(current):
                return current.handle
            return self._select()

    def _select(self):
        candidates = self.registry.list(self.capability)
        for endpoint in jittered_order(candidates, self.jitter, self._rng):
            logger.debug("Trying RPC endpoint: %s", endpoint.name)
            handle = self.handle_factory(endpoint)
            if self.checker.probe(handle):
                self.cache.store(handle)
                logger.info("Selected RPC endpoint %s (%s)", endpoint.name, endpoint.url)
                return handle

        label = "log-capable " if self.capability else ""
        raise NoHealthyEndpoint(
            f"No healthy {label}RPC endpoint among {len(candidates)} candidates",
            candidates=len(candidates),
        )

    def invalidate(self):
        """Force the next acquire() to run a full selection."""
        entry = self.cache.entry
        if entry is not None:
            logger.info("Invalidating cached RPC endpoint %s", entry.endpoint.name)
        self.cache.invalidate()
