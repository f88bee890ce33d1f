# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.gateway module

Single entry point the rest of the application uses for chain access.

RPCGateway owns two independent selector/cache slots over one registry:
one for general calls and one restricted to log-capable endpoints. A
general call is never served from the log slot's entry and vice versa.

Usage:
    gateway = RPCGateway(EndpointRegistry(network_endpoints("base-mainnet")))
    receipt = gateway.get_transaction_receipt(tx_hash)
    balance = gateway.call_contract(
        lambda h: h.w3.eth.contract(token, abi=ERC20_ABI).functions.balanceOf(owner).call()
    )
    transfers = gateway.query_logs({"address": token}, 19_000_000, 19_002_500)
"""

import logging
import time

from evm_failover.cache import DEFAULT_CACHE_TTL, DEFAULT_MAX_FAIL_COUNT, ProviderCache
from evm_failover.errors import classify_contract_call, classify_lookup, classify_receipt
from evm_failover.health import HealthChecker, make_web3_handle
from evm_failover.logs import DEFAULT_LOG_STEP, LogRangePaginator, filter_fetcher
from evm_failover.registry import LOGS
from evm_failover.retry import (
    DEFAULT_BASE_BACKOFF,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    RetryableOperation,
)
from evm_failover.selector import DEFAULT_SELECTION_JITTER, FailoverSelector
from evm_failover.timeouts import DEFAULT_TIMEOUT, TimeoutGuard

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_MAX_ATTEMPTS = 5


class RPCGateway:
    """Resilient access to a list of untrusted JSON-RPC endpoints.

    Args:
        registry: EndpointRegistry with every candidate.
        handle_factory: callable(Endpoint) -> ProviderHandle. Defaults to
            an HTTP Web3 handle using the configured timeout.
        cache_ttl: seconds a selection is trusted before re-selection.
        max_fail_count: consecutive failed probes before re-selection.
        timeout: per-call deadline in seconds.
        max_attempts: attempt budget for contract calls and lookups.
        receipt_max_attempts: attempt budget for receipt polling.
        base_backoff, cap_backoff: backoff bounds in seconds.
        log_step: default block step for log pagination.
        jitter: priority jitter window for selection order.
        clock: monotonic clock used by the caches.
        sleep: wait function used between retries.
        rng: random.Random for selection jitter.
    """

    def __init__(self, registry, handle_factory=None,
                 cache_ttl=DEFAULT_CACHE_TTL,
                 max_fail_count=DEFAULT_MAX_FAIL_COUNT,
                 timeout=DEFAULT_TIMEOUT,
                 max_attempts=DEFAULT_MAX_ATTEMPTS,
                 receipt_max_attempts=DEFAULT_RECEIPT_MAX_ATTEMPTS,
                 base_backoff=DEFAULT_BASE_BACKOFF,
                 cap_backoff=DEFAULT_MAX_BACKOFF,
                 log_step=DEFAULT_LOG_STEP,
                 jitter=DEFAULT_SELECTION_JITTER,
                 clock=time.monotonic,
                 sleep=time.sleep,
                 rng=None):
        if handle_factory is None:
            def handle_factory(endpoint):
                return make_web3_handle(endpoint, timeout=timeout)

        self.registry = registry
        self.receipt_max_attempts = receipt_max_attempts
        self.guard = TimeoutGuard(default_timeout=timeout)
        self.checker = HealthChecker(guard=self.guard, timeout=timeout)

        self.selector = FailoverSelector(
            registry, self.checker,
            cache=ProviderCache(cache_ttl, max_fail_count, clock=clock),
            handle_factory=handle_factory, jitter=jitter, rng=rng,
        )
        self.log_selector = FailoverSelector(
            registry, self.checker,
            cache=ProviderCache(cache_ttl, max_fail_count, clock=clock),
            capability=LOGS,
            handle_factory=handle_factory, jitter=jitter, rng=rng,
        )
        self.retrier = RetryableOperation(
            self.selector, self.guard,
            max_attempts=max_attempts,
            base_backoff=base_backoff,
            cap_backoff=cap_backoff,
            sleep=sleep,
        )
        self.paginator = LogRangePaginator(self.log_selector, self.guard, step=log_step)

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def acquire(self):
        """Return a handle bound to a healthy endpoint."""
        return self.selector.acquire()

    def acquire_log_capable(self):
        """Return a handle bound to a healthy, log-capable endpoint."""
        return self.log_selector.acquire()

    def invalidate(self):
        """Drop the general-purpose cached selection."""
        self.selector.invalidate()

    def invalidate_logs(self):
        """Drop the log-capable cached selection."""
        self.log_selector.invalidate()

    # ------------------------------------------------------------------
    # Retried operations
    # ------------------------------------------------------------------

    def retry(self, action, classify=classify_contract_call, **kwargs):
        """Run action(handle) through the shared retry engine.

        See RetryableOperation.run for keyword arguments.
        """
        return self.retrier.run(action, classify=classify, **kwargs)

    def call_contract(self, action, max_attempts=None, **kwargs):
        """Run a contract read or write, retrying endpoint-level failures.

        A ContractRevert is raised at once and never retried.
        """
        return self.retrier.run(
            action,
            classify=classify_contract_call,
            max_attempts=max_attempts,
            description="Contract call",
            **kwargs,
        )

    def get_transaction_receipt(self, tx_hash, max_attempts=None, **kwargs):
        """Poll for a transaction receipt.

        Returns:
            The receipt, or None if the transaction was still pending
            after every attempt.
        """
        return self.retrier.run(
            lambda h: h.eth.get_transaction_receipt(tx_hash),
            classify=classify_receipt,
            max_attempts=max_attempts or self.receipt_max_attempts,
            is_pending=lambda receipt: receipt is None,
            description=f"Transaction receipt {tx_hash}",
            **kwargs,
        )

    def get_transaction(self, tx_hash, max_attempts=None, **kwargs):
        return self.retrier.run(
            lambda h: h.eth.get_transaction(tx_hash),
            classify=classify_lookup,
            max_attempts=max_attempts,
            description=f"Transaction {tx_hash}",
            **kwargs,
        )

    def get_block(self, block_identifier, full_transactions=False,
                  max_attempts=None, **kwargs):
        return self.retrier.run(
            lambda h: h.eth.get_block(block_identifier, full_transactions),
            classify=classify_lookup,
            max_attempts=max_attempts,
            description=f"Block {block_identifier}",
            **kwargs,
        )

    def block_number(self, **kwargs):
        return self.retrier.run(
            lambda h: h.eth.block_number,
            classify=classify_lookup,
            description="Block number",
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Log queries
    # ------------------------------------------------------------------

    def query_logs(self, filter_params, from_block, to_block, step=None):
        """Paginated eth_getLogs over [from_block, to_block]."""
        return self.paginator.query_logs(filter_params, from_block, to_block, step)

    def query_events(self, event_factory, from_block, to_block, step=None,
                     argument_filters=None):
        """Paginated contract event query over [from_block, to_block]."""
        return self.paginator.query_events(
            event_factory, from_block, to_block, step, argument_filters
        )

    def iter_log_chunks(self, filter_params, from_block, to_block, step=None):
        """Yield (start, end, logs) per sub-range for resumable scans."""
        return self.paginator.iter_chunks(
            filter_fetcher(filter_params), from_block, to_block, step
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self):
        """Return cache snapshots for both selector slots."""
        return {
            "general": self.selector.cache.snapshot(),
            "logs": self.log_selector.cache.snapshot(),
        }

    def close(self):
        self.guard.shutdown()
