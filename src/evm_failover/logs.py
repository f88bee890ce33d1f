# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.logs module

Block-range pagination for eth_getLogs style queries.

[from_block, to_block] is split into closed sub-ranges of at most `step`
blocks. Sub-ranges are queried strictly in increasing block order against
a log-capable endpoint and their results concatenated, so the output order
matches chain order with no gaps or overlaps at the boundaries.

A failing sub-range aborts the whole query with LogRangeError naming the
range. Results gathered so far are dropped: log queries feed financial
displays, where a partial history is worse than none. Callers that want
to keep partial progress iterate iter_chunks() themselves and resume from
the last completed block.
"""

import logging

from evm_failover.errors import ENDPOINT_LEVEL_KINDS, LogRangeError, RPCAccessError

logger = logging.getLogger(__name__)

DEFAULT_LOG_STEP = 1000  # blocks per sub-range


class BlockRange:
    """Closed block interval [from_block, to_block] walked in steps."""

    __slots__ = ("from_block", "to_block", "step")

    def __init__(self, from_block, to_block, step=DEFAULT_LOG_STEP):
        if from_block < 0:
            raise ValueError(f"from_block must be non-negative, got {from_block}")
        if from_block > to_block:
            raise ValueError(
                f"from_block {from_block} is greater than to_block {to_block}"
            )
        if step < 1:
            raise ValueError(f"step must be at least 1, got {step}")
        self.from_block = from_block
        self.to_block = to_block
        self.step = step

    def __iter__(self):
        """Yield (start, end) closed sub-ranges in increasing order."""
        start = self.from_block
        while start <= self.to_block:
            end = min(start + self.step - 1, self.to_block)
            yield start, end
            start = end + 1

    def __len__(self):
        return -(-(self.to_block - self.from_block + 1) // self.step)

    def __repr__(self):
        return f"BlockRange({self.from_block}, {self.to_block}, step={self.step})"


def filter_fetcher(filter_params):
    """Return fetch(handle, start, end) issuing eth_getLogs for filter_params.

    Any fromBlock/toBlock/blockHash in filter_params is replaced by the
    sub-range bounds.
    """
    base = {
        k: v for k, v in dict(filter_params or {}).items()
        if k not in ("fromBlock", "toBlock", "blockHash")
    }

    def fetch(handle, start, end):
        return handle.eth.get_logs(dict(base, fromBlock=start, toBlock=end))

    return fetch


def event_fetcher(event_factory, argument_filters=None):
    """Return fetch(handle, start, end) for a contract event.

    Args:
        event_factory: callable(ProviderHandle) -> web3 ContractEvent bound
            to that handle, e.g.
            lambda h: h.w3.eth.contract(address, abi=abi).events.Transfer()
        argument_filters: optional indexed-argument filter dict.
    """
    def fetch(handle, start, end):
        event = event_factory(handle)
        return event.get_logs(
            argument_filters=argument_filters, from_block=start, to_block=end
        )

    return fetch


class LogRangePaginator:
    """Issues paginated log queries through a log-capable selector.

    Args:
        selector: FailoverSelector restricted to log-capable endpoints.
        guard: TimeoutGuard bounding each sub-range query.
        step: default sub-range width in blocks.
        timeout: per sub-range deadline; the guard default when None.
    """

    def __init__(self, selector, guard, step=DEFAULT_LOG_STEP, timeout=None):
        self.selector = selector
        self.guard = guard
        self.step = step
        self.timeout = timeout

    def iter_chunks(self, fetch, from_block, to_block, step=None):
        """Yield (start, end, logs) for each sub-range in block order.

        Raises:
            LogRangeError: a sub-range could not be fetched.
        """
        block_range = BlockRange(from_block, to_block, step or self.step)
        logger.debug("Querying logs over %r in %d sub-ranges", block_range, len(block_range))

        for start, end in block_range:
            try:
                handle = self.selector.acquire()
                logs = self.guard.run(
                    lambda: fetch(handle, start, end),
                    timeout=self.timeout,
                    endpoint=handle.endpoint,
                )
            except RPCAccessError as exc:
                if exc.kind in ENDPOINT_LEVEL_KINDS:
                    self.selector.invalidate()
                logger.warning("Log query failed for block range %d-%d: %s", start, end, exc)
                raise LogRangeError(start, end, exc) from exc
            yield start, end, list(logs)

    def query(self, fetch, from_block, to_block, step=None):
        """Run fetch over every sub-range and return the concatenated logs."""
        results = []
        for _, _, logs in self.iter_chunks(fetch, from_block, to_block, step):
            results.extend(logs)
        return results

    def query_logs(self, filter_params, from_block, to_block, step=None):
        """Return every log matching filter_params in [from_block, to_block]."""
        return self.query(filter_fetcher(filter_params), from_block, to_block, step)

    def query_events(self, event_factory, from_block, to_block, step=None,
                     argument_filters=None):
        """Return every decoded event emitted in [from_block, to_block]."""
        return self.query(
            event_fetcher(event_factory, argument_filters), from_block, to_block, step
        )
