# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.timeouts module

Bounded-time execution of a single RPC operation.

The operation runs on a worker thread and the caller waits on its future
with a deadline. When the deadline passes first the caller gets RPCTimeout
and walks away; the worker is left to finish on its own since a blocking
socket read cannot be interrupted from outside.
"""

import concurrent.futures
import logging
import time

from evm_failover.errors import OperationCancelled, RPCTimeout, translate_exception

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0  # seconds
MAX_WORKERS = 32
CANCEL_POLL_INTERVAL = 0.05  # seconds


class TimeoutGuard:
    """Races operations against a deadline on a shared worker pool.

    Abandoned operations keep a worker busy until they return, so the pool
    is sized for a few stuck calls on top of normal concurrency.
    """

    def __init__(self, default_timeout=DEFAULT_TIMEOUT, max_workers=MAX_WORKERS):
        self.default_timeout = default_timeout
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="rpc-call"
        )

    def run(self, operation, timeout=None, endpoint=None, cancel_event=None):
        """Run operation() and return its result within timeout seconds.

        Args:
            operation: zero-argument callable issuing the RPC call(s).
            timeout: deadline in seconds; default_timeout when None.
            endpoint: Endpoint the operation talks to, attached to errors.
            cancel_event: optional threading.Event. Once set the caller
                stops waiting and OperationCancelled is raised.

        Returns:
            Whatever operation() returns.

        Raises:
            RPCTimeout: the deadline passed first.
            OperationCancelled: cancel_event was set first.
            RPCAccessError: operation() raised; the exception is translated
                into the taxonomy and chained.
        """
        if timeout is None:
            timeout = self.default_timeout

        future = self._pool.submit(operation)
        try:
            if cancel_event is None:
                return future.result(timeout=timeout)
            return self._wait_cancellable(future, timeout, cancel_event)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.debug("Operation abandoned after %.1fs on %s", timeout, _label(endpoint))
            raise RPCTimeout(
                f"RPC request timed out after {timeout:g}s", endpoint=endpoint
            ) from None
        except OperationCancelled:
            future.cancel()
            raise
        except Exception as exc:
            err = translate_exception(exc, endpoint)
            if err is exc:
                raise
            raise err from exc

    def _wait_cancellable(self, future, timeout, cancel_event):
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise concurrent.futures.TimeoutError()
            done, _ = concurrent.futures.wait(
                [future], timeout=min(remaining, CANCEL_POLL_INTERVAL)
            )
            if done:
                return future.result()
            if cancel_event.is_set():
                raise OperationCancelled("Caller stopped waiting for RPC result")

    def shutdown(self):
        """Stop accepting work. Running operations are not waited for."""
        self._pool.shutdown(wait=False, cancel_futures=True)


def _label(endpoint):
    return endpoint.name if endpoint is not None else "unknown endpoint"


_default_guard = None


def default_guard():
    """Return the process-wide guard, creating it on first use."""
    global _default_guard
    if _default_guard is None:
        _default_guard = TimeoutGuard()
    return _default_guard


def with_timeout(operation, timeout=None, endpoint=None, cancel_event=None):
    """Run operation() through the process-wide TimeoutGuard."""
    return default_guard().run(
        operation, timeout=timeout, endpoint=endpoint, cancel_event=cancel_event
    )
