# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.retry module

Retry with exponential backoff over a failover selector.

Each attempt acquires a handle, runs the caller's action under the
TimeoutGuard and hands any failure to a classifier:

  - RETRYABLE: invalidate the cached endpoint, back off, try again.
  - FATAL: raise at once. The cache is left alone since the endpoint
    answered correctly and the call itself is bad.
  - PENDING: the result does not exist yet (an unmined receipt). Back off
    and try again without blaming the endpoint.

Backoff after attempt n (0-based) is min(base * 2**n, cap). Attempts are
strictly sequential. The budget is a count, not a wall-clock deadline.
"""

import logging
import time

from evm_failover.errors import (
    MaxRetriesExceeded,
    OperationCancelled,
    Outcome,
    RPCAccessError,
    classify_contract_call,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_BACKOFF = 1.0   # seconds
DEFAULT_MAX_BACKOFF = 10.0   # seconds


def backoff_delay(attempt, base, cap):
    """Delay in seconds to wait after the given 0-based attempt."""
    return min(base * (2 ** attempt), cap)


class RetryContext:
    """Per-invocation attempt bookkeeping."""

    __slots__ = ("attempt", "max_attempts", "base_backoff", "cap_backoff")

    def __init__(self, max_attempts, base_backoff, cap_backoff):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.attempt = 0
        self.max_attempts = max_attempts
        self.base_backoff = base_backoff
        self.cap_backoff = cap_backoff

    @property
    def next_backoff(self):
        return backoff_delay(self.attempt, self.base_backoff, self.cap_backoff)

    @property
    def exhausted(self):
        return self.attempt >= self.max_attempts


class RetryableOperation:
    """Generic retry engine shared by every retried read and call.

    Args:
        selector: FailoverSelector providing handles.
        guard: TimeoutGuard bounding each attempt.
        max_attempts: default attempt budget.
        base_backoff: default first delay in seconds.
        cap_backoff: default maximum delay in seconds.
        timeout: default per-attempt deadline; the guard default when None.
        sleep: callable used to wait between attempts.
    """

    def __init__(self, selector, guard, max_attempts=DEFAULT_MAX_ATTEMPTS,
                 base_backoff=DEFAULT_BASE_BACKOFF, cap_backoff=DEFAULT_MAX_BACKOFF,
                 timeout=None, sleep=time.sleep):
        self.selector = selector
        self.guard = guard
        self.max_attempts = max_attempts
        self.base_backoff = base_backoff
        self.cap_backoff = cap_backoff
        self.timeout = timeout
        self._sleep = sleep

    def run(self, action, classify=classify_contract_call, max_attempts=None,
            base_backoff=None, cap_backoff=None, timeout=None,
            is_pending=None, description="RPC operation", cancel_event=None):
        """Run action(handle) until it succeeds or the budget is spent.

        Args:
            action: callable(ProviderHandle) -> result.
            classify: callable(RPCAccessError) -> Outcome.
            max_attempts, base_backoff, cap_backoff, timeout: per-call
                overrides of the engine defaults.
            is_pending: optional callable(result) -> bool marking a
                successful-but-empty result as PENDING.
            description: label used in logs and MaxRetriesExceeded.
            cancel_event: optional threading.Event to stop waiting early.

        Returns:
            The action's result, or None when every attempt came back
            PENDING (the last outcome decides).

        Raises:
            RPCAccessError: a FATAL error, raised unchanged.
            MaxRetriesExceeded: the budget ran out on RETRYABLE failures.
        """
        ctx = RetryContext(
            max_attempts or self.max_attempts,
            self.base_backoff if base_backoff is None else base_backoff,
            self.cap_backoff if cap_backoff is None else cap_backoff,
        )
        timeout = self.timeout if timeout is None else timeout
        last_error = None
        pending = False

        while True:
            try:
                handle = self.selector.acquire()
                result = self.guard.run(
                    lambda: action(handle),
                    timeout=timeout,
                    endpoint=handle.endpoint,
                    cancel_event=cancel_event,
                )
            except OperationCancelled:
                raise
            except RPCAccessError as exc:
                outcome = classify(exc)
                if outcome is Outcome.FATAL:
                    logger.error("%s failed with non-retryable error: %s", description, exc)
                    raise
                if outcome is Outcome.PENDING:
                    pending = True
                else:
                    pending = False
                    self.selector.invalidate()
                last_error = exc
            else:
                if is_pending is None or not is_pending(result):
                    return result
                pending = True
                last_error = None

            delay = ctx.next_backoff
            ctx.attempt += 1
            if ctx.exhausted:
                break

            if pending:
                logger.info(
                    "%s not available yet, retrying in %.1fs (attempt %d/%d)",
                    description, delay, ctx.attempt, ctx.max_attempts,
                )
            else:
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, ctx.attempt, ctx.max_attempts, last_error, delay,
                )
            if cancel_event is None:
                self._sleep(delay)
            elif cancel_event.wait(delay):
                raise OperationCancelled(f"{description} cancelled during backoff")

        if pending:
            logger.warning("%s still pending after %d attempts", description, ctx.attempt)
            return None
        logger.error("Max retries reached for %s", description)
        raise MaxRetriesExceeded(description, ctx.attempt, last_error)
