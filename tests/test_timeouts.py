# -*- encoding: utf-8 -*-
"""
Tests for the TimeoutGuard module.

Verifies:
  - Fast operations return their result
  - Slow operations fail with RPCTimeout within the deadline
  - Operation failures are translated into the taxonomy
  - A cancel event stops the caller waiting
"""

import threading
import time

import pytest
import requests

from evm_failover.errors import OperationCancelled, RPCNetworkError, RPCTimeout
from evm_failover.registry import make_endpoint
from evm_failover.timeouts import with_timeout

ENDPOINT = make_endpoint("https://slow.rpc.test", 0, "Slow")


class TestTimeoutGuard:
    """Test TimeoutGuard.run()."""

    def test_returns_result(self, guard):
        """A fast operation returns its result."""
        assert guard.run(lambda: 42) == 42

    def test_slow_operation_times_out(self, guard):
        """A slow operation fails with RPCTimeout near the deadline."""
        started = time.monotonic()
        with pytest.raises(RPCTimeout) as excinfo:
            guard.run(lambda: time.sleep(1.0), timeout=0.05, endpoint=ENDPOINT)
        assert time.monotonic() - started < 0.5
        assert excinfo.value.endpoint is ENDPOINT

    def test_default_timeout_overridable(self, guard):
        """The per-call timeout overrides the default."""
        assert guard.default_timeout == 2.0
        with pytest.raises(RPCTimeout):
            guard.run(lambda: time.sleep(0.5), timeout=0.05)

    def test_failure_is_translated(self, guard):
        """Operation failures are translated and chained."""
        def refuse():
            raise requests.exceptions.ConnectionError("refused")

        with pytest.raises(RPCNetworkError) as excinfo:
            guard.run(refuse, endpoint=ENDPOINT)
        assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)

    def test_taxonomy_error_is_reraised_unchained(self, guard):
        """An error already in the taxonomy is raised as is, not chained to itself."""
        original = RPCNetworkError("dropped")

        def drop():
            raise original

        with pytest.raises(RPCNetworkError) as excinfo:
            guard.run(drop, endpoint=ENDPOINT)
        assert excinfo.value is original
        assert excinfo.value.__cause__ is None
        assert excinfo.value.endpoint is ENDPOINT

    def test_cancel_event_stops_waiting(self, guard):
        """Setting the cancel event stops the wait."""
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            guard.run(lambda: time.sleep(1.0), timeout=5.0, cancel_event=cancel)
        assert time.monotonic() - started < 0.5

    def test_cancellable_wait_still_returns_result(self, guard):
        """A cancellable wait still returns the result."""
        cancel = threading.Event()
        assert guard.run(lambda: "ok", cancel_event=cancel) == "ok"

    def test_cancellable_wait_still_times_out(self, guard):
        """A cancellable wait still honours the deadline."""
        cancel = threading.Event()
        with pytest.raises(RPCTimeout):
            guard.run(lambda: time.sleep(1.0), timeout=0.05, cancel_event=cancel)


class TestWithTimeout:
    """Test the module-level with_timeout() helper."""

    def test_module_level_helper(self):
        """with_timeout() returns the result."""
        assert with_timeout(lambda: "done", timeout=1.0) == "done"

    def test_module_level_helper_times_out(self):
        """with_timeout() raises RPCTimeout on a slow operation."""
        with pytest.raises(RPCTimeout):
            with_timeout(lambda: time.sleep(0.5), timeout=0.05)
