# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.cache module

Holds the last known-good endpoint selection for one selector slot.

An entry is usable without re-selection while it is younger than the TTL
and has failed fewer than max_fail_count consecutive probes. Entries are
replaced wholesale; readers take a reference to the current entry without
locking.
"""

import threading
import time

DEFAULT_CACHE_TTL = 300.0  # seconds
DEFAULT_MAX_FAIL_COUNT = 3


class CacheEntry:
    """The currently trusted selection plus its freshness bookkeeping."""

    __slots__ = ("handle", "endpoint", "created_at", "consecutive_failures", "generation")

    def __init__(self, handle, endpoint, created_at, generation):
        self.handle = handle
        self.endpoint = endpoint
        self.created_at = created_at
        self.consecutive_failures = 0
        self.generation = generation


class ProviderCache:
    """Single-slot cache of the selected ProviderHandle.

    Lifecycle: created empty, filled by store() after a successful
    selection, emptied by invalidate() or superseded by the next store().
    """

    def __init__(self, ttl=DEFAULT_CACHE_TTL, max_fail_count=DEFAULT_MAX_FAIL_COUNT,
                 clock=time.monotonic):
        self.ttl = ttl
        self.max_fail_count = max_fail_count
        self._clock = clock
        self._entry = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def entry(self):
        """The current CacheEntry, or None."""
        return self._entry

    @property
    def generation(self):
        """Counter bumped by every store() and invalidate()."""
        return self._generation

    def is_usable(self, entry):
        """Return True if entry may be reused after a passing probe."""
        if entry is None:
            return False
        age = self._clock() - entry.created_at
        return age < self.ttl and entry.consecutive_failures < self.max_fail_count

    def store(self, handle):
        """Commit a freshly selected handle and return its entry."""
        with self._lock:
            self._generation += 1
            entry = CacheEntry(
                handle=handle,
                endpoint=handle.endpoint,
                created_at=self._clock(),
                generation=self._generation,
            )
            self._entry = entry
        return entry

    def record_failure(self, entry):
        """Count a failed probe against entry if it is still current."""
        with self._lock:
            if self._entry is entry:
                entry.consecutive_failures += 1
            return entry.consecutive_failures

    def invalidate(self):
        """Drop the current entry so the next acquire re-runs selection."""
        with self._lock:
            self._entry = None
            self._generation += 1

    def snapshot(self):
        """Return a JSON-friendly view of the current entry."""
        entry = self._entry
        if entry is None:
            return {"endpoint": None, "usable": False}
        return {
            "endpoint": entry.endpoint.name,
            "url": entry.endpoint.url,
            "age": round(self._clock() - entry.created_at, 3),
            "consecutive_failures": entry.consecutive_failures,
            "usable": self.is_usable(entry),
        }
