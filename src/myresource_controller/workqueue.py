"""
Work queue for reconcile triggers.

Keys are deduplicated while they wait, and a key that is being
processed is never handed to a second worker: adding it again only
marks it dirty, and ``done`` puts it back in line. That per-key
serialisation is what lets the reconciler run without locks.

Failed keys come back after an exponential backoff. This queue drives
the file and memory stores; against a cluster kopf plays the same role
and reuses ``backoff_delay`` for its retries.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple


def backoff_delay(failures: int, base: float, maximum: float) -> float:
    """Delay before retry number ``failures`` (1-based): base, 2*base, 4*base... capped."""
    return min(base * (2 ** (max(failures, 1) - 1)), maximum)


class WorkQueue:
    """Deduplicating, rate-limited queue of keys.

    Args:
        base_backoff: Delay after the first failure, in seconds.
        max_backoff: Upper bound on the delay.
        clock: Monotonic clock for delayed adds.
    """

    def __init__(
        self,
        base_backoff: float = 5.0,
        max_backoff: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_backoff = base_backoff
        self._max_backoff = max_backoff
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._delayed: List[Tuple[float, int, Hashable]] = []
        self._seq = itertools.count()
        self._failures: Dict[Hashable, int] = {}
        self._shutdown = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown

    def add(self, key: Hashable) -> None:
        """Queue a key unless it is already waiting."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutdown:
                return
            heapq.heappush(self._delayed, (self._clock() + delay, next(self._seq), key))
            self._cond.notify_all()

    def add_rate_limited(self, key: Hashable) -> float:
        """Queue a key after its backoff delay; returns the delay used."""
        with self._cond:
            failures = self._failures.get(key, 0) + 1
            self._failures[key] = failures
        delay = backoff_delay(failures, self._base_backoff, self._max_backoff)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of a key."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Take the next ready key.

        The caller owns the key until it calls ``done``.

        Args:
            timeout: Seconds to wait; None waits until a key is ready.

        Returns:
            A key, or None on timeout or shutdown.
        """
        with self._cond:
            end = None if timeout is None else self._clock() + timeout
            while True:
                if self._shutdown:
                    return None
                self._promote_ready()
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key

                wait_for: Optional[float] = None
                if self._delayed:
                    wait_for = max(0.0, self._delayed[0][0] - self._clock())
                if end is not None:
                    remaining = end - self._clock()
                    if remaining <= 0:
                        return None
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(wait_for)

    def done(self, key: Hashable) -> None:
        """Release a key taken with ``get``; requeue it if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        """Wake every waiting ``get`` and refuse further work."""
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # Internals (lock held)
    # ------------------------------------------------------------------

    def _add_locked(self, key: Hashable) -> None:
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_ready(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._add_locked(key)
