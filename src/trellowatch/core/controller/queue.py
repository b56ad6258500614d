"""
Rate-limited work queue of object keys.

Guarantees that a key is handed to at most one worker at a time: a key
added while it is being processed is parked as "dirty" and re-queued when
the worker calls :meth:`WorkQueue.done`. Duplicate adds of a waiting key
collapse into one entry.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)


class WorkQueue(Generic[K]):
    """
    Deduplicating FIFO with per-key exponential failure backoff.

    Attributes:
        base_delay: First backoff delay after a failure, in seconds
        max_delay: Upper bound on the backoff delay, in seconds
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 300.0) -> None:
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._cond = threading.Condition()
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._failures: dict[K, int] = {}
        self._delayed: list[tuple[float, int, K]] = []
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def _add_locked(self, key: K) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add(self, key: K) -> None:
        """Queue ``key`` for processing."""
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: K, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            heapq.heappush(self._delayed, (time.monotonic() + delay, next(self._seq), key))
            self._cond.notify()

    def backoff_for(self, key: K) -> float:
        """Delay the next rate-limited add of ``key`` would use."""
        failures = self._failures.get(key, 0)
        return min(self.base_delay * (2**failures), self.max_delay)

    def add_rate_limited(self, key: K) -> float:
        """
        Queue ``key`` after its exponential backoff delay.

        Returns:
            The delay applied
        """
        with self._cond:
            delay = self.backoff_for(key)
            self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)
        return delay

    def num_requeues(self, key: K) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def forget(self, key: K) -> None:
        """Reset the backoff of ``key``."""
        with self._cond:
            self._failures.pop(key, None)

    def _promote_due_locked(self) -> float | None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heapq.heappop(self._delayed)
            self._add_locked(key)
        if self._delayed:
            return self._delayed[0][0] - now
        return None

    def get(self, timeout: float | None = None) -> K | None:
        """
        Block until a key is available.

        Returns:
            The next key, or None after shutdown (or when ``timeout`` expires)
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                next_due = self._promote_due_locked()
                if self._shutting_down:
                    return None
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key

                wait = next_due
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: K) -> None:
        """Mark ``key`` processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop handing out keys and wake every waiting worker."""
        with self._cond:
            self._shutting_down = True
            self._delayed.clear()
            self._cond.notify_all()
