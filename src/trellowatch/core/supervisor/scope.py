"""
Cancellable execution scope for one watch-sync loop.
"""

from __future__ import annotations

import threading

from trellowatch.core.models import LoopConfig, ObjectKey


class ExecutionScope:
    """
    Cancellation handle plus stop acknowledgement.

    The supervisor calls :meth:`cancel`; the loop's runner calls
    :meth:`mark_stopped` once the loop has fully unwound, so a replacement
    can wait for the old loop with :meth:`wait_stopped`.

    ``config`` records the settings the loop was started with.
    """

    def __init__(self, key: ObjectKey, config: LoopConfig | None = None) -> None:
        self.key = key
        self.config = config
        self._cancelled = threading.Event()
        self._stopped = threading.Event()

    def __repr__(self) -> str:
        return (
            f"ExecutionScope(key={self.key!s}, cancelled={self.cancelled}, "
            f"stopped={self.stopped})"
        )

    @property
    def stop_event(self) -> threading.Event:
        """Event set on cancellation; loops block on it."""
        return self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    @property
    def active(self) -> bool:
        """Neither cancelled nor stopped."""
        return not (self.cancelled or self.stopped)

    def cancel(self) -> None:
        self._cancelled.set()

    def wait_cancelled(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        return self._cancelled.wait(timeout)

    def mark_stopped(self) -> None:
        self._stopped.set()

    def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait for the loop to acknowledge its stop; False on timeout."""
        return self._stopped.wait(timeout)
