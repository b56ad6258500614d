"""
Registry of running watch-sync loops, keyed by TrelloConfig identity.
"""

from __future__ import annotations

import threading

from trellowatch.core.models import ObjectKey
from trellowatch.core.supervisor.scope import ExecutionScope


class LoopRegistry:
    """
    Thread-safe map from config key to the scope of its running loop.

    Holds at most one scope per key. Every operation is atomic and the lock
    is never held across I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scopes: dict[ObjectKey, ExecutionScope] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._scopes)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._scopes

    def get(self, key: ObjectKey) -> ExecutionScope | None:
        with self._lock:
            return self._scopes.get(key)

    def upsert(self, key: ObjectKey, scope: ExecutionScope) -> ExecutionScope | None:
        """
        Register ``scope`` for ``key``.

        Returns:
            The scope it replaced, if any. The caller owns cancelling it.
        """
        with self._lock:
            previous = self._scopes.get(key)
            self._scopes[key] = scope
        return previous

    def remove_and_cancel(self, key: ObjectKey) -> ExecutionScope | None:
        """
        Remove the entry for ``key`` and cancel its scope.

        Returns:
            The removed scope, or None if no loop was registered
        """
        with self._lock:
            scope = self._scopes.pop(key, None)
        if scope is not None:
            scope.cancel()
        return scope

    def keys(self) -> list[ObjectKey]:
        """Snapshot of the registered keys."""
        with self._lock:
            return list(self._scopes)

    def cancel_all(self) -> list[ExecutionScope]:
        """Remove and cancel every entry (process shutdown)."""
        with self._lock:
            scopes = list(self._scopes.values())
            self._scopes.clear()
        for scope in scopes:
            scope.cancel()
        return scopes
