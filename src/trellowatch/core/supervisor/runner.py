"""
Background runner for a watch-sync loop with a bounded restart policy.

A loop that raises is restarted with capped exponential backoff, up to
``max_restarts`` times. After that it is left stopped and logged as
failed; the next change to its TrelloConfig starts a fresh loop.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from trellowatch.core.supervisor.scope import ExecutionScope

logger = logging.getLogger(__name__)


class Runnable(Protocol):
    name: str

    def run(self, scope: ExecutionScope) -> None:
        ...


@dataclass(frozen=True)
class RestartPolicy:
    """
    How often and how fast a crashed loop is restarted.

    Attributes:
        max_restarts: Restarts allowed before giving up (0 disables restarts)
        backoff_seconds: Delay before the first restart
        backoff_max_seconds: Upper bound on the restart delay
    """

    max_restarts: int = 3
    backoff_seconds: float = 2.0
    backoff_max_seconds: float = 60.0

    def delay(self, restart: int) -> float:
        """Delay before restart number ``restart`` (1-indexed)."""
        return min(self.backoff_seconds * (2 ** (restart - 1)), self.backoff_max_seconds)


class LoopRunner:
    """
    Runs a loop on a daemon thread inside an execution scope.

    The scope is always marked stopped when the thread exits, whether the
    loop was cancelled, crashed for good, or returned.
    """

    def __init__(
        self, loop: Runnable, scope: ExecutionScope, policy: RestartPolicy | None = None
    ) -> None:
        self.loop = loop
        self.scope = scope
        self.policy = policy if policy is not None else RestartPolicy()
        self.restarts = 0
        self.failed = False
        self._thread = threading.Thread(
            target=self._run, name=f"loop-{scope.key}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def _run(self) -> None:
        try:
            while not self.scope.cancelled:
                try:
                    self.loop.run(self.scope)
                    return
                except Exception as e:
                    if self.scope.cancelled:
                        return
                    if self.restarts >= self.policy.max_restarts:
                        self.failed = True
                        logger.error(
                            f"Loop {self.loop.name} failed after {self.restarts} restart(s), "
                            f"giving up: {e}"
                        )
                        return
                    self.restarts += 1
                    delay = self.policy.delay(self.restarts)
                    logger.warning(
                        f"Loop {self.loop.name} crashed: {e}. Restart "
                        f"{self.restarts}/{self.policy.max_restarts} in {delay:.1f}s"
                    )
                    if self.scope.wait_cancelled(delay):
                        return
        finally:
            self.scope.mark_stopped()
            logger.info(f"Loop {self.loop.name} stopped")
