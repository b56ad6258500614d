"""
Reconcile loop driver.

A :class:`Controller` connects a :class:`Source` to a reconcile function
through a :class:`WorkQueue`, running a bounded number of worker threads.
Keys are reconciled one at a time per key and in parallel across keys.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from trellowatch.core.controller.queue import WorkQueue
from trellowatch.core.controller.source import Source
from trellowatch.core.models import ObjectKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Result:
    """
    Outcome of one reconcile call.

    Attributes:
        requeue: Reconcile the key again (with backoff)
        requeue_after: Reconcile the key again after this many seconds
    """

    requeue: bool = False
    requeue_after: float | None = None


Reconcile = Callable[[ObjectKey], Result]


class Controller:
    """
    Runs ``reconcile`` for every key produced by ``source``.

    Errors raised by ``reconcile`` are logged and the key is retried with
    exponential backoff. A failing source stops the controller and is
    re-raised from :meth:`run`.

    Example:
        >>> controller = Controller("deployment", reconciler.reconcile, source,
        ...                         max_concurrent_reconciles=2)
        >>> controller.run(stop_event)  # blocks until stop_event is set
    """

    def __init__(
        self,
        name: str,
        reconcile: Reconcile,
        source: Source,
        *,
        max_concurrent_reconciles: int = 1,
        queue: WorkQueue[ObjectKey] | None = None,
        poll_interval: float = 0.5,
        source_stop_timeout: float = 5.0,
    ) -> None:
        if max_concurrent_reconciles < 1:
            raise ValueError("max_concurrent_reconciles must be >= 1")
        self.name = name
        self.max_concurrent_reconciles = max_concurrent_reconciles
        self.poll_interval = poll_interval
        self.source_stop_timeout = source_stop_timeout
        self.queue: WorkQueue[ObjectKey] = queue if queue is not None else WorkQueue()
        self._reconcile = reconcile
        self._source = source
        self._source_error: BaseException | None = None

    def enqueue(self, key: ObjectKey) -> None:
        self.queue.add(key)

    def _run_source(self, stop_event: threading.Event) -> None:
        try:
            self._source.run(self.queue.add, stop_event)
        except Exception as e:
            logger.error(f"[{self.name}] event source failed: {e}")
            self._source_error = e

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def process(self, key: ObjectKey) -> None:
        """Reconcile one key and apply the requeue policy to the outcome."""
        try:
            result = self._reconcile(key)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(
                f"[{self.name}] Reconciler error resource={key}: {e} (retrying in {delay:.2f}s)",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return

        if result.requeue_after:
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)

    def run(self, stop_event: threading.Event) -> None:
        """
        Start the source and workers, block until ``stop_event`` is set.

        In-flight reconciles are allowed to finish before this returns, and the
        source gets up to ``source_stop_timeout`` seconds to wind down.

        Raises:
            Exception: Whatever the source raised, if it failed
        """
        logger.info(
            f"[{self.name}] Starting controller "
            f"(max_concurrent_reconciles={self.max_concurrent_reconciles})"
        )
        source_thread = threading.Thread(
            target=self._run_source, args=(stop_event,), name=f"{self.name}-source", daemon=True
        )
        workers = [
            threading.Thread(target=self._worker, name=f"{self.name}-worker-{i}", daemon=True)
            for i in range(self.max_concurrent_reconciles)
        ]
        source_thread.start()
        for worker in workers:
            worker.start()

        try:
            while not stop_event.wait(self.poll_interval):
                if self._source_error is not None:
                    break
        finally:
            self.queue.shutdown()
            for worker in workers:
                worker.join()
            source_thread.join(self.source_stop_timeout)
            if source_thread.is_alive():
                logger.warning(
                    f"[{self.name}] event source still running after "
                    f"{self.source_stop_timeout:.0f}s, abandoning it"
                )

        if self._source_error is not None:
            raise self._source_error
        logger.info(f"[{self.name}] Controller stopped")
