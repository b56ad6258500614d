"""
Event sources feeding a controller's work queue.

:class:`WatchSource` lists a kind once, then follows a watch stream,
enqueueing the key of every object that changes. Expired watches (HTTP 410)
and periodic resyncs fall back to a fresh list.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from trellowatch.core.errors import ClusterError
from trellowatch.core.models import ObjectKey, TargetRef

if TYPE_CHECKING:
    from trellowatch.core.cluster.client import ClusterClient

logger = logging.getLogger(__name__)

Enqueue = Callable[[ObjectKey], None]


class Source(Protocol):
    """Something that pushes keys into a queue until told to stop."""

    def run(self, enqueue: Enqueue, stop_event: threading.Event) -> None:
        ...


class WatchSource:
    """
    List+watch of one kind through a :class:`ClusterClient`.

    The initial list must succeed: an unknown kind or missing permission is
    raised to the owning controller. Once running, broken watches are
    retried after ``retry_delay`` seconds.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        target: TargetRef,
        *,
        namespace: str | None = None,
        resync_seconds: float = 600.0,
        watch_timeout_seconds: int = 300,
        retry_delay: float = 5.0,
    ) -> None:
        self.cluster = cluster
        self.target = target
        self.namespace = namespace
        self.resync_seconds = resync_seconds
        self.watch_timeout_seconds = watch_timeout_seconds
        self.retry_delay = retry_delay

    def _list(self, enqueue: Enqueue) -> str | None:
        items, resource_version = self.cluster.list(self.target, self.namespace)
        for doc in items:
            enqueue(ObjectKey.from_document(doc))
        logger.debug(f"Listed {len(items)} {self.target} object(s)")
        return resource_version

    def run(self, enqueue: Enqueue, stop_event: threading.Event) -> None:
        resource_version = self._list(enqueue)
        last_list = time.monotonic()

        while not stop_event.is_set():
            if resource_version is None or time.monotonic() - last_list >= self.resync_seconds:
                try:
                    resource_version = self._list(enqueue)
                except ClusterError as e:
                    logger.warning(f"Relist of {self.target} failed: {e}")
                    stop_event.wait(self.retry_delay)
                    continue
                last_list = time.monotonic()

            try:
                for event_type, doc in self.cluster.watch(
                    self.target,
                    namespace=self.namespace,
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                    stop_event=stop_event,
                ):
                    if event_type == "ERROR":
                        logger.info(f"Watch on {self.target} expired: {doc.get('message')}")
                        resource_version = None
                        break
                    if event_type == "BOOKMARK":
                        resource_version = (doc.get("metadata") or {}).get("resourceVersion")
                        continue
                    if stop_event.is_set():
                        return
                    resource_version = (doc.get("metadata") or {}).get(
                        "resourceVersion", resource_version
                    )
                    enqueue(ObjectKey.from_document(doc))
            except ClusterError as e:
                if e.is_gone:
                    logger.info(f"Watch on {self.target} expired, relisting")
                else:
                    logger.warning(f"Watch on {self.target} failed: {e}")
                    stop_event.wait(self.retry_delay)
                resource_version = None
