"""
The watch-sync loop: one per TrelloConfig.

A loop owns its Trello client and a controller watching the configured
kind. :meth:`WatchSyncLoop.run` blocks until its execution scope is
cancelled; in-flight card calls finish, only new events stop being picked
up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from trellowatch.core.board.client import BoardClient, TrelloClient
from trellowatch.core.controller import Controller, Source, WatchSource
from trellowatch.core.models import Credentials, LoopConfig
from trellowatch.core.sync.reconciler import CardReconciler, StatusFunc
from trellowatch.core.status import compute_status

if TYPE_CHECKING:
    from trellowatch.core.cluster.client import ClusterClient
    from trellowatch.core.config.models import BoardConfig, LoopSettings
    from trellowatch.core.supervisor.scope import ExecutionScope

logger = logging.getLogger(__name__)

BoardFactory = Callable[[Credentials], BoardClient]


def trello_board_factory(board_config: BoardConfig | None = None) -> BoardFactory:
    """Build a factory creating TrelloClients with the configured retry policy."""

    def factory(credentials: Credentials) -> BoardClient:
        if board_config is None:
            return TrelloClient(credentials)
        return TrelloClient(
            credentials,
            base_url=board_config.base_url,
            timeout=board_config.timeout_seconds,
            retry_max=board_config.retry_max,
            retry_wait_min=board_config.retry_wait_min_seconds,
            retry_wait_max=board_config.retry_wait_max_seconds,
        )

    return factory


class WatchSyncLoop:
    """
    Watches one kind and mirrors each object onto a Trello card.

    Example:
        >>> loop = WatchSyncLoop(loop_config, cluster)
        >>> loop.run(scope)  # blocks until scope.cancel()
    """

    def __init__(
        self,
        loop_config: LoopConfig,
        cluster: ClusterClient,
        *,
        board_factory: BoardFactory | None = None,
        settings: LoopSettings | None = None,
        status_func: StatusFunc = compute_status,
        source: Source | None = None,
    ) -> None:
        self.config = loop_config
        self.cluster = cluster
        self.board_factory = board_factory or trello_board_factory()
        self.settings = settings
        self.status_func = status_func
        self._source = source

    @property
    def name(self) -> str:
        return f"{self.config.target.kind.lower()}@{self.config.owner}"

    def _build_source(self) -> Source:
        if self._source is not None:
            return self._source
        if self.settings is None:
            return WatchSource(self.cluster, self.config.target)
        return WatchSource(
            self.cluster,
            self.config.target,
            resync_seconds=self.settings.resync_seconds,
            watch_timeout_seconds=self.settings.watch_timeout_seconds,
        )

    def run(self, scope: ExecutionScope) -> None:
        """
        Run until ``scope`` is cancelled.

        Raises:
            Exception: If the watch on the target kind cannot be established
        """
        board = self.board_factory(self.config.credentials)
        try:
            reconciler = CardReconciler(
                self.cluster,
                board,
                self.config.target,
                self.config.list_id,
                status_func=self.status_func,
            )
            controller = Controller(
                self.name,
                reconciler.reconcile,
                self._build_source(),
                max_concurrent_reconciles=(
                    self.settings.max_concurrent_reconciles if self.settings else 1
                ),
            )
            logger.info(
                f"Loop {self.name} watching {self.config.target} into list {self.config.list_id}"
            )
            controller.run(scope.stop_event)
        finally:
            board.close()
