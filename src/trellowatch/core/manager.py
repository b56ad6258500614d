"""
Process-level wiring for the controllers.

The :class:`Manager` runs either

- the dynamic controller, which watches TrelloConfigs and supervises one
  watch-sync loop per config, or
- the static controller, which runs a single loop from credentials read
  off disk,

together with the health probes, until SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType

from trellowatch.core.cluster.client import ClusterClient
from trellowatch.core.config.models import WatchConfig
from trellowatch.core.controller import Controller, WatchSource
from trellowatch.core.models import CONFIG_TARGET, Credentials, LoopConfig, ObjectKey, TargetRef
from trellowatch.core.probes import ProbeServer, create_app
from trellowatch.core.supervisor import (
    ConfigReconciler,
    ExecutionScope,
    LoopRegistry,
    LoopRunner,
    RestartPolicy,
)
from trellowatch.core.sync import BoardFactory, WatchSyncLoop, trello_board_factory

logger = logging.getLogger(__name__)

SUPERVISOR_NAME = "trelloconfig"
STATIC_OWNER = ObjectKey("", "static")


class Manager:
    """
    Owns the cluster client, the loop registry and the top-level controller.

    Example:
        >>> manager = Manager(load_config(), ClusterClient.from_config())
        >>> manager.run()  # blocks until SIGTERM
    """

    def __init__(
        self,
        config: WatchConfig,
        cluster: ClusterClient,
        *,
        board_factory: BoardFactory | None = None,
        registry: LoopRegistry | None = None,
    ) -> None:
        self.config = config
        self.cluster = cluster
        self.board_factory = board_factory or trello_board_factory(config.board)
        self.registry = registry if registry is not None else LoopRegistry()
        self.stop_event = threading.Event()
        self._ready = threading.Event()

    @property
    def restart_policy(self) -> RestartPolicy:
        settings = self.config.supervisor
        return RestartPolicy(
            max_restarts=settings.max_restarts,
            backoff_seconds=settings.restart_backoff_seconds,
            backoff_max_seconds=max(
                settings.restart_backoff_seconds, settings.restart_backoff_max_seconds
            ),
        )

    def build_loop(self, loop_config: LoopConfig) -> WatchSyncLoop:
        return WatchSyncLoop(
            loop_config,
            self.cluster,
            board_factory=self.board_factory,
            settings=self.config.loop,
        )

    def build_supervisor(self) -> Controller:
        """Build the controller reconciling TrelloConfigs."""
        settings = self.config.supervisor
        reconciler = ConfigReconciler(
            self.cluster,
            self.registry,
            self.build_loop,
            restart_policy=self.restart_policy,
            drain_timeout=settings.drain_timeout_seconds,
        )
        source = WatchSource(
            self.cluster,
            CONFIG_TARGET,
            namespace=settings.namespace,
            resync_seconds=self.config.loop.resync_seconds,
            watch_timeout_seconds=self.config.loop.watch_timeout_seconds,
        )
        return Controller(
            SUPERVISOR_NAME,
            reconciler.reconcile,
            source,
            max_concurrent_reconciles=settings.max_concurrent_reconciles,
        )

    def install_signal_handlers(self) -> None:
        def _handle(signum: int, frame: FrameType | None) -> None:
            logger.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.stop_event.set()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

    def _start_probes(self) -> ProbeServer | None:
        if not self.config.probes.enabled:
            return None
        server = ProbeServer(
            create_app(self.registry, ready_check=self._ready.is_set),
            self.config.probes.bind_address,
        )
        server.start()
        return server

    def run(self) -> None:
        """
        Run the dynamic controller until :attr:`stop_event` is set.

        Every loop still registered at shutdown is cancelled.
        """
        probes = self._start_probes()
        try:
            controller = self.build_supervisor()
            self._ready.set()
            logger.info("Starting manager")
            controller.run(self.stop_event)
        finally:
            self._ready.clear()
            scopes = self.registry.cancel_all()
            for scope in scopes:
                if not scope.wait_stopped(self.config.supervisor.drain_timeout_seconds):
                    logger.warning(f"Loop for {scope.key} did not stop in time")
            if probes is not None:
                probes.stop()
            logger.info("Manager stopped")

    def run_static(self, credentials: Credentials, list_id: str, target: TargetRef) -> None:
        """
        Run a single loop for ``target`` until :attr:`stop_event` is set.

        Raises:
            Exception: If the loop crashed more often than the restart policy allows
        """
        loop_config = LoopConfig(
            owner=STATIC_OWNER, target=target, list_id=list_id, credentials=credentials
        )
        loop = self.build_loop(loop_config)
        scope = ExecutionScope(STATIC_OWNER, loop_config)
        self.registry.upsert(STATIC_OWNER, scope)
        runner = LoopRunner(loop, scope, self.restart_policy)

        probes = self._start_probes()
        try:
            runner.start()
            self._ready.set()
            logger.info(f"Starting static controller for {target}")
            while not self.stop_event.wait(0.5):
                if scope.stopped:
                    break
        finally:
            self._ready.clear()
            self.registry.remove_and_cancel(STATIC_OWNER)
            scope.wait_stopped(self.config.supervisor.drain_timeout_seconds)
            if probes is not None:
                probes.stop()

        if runner.failed:
            raise RuntimeError(f"controller for {target} failed after {runner.restarts} restart(s)")
