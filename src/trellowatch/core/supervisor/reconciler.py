"""
TrelloConfig reconciliation: one watch-sync loop per live config.

For every TrelloConfig the reconciler makes sure exactly one loop is
running with the config's current settings, and that none is left running
once the config is deleted. A change to the target, list or credentials
restarts the loop rather than patching it live; a resync of an unchanged
config leaves the running loop alone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from trellowatch.core.controller import Result
from trellowatch.core.errors import CredentialsError
from trellowatch.core.models import (
    CONFIG_FIELD_MANAGER,
    CONFIG_TARGET,
    Credentials,
    LoopConfig,
    ObjectKey,
    TrelloConfig,
    add_finalizer,
    get_finalizers,
    has_finalizer,
    is_deleting,
    remove_finalizer,
)
from trellowatch.core.supervisor.registry import LoopRegistry
from trellowatch.core.supervisor.runner import LoopRunner, RestartPolicy, Runnable
from trellowatch.core.supervisor.scope import ExecutionScope

if TYPE_CHECKING:
    from trellowatch.core.cluster.client import ClusterClient

logger = logging.getLogger(__name__)

LoopFactory = Callable[[LoopConfig], Runnable]


class ConfigReconciler:
    """
    Starts, replaces and stops watch-sync loops for TrelloConfigs.

    Must be driven by a controller that never reconciles the same key
    concurrently; that is what makes cancel-then-replace race-free.

    Args:
        cluster: Cluster access
        registry: Registry of running loops, shared with the manager
        loop_factory: Builds a loop for a resolved config
        restart_policy: Restart policy for crashed loops
        drain_timeout: Seconds to wait for a replaced loop to stop
    """

    def __init__(
        self,
        cluster: ClusterClient,
        registry: LoopRegistry,
        loop_factory: LoopFactory,
        *,
        restart_policy: RestartPolicy | None = None,
        drain_timeout: float = 10.0,
    ) -> None:
        self.cluster = cluster
        self.registry = registry
        self.loop_factory = loop_factory
        self.restart_policy = restart_policy if restart_policy is not None else RestartPolicy()
        self.drain_timeout = drain_timeout

    def reconcile(self, key: ObjectKey) -> Result:
        log_prefix = f"[trelloconfig] resource={key}"
        logger.info(f"{log_prefix} reconciling")

        doc = self.cluster.get(CONFIG_TARGET, key)
        if doc is None:
            return Result()

        if is_deleting(doc):
            return self._reconcile_delete(key, doc, log_prefix)

        # Add the finalizer before any loop exists, so a deletion can never
        # race a loop we have not registered yet.
        if not has_finalizer(doc):
            self.cluster.patch_finalizers(
                CONFIG_TARGET, doc, add_finalizer(get_finalizers(doc)), CONFIG_FIELD_MANAGER
            )
            logger.info(f"{log_prefix} added finalizer. Re-queueing item")
            return Result(requeue=True)

        config = TrelloConfig.from_document(doc)
        loop_config = LoopConfig(
            owner=key,
            target=config.spec.target,
            list_id=config.spec.list_id,
            credentials=self._credentials(config),
        )
        current = self.registry.get(key)
        if current is not None and current.active and current.config == loop_config:
            logger.info(f"{log_prefix} loop already running with current settings")
            return Result()

        loop = self.loop_factory(loop_config)

        previous = self.registry.remove_and_cancel(key)
        if previous is not None:
            logger.info(f"{log_prefix} stopping loop")
            if not previous.wait_stopped(self.drain_timeout):
                logger.warning(
                    f"{log_prefix} previous loop did not stop within "
                    f"{self.drain_timeout:.0f}s, starting replacement anyway"
                )
            logger.info(f"{log_prefix} deleted loop from registry")

        scope = ExecutionScope(key, loop_config)
        replaced = self.registry.upsert(key, scope)
        if replaced is not None:
            logger.warning(f"{log_prefix} replaced a loop registered concurrently")
            replaced.cancel()

        runner = LoopRunner(loop, scope, self.restart_policy)
        runner.start()
        logger.info(
            f"{log_prefix} started loop for {loop_config.target} into list {loop_config.list_id}"
        )
        return Result()

    def _credentials(self, config: TrelloConfig) -> Credentials:
        secret_key = ObjectKey(config.namespace, config.spec.secret_ref.name)
        data = self.cluster.get_secret_data(secret_key)
        if data is None:
            raise CredentialsError(
                f"unable to get Trello credentials Secret {secret_key}: not found",
                secret=str(secret_key),
            )
        return Credentials.from_secret_data(data)

    def _reconcile_delete(self, key: ObjectKey, doc: dict[str, Any], log_prefix: str) -> Result:
        scope = self.registry.remove_and_cancel(key)
        if scope is None:
            logger.info(f"{log_prefix} no running loop found (running: {self.registry.keys()})")
        else:
            logger.info(f"{log_prefix} stopping loop")

        if has_finalizer(doc):
            self.cluster.patch_finalizers(
                CONFIG_TARGET, doc, remove_finalizer(get_finalizers(doc)), CONFIG_FIELD_MANAGER
            )
            logger.info(f"{log_prefix} removed finalizer")
        return Result()
