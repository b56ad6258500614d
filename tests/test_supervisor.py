"""
Tests for TrelloConfig supervision.

Covers the loop registry, execution scopes, the restarting loop runner and
the reconciler that starts, replaces and stops loops.
"""

import logging
import threading

import pytest

from trellowatch.core.controller import Result
from trellowatch.core.errors import ConfigurationError, CredentialsError
from trellowatch.core.models import (
    CONFIG_FIELD_MANAGER,
    CONFIG_TARGET,
    FINALIZER_NAME,
    LoopConfig,
    ObjectKey,
)
from trellowatch.core.supervisor import (
    ConfigReconciler,
    ExecutionScope,
    LoopRegistry,
    LoopRunner,
    RestartPolicy,
)

from conftest import make_trello_config, wait_until

CONFIG_KEY = ObjectKey("team", "cfg")
FAST_POLICY = RestartPolicy(max_restarts=2, backoff_seconds=0.001, backoff_max_seconds=0.001)


class FakeLoop:
    """Loop that blocks until cancelled, optionally crashing first."""

    def __init__(self, config=None, crashes=0, ignore_cancel=False):
        self.config = config
        self.name = "fake"
        self.crashes = crashes
        self.ignore_cancel = ignore_cancel
        self.runs = 0
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, scope):
        self.runs += 1
        if self.runs <= self.crashes:
            raise RuntimeError(f"crash {self.runs}")
        self.started.set()
        if self.ignore_cancel:
            self.release.wait(5)
        else:
            scope.stop_event.wait()


class LoopFactory:
    """Records every loop it builds."""

    def __init__(self, **loop_kwargs):
        self.loops = []
        self.loop_kwargs = loop_kwargs

    def __call__(self, config: LoopConfig) -> FakeLoop:
        loop = FakeLoop(config, **self.loop_kwargs)
        self.loops.append(loop)
        return loop


# ==============================================================================
# Registry and scope
# ==============================================================================


class TestLoopRegistry:
    """Test the registry of running loops."""

    def test_upsert_returns_previous(self):
        registry = LoopRegistry()
        first, second = ExecutionScope(CONFIG_KEY), ExecutionScope(CONFIG_KEY)

        assert registry.upsert(CONFIG_KEY, first) is None
        assert registry.upsert(CONFIG_KEY, second) is first
        assert registry.get(CONFIG_KEY) is second
        assert len(registry) == 1
        assert not first.cancelled

    def test_remove_and_cancel(self):
        registry = LoopRegistry()
        scope = ExecutionScope(CONFIG_KEY)
        registry.upsert(CONFIG_KEY, scope)

        assert registry.remove_and_cancel(CONFIG_KEY) is scope
        assert scope.cancelled
        assert CONFIG_KEY not in registry
        assert registry.remove_and_cancel(CONFIG_KEY) is None

    def test_keys_is_a_snapshot(self):
        registry = LoopRegistry()
        registry.upsert(CONFIG_KEY, ExecutionScope(CONFIG_KEY))
        keys = registry.keys()
        registry.remove_and_cancel(CONFIG_KEY)
        assert keys == [CONFIG_KEY]

    def test_cancel_all(self):
        registry = LoopRegistry()
        scopes = [ExecutionScope(ObjectKey("ns", str(i))) for i in range(3)]
        for scope in scopes:
            registry.upsert(scope.key, scope)

        assert registry.cancel_all() == scopes
        assert len(registry) == 0
        assert all(scope.cancelled for scope in scopes)


class TestExecutionScope:
    """Test cancellation and stop acknowledgement."""

    def test_cancel(self):
        scope = ExecutionScope(CONFIG_KEY)
        assert not scope.cancelled
        scope.cancel()
        assert scope.cancelled
        assert scope.stop_event.is_set()
        assert scope.wait_cancelled(0)

    def test_wait_stopped_times_out(self):
        scope = ExecutionScope(CONFIG_KEY)
        assert not scope.wait_stopped(0.01)
        scope.mark_stopped()
        assert scope.wait_stopped(0.01)

    def test_active(self):
        scope = ExecutionScope(CONFIG_KEY)
        assert scope.active
        scope.mark_stopped()
        assert not scope.active

        cancelled = ExecutionScope(CONFIG_KEY)
        cancelled.cancel()
        assert not cancelled.active


# ==============================================================================
# Runner
# ==============================================================================


class TestRestartPolicy:
    def test_delay_doubles_and_caps(self):
        policy = RestartPolicy(max_restarts=5, backoff_seconds=2.0, backoff_max_seconds=10.0)
        assert [policy.delay(n) for n in range(1, 5)] == [2.0, 4.0, 8.0, 10.0]


class TestLoopRunner:
    """Test running loops with bounded restarts."""

    def test_cancel_stops_loop(self):
        loop = FakeLoop()
        scope = ExecutionScope(CONFIG_KEY)
        runner = LoopRunner(loop, scope, FAST_POLICY)

        runner.start()
        assert loop.started.wait(2)
        scope.cancel()

        assert scope.wait_stopped(2)
        assert not runner.failed
        assert runner.restarts == 0

    def test_restarts_crashed_loop(self):
        loop = FakeLoop(crashes=1)
        scope = ExecutionScope(CONFIG_KEY)
        runner = LoopRunner(loop, scope, FAST_POLICY)

        runner.start()
        assert loop.started.wait(2)
        assert runner.restarts == 1
        scope.cancel()
        runner.join(2)
        assert not runner.failed

    def test_gives_up_after_max_restarts(self):
        loop = FakeLoop(crashes=10)
        scope = ExecutionScope(CONFIG_KEY)
        runner = LoopRunner(loop, scope, FAST_POLICY)

        runner.start()

        assert scope.wait_stopped(2)
        assert runner.failed
        assert loop.runs == 3
        assert runner.restarts == 2

    def test_returning_loop_marks_stopped(self):
        class OneShot:
            name = "oneshot"

            def run(self, scope):
                return None

        scope = ExecutionScope(CONFIG_KEY)
        LoopRunner(OneShot(), scope).start()
        assert scope.wait_stopped(2)

    def test_cancel_during_backoff(self):
        loop = FakeLoop(crashes=10)
        scope = ExecutionScope(CONFIG_KEY)
        runner = LoopRunner(loop, scope, RestartPolicy(max_restarts=5, backoff_seconds=30.0))

        runner.start()
        assert wait_until(lambda: loop.runs == 1)
        scope.cancel()

        assert scope.wait_stopped(2)
        assert not runner.failed


# ==============================================================================
# ConfigReconciler
# ==============================================================================


@pytest.fixture
def registry():
    return LoopRegistry()


@pytest.fixture
def factory():
    return LoopFactory()


@pytest.fixture
def supervisor(configured_cluster, registry, factory):
    reconciler = ConfigReconciler(
        configured_cluster, registry, factory, restart_policy=FAST_POLICY, drain_timeout=2.0
    )
    yield reconciler
    for scope in registry.cancel_all():
        scope.wait_stopped(2)


class TestConfigReconciler:
    """Test starting, replacing and stopping loops per TrelloConfig."""

    def test_missing_config_is_noop(self, cluster, registry, factory):
        reconciler = ConfigReconciler(cluster, registry, factory)
        assert reconciler.reconcile(CONFIG_KEY) == Result()
        assert factory.loops == []

    def test_adds_finalizer_before_starting(self, cluster, registry, factory):
        cluster.add(CONFIG_TARGET, make_trello_config())
        reconciler = ConfigReconciler(cluster, registry, factory)

        assert reconciler.reconcile(CONFIG_KEY) == Result(requeue=True)

        assert cluster.patches == [
            (CONFIG_TARGET, CONFIG_KEY, [FINALIZER_NAME], CONFIG_FIELD_MANAGER)
        ]
        assert factory.loops == []
        assert len(registry) == 0

    def test_starts_loop(self, supervisor, registry, factory):
        assert supervisor.reconcile(CONFIG_KEY) == Result()

        assert CONFIG_KEY in registry
        [loop] = factory.loops
        assert loop.started.wait(2)
        assert loop.config.owner == CONFIG_KEY
        assert loop.config.target.kind == "Deployment"
        assert loop.config.list_id == "list-1"
        assert loop.config.credentials.api_key.get_secret_value() == "key-123"

    def test_replaces_loop_on_update(self, supervisor, configured_cluster, registry, factory):
        supervisor.reconcile(CONFIG_KEY)
        first_scope = registry.get(CONFIG_KEY)
        assert factory.loops[0].started.wait(2)

        configured_cluster.add(
            CONFIG_TARGET, make_trello_config(list_id="list-2", finalizers=[FINALIZER_NAME])
        )
        supervisor.reconcile(CONFIG_KEY)

        assert first_scope.cancelled
        assert first_scope.stopped
        assert len(registry) == 1
        second_scope = registry.get(CONFIG_KEY)
        assert second_scope is not first_scope
        assert not second_scope.cancelled
        assert factory.loops[1].config.list_id == "list-2"

    def test_unchanged_config_keeps_loop(self, supervisor, registry, factory):
        supervisor.reconcile(CONFIG_KEY)
        scope = registry.get(CONFIG_KEY)
        assert factory.loops[0].started.wait(2)

        assert supervisor.reconcile(CONFIG_KEY) == Result()
        assert supervisor.reconcile(CONFIG_KEY) == Result()

        assert len(factory.loops) == 1
        assert registry.get(CONFIG_KEY) is scope
        assert scope.active

    def test_scope_records_loop_settings(self, supervisor, registry, factory):
        supervisor.reconcile(CONFIG_KEY)
        assert registry.get(CONFIG_KEY).config == factory.loops[0].config

    def test_rotated_credentials_replace_loop(
        self, supervisor, configured_cluster, registry, factory
    ):
        supervisor.reconcile(CONFIG_KEY)
        first_scope = registry.get(CONFIG_KEY)
        configured_cluster.secrets[ObjectKey("team", "trello-creds")] = {
            "api-key": b"key-789",
            "api-token": b"token-456",
        }

        supervisor.reconcile(CONFIG_KEY)

        assert first_scope.stopped
        assert len(factory.loops) == 2
        assert factory.loops[1].config.credentials.api_key.get_secret_value() == "key-789"

    def test_failed_loop_is_rebuilt(self, configured_cluster, registry):
        factory = LoopFactory(crashes=10)
        reconciler = ConfigReconciler(
            configured_cluster, registry, factory, restart_policy=FAST_POLICY, drain_timeout=2.0
        )
        reconciler.reconcile(CONFIG_KEY)
        scope = registry.get(CONFIG_KEY)
        assert scope.wait_stopped(2)

        reconciler.reconcile(CONFIG_KEY)

        assert len(factory.loops) == 2
        assert registry.get(CONFIG_KEY) is not scope
        for stale in registry.cancel_all():
            stale.wait_stopped(2)

    def test_kind_change_never_overlaps(self, supervisor, configured_cluster, registry, factory):
        """The old loop has stopped before the loop for the new kind starts."""
        supervisor.reconcile(CONFIG_KEY)
        old_scope = registry.get(CONFIG_KEY)
        assert factory.loops[0].started.wait(2)

        configured_cluster.add(
            CONFIG_TARGET,
            make_trello_config(
                target={"apiVersion": "apps/v1", "kind": "StatefulSet"},
                finalizers=[FINALIZER_NAME],
            ),
        )
        overlap = []
        original_factory = supervisor.loop_factory

        def checking_factory(config):
            loop = original_factory(config)
            original_run = loop.run

            def run(scope):
                overlap.append(not old_scope.stopped)
                original_run(scope)

            loop.run = run
            return loop

        supervisor.loop_factory = checking_factory
        supervisor.reconcile(CONFIG_KEY)

        assert factory.loops[1].started.wait(2)
        assert factory.loops[1].config.target.kind == "StatefulSet"
        assert overlap == [False]
        assert registry.keys() == [CONFIG_KEY]

    def test_stuck_loop_does_not_block_replacement(
        self, configured_cluster, registry, caplog
    ):
        factory = LoopFactory(ignore_cancel=True)
        reconciler = ConfigReconciler(
            configured_cluster, registry, factory, restart_policy=FAST_POLICY, drain_timeout=0.05
        )
        reconciler.reconcile(CONFIG_KEY)
        assert factory.loops[0].started.wait(2)

        configured_cluster.add(
            CONFIG_TARGET, make_trello_config(list_id="list-2", finalizers=[FINALIZER_NAME])
        )
        with caplog.at_level(logging.WARNING):
            reconciler.reconcile(CONFIG_KEY)

        assert "did not stop within" in caplog.text
        assert len(factory.loops) == 2
        for loop in factory.loops:
            loop.release.set()
        for scope in registry.cancel_all():
            scope.wait_stopped(2)

    def test_delete_stops_loop_and_releases(self, supervisor, configured_cluster, registry):
        supervisor.reconcile(CONFIG_KEY)
        scope = registry.get(CONFIG_KEY)

        configured_cluster.add(
            CONFIG_TARGET, make_trello_config(finalizers=[FINALIZER_NAME], deleting=True)
        )
        assert supervisor.reconcile(CONFIG_KEY) == Result()

        assert scope.cancelled
        assert scope.wait_stopped(2)
        assert len(registry) == 0
        assert configured_cluster.stored(CONFIG_TARGET, CONFIG_KEY) is None

    def test_delete_without_loop_releases(self, cluster, registry, factory):
        cluster.add(
            CONFIG_TARGET, make_trello_config(finalizers=[FINALIZER_NAME], deleting=True)
        )
        reconciler = ConfigReconciler(cluster, registry, factory)

        assert reconciler.reconcile(CONFIG_KEY) == Result()
        assert cluster.stored(CONFIG_TARGET, CONFIG_KEY) is None

    def test_missing_secret(self, cluster, registry, factory):
        cluster.add(CONFIG_TARGET, make_trello_config(finalizers=[FINALIZER_NAME]))
        reconciler = ConfigReconciler(cluster, registry, factory)

        with pytest.raises(CredentialsError, match="not found"):
            reconciler.reconcile(CONFIG_KEY)
        assert len(registry) == 0

    @pytest.mark.parametrize(
        "data,message",
        [
            ({"api-key": b"  ", "api-token": b"t"}, "empty API Key in Trello credentials Secret"),
            ({"api-key": b"k"}, "empty API Token in Trello credentials Secret"),
        ],
    )
    def test_empty_credentials(self, configured_cluster, registry, factory, data, message):
        configured_cluster.secrets[ObjectKey("team", "trello-creds")] = data
        reconciler = ConfigReconciler(configured_cluster, registry, factory)

        with pytest.raises(CredentialsError, match=message):
            reconciler.reconcile(CONFIG_KEY)
        assert factory.loops == []

    def test_credentials_error_keeps_running_loop(
        self, supervisor, configured_cluster, registry
    ):
        supervisor.reconcile(CONFIG_KEY)
        scope = registry.get(CONFIG_KEY)
        del configured_cluster.secrets[ObjectKey("team", "trello-creds")]

        with pytest.raises(CredentialsError):
            supervisor.reconcile(CONFIG_KEY)

        assert registry.get(CONFIG_KEY) is scope
        assert not scope.cancelled

    def test_invalid_spec(self, configured_cluster, registry, factory):
        doc = make_trello_config(finalizers=[FINALIZER_NAME])
        doc["spec"]["listID"] = "   "
        configured_cluster.add(CONFIG_TARGET, doc)
        reconciler = ConfigReconciler(configured_cluster, registry, factory)

        with pytest.raises(ConfigurationError):
            reconciler.reconcile(CONFIG_KEY)
        assert factory.loops == []
