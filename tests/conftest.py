"""
Pytest configuration and shared fixtures.

Provides in-memory stand-ins for the cluster and the Trello board, sample
resource documents, and isolation of the config/env layers from the
developer's machine.
"""

from __future__ import annotations

import copy
import os
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import pytest

from trellowatch.core.board.models import Card
from trellowatch.core.config import clear_cache
from trellowatch.core.errors import BoardError, ClusterError
from trellowatch.core.models import (
    API_VERSION,
    CONFIG_KIND,
    CONFIG_TARGET,
    FINALIZER_NAME,
    ObjectKey,
    TargetRef,
)

DEPLOYMENT = TargetRef(api_version="apps/v1", kind="Deployment")


# ==============================================================================
# Fakes
# ==============================================================================


class FakeCluster:
    """
    In-memory cluster honouring finalizer semantics.

    Removing the last finalizer of a deleting object deletes it, as the API
    server does.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.objects: dict[tuple[TargetRef, ObjectKey], dict[str, Any]] = {}
        self.secrets: dict[ObjectKey, dict[str, bytes]] = {}
        self.patches: list[tuple[TargetRef, ObjectKey, list[str], str]] = []
        self.patch_error: Exception | None = None
        self.list_error: Exception | None = None
        self.listed: list[TargetRef] = []

    def add(self, target: TargetRef, doc: dict[str, Any]) -> None:
        with self._lock:
            self.objects[(target, ObjectKey.from_document(doc))] = copy.deepcopy(doc)

    def stored(self, target: TargetRef, key: ObjectKey) -> dict[str, Any] | None:
        with self._lock:
            return self.objects.get((target, key))

    def get(self, target: TargetRef, key: ObjectKey) -> dict[str, Any] | None:
        with self._lock:
            doc = self.objects.get((target, key))
            return copy.deepcopy(doc) if doc is not None else None

    def list(
        self, target: TargetRef, namespace: str | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            self.listed.append(target)
            items = [
                copy.deepcopy(doc)
                for (t, key), doc in self.objects.items()
                if t == target and (namespace is None or key.namespace == namespace)
            ]
        return items, "1"

    def watch(
        self,
        target: TargetRef,
        *,
        namespace: str | None = None,
        resource_version: str | None = None,
        timeout_seconds: int = 300,
        stop_event: threading.Event | None = None,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        # A quiet watch that times out quickly
        if stop_event is not None:
            stop_event.wait(0.05)
        else:
            time.sleep(0.05)
        yield from ()

    def patch_finalizers(
        self,
        target: TargetRef,
        doc: dict[str, Any],
        finalizers: list[str],
        field_manager: str,
    ) -> dict[str, Any]:
        key = ObjectKey.from_document(doc)
        if self.patch_error is not None:
            raise self.patch_error
        with self._lock:
            self.patches.append((target, key, list(finalizers), field_manager))
            stored = self.objects.get((target, key))
            if stored is None:
                raise ClusterError(f"unable to patch object {key}: not found", status_code=404)
            stored.setdefault("metadata", {})["finalizers"] = list(finalizers)
            if not finalizers and stored["metadata"].get("deletionTimestamp"):
                del self.objects[(target, key)]
            return copy.deepcopy(stored)

    def get_secret_data(self, key: ObjectKey) -> dict[str, bytes] | None:
        return self.secrets.get(key)


class FakeBoard:
    """
    In-memory Trello list(s).

    ``fail`` maps an operation name (``list_cards``, ``create_card``,
    ``update_card``, ``delete_card``) to the error it raises.
    """

    def __init__(self, cards: list[Card] | None = None) -> None:
        self._lock = threading.Lock()
        self.cards: list[Card] = list(cards or [])
        self.calls: list[tuple[str, ...]] = []
        self.fail: dict[str, Exception] = {}
        self.closed = False
        self._next_id = 0

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    @property
    def writes(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] != "list_cards"]

    def names(self) -> list[str]:
        with self._lock:
            return [card.name for card in self.cards]

    def list_cards(self, list_id: str) -> list[Card]:
        self._check("list_cards")
        with self._lock:
            self.calls.append(("list_cards", list_id))
            return [card.model_copy() for card in self.cards if card.id_list == list_id]

    def create_card(self, card: Card) -> Card:
        self._check("create_card")
        with self._lock:
            self._next_id += 1
            created = card.model_copy(update={"id": f"card-{self._next_id}"})
            self.cards.append(created)
            self.calls.append(("create_card", created.name))
            return created

    def update_card(self, card_id: str, name: str) -> None:
        self._check("update_card")
        with self._lock:
            self.calls.append(("update_card", card_id, name))
            for i, card in enumerate(self.cards):
                if card.id == card_id:
                    self.cards[i] = card.model_copy(update={"name": name})
                    return
        raise BoardError("failed to update Trello card: HTTP 404", status_code=404)

    def delete_card(self, card_id: str) -> None:
        self._check("delete_card")
        with self._lock:
            self.calls.append(("delete_card", card_id))
            self.cards = [card for card in self.cards if card.id != card_id]

    def close(self) -> None:
        self.closed = True


class KeySource:
    """Event source that enqueues a fixed list of keys once."""

    def __init__(self, keys: Iterable[ObjectKey]) -> None:
        self.keys = list(keys)

    def run(self, enqueue: Callable[[ObjectKey], None], stop_event: threading.Event) -> None:
        for key in self.keys:
            if stop_event.is_set():
                return
            enqueue(key)


# ==============================================================================
# Document builders
# ==============================================================================


def make_deployment(
    namespace: str = "default",
    name: str = "web",
    *,
    ready: bool = True,
    failed: bool = False,
    finalizers: list[str] | None = None,
    deleting: bool = False,
) -> dict[str, Any]:
    """Build a Deployment document in the requested state."""
    available = 1 if ready else 0
    conditions = []
    if failed:
        conditions.append(
            {"type": "Progressing", "status": "False", "reason": "ProgressDeadlineExceeded"}
        )
    metadata: dict[str, Any] = {
        "namespace": namespace,
        "name": name,
        "generation": 1,
        "resourceVersion": "100",
        "finalizers": list(finalizers or []),
    }
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {"replicas": 1},
        "status": {
            "observedGeneration": 1,
            "replicas": 1,
            "updatedReplicas": 1,
            "availableReplicas": available,
            "readyReplicas": available,
            "conditions": conditions,
        },
    }


def make_trello_config(
    namespace: str = "team",
    name: str = "cfg",
    *,
    list_id: str = "list-1",
    secret: str = "trello-creds",
    target: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
) -> dict[str, Any]:
    """Build a TrelloConfig document."""
    metadata: dict[str, Any] = {
        "namespace": namespace,
        "name": name,
        "resourceVersion": "7",
        "finalizers": list(finalizers or []),
    }
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "apiVersion": API_VERSION,
        "kind": CONFIG_KIND,
        "metadata": metadata,
        "spec": {
            "target": target or {"apiVersion": "apps/v1", "kind": "Deployment"},
            "listID": list_id,
            "secretRef": {"name": secret},
        },
    }


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def cluster():
    """Provide an empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def board():
    """Provide an empty in-memory Trello board."""
    return FakeBoard()


@pytest.fixture
def configured_cluster(cluster):
    """
    Cluster holding a TrelloConfig (with finalizer) and its Secret.

    The config lives at team/cfg and targets apps/v1 Deployments.
    """
    cluster.add(CONFIG_TARGET, make_trello_config(finalizers=[FINALIZER_NAME]))
    cluster.secrets[ObjectKey("team", "trello-creds")] = {
        "api-key": b"key-123\n",
        "api-token": b"token-456",
    }
    return cluster


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep user/project config, .env files and env vars out of every test."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)

    for name in list(os.environ):
        if name.startswith("TRELLO_WATCH_"):
            monkeypatch.delenv(name)
    clear_cache()
    yield
    clear_cache()
