"""
Readiness evaluation for arbitrary Kubernetes resources.

``compute_status`` classifies a generic resource document into a
:class:`Status` without knowing its schema ahead of time. The rules follow
the conventions most controllers publish:

1. A deletion timestamp means ``Terminating``.
2. ``status.observedGeneration`` behind ``metadata.generation`` means the
   controller has not caught up yet (``InProgress``).
3. Well-known built-in kinds (Deployment, StatefulSet, DaemonSet,
   ReplicaSet, Pod, Job, PersistentVolumeClaim) are checked against their
   replica/phase fields.
4. Everything else is judged by its conditions: ``Stalled`` wins, then
   ``Reconciling``, then ``Ready``.
5. A resource with no status at all is treated as ``Current``.

Example:
    >>> compute_status({"metadata": {"name": "cm"}, "data": {}})
    <Status.CURRENT: 'Current'>
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from trellowatch.core.errors import ReadinessError
from trellowatch.core.status.models import Status

Document = Mapping[str, Any]

# Ready=False reasons that mean "still converging" rather than "broken"
PROGRESSING_REASONS = frozenset(
    {"Progressing", "DependencyNotReady", "Reconciling"}
)


def _conditions(doc: Document) -> dict[str, Mapping[str, Any]]:
    conditions = (doc.get("status") or {}).get("conditions") or []
    return {c["type"]: c for c in conditions if isinstance(c, Mapping) and "type" in c}


def _is_true(condition: Mapping[str, Any] | None) -> bool:
    return condition is not None and str(condition.get("status")) == "True"


def _is_false(condition: Mapping[str, Any] | None) -> bool:
    return condition is not None and str(condition.get("status")) == "False"


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _deployment_status(doc: Document) -> Status:
    spec = doc.get("spec") or {}
    status = doc.get("status") or {}
    conditions = _conditions(doc)

    progressing = conditions.get("Progressing")
    if _is_false(progressing) or (progressing or {}).get("reason") == "ProgressDeadlineExceeded":
        return Status.FAILED
    if _is_true(conditions.get("ReplicaFailure")):
        return Status.FAILED

    desired = _int(spec.get("replicas", 1))
    if _int(status.get("updatedReplicas")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("replicas")) > desired:
        return Status.IN_PROGRESS
    if _int(status.get("availableReplicas")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("readyReplicas")) < desired:
        return Status.IN_PROGRESS
    return Status.CURRENT


def _statefulset_status(doc: Document) -> Status:
    spec = doc.get("spec") or {}
    status = doc.get("status") or {}
    desired = _int(spec.get("replicas", 1))
    if _int(status.get("readyReplicas")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("currentReplicas", desired)) < desired:
        return Status.IN_PROGRESS
    update_revision = status.get("updateRevision")
    if update_revision and status.get("currentRevision") != update_revision:
        return Status.IN_PROGRESS
    return Status.CURRENT


def _daemonset_status(doc: Document) -> Status:
    status = doc.get("status") or {}
    desired = _int(status.get("desiredNumberScheduled"))
    if _int(status.get("updatedNumberScheduled")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("numberAvailable")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("numberReady")) < desired:
        return Status.IN_PROGRESS
    return Status.CURRENT


def _replicaset_status(doc: Document) -> Status:
    spec = doc.get("spec") or {}
    status = doc.get("status") or {}
    if _is_true(_conditions(doc).get("ReplicaFailure")):
        return Status.FAILED
    desired = _int(spec.get("replicas", 1))
    if _int(status.get("availableReplicas")) < desired:
        return Status.IN_PROGRESS
    if _int(status.get("readyReplicas")) < desired:
        return Status.IN_PROGRESS
    return Status.CURRENT


def _pod_status(doc: Document) -> Status:
    status = doc.get("status") or {}
    phase = status.get("phase")
    if phase == "Succeeded":
        return Status.CURRENT
    if phase == "Failed":
        return Status.FAILED
    if phase == "Running":
        for container in status.get("containerStatuses") or []:
            waiting = (container.get("state") or {}).get("waiting") or {}
            if waiting.get("reason") == "CrashLoopBackOff":
                return Status.FAILED
        if _is_true(_conditions(doc).get("Ready")):
            return Status.CURRENT
    return Status.IN_PROGRESS


def _job_status(doc: Document) -> Status:
    conditions = _conditions(doc)
    if _is_true(conditions.get("Failed")):
        return Status.FAILED
    if _is_true(conditions.get("Complete")):
        return Status.CURRENT
    return Status.IN_PROGRESS


def _pvc_status(doc: Document) -> Status:
    phase = (doc.get("status") or {}).get("phase")
    if phase == "Bound":
        return Status.CURRENT
    if phase == "Lost":
        return Status.FAILED
    return Status.IN_PROGRESS


BUILTIN_RULES: dict[tuple[str, str], Callable[[Document], Status]] = {
    ("apps", "Deployment"): _deployment_status,
    ("apps", "StatefulSet"): _statefulset_status,
    ("apps", "DaemonSet"): _daemonset_status,
    ("apps", "ReplicaSet"): _replicaset_status,
    ("", "Pod"): _pod_status,
    ("batch", "Job"): _job_status,
    ("", "PersistentVolumeClaim"): _pvc_status,
}


def _generic_status(doc: Document) -> Status:
    conditions = _conditions(doc)
    if _is_true(conditions.get("Stalled")):
        return Status.FAILED
    if _is_true(conditions.get("Reconciling")):
        return Status.IN_PROGRESS

    ready = conditions.get("Ready")
    if _is_true(ready):
        return Status.CURRENT
    if _is_false(ready):
        if ready.get("reason") in PROGRESSING_REASONS:
            return Status.IN_PROGRESS
        return Status.FAILED
    if ready is not None:
        return Status.UNKNOWN

    if conditions:
        # Conditions are published, but none we understand yet.
        return Status.IN_PROGRESS
    return Status.CURRENT


def compute_status(doc: Document) -> Status:
    """
    Compute the coarse readiness of a resource document.

    Args:
        doc: Resource as a plain mapping (apiVersion, kind, metadata, ...)

    Returns:
        The resource's Status

    Raises:
        ReadinessError: If the document is not a Kubernetes object
    """
    if not isinstance(doc, Mapping) or not isinstance(doc.get("metadata"), Mapping):
        raise ReadinessError("unable to compute status: document has no metadata")

    metadata = doc["metadata"]
    if metadata.get("deletionTimestamp"):
        return Status.TERMINATING

    status = doc.get("status")
    if status is not None and not isinstance(status, Mapping):
        raise ReadinessError("unable to compute status: status is not an object")

    generation = metadata.get("generation")
    observed = (status or {}).get("observedGeneration")
    if generation is not None and observed is not None and _int(observed) < _int(generation):
        return Status.IN_PROGRESS

    group = str(doc.get("apiVersion") or "").rpartition("/")[0]
    rule = BUILTIN_RULES.get((group, str(doc.get("kind") or "")))
    if rule is not None:
        if not status:
            return Status.IN_PROGRESS
        return rule(doc)

    return _generic_status(doc)
