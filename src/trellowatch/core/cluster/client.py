"""
Kubernetes access for arbitrary, runtime-selected kinds.

Wraps the ``kubernetes`` package's DynamicClient so the rest of the code
works with plain dictionaries and never needs generated model classes.
Objects that do not exist come back as ``None``; every other API failure is
raised as :class:`ClusterError`.
"""

from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Iterator
from typing import Any

import urllib3
from kubernetes import client, config, dynamic, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, NotFoundError, ResourceNotFoundError

from trellowatch.core.errors import ClusterError
from trellowatch.core.models import SECRET_TARGET, ObjectKey, TargetRef

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"

# (event type, object document)
WatchEvent = tuple[str, dict[str, Any]]


def load_cluster_config(kubeconfig: str | None = None, context: str | None = None) -> None:
    """
    Load cluster credentials: in-cluster first, then kubeconfig.

    Raises:
        ClusterError: If neither configuration source is usable
    """
    if kubeconfig is None:
        try:
            config.load_incluster_config()
            return
        except config.ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")
    try:
        config.load_kube_config(config_file=kubeconfig, context=context)
    except (config.ConfigException, OSError) as e:
        raise ClusterError(f"unable to load Kubernetes configuration: {e}") from e


def _status_of(error: Exception) -> int | None:
    status = getattr(error, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class ClusterClient:
    """
    Schema-agnostic get/list/watch/patch of cluster objects.

    Example:
        >>> load_cluster_config()
        >>> cluster = ClusterClient.from_config()
        >>> doc = cluster.get(TargetRef(api_version="apps/v1", kind="Deployment"),
        ...                   ObjectKey("default", "web"))
    """

    def __init__(self, dynamic_client: dynamic.DynamicClient) -> None:
        self._dynamic = dynamic_client
        self._resources: dict[TargetRef, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls) -> ClusterClient:
        """Build a client from the already loaded Kubernetes configuration."""
        return cls(dynamic.DynamicClient(client.ApiClient()))

    def _resource(self, target: TargetRef) -> Any:
        with self._lock:
            resource = self._resources.get(target)
        if resource is not None:
            return resource
        try:
            resource = self._dynamic.resources.get(api_version=target.api_version, kind=target.kind)
        except ResourceNotFoundError as e:
            raise ClusterError(f"unable to determine resource for {target}: {e}") from e
        except (ApiException, DynamicApiError) as e:
            raise ClusterError(
                f"resource discovery failed for {target}: {e}", status_code=_status_of(e)
            ) from e
        with self._lock:
            self._resources[target] = resource
        return resource

    def get(self, target: TargetRef, key: ObjectKey) -> dict[str, Any] | None:
        """
        Fetch one object as a plain dict.

        Returns:
            The object, or None if it does not exist

        Raises:
            ClusterError: On any failure other than not-found
        """
        resource = self._resource(target)
        try:
            obj = resource.get(name=key.name, namespace=key.namespace or None)
        except NotFoundError:
            return None
        except (ApiException, DynamicApiError) as e:
            raise ClusterError(
                f"unable to get resource {key}: {e}", status_code=_status_of(e), target=str(target)
            ) from e
        return obj.to_dict()

    def list(
        self, target: TargetRef, namespace: str | None = None
    ) -> tuple[list[dict[str, Any]], str | None]:
        """
        List all objects of a kind.

        Returns:
            Tuple of (objects, list resourceVersion)
        """
        resource = self._resource(target)
        try:
            result = resource.get(namespace=namespace).to_dict()
        except (ApiException, DynamicApiError) as e:
            raise ClusterError(
                f"unable to list {target}: {e}", status_code=_status_of(e), namespace=namespace
            ) from e
        items = []
        for item in result.get("items") or []:
            # List items omit apiVersion/kind; restore them for the evaluator.
            item.setdefault("apiVersion", target.api_version)
            item.setdefault("kind", target.kind)
            items.append(item)
        return items, (result.get("metadata") or {}).get("resourceVersion")

    def watch(
        self,
        target: TargetRef,
        *,
        namespace: str | None = None,
        resource_version: str | None = None,
        timeout_seconds: int = 300,
        stop_event: threading.Event | None = None,
    ) -> Iterator[WatchEvent]:
        """
        Stream change events for a kind.

        The stream ends when the server closes it (after ``timeout_seconds``)
        or once ``stop_event`` is set.

        Yields:
            (event type, object) pairs; ERROR events carry a Status object

        Raises:
            ClusterError: If the watch cannot be established or breaks
        """
        resource = self._resource(target)
        watcher = watch.Watch()
        try:
            stream = resource.watch(
                namespace=namespace,
                resource_version=resource_version,
                timeout=timeout_seconds,
                watcher=watcher,
            )
            for event in stream:
                if stop_event is not None and stop_event.is_set():
                    break
                raw = event.get("raw_object") or {}
                yield event.get("type", ""), raw
        except (ApiException, DynamicApiError) as e:
            raise ClusterError(
                f"watch on {target} failed: {e}", status_code=_status_of(e)
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise ClusterError(f"watch on {target} interrupted: {e}") from e
        finally:
            watcher.stop()

    def patch_finalizers(
        self,
        target: TargetRef,
        doc: dict[str, Any],
        finalizers: list[str],
        field_manager: str,
    ) -> dict[str, Any]:
        """
        Replace ``metadata.finalizers`` with a merge patch.

        The patch carries the document's resourceVersion, so a concurrent
        write makes it fail with a conflict instead of clobbering.

        Raises:
            ClusterError: If the patch is rejected
        """
        key = ObjectKey.from_document(doc)
        metadata: dict[str, Any] = {"finalizers": finalizers}
        resource_version = (doc.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            metadata["resourceVersion"] = resource_version

        resource = self._resource(target)
        try:
            obj = resource.patch(
                body={"metadata": metadata},
                name=key.name,
                namespace=key.namespace or None,
                content_type=MERGE_PATCH,
                field_manager=field_manager,
            )
        except (ApiException, DynamicApiError) as e:
            raise ClusterError(
                f"unable to patch object {key}: {e}", status_code=_status_of(e)
            ) from e
        return obj.to_dict()

    def get_secret_data(self, key: ObjectKey) -> dict[str, bytes] | None:
        """
        Fetch a Secret's data with values base64-decoded.

        Returns:
            Mapping of data keys to bytes, or None if the Secret is missing
        """
        secret = self.get(SECRET_TARGET, key)
        if secret is None:
            return None
        data: dict[str, bytes] = {}
        for name, value in (secret.get("data") or {}).items():
            data[name] = base64.b64decode(value or "")
        for name, value in (secret.get("stringData") or {}).items():
            data.setdefault(name, str(value).encode("utf-8"))
        return data
