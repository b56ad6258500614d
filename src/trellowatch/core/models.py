"""
Data models for trello-watch.

Covers object identities, the TrelloConfig custom resource, Trello
credentials, and the finalizer helpers that operate on generic
(schema-agnostic) Kubernetes documents.

Uses Pydantic for the user-authored resources so malformed documents are
rejected with a readable error instead of a KeyError deep in a reconcile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from trellowatch.core.errors import ConfigurationError, CredentialsError

# --- TrelloConfig API ---

API_GROUP = "trello.e13.dev"
API_VERSION = f"{API_GROUP}/v1alpha1"
CONFIG_KIND = "TrelloConfig"
CONFIG_PLURAL = "trelloconfigs"

FINALIZER_NAME = "trello.e13.dev/finalizer"

# Secret data keys
CREDENTIALS_API_KEY = "api-key"
CREDENTIALS_API_TOKEN = "api-token"

# Field managers used when patching finalizers
CONFIG_FIELD_MANAGER = "trello-controller"
TARGET_FIELD_MANAGER = "notification-agent-controller"


@dataclass(frozen=True)
class ObjectKey:
    """Namespace/name identity of a cluster object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ObjectKey:
        """Parse ``namespace/name`` (or a bare ``name`` for cluster-scoped objects)."""
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls(namespace="", name=namespace)
        if not namespace or not name or "/" in name:
            raise ValueError(f"invalid object key: {value!r}")
        return cls(namespace=namespace, name=name)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> ObjectKey:
        metadata = doc.get("metadata") or {}
        return cls(namespace=metadata.get("namespace") or "", name=metadata["name"])


class TargetRef(BaseModel):
    """
    Runtime-selected resource kind (apiVersion + kind).

    Example:
        >>> ref = TargetRef(api_version="apps/v1", kind="Deployment")
        >>> ref.group, ref.version
        ('apps', 'v1')
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    api_version: str = Field(..., alias="apiVersion", min_length=1)
    kind: str = Field(..., min_length=1)

    @property
    def group(self) -> str:
        """API group; empty for the core group."""
        group, sep, _ = self.api_version.rpartition("/")
        return group if sep else ""

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]

    def __str__(self) -> str:
        return f"{self.api_version}.{self.kind}"


CONFIG_TARGET = TargetRef(api_version=API_VERSION, kind=CONFIG_KIND)
SECRET_TARGET = TargetRef(api_version="v1", kind="Secret")


class SecretRef(BaseModel):
    """Reference to a Secret in the TrelloConfig's own namespace."""

    name: str = Field(..., min_length=1)


class TrelloConfigSpec(BaseModel):
    """Desired state of a TrelloConfig."""

    model_config = ConfigDict(populate_by_name=True)

    target: TargetRef
    list_id: str = Field(..., alias="listID", min_length=1)
    secret_ref: SecretRef = Field(..., alias="secretRef")

    @field_validator("list_id")
    @classmethod
    def strip_list_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("listID must not be blank")
        return v


class TrelloConfig(BaseModel):
    """
    A TrelloConfig resource as read from the cluster.

    Only the metadata the supervisor reacts to is kept; the raw document is
    retained for patching.
    """

    namespace: str
    name: str
    spec: TrelloConfigSpec
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = None
    resource_version: str | None = None
    generation: int | None = None
    document: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    @property
    def is_deleting(self) -> bool:
        return bool(self.deletion_timestamp)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> TrelloConfig:
        """
        Build a TrelloConfig from a generic cluster document.

        Raises:
            ConfigurationError: If the document does not match the schema
        """
        metadata = doc.get("metadata") or {}
        try:
            return cls(
                namespace=metadata.get("namespace") or "",
                name=metadata.get("name") or "",
                spec=TrelloConfigSpec.model_validate(doc.get("spec") or {}),
                finalizers=list(metadata.get("finalizers") or []),
                deletion_timestamp=metadata.get("deletionTimestamp"),
                resource_version=metadata.get("resourceVersion"),
                generation=metadata.get("generation"),
                document=dict(doc),
            )
        except ValidationError as e:
            raise ConfigurationError(
                f"invalid {CONFIG_KIND} {metadata.get('namespace')}/{metadata.get('name')}: {e}",
                errors=e.errors(),
            ) from e


class Credentials(BaseModel):
    """
    Trello API key and token.

    Both values are trimmed and must be non-empty.
    """

    model_config = ConfigDict(frozen=True)

    api_key: SecretStr
    api_token: SecretStr

    @field_validator("api_key", "api_token", mode="before")
    @classmethod
    def trim(cls, v: Any) -> Any:
        if isinstance(v, bytes):
            v = v.decode("utf-8")
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("must not be empty")
        return v

    @classmethod
    def from_secret_data(cls, data: Mapping[str, bytes | str] | None) -> Credentials:
        """
        Read credentials from Secret data.

        Raises:
            CredentialsError: If either field is missing or blank
        """
        data = data or {}
        for field_name in (CREDENTIALS_API_KEY, CREDENTIALS_API_TOKEN):
            raw = data.get(field_name)
            if raw is None or not _as_text(raw).strip():
                label = "API Key" if field_name == CREDENTIALS_API_KEY else "API Token"
                raise CredentialsError(
                    f"empty {label} in Trello credentials Secret", field=field_name
                )
        try:
            return cls(api_key=data[CREDENTIALS_API_KEY], api_token=data[CREDENTIALS_API_TOKEN])
        except ValidationError as e:
            raise CredentialsError(f"invalid Trello credentials: {e}") from e


@dataclass(frozen=True)
class LoopConfig:
    """Fully resolved settings for one watch-sync loop."""

    owner: ObjectKey
    target: TargetRef
    list_id: str
    credentials: Credentials


def _as_text(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


# --- Generic document helpers ---


def get_finalizers(doc: Mapping[str, Any]) -> list[str]:
    return list((doc.get("metadata") or {}).get("finalizers") or [])


def has_finalizer(doc: Mapping[str, Any], finalizer: str = FINALIZER_NAME) -> bool:
    return finalizer in get_finalizers(doc)


def add_finalizer(finalizers: list[str], finalizer: str = FINALIZER_NAME) -> list[str]:
    """Return ``finalizers`` with ``finalizer`` appended if missing."""
    if finalizer in finalizers:
        return list(finalizers)
    return [*finalizers, finalizer]


def remove_finalizer(finalizers: list[str], finalizer: str = FINALIZER_NAME) -> list[str]:
    return [f for f in finalizers if f != finalizer]


def is_deleting(doc: Mapping[str, Any]) -> bool:
    return bool((doc.get("metadata") or {}).get("deletionTimestamp"))


__all__ = [
    "API_GROUP",
    "API_VERSION",
    "CONFIG_KIND",
    "CONFIG_PLURAL",
    "CONFIG_TARGET",
    "SECRET_TARGET",
    "FINALIZER_NAME",
    "CREDENTIALS_API_KEY",
    "CREDENTIALS_API_TOKEN",
    "CONFIG_FIELD_MANAGER",
    "TARGET_FIELD_MANAGER",
    "ObjectKey",
    "TargetRef",
    "SecretRef",
    "TrelloConfigSpec",
    "TrelloConfig",
    "Credentials",
    "LoopConfig",
    "get_finalizers",
    "has_finalizer",
    "add_finalizer",
    "remove_finalizer",
    "is_deleting",
]
