"""
Configuration data models for trello-watch.

These models define the structure of .trello-watch.json and
~/.config/trello-watch/config.json, with validation and type safety via
Pydantic.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trellowatch.core.board.client import DEFAULT_BASE_URL


class SupervisorSettings(BaseModel):
    """
    TrelloConfig supervision.

    Controls how many configs are reconciled at once and how crashed or
    replaced loops are handled.
    """
    model_config = ConfigDict(validate_assignment=True)

    max_concurrent_reconciles: int = Field(
        default=4,
        ge=1,
        description="TrelloConfig reconciles allowed in flight at once"
    )
    drain_timeout_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Wait this long for a replaced loop to stop before starting its successor"
    )
    max_restarts: int = Field(
        default=3,
        ge=0,
        description="Restart a crashed loop at most this many times"
    )
    restart_backoff_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Delay before the first restart of a crashed loop"
    )
    restart_backoff_max_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Upper bound on the restart delay"
    )
    namespace: Optional[str] = Field(
        default=None,
        description="Only watch TrelloConfigs in this namespace (default: all)"
    )


class LoopSettings(BaseModel):
    """
    Per-config watch-sync loop behavior.
    """
    max_concurrent_reconciles: int = Field(
        default=1,
        ge=1,
        description="Watched objects reconciled at once within one loop"
    )
    resync_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Relist the watched kind this often"
    )
    watch_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Server-side timeout of a single watch request"
    )


class BoardConfig(BaseModel):
    """
    Trello API client settings.

    Requests are retried with capped exponential backoff before failing.
    """
    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="Trello API root"
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        description="Per-request timeout"
    )
    retry_max: int = Field(
        default=4,
        ge=0,
        description="Retries after the first attempt"
    )
    retry_wait_min_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="First retry delay"
    )
    retry_wait_max_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Maximum retry delay"
    )


class ProbeConfig(BaseModel):
    """
    Health probe endpoint.
    """
    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = Field(
        default=True,
        description="Serve /healthz and /readyz"
    )
    bind_address: str = Field(
        default=":8081",
        description="host:port the probe endpoint binds to"
    )

    @field_validator("bind_address")
    @classmethod
    def validate_bind_address(cls, v: str) -> str:
        _, sep, port = v.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"bind address must look like 'host:port' or ':port', got {v!r}")
        return v


class WatchConfig(BaseModel):
    """
    Top-level trello-watch configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = WatchConfig(supervisor=SupervisorSettings(max_concurrent_reconciles=2))
        >>> config.board.timeout_seconds
        15.0
    """
    supervisor: SupervisorSettings = Field(
        default_factory=SupervisorSettings,
        description="TrelloConfig supervision"
    )
    loop: LoopSettings = Field(
        default_factory=LoopSettings,
        description="Watch-sync loop behavior"
    )
    board: BoardConfig = Field(
        default_factory=BoardConfig,
        description="Trello client settings"
    )
    probes: ProbeConfig = Field(
        default_factory=ProbeConfig,
        description="Health probes"
    )
    credentials_dir: str = Field(
        default="/etc/trello",
        description="Directory with api-key, api-token and list-id for the static controller"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )
