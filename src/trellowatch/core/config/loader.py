"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars

Also reads the flat credential files used by the static (single list)
controller.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from trellowatch.core.errors import ConfigurationError, CredentialsError
from trellowatch.core.models import Credentials

from .models import WatchConfig

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = "trello-watch"
PROJECT_CONFIG_NAME = ".trello-watch.json"
ENV_PREFIX = "TRELLO_WATCH_"

# Flat files read by the static controller
API_KEY_FILE = "api-key"
API_TOKEN_FILE = "api-token"
LIST_ID_FILE = "list-id"

# Global cache to avoid reloading config multiple times per process
_config_cache: WatchConfig | None = None


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/trello-watch/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / CONFIG_DIR_NAME / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """Path to .trello-watch.json in ``cwd`` (defaults to current directory)."""
    if cwd is None:
        cwd = Path.cwd()
    return cwd / PROJECT_CONFIG_NAME


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> base = {"a": 1, "b": {"x": 10, "y": 20}}
        >>> override = {"b": {"y": 30, "z": 40}, "c": 3}
        >>> deep_merge(base, override)
        {'a': 1, 'b': {'x': 10, 'y': 30, 'z': 40}, 'c': 3}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            return None
    except (json.JSONDecodeError, OSError) as e:
        # Config system should be resilient: warn and continue
        logger.warning(f"Failed to parse config at {path}: {e}")
        return None


# env var -> (section, field, converter); section None means top level
ENV_OVERRIDES: dict[str, tuple[str | None, str, Callable[[str], Any]]] = {
    "MAX_CONCURRENT_RECONCILES": ("supervisor", "max_concurrent_reconciles", int),
    "NAMESPACE": ("supervisor", "namespace", str),
    "DRAIN_TIMEOUT": ("supervisor", "drain_timeout_seconds", float),
    "MAX_RESTARTS": ("supervisor", "max_restarts", int),
    "LOOP_MAX_CONCURRENT_RECONCILES": ("loop", "max_concurrent_reconciles", int),
    "RESYNC_SECONDS": ("loop", "resync_seconds", float),
    "BOARD_BASE_URL": ("board", "base_url", str),
    "BOARD_TIMEOUT": ("board", "timeout_seconds", float),
    "HEALTH_PROBE_BIND_ADDRESS": ("probes", "bind_address", str),
    "CREDENTIALS_DIR": (None, "credentials_dir", str),
}


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply TRELLO_WATCH_* environment variable overrides.

    Env vars have the highest precedence. Values that fail to convert are
    ignored with a warning.

    Supported env vars:
        TRELLO_WATCH_MAX_CONCURRENT_RECONCILES - supervisor.max_concurrent_reconciles
        TRELLO_WATCH_NAMESPACE - supervisor.namespace
        TRELLO_WATCH_DRAIN_TIMEOUT - supervisor.drain_timeout_seconds
        TRELLO_WATCH_MAX_RESTARTS - supervisor.max_restarts
        TRELLO_WATCH_LOOP_MAX_CONCURRENT_RECONCILES - loop.max_concurrent_reconciles
        TRELLO_WATCH_RESYNC_SECONDS - loop.resync_seconds
        TRELLO_WATCH_BOARD_BASE_URL - board.base_url
        TRELLO_WATCH_BOARD_TIMEOUT - board.timeout_seconds
        TRELLO_WATCH_HEALTH_PROBE_BIND_ADDRESS - probes.bind_address
        TRELLO_WATCH_CREDENTIALS_DIR - credentials_dir
    """
    result = config_dict.copy()

    for suffix, (section, field, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(f"{ENV_PREFIX}{suffix}")
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            logger.warning(f"Invalid {ENV_PREFIX}{suffix} value '{raw}', ignoring")
            continue
        if section is None:
            result[field] = value
        else:
            result[section] = {**result.get(section, {}), field: value}

    return result


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> WatchConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (TRELLO_WATCH_*)
        2. Project config (.trello-watch.json)
        3. User config (~/.config/trello-watch/config.json)
        4. Model defaults

    Raises:
        ConfigurationError: If the merged config fails validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged: dict[str, Any] = {}

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    try:
        config = WatchConfig(**merged)
    except ValidationError as e:
        raise ConfigurationError(f"invalid trello-watch configuration: {e}") from e

    _config_cache = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None


def _read_trimmed(path: Path, label: str) -> str:
    try:
        value = path.read_text().strip()
    except OSError as e:
        raise ConfigurationError(f"unable to read {label} from file {path}: {e}") from e
    if not value:
        raise CredentialsError(f"empty {label} in file {path}")
    return value


def load_static_credentials(credentials_dir: Path) -> tuple[Credentials, str]:
    """
    Read credentials and the target list for the static controller.

    Args:
        credentials_dir: Directory containing api-key, api-token and list-id

    Returns:
        Tuple of (credentials, list id)

    Raises:
        ConfigurationError: If a file is missing or empty
    """
    api_key = _read_trimmed(credentials_dir / API_KEY_FILE, "API key")
    api_token = _read_trimmed(credentials_dir / API_TOKEN_FILE, "API token")
    list_id = _read_trimmed(credentials_dir / LIST_ID_FILE, "Trello list ID")
    return Credentials(api_key=api_key, api_token=api_token), list_id
