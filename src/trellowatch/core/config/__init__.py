"""
Configuration models and loading.

This module provides Pydantic models for trello-watch configuration
with multi-layer merging: defaults < user < project < env vars.
"""

from .env import load_env_file
from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
    load_static_credentials,
)
from .models import (
    BoardConfig,
    LoopSettings,
    ProbeConfig,
    SupervisorSettings,
    WatchConfig,
)

__all__ = [
    # Models
    "BoardConfig",
    "LoopSettings",
    "ProbeConfig",
    "SupervisorSettings",
    "WatchConfig",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_env_file",
    "load_static_credentials",
]
