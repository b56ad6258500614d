"""
Environment file loading.

In a cluster the Pod spec sets TRELLO_WATCH_* variables directly. Outside
one, a single dotenv file can supply them. Variables already present in the
process environment always win over the file.

The file is looked up in this order:
1. The ``path`` argument (``--env-file`` on the command line)
2. The file named by TRELLO_WATCH_ENV_FILE
3. ``.env`` in the working directory
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from trellowatch.core.errors import ConfigurationError

ENV_FILE_VAR = "TRELLO_WATCH_ENV_FILE"
DEFAULT_ENV_FILE = ".env"


def resolve_env_file(path: Path | None = None) -> tuple[Path, bool]:
    """
    Pick the dotenv file to load.

    Returns:
        (path, explicit) where ``explicit`` is True if the caller or
        TRELLO_WATCH_ENV_FILE named the file
    """
    if path is not None:
        return path, True
    named = os.environ.get(ENV_FILE_VAR)
    if named:
        return Path(named), True
    return Path.cwd() / DEFAULT_ENV_FILE, False


def load_env_file(path: Path | None = None) -> Path | None:
    """
    Load TRELLO_WATCH_* settings from a dotenv file.

    Args:
        path: Explicit file to load

    Returns:
        The file that was loaded, or None if the default ``.env`` is absent

    Raises:
        ConfigurationError: If an explicitly named file does not exist

    Example:
        >>> load_env_file(Path("deploy/dev.env"))
        PosixPath('deploy/dev.env')
    """
    env_path, explicit = resolve_env_file(path)
    if not env_path.is_file():
        if explicit:
            raise ConfigurationError(f"env file not found: {env_path}", path=str(env_path))
        return None
    load_dotenv(env_path, override=False)
    return env_path
