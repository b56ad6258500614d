"""
Custom exceptions for trello-watch.

This module defines a hierarchy of exceptions shared by the supervisor,
the watch-sync loops and their clients, preserving structured context
for log output.

Exception Hierarchy:
    TrelloWatchError (base)
    ├── ConfigurationError (malformed TrelloConfig or settings)
    │   └── CredentialsError (missing/empty Trello credentials)
    ├── ClusterError (Kubernetes API failures)
    ├── BoardError (Trello API failures)
    └── ReadinessError (status computation failures)

Not-found lookups are never raised: clients return ``None`` instead.

Example:
    >>> from trellowatch.core.errors import BoardError
    >>> try:
    ...     raise BoardError("failed to create Trello card", status_code=400)
    ... except BoardError as e:
    ...     print(f"{e} ({e.status_code})")
"""


class TrelloWatchError(Exception):
    """
    Base exception for all trello-watch errors.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary of additional context
    """

    def __init__(self, message: str, **context: object) -> None:
        """
        Initialize an error with message and context.

        Args:
            message: Human-readable error message
            **context: Additional context as keyword arguments
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class ConfigurationError(TrelloWatchError):
    """
    Raised when a configuration cannot be used as given.

    Covers malformed TrelloConfig documents, unreadable settings files and
    the credential files of the static controller.
    """


class CredentialsError(ConfigurationError):
    """
    Raised when the Trello credentials are absent or empty.

    Blocks a loop from starting until the referenced Secret is fixed.
    """


class ClusterError(TrelloWatchError):
    """
    Exception for Kubernetes API errors.

    Attributes:
        status_code: HTTP status returned by the API server, if any
    """

    def __init__(self, message: str, status_code: int | None = None, **context: object) -> None:
        """
        Initialize a cluster error.

        Args:
            message: Human-readable error message
            status_code: HTTP status code from the API server
            **context: Additional context (resource, namespace, etc.)
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code

    @property
    def is_gone(self) -> bool:
        """Whether the watch resource version expired (HTTP 410)."""
        return self.status_code == 410

    @property
    def is_conflict(self) -> bool:
        """Whether the write lost an optimistic concurrency race (HTTP 409)."""
        return self.status_code == 409


class BoardError(TrelloWatchError):
    """
    Exception for Trello API errors.

    Raised once the client's own retries are exhausted, or immediately on
    non-retryable responses. The original exception is preserved via
    ``__cause__``.

    Attributes:
        status_code: HTTP status code, if a response was received
    """

    def __init__(self, message: str, status_code: int | None = None, **context: object) -> None:
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class ReadinessError(TrelloWatchError):
    """Raised when the readiness of a resource cannot be computed."""


__all__ = [
    "TrelloWatchError",
    "ConfigurationError",
    "CredentialsError",
    "ClusterError",
    "BoardError",
    "ReadinessError",
]
