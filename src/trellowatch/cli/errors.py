"""
Standardized error handling and exit codes for the trello-watch CLI.
"""

from enum import IntEnum

from rich.console import Console

from trellowatch.core.errors import (
    ClusterError,
    ConfigurationError,
    CredentialsError,
    TrelloWatchError,
)

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for trello-watch operations."""

    SUCCESS = 0
    """Controller stopped cleanly."""

    GENERAL_ERROR = 1
    """Controller or command failed."""

    USER_ERROR = 2
    """Configuration or input error (actionable by user)."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Unable to read API key",
        ...     reason="/etc/trello/api-key does not exist",
        ...     solution="mount the credentials Secret at /etc/trello",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def exit_code_for(error: TrelloWatchError) -> ExitCode:
    """Map a trello-watch error onto the exit code reported by the CLI."""
    if isinstance(error, ConfigurationError):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def print_trellowatch_error(error: TrelloWatchError) -> None:
    """Print ``error`` with a hint matching its kind."""
    if isinstance(error, CredentialsError):
        print_error(
            str(error),
            solution="check the api-key and api-token entries of the credentials",
        )
    elif isinstance(error, ConfigurationError):
        print_error(str(error), solution="trello-watch --help")
    elif isinstance(error, ClusterError):
        print_error(
            str(error),
            reason="The Kubernetes API server could not be reached or refused the request",
            solution="kubectl cluster-info  # verify the kubeconfig/context in use",
        )
    else:
        print_error(str(error))
