"""
trello-watch CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys
from pathlib import Path

import typer
from rich.console import Console

from trellowatch import __version__
from trellowatch.cli import run, status
from trellowatch.cli.errors import ExitCode, print_trellowatch_error
from trellowatch.core.config.env import load_env_file
from trellowatch.core.errors import ConfigurationError

# Create the main Typer app
app = typer.Typer(
    name="trello-watch",
    help="Mirror Kubernetes resource readiness onto Trello cards",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def setup_logging(debug: bool = False) -> None:
    """
    Configure process-wide logging.

    Args:
        debug: If True, enable DEBUG level logging and full tracebacks
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # The kubernetes client logs every request at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.DEBUG if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="dotenv file with TRELLO_WATCH_* settings (default: .env)",
    ),
) -> None:
    """
    trello-watch - keep one Trello card per Kubernetes object.

    Each card is named "<namespace>/<name> <glyph>", where the glyph is
    ✅ (ready), ❌ (failed, missing or terminating) or ⌛ (anything else).

    Quick Start:
        trello-watch run                 # TrelloConfig-driven controller
        trello-watch run-static          # one list from /etc/trello
        trello-watch status apps/v1 Deployment default/web
    """
    setup_logging(debug)
    try:
        load_env_file(env_file)
    except ConfigurationError as e:
        print_trellowatch_error(e)
        raise typer.Exit(ExitCode.USER_ERROR)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@app.command()
def version() -> None:
    """Show trello-watch version."""
    console.print(f"trello-watch version {__version__}")
    raise typer.Exit(0)


app.command(name="run")(run.run)
app.command(name="run-static")(run.run_static)
app.command(name="status")(status.status)


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
