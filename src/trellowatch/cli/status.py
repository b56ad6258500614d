"""
Show the status one object would be mirrored with.
"""

import typer
from rich.console import Console
from rich.table import Table

from trellowatch.cli.errors import exit_code_for, print_error, print_trellowatch_error
from trellowatch.core.board.models import card_name
from trellowatch.core.cluster import ClusterClient, load_cluster_config
from trellowatch.core.errors import TrelloWatchError
from trellowatch.core.models import ObjectKey, TargetRef
from trellowatch.core.status import compute_status, glyph_for

console = Console()


def status(
    api_version: str = typer.Argument(..., help="apiVersion of the kind, e.g. apps/v1"),
    kind: str = typer.Argument(..., help="Kind, e.g. Deployment"),
    object_key: str = typer.Argument(..., metavar="NAMESPACE/NAME", help="Object to evaluate"),
    kubeconfig: str | None = typer.Option(
        None,
        "--kubeconfig",
        help="Path to a kubeconfig file",
    ),
    context: str | None = typer.Option(
        None,
        "--context",
        help="Kubeconfig context to use",
    ),
) -> None:
    """
    Compute an object's status and the card name it maps to.

    Examples:
        trello-watch status apps/v1 Deployment default/web
    """
    try:
        key = ObjectKey.parse(object_key)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="NAMESPACE/NAME")

    target = TargetRef(api_version=api_version, kind=kind)
    try:
        load_cluster_config(kubeconfig, context)
        cluster = ClusterClient.from_config()
        doc = cluster.get(target, key)
        if doc is None:
            print_error(f"{target} {key} not found")
            raise typer.Exit(1)
        current = compute_status(doc)
    except TrelloWatchError as e:
        print_trellowatch_error(e)
        raise typer.Exit(exit_code_for(e))

    glyph = glyph_for(current)
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Resource", f"{target} {key}")
    table.add_row("Status", current.value)
    table.add_row("Glyph", glyph)
    table.add_row("Card", card_name(key, glyph))
    console.print(table)
