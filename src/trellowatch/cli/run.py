"""
Controller commands: ``run`` (TrelloConfig-driven) and ``run-static``.
"""

import logging
from pathlib import Path

import typer

from trellowatch.cli.errors import exit_code_for, print_trellowatch_error
from trellowatch.core.cluster import ClusterClient, load_cluster_config
from trellowatch.core.config import load_config, load_static_credentials
from trellowatch.core.config.models import WatchConfig
from trellowatch.core.errors import TrelloWatchError
from trellowatch.core.manager import Manager
from trellowatch.core.models import TargetRef

logger = logging.getLogger(__name__)


def _apply_overrides(
    config: WatchConfig,
    *,
    bind_address: str | None,
    disable_probes: bool,
    namespace: str | None = None,
    max_concurrent: int | None = None,
) -> WatchConfig:
    # Section models validate on assignment
    if bind_address is not None:
        config.probes.bind_address = bind_address
    if disable_probes:
        config.probes.enabled = False
    if namespace is not None:
        config.supervisor.namespace = namespace
    if max_concurrent is not None:
        config.supervisor.max_concurrent_reconciles = max_concurrent
    return config


def _connect(kubeconfig: str | None, context: str | None) -> ClusterClient:
    load_cluster_config(kubeconfig, context)
    return ClusterClient.from_config()


def run(
    kubeconfig: str | None = typer.Option(
        None,
        "--kubeconfig",
        help="Path to a kubeconfig file (default: in-cluster, then ~/.kube/config)",
    ),
    context: str | None = typer.Option(
        None,
        "--context",
        help="Kubeconfig context to use",
    ),
    health_probe_bind_address: str | None = typer.Option(
        None,
        "--health-probe-bind-address",
        help="Address the probe endpoint binds to (default :8081)",
    ),
    no_probes: bool = typer.Option(
        False,
        "--no-probes",
        help="Do not serve /healthz and /readyz",
    ),
    namespace: str | None = typer.Option(
        None,
        "--namespace",
        "-n",
        help="Only watch TrelloConfigs in this namespace",
    ),
    max_concurrent: int | None = typer.Option(
        None,
        "--max-concurrent",
        min=1,
        help="TrelloConfig reconciles allowed in flight at once",
    ),
) -> None:
    """
    Run the TrelloConfig controller.

    Starts one watch-sync loop per TrelloConfig and keeps them in line with
    their configs until SIGINT/SIGTERM.

    Examples:
        trello-watch run
        trello-watch run -n monitoring --health-probe-bind-address :9090
    """
    try:
        config = _apply_overrides(
            load_config(),
            bind_address=health_probe_bind_address,
            disable_probes=no_probes,
            namespace=namespace,
            max_concurrent=max_concurrent,
        )
        manager = Manager(config, _connect(kubeconfig, context))
        manager.install_signal_handlers()
        manager.run()
    except TrelloWatchError as e:
        print_trellowatch_error(e)
        raise typer.Exit(exit_code_for(e))


def run_static(
    trello_config_dir: Path | None = typer.Option(
        None,
        "--trello-config-dir",
        help="Directory containing api-key, api-token and list-id (default /etc/trello)",
    ),
    api_version: str = typer.Option(
        "apps/v1",
        "--api-version",
        help="apiVersion of the watched kind",
    ),
    kind: str = typer.Option(
        "Deployment",
        "--kind",
        help="Watched kind",
    ),
    kubeconfig: str | None = typer.Option(
        None,
        "--kubeconfig",
        help="Path to a kubeconfig file (default: in-cluster, then ~/.kube/config)",
    ),
    context: str | None = typer.Option(
        None,
        "--context",
        help="Kubeconfig context to use",
    ),
    health_probe_bind_address: str | None = typer.Option(
        None,
        "--health-probe-bind-address",
        help="Address the probe endpoint binds to (default :8081)",
    ),
    no_probes: bool = typer.Option(
        False,
        "--no-probes",
        help="Do not serve /healthz and /readyz",
    ),
) -> None:
    """
    Run a single watch-sync loop from credentials on disk.

    Mirrors every object of one kind onto the list named in list-id, with
    no TrelloConfig involved.

    Examples:
        trello-watch run-static
        trello-watch run-static --trello-config-dir ./secrets --kind StatefulSet
    """
    try:
        config = _apply_overrides(
            load_config(), bind_address=health_probe_bind_address, disable_probes=no_probes
        )
        credentials_dir = trello_config_dir or Path(config.credentials_dir)
        credentials, list_id = load_static_credentials(credentials_dir)
        target = TargetRef(api_version=api_version, kind=kind)

        manager = Manager(config, _connect(kubeconfig, context))
        manager.install_signal_handlers()
        manager.run_static(credentials, list_id, target)
    except TrelloWatchError as e:
        print_trellowatch_error(e)
        raise typer.Exit(exit_code_for(e))
    except RuntimeError as e:
        logger.error(str(e))
        raise typer.Exit(1)
