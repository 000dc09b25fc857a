import logging
import os

import click
from rich.console import Console
from rich.logging import RichHandler

from .constants import DEFAULT_CONFIG_FILE, DEFAULT_SOCKET_DIR, DEFAULT_SUPERUSER
from .core import DowngradeExecutor
from .errors import DowngradeError
from .errors_catalog import recovery_hint
from .models import ExecutorConfig
from .services.command_runner import CommandRunner
from .services.config_loader import ConfigLoader
from .services.data_directory import DataDirectoryService
from .services.kubectl import KubectlClusterClient
from .trigger import DowngradeTrigger

console = Console()
logger = logging.getLogger("pgdowngrade")


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config and config[key] is not None:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _configure_logging(verbose: bool, log_file):
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


def _load_config(config_path):
    resolved_config = config_path
    if resolved_config is None:
        default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
        if os.path.exists(default_config_path):
            resolved_config = default_config_path

    try:
        return ConfigLoader().load(resolved_config)
    except DowngradeError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Offline PostgreSQL major version downgrade for managed clusters."""
    config_values = _load_config(config)
    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")
    _configure_logging(verbose, log_file)
    ctx.obj = config_values


@main.command()
@click.option("--pg-data", envvar="PGDATA", help="The PGDATA to be downgraded")
@click.option("--pod-name", envvar="POD_NAME", help="The name of this pod")
@click.option("--cluster-name", envvar="CLUSTER_NAME", help="The cluster name")
@click.option("--namespace", envvar="NAMESPACE", help="The namespace")
@click.option(
    "--target-major-version",
    envvar="TARGET_MAJOR_VERSION",
    type=int,
    default=None,
    help="PostgreSQL major version the data is downgraded to. Enables version-aware dump rewriting.",
)
@click.option("--socket-dir", required=False, help=f"Socket directory (default: {DEFAULT_SOCKET_DIR})")
@click.option("--superuser", required=False, help=f"Database superuser (default: {DEFAULT_SUPERUSER})")
@click.pass_obj
def execute(config_values, pg_data, pod_name, cluster_name, namespace, target_major_version, socket_dir, superuser):
    """Execute the major version downgrade using pg_dumpall and psql."""
    executor_config = ExecutorConfig(
        pg_data=_resolve_option(pg_data, config_values, "pg_data", default=""),
        pod_name=_resolve_option(pod_name, config_values, "pod_name", default=""),
        cluster_name=_resolve_option(cluster_name, config_values, "cluster_name", default=""),
        namespace=_resolve_option(namespace, config_values, "namespace", default=""),
        socket_dir=_resolve_option(socket_dir, config_values, "socket_dir", default=DEFAULT_SOCKET_DIR),
        superuser=_resolve_option(superuser, config_values, "superuser", default=DEFAULT_SUPERUSER),
        target_major_version=_resolve_option(target_major_version, config_values, "target_major_version"),
    )
    logger.debug(
        "Running downgrade for pod %s of cluster %s/%s",
        executor_config.pod_name or "<unknown>",
        executor_config.namespace or "<unknown>",
        executor_config.cluster_name or "<unknown>",
    )

    executor = DowngradeExecutor(executor_config)
    raise SystemExit(executor.run())


@main.command()
@click.option("--pg-data", envvar="PGDATA", help="The PGDATA to inspect")
@click.option("--target-major-version", envvar="TARGET_MAJOR_VERSION", type=int, default=None)
@click.pass_obj
def inspect(config_values, pg_data, target_major_version):
    """Report which downgrade state the data directory is in."""
    pg_data = _resolve_option(pg_data, config_values, "pg_data", default="")
    if not pg_data:
        raise click.ClickException("Missing required option '--pg-data' (or PGDATA, or provide it in config).")

    executor_config = ExecutorConfig(
        pg_data=pg_data,
        target_major_version=_resolve_option(target_major_version, config_values, "target_major_version"),
    )
    pg_data = os.path.normpath(pg_data)
    backup_dir = executor_config.backup_dir
    service = DataDirectoryService(logger=logger)
    state = service.detect_state(
        pg_data,
        backup_dir,
        executor_config.dump_file_name,
        target_major_version=executor_config.target_major_version,
    )
    dump_dir = backup_dir if os.path.isdir(backup_dir) else pg_data
    dump_file = os.path.join(dump_dir, executor_config.dump_file_name)

    console.print(f"[bold]Data directory state:[/bold] {state.value}", soft_wrap=True)
    console.print(
        recovery_hint(state, pg_data=pg_data, backup_dir=backup_dir, dump_file=dump_file),
        soft_wrap=True,
    )


@main.command()
@click.option("--cluster-name", envvar="CLUSTER_NAME", help="The cluster name")
@click.option("--namespace", envvar="NAMESPACE", help="The namespace")
@click.option("--kubectl", "kubectl_bin", required=False, help="kubectl binary (default: kubectl)")
@click.option("--context", "kube_context", required=False, help="kubeconfig context to use")
@click.option("--kubectl-timeout", type=float, default=None, help="Timeout in seconds for each kubectl call.")
@click.pass_obj
def reconcile(config_values, cluster_name, namespace, kubectl_bin, kube_context, kubectl_timeout):
    """Run one downgrade decision pass against a live cluster."""
    cluster_name = _resolve_option(cluster_name, config_values, "cluster_name")
    namespace = _resolve_option(namespace, config_values, "namespace")
    if not cluster_name:
        raise click.ClickException("Missing required option '--cluster-name' (or provide it in config).")
    if not namespace:
        raise click.ClickException("Missing required option '--namespace' (or provide it in config).")

    runner = CommandRunner(logger=logger)
    client = KubectlClusterClient(
        command_runner=runner,
        namespace=namespace,
        kubectl=_resolve_option(kubectl_bin, config_values, "kubectl", default="kubectl"),
        context=_resolve_option(kube_context, config_values, "context"),
        timeout=_resolve_option(kubectl_timeout, config_values, "kubectl_timeout"),
    )
    trigger = DowngradeTrigger(client)

    try:
        cluster = client.get_cluster(cluster_name)
        volumes = client.list_volumes(cluster_name)
        result = trigger.reconcile(cluster, volumes)
    except DowngradeError as exc:
        raise click.ClickException(str(exc)) from exc

    if result is None:
        console.print("[green]No downgrade required.[/green]")
    elif result.requeue:
        console.print("[yellow]Downgrade in progress; reconcile again later.[/yellow]")


if __name__ == "__main__":
    main()
