"""Node profiling operator CLI (profctl).

Usage:
    profctl run                     # Run the operator loop
    profctl reconcile               # Run a single reconciliation pass
    profctl status                  # Show dependent objects and pool health
    profctl render kubelet          # Print a canonical dependent object
    profctl validate config.yaml    # Validate a desired-state manifest
    profctl capabilities            # List profiling capabilities
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click
import yaml

from .capabilities import CAPABILITIES, build_managers, get_capability, render_capability
from .config import Config, ConfigurationError
from .events import LoggingEventRecorder
from .kube import ClusterConnectionError, KubeClients, load_clients
from .main import build_reconciler, run_operator, setup_logging
from .manifests import ManifestLoadError, load_manifest
from .pool_health import MachineConfigPoolHealthProbe
from .reconciler import ReconcileRequest, Reconciler
from .store import KubernetesObjectStore, StoreError

CAPABILITY_KEYS = tuple(c.key for c in CAPABILITIES)


def load_config(name: str | None, namespace: str | None) -> Config:
    """Load config from the environment, with CLI overrides."""
    try:
        config = Config.from_env()
        if name:
            config = replace(config, resource_name=name)
        if namespace:
            config = replace(config, resource_namespace=namespace)
        return config
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


def connect(kubeconfig: str | None, context: str | None) -> KubeClients:
    try:
        return load_clients(kubeconfig, context)
    except ClusterConnectionError as e:
        raise click.ClickException(str(e)) from e


def cluster_options(func):  # type: ignore[no-untyped-def]
    """Options shared by commands that talk to the cluster."""
    func = click.option("--context", help="kubeconfig context")(func)
    func = click.option(
        "--kubeconfig", type=click.Path(dir_okay=False), envvar="KUBECONFIG", help="kubeconfig path"
    )(func)
    func = click.option("--namespace", "-n", help="Namespace of the resource (namespaced CRD only)")(func)
    func = click.option("--name", help="Name of the NodeObservabilityMachineConfig")(func)
    return func


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="profctl")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Node profiling operator CLI (profctl).

    Reconciles kubelet and CRI-O profiling configuration for the nodes of
    the profiling MachineConfigPool.
    """
    setup_logging(logging.DEBUG if verbose else logging.WARNING, json_output=False)


@cli.command()
@cluster_options
def run(name: str | None, namespace: str | None, kubeconfig: str | None, context: str | None) -> None:
    """Run the reconciliation loop until interrupted."""
    config = load_config(name, namespace)
    setup_logging(config.log_level_value, config.json_logs)
    clients = connect(kubeconfig, context)
    logger = logging.getLogger("profiling_operator")
    sys.exit(asyncio.run(run_operator(build_reconciler(config, clients), logger)))


@cli.command()
@cluster_options
@click.option("--no-events", is_flag=True, help="Log events instead of posting them")
def reconcile(
    name: str | None,
    namespace: str | None,
    kubeconfig: str | None,
    context: str | None,
    no_events: bool,
) -> None:
    """Run a single reconciliation pass and print the outcome."""
    config = load_config(name, namespace)
    clients = connect(kubeconfig, context)
    if no_events:
        reconciler = Reconciler(
            config, KubernetesObjectStore(clients.custom_objects), LoggingEventRecorder()
        )
    else:
        reconciler = build_reconciler(config, clients)

    result = reconciler.reconcile(ReconcileRequest(config.resource_name, config.resource_namespace))

    click.echo(f"Resource:   {result.request.key}")
    click.echo(f"State:      {result.state.value}")
    for change in result.changes:
        click.echo(f"Change:     {change.capability} {change.action.value}")
    if result.pool_health is not None:
        click.echo(f"Pool:       {result.pool_health.state.value} ({result.pool_health.message})")
    for key in result.reverted:
        click.echo(f"Reverted:   {key}")
    click.echo(f"Requeue in: {int(result.requeue_after_seconds)}s")

    if result.error is not None:
        raise click.ClickException(str(result.error))
    click.secho("Reconciled", fg="green")


@cli.command()
@cluster_options
def status(name: str | None, namespace: str | None, kubeconfig: str | None, context: str | None) -> None:
    """Show which dependent objects exist and the profiling pool health."""
    config = load_config(name, namespace)
    clients = connect(kubeconfig, context)
    store = KubernetesObjectStore(clients.custom_objects)

    try:
        for key, manager in build_managers(store).items():
            obj = manager.fetch()
            state = "present" if obj is not None else "absent"
            click.echo(f"{key:<10} {manager.capability.object_name:<28} {state}")
    except StoreError as e:
        raise click.ClickException(str(e)) from e

    report = MachineConfigPoolHealthProbe(store, config.pool_name).check()
    click.echo(f"pool       {config.pool_name:<28} {report.state.value}: {report.message}")


@cli.command()
@click.argument("capability", type=click.Choice(CAPABILITY_KEYS))
def render(capability: str) -> None:
    """Print the canonical dependent object of a capability as YAML."""
    click.echo(yaml.safe_dump(render_capability(capability), sort_keys=False), nl=False)


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(manifest: Path) -> None:
    """Validate a NodeObservabilityMachineConfig manifest."""
    try:
        resource = load_manifest(manifest)
    except ManifestLoadError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"{resource.kind} {resource.key}")
    for capability in CAPABILITIES:
        state = "enabled" if capability.enabled_in(resource) else "disabled"
        click.echo(f"  {capability.key}: {state}")
    click.secho("Valid", fg="green")


@cli.command("capabilities")
def list_capabilities() -> None:
    """List profiling capabilities and the objects they manage."""
    for key in CAPABILITY_KEYS:
        capability = get_capability(key)
        click.echo(f"{key:<10} {capability.kind.kind:<16} {capability.object_name}")


if __name__ == "__main__":
    cli()
