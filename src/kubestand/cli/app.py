# src/kubestand/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import typer

from kubestand.config.loader import ConfigError, load_config, worker_overrides
from kubestand.config.models import ClusterConfig
from kubestand.deploy.executor import (
    CANCELLED,
    DESTROY,
    PROVISION,
    SUCCEEDED,
    CancelToken,
    Executor,
    ExecutorOptions,
    RunResult,
    forward_pairs,
)
from kubestand.execution.multipass import MultipassHypervisor
from kubestand.logging.log import init_logging
from kubestand.observers.dispatcher import EventBus
from kubestand.observers.events import new_ctx
from kubestand.plan.builder import build_plan
from kubestand.plan.models import resolve_targets
from kubestand.plan.registry import PlanError, define
from kubestand.plan.teardown import derive
from kubestand.state.recorder import RunRecorder
from kubestand.utils.execution import ExecutionContext
from kubestand.utils.redact import SecretStore

from kubestand.cli.helper import (
    build_gateway,
    build_observers,
    cancel_on_signals,
    print_summary,
)


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Provision a kubeadm Kubernetes cluster on local VMs, and tear it down again.")

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130

EXIT_CODES = {SUCCEEDED: EXIT_OK, CANCELLED: EXIT_CANCELLED}

_state: Dict[str, Any] = {"debug": False}

ConfigOption = typer.Option(None, "--config", "-c", help="Cluster definition YAML")


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Show the full command trace on the console"),
):
    _state["debug"] = debug


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(config: Optional[Path], overrides: Optional[dict] = None) -> ClusterConfig:
    try:
        return load_config(config, overrides=overrides)
    except ConfigError as e:
        typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_INVALID)


def _execute(cfg: ClusterConfig, direction: str, dry_run: bool, fresh: bool = False) -> RunResult:
    """
    Build, validate and run the plan for one direction, then print the
    summary. Exits with EXIT_INVALID when the plan does not validate.
    """
    secrets = SecretStore()
    logger, run_id, log_path = init_logging(
        cfg.log_path(direction), verbose=_state["debug"], secrets=secrets
    )

    typer.echo("")
    title = "Kubernetes Cluster Teardown" if direction == DESTROY else "Kubernetes Cluster Setup"
    typer.secho(f"{title}{' (dry run)' if dry_run else ''}", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")

    ctx = ExecutionContext(dry_run=dry_run)
    gateway = build_gateway(cfg, ctx, secrets)
    run_ctx = new_ctx(direction=direction, run_id=run_id)
    bus = EventBus(build_observers(cfg, logger, run_id, direction))

    nodes = cfg.nodes()
    forward = build_plan(cfg)
    try:
        if direction == DESTROY:
            # every node may already exist when tearing down
            plan = define(derive(forward), nodes, introduced=[n.name for n in nodes], bus=bus, run_ctx=run_ctx)
        else:
            plan = define(forward, nodes, bus=bus, run_ctx=run_ctx)
    except PlanError as e:
        logger.error(f"Invalid plan: {e}")
        raise typer.Exit(EXIT_INVALID)

    recorder = RunRecorder(cfg.run_record_path, secrets=secrets)
    token = CancelToken()
    executor = Executor(
        gateway,
        recorder,
        bus=bus,
        options=ExecutorOptions(
            command_timeout=cfg.command_timeout,
            query_timeout=cfg.query_timeout,
            fresh=fresh,
            dry_run=dry_run,
        ),
        cancel=token,
        run_ctx=run_ctx,
        log_path=str(log_path),
    )

    try:
        with cancel_on_signals(token):
            result = executor.run(plan, nodes, direction)
        inventory = getattr(gateway, "inventory", None)
        if direction == DESTROY and inventory:
            logger.debug(f"Remaining instances after teardown:\n{inventory()}")
    finally:
        close = getattr(gateway, "close", None)
        if close:
            close()

    if direction == DESTROY and result.ok and not dry_run:
        # the next provision has to run every step again
        stale = recorder.invalidate(run_id, forward_pairs(forward, nodes))
        logger.debug(f"invalidated {len(stale)} run record entries")

    print_summary(result, cfg, dry_run=dry_run)
    return result


def _exit(result: RunResult) -> None:
    code = EXIT_CODES.get(result.status, EXIT_ABORTED)
    if code:
        raise typer.Exit(code)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def provision(
    config: Optional[Path] = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Log the commands without running them"),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore the run record and re-check every step"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Number of worker nodes"),
    kubernetes_version: Optional[str] = typer.Option(None, "--kubernetes-version", help="Minor channel, e.g. v1.30"),
    pod_network_cidr: Optional[str] = typer.Option(None, "--pod-network-cidr"),
):
    """Create the VMs and bring up the cluster. Safe to re-run."""
    overrides: Dict[str, Any] = {
        "kubernetes_version": kubernetes_version,
        "pod_network_cidr": pod_network_cidr,
    }
    if workers is not None:
        base = _load(config)
        try:
            overrides["workers"] = worker_overrides(workers, base)
        except ConfigError as e:
            typer.secho(f"❌ {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_INVALID)

    cfg = _load(config, overrides)
    result = _execute(cfg, PROVISION, dry_run=dry_run, fresh=fresh)
    _exit(result)


@app.command()
def destroy(
    config: Optional[Path] = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Log the commands without running them"),
):
    """Reset Kubernetes on every node, delete the VMs and the host kubeconfig."""
    cfg = _load(config)

    if cfg.backend == "multipass" and not MultipassHypervisor().installed():
        typer.echo("Multipass is not installed: nothing to destroy.")
        raise typer.Exit(EXIT_OK)

    result = _execute(cfg, DESTROY, dry_run=dry_run)
    _exit(result)


@app.command("plan")
def show_plan(
    config: Optional[Path] = ConfigOption,
    destroy: bool = typer.Option(False, "--destroy", help="Show the teardown plan instead"),
):
    """Print the ordered steps without running anything."""
    cfg = _load(config)
    nodes = cfg.nodes()
    forward = build_plan(cfg)
    try:
        if destroy:
            plan = define(derive(forward), nodes, introduced=[n.name for n in nodes])
        else:
            plan = define(forward, nodes)
    except PlanError as e:
        typer.secho(f"❌ Invalid plan: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_INVALID)

    for i, s in enumerate(plan, 1):
        targets = ", ".join(n.name for n in resolve_targets(s.targets, nodes))
        flags = []
        if not s.critical:
            flags.append("best-effort")
        if s.unconditional:
            flags.append("always")
        if s.check:
            flags.append("checked")
        extra = f"  [{', '.join(flags)}]" if flags else ""
        typer.echo(f"{i:2d}. {s.id:<24} {s.operation.value:<8} {targets}{extra}")


@app.command()
def status(config: Optional[Path] = ConfigOption):
    """Latest recorded outcome of every provisioning step, per node."""
    cfg = _load(config)
    nodes = cfg.nodes()
    recorder = RunRecorder(cfg.run_record_path)

    typer.echo(f"Run record: {cfg.run_record_path}")
    for s in build_plan(cfg):
        for n in resolve_targets(s.targets, nodes):
            entry = recorder.latest(s.id, n.name)
            st = recorder.status(s.id, n.name).value
            when = entry.timestamp if entry else "-"
            typer.echo(f"  {s.id:<24} {n.name:<20} {st:<8} {when}")


if __name__ == "__main__":
    app()
