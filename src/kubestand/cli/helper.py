# src/kubestand/cli/helper.py

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from typing import Iterator, List

import typer

from kubestand.config.models import ClusterConfig
from kubestand.deploy.executor import CancelToken, DESTROY, RunResult
from kubestand.execution.multipass import MultipassGateway, MultipassHypervisor
from kubestand.execution.ssh import SshGateway
from kubestand.observers.console import ConsoleObserver, RULE
from kubestand.observers.jsonfile import JsonFileObserver
from kubestand.observers.logger import LoggerObserver
from kubestand.utils.execution import ExecutionContext
from kubestand.utils.redact import SecretStore

log = logging.getLogger("kubestand")


def build_gateway(cfg: ClusterConfig, ctx: ExecutionContext, secrets: SecretStore):
    if cfg.backend == "ssh":
        return SshGateway(
            addresses={s.name: s.address for s in cfg.node_specs()},
            username=cfg.ssh_user,
            key_path=cfg.ssh_key,
            ctx=ctx,
            secrets=secrets,
        )
    hypervisor = MultipassHypervisor(image=cfg.image, ctx=ctx, secrets=secrets)
    return MultipassGateway(hypervisor=hypervisor, ctx=ctx, secrets=secrets)


def build_observers(cfg: ClusterConfig, logger: logging.Logger, run_id: str, direction: str) -> List:
    return [
        ConsoleObserver(destroy=direction == DESTROY),
        LoggerObserver(logger),
        JsonFileObserver(cfg.events_dir, run_id),
    ]


@contextmanager
def cancel_on_signals(token: CancelToken, signals=(signal.SIGINT, signal.SIGTERM)) -> Iterator[CancelToken]:
    """
    Turn SIGINT/SIGTERM into a cancellation request for the duration of a run.
    The command in flight runs in its own session and is left to finish.
    """

    def _handler(signum, frame):
        log.warning(f"Received {signal.Signals(signum).name}, stopping after the current command")
        token.cancel()

    previous = {s: signal.signal(s, _handler) for s in signals}
    try:
        yield token
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)


def print_summary(result: RunResult, cfg: ClusterConfig, dry_run: bool = False) -> None:
    destroy = result.direction == DESTROY
    typer.echo("")
    typer.echo(RULE)

    if result.ok:
        if dry_run:
            typer.secho("Dry run finished, nothing was changed", bold=True)
        elif destroy:
            typer.secho("🧹 Kubernetes cluster teardown complete", fg=typer.colors.GREEN, bold=True)
        else:
            typer.secho("🎉 Kubernetes cluster is ready", fg=typer.colors.GREEN, bold=True)
    elif result.status == "cancelled":
        typer.secho("⚠ Run cancelled by operator", fg=typer.colors.YELLOW, bold=True, err=True)
    else:
        title = "teardown incomplete" if destroy else "provisioning failed"
        typer.secho(f"❌ Kubernetes cluster {title}", fg=typer.colors.RED, bold=True, err=True)
        typer.echo(f"  Step       : {result.failed_step}", err=True)
        typer.echo(f"  Node       : {result.failed_node}", err=True)
        if result.command:
            typer.echo(f"  Command    : {_first_line(result.command)}", err=True)
        exit_detail = "timed out" if result.timed_out else str(result.exit_code)
        typer.echo(f"  Exit code  : {exit_detail}", err=True)
        typer.echo(f"  Error      : {result.detail}", err=True)
        if result.output_tail:
            typer.echo("  Output (last lines):", err=True)
            for line in result.output_tail.splitlines():
                typer.echo(f"    {line}", err=True)

    typer.echo(RULE)
    typer.echo(f"  Steps      : {result.succeeded} ran, {result.skipped} skipped, {result.failed} failed")
    typer.echo(f"  Log file   : {result.log_path}")
    typer.echo(f"  Run record : {cfg.run_record_path}")
    if not destroy:
        typer.echo(f"  Kubeconfig : {cfg.kubeconfig_path}")

    if result.warnings:
        typer.echo("")
        typer.secho("Warnings:", fg=typer.colors.YELLOW)
        for w in result.warnings:
            typer.echo(f"  ⚠ {w}")

    typer.echo("")
    if result.ok and not destroy:
        typer.echo("Next: kubectl get nodes -o wide   (tear down with: kubestand destroy)")
    elif result.ok:
        typer.echo("Next: kubestand provision   (builds a fresh cluster)")
    elif result.status == "cancelled":
        typer.echo("Next: re-run the same command; completed steps are skipped")
    else:
        typer.echo(f"Next: inspect {result.log_path}, fix the cause and re-run")


def _first_line(text: str) -> str:
    lines = text.strip().splitlines()
    if len(lines) <= 1:
        return text.strip()
    return f"{lines[0]} ... ({len(lines)} lines)"
