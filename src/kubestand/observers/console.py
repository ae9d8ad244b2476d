# src/kubestand/observers/console.py
from __future__ import annotations

import typer

from .events import (
    BaseEvent,
    CommandFailed,
    PlanFailed,
    RunCancelled,
    StepSkipped,
    StepStarted,
)

RULE = "=" * 64


class ConsoleObserver:
    """
    Human progress output: one banner per step, one line per skipped or
    failed node. The final summary is printed by the CLI, which knows
    where the artifacts live.
    """

    def __init__(self, destroy: bool = False):
        self.marker = "🧨" if destroy else "➡️ "

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, StepStarted):
            typer.echo("")
            typer.echo(RULE)
            typer.echo(f"{self.marker} [{event.index}/{event.total}] {event.label}")
            typer.echo(RULE)
        elif isinstance(event, StepSkipped):
            typer.echo(f"✔ {event.node}: {event.reason}")
        elif isinstance(event, CommandFailed):
            icon = "❌" if event.critical else "⚠"
            typer.echo(f"{icon} {event.node}: {event.error}", err=event.critical)
        elif isinstance(event, PlanFailed):
            typer.echo(f"❌ Invalid plan: {event.error}", err=True)
        elif isinstance(event, RunCancelled):
            typer.echo("⚠ Interrupted: finished the in-flight command, stopping.", err=True)
