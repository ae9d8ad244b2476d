# src/kubestand/execution/errors.py
from __future__ import annotations

from typing import Optional

from .models import CommandResult


class RemoteCommandFailure(RuntimeError):
    """A dispatched command exited non-zero."""

    def __init__(self, node: str, command: str, result: Optional[CommandResult] = None, message: str = ""):
        self.node = node
        self.command = command
        self.result = result
        detail = message or (result.describe() if result else "failed")
        super().__init__(f"[{node}] {detail}")


class CommandTimeout(RemoteCommandFailure):
    """A dispatched command exceeded its bound. Handled like any other failure."""


class QueryError(RemoteCommandFailure):
    """A query's output did not contain the expected value."""


class ResourceAbsent(LookupError):
    """The referenced node does not exist on the hypervisor."""

    def __init__(self, node: str):
        self.node = node
        super().__init__(f"node '{node}' does not exist")


class BackendUnavailable(RuntimeError):
    """The execution backend (e.g. the multipass binary) is not usable."""
