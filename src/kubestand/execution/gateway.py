# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/execution/gateway.py

from __future__ import annotations

import logging
import shlex
from typing import Optional, Protocol

from .errors import CommandTimeout, QueryError, RemoteCommandFailure
from .models import CommandResult
from .runner import CommandRunner
from ..kube.parsing import ParseError, extract
from ..plan.models import Node
from ..utils.execution import ExecutionContext
from ..utils.redact import SecretStore

log = logging.getLogger("kubestand")


class RemoteCommandGateway(Protocol):
    """
    "Run this on node X". The engine only ever talks to this interface,
    never to a particular hypervisor's command syntax.
    """

    secrets: SecretStore

    def available(self) -> bool: ...

    def execute(self, node: Node, command: str, timeout: float) -> CommandResult: ...

    def query(self, node: Node, command: str, pattern: str, timeout: float) -> str: ...

    def exists(self, node: Node) -> bool: ...

    def address(self, node: Node) -> str: ...

    def launch(self, node: Node, timeout: float) -> CommandResult: ...

    def destroy(self, node: Node, timeout: float) -> CommandResult: ...

    def read_file(self, node: Node, path: str, timeout: float) -> CommandResult: ...


class ShellGateway:
    """
    Common behaviour for gateways: host commands run locally through
    `bash -c`, queries are an execute plus a pattern extraction.
    Subclasses provide `_execute_remote` and the node lifecycle.
    """

    def __init__(
        self,
        ctx: Optional[ExecutionContext] = None,
        secrets: Optional[SecretStore] = None,
    ):
        self.ctx = ctx or ExecutionContext()
        self.secrets = secrets or SecretStore()

    def _runner(self, label: str) -> CommandRunner:
        return CommandRunner(ctx=self.ctx, label=label, redact=self.secrets.redact)

    # ------------------------- dispatch -------------------------

    def execute(self, node: Node, command: str, timeout: float) -> CommandResult:
        return self._dispatch(node, command, timeout, quiet=False)

    def _dispatch(self, node: Node, command: str, timeout: float, quiet: bool) -> CommandResult:
        if node.is_host:
            return self._runner("host").run(["bash", "-c", command], timeout=timeout, quiet=quiet)
        return self._execute_remote(node, command, timeout, quiet)

    def _execute_remote(self, node: Node, command: str, timeout: float, quiet: bool) -> CommandResult:
        raise NotImplementedError

    def query(self, node: Node, command: str, pattern: str, timeout: float) -> str:
        """
        Run `command` and return exactly the substring matching `pattern`.
        The value is registered as a secret before anything else sees it.
        """
        if self.ctx.dry_run:
            log.info(f"[{node.name}] dry-run query: {command}")
            return self.ctx.dry_run_value

        # output stays out of the log until the value is known
        result = self._dispatch(node, command, timeout, quiet=True)
        if result.timed_out:
            raise CommandTimeout(node.name, command, result)
        if not result.ok:
            raise RemoteCommandFailure(node.name, command, result)
        try:
            value = extract(pattern, result.stdout)
        except ParseError as e:
            raise QueryError(node.name, command, result, message=str(e)) from e
        self.secrets.add(value)
        return value

    def read_file(self, node: Node, path: str, timeout: float) -> CommandResult:
        # file contents (credentials) never go to the log
        return self._dispatch(node, f"sudo cat {shlex.quote(path)}", timeout, quiet=True)

    # ------------------------- lifecycle defaults -------------------------

    def available(self) -> bool:
        return True
