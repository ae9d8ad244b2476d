# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/execution/multipass.py

from __future__ import annotations

import logging
import shutil
from typing import Dict, Optional

from .errors import BackendUnavailable, ResourceAbsent
from .gateway import ShellGateway
from .models import CommandResult
from .runner import CommandRunner
from ..kube.parsing import ParseError, multipass_address, multipass_instances
from ..plan.models import Node, NodeState
from ..utils.execution import ExecutionContext
from ..utils.redact import SecretStore
from ..utils.retry import RetryError, retry

log = logging.getLogger("kubestand")

STATES = {
    "Running": NodeState.RUNNING,
    "Stopped": NodeState.STOPPED,
    "Suspended": NodeState.STOPPED,
    "Starting": NodeState.CREATING,
    "Deleted": NodeState.DELETED,
}

# multipass' own CLI calls (list/info/stop/delete) are quick
LIFECYCLE_TIMEOUT = 120


class AddressPending(LookupError):
    pass


class MultipassHypervisor:
    """
    Thin wrapper over the `multipass` CLI.

    Mirrors the operations the orchestrator needs: list, launch, info,
    exec, stop, delete, purge. Testable by mocking subprocess.
    """

    def __init__(
        self,
        binary: str = "multipass",
        image: Optional[str] = None,
        ctx: Optional[ExecutionContext] = None,
        secrets: Optional[SecretStore] = None,
    ):
        self.binary = binary
        self.image = image
        self.ctx = ctx or ExecutionContext()
        self.secrets = secrets or SecretStore()

    def _run(
        self,
        argv,
        *,
        timeout: float = LIFECYCLE_TIMEOUT,
        label: str = "multipass",
        quiet: bool = False,
        read_only: bool = False,
    ) -> CommandResult:
        # read-only calls still run on dry-run so plans see real state
        ctx = ExecutionContext() if read_only else self.ctx
        runner = CommandRunner(ctx=ctx, label=label, redact=self.secrets.redact)
        return runner.run([self.binary, *argv], timeout=timeout, quiet=quiet)

    def installed(self) -> bool:
        return shutil.which(self.binary) is not None

    def list(self) -> Dict[str, NodeState]:
        res = self._run(["list", "--format", "json"], read_only=True)
        if not res.ok:
            raise BackendUnavailable(f"multipass list failed: {res.describe()}")
        try:
            instances = multipass_instances(res.stdout)
        except ParseError as e:
            raise BackendUnavailable(str(e)) from e
        return {name: STATES.get(state, NodeState.RUNNING) for name, state in instances.items()}

    def listing(self) -> CommandResult:
        return self._run(["list"], read_only=True)

    def launch(self, node: Node, timeout: float) -> CommandResult:
        argv = ["launch"]
        if self.image:
            argv.append(self.image)
        argv += [
            "--name", node.name,
            "--cpus", str(node.resources.cpus),
            "--memory", node.resources.memory,
            "--disk", node.resources.disk,
        ]
        return self._run(argv, timeout=timeout, label=node.name)

    def info_address(self, name: str) -> Optional[str]:
        res = self._run(["info", name, "--format", "json"], read_only=True)
        if not res.ok:
            if "does not exist" in res.output:
                raise ResourceAbsent(name)
            raise BackendUnavailable(f"multipass info {name} failed: {res.describe()}")
        return multipass_address(res.stdout, name)

    def exec(self, name: str, command: str, timeout: float, quiet: bool = False) -> CommandResult:
        return self._run(["exec", name, "--", "bash", "-c", command], timeout=timeout, label=name, quiet=quiet)

    def start(self, name: str, timeout: float = LIFECYCLE_TIMEOUT) -> CommandResult:
        return self._run(["start", name], timeout=timeout, label=name)

    def stop(self, name: str, timeout: float = LIFECYCLE_TIMEOUT) -> CommandResult:
        return self._run(["stop", name], timeout=timeout, label=name)

    def delete(self, name: str, timeout: float = LIFECYCLE_TIMEOUT) -> CommandResult:
        return self._run(["delete", name], timeout=timeout, label=name)

    def purge(self, timeout: float = LIFECYCLE_TIMEOUT) -> CommandResult:
        return self._run(["purge"], timeout=timeout)


class MultipassGateway(ShellGateway):
    """Cluster nodes are Multipass instances on this machine."""

    def __init__(
        self,
        hypervisor: Optional[MultipassHypervisor] = None,
        ctx: Optional[ExecutionContext] = None,
        secrets: Optional[SecretStore] = None,
        address_retries: int = 12,
        address_delay: float = 2.0,
    ):
        super().__init__(ctx=ctx, secrets=secrets)
        self.hypervisor = hypervisor or MultipassHypervisor(ctx=self.ctx, secrets=self.secrets)
        self.address_retries = address_retries
        self.address_delay = address_delay

    def available(self) -> bool:
        return self.hypervisor.installed()

    def _execute_remote(self, node: Node, command: str, timeout: float, quiet: bool) -> CommandResult:
        return self.hypervisor.exec(node.name, command, timeout, quiet=quiet)

    def exists(self, node: Node) -> bool:
        if node.is_host:
            return True
        if self.ctx.dry_run and not self.available():
            return False
        state = self.hypervisor.list().get(node.name)
        if state is None or state == NodeState.DELETED:
            # a deleted-but-unpurged instance still holds its name, but it is gone
            node.state = state or NodeState.ABSENT
            return False
        node.state = state
        return True

    def address(self, node: Node) -> str:
        """
        Current IPv4 of the node. Looked up on every call: an instance that
        was recreated may come back with a different address.
        """
        if node.is_host:
            return "127.0.0.1"
        if self.ctx.dry_run and not self.exists(node):
            return f"<{node.name}-address>"

        @retry(
            retries=self.address_retries,
            delay=self.address_delay,
            backoff=2.0,
            max_delay=15.0,
            retry_on=(AddressPending,),
            on_retry=lambda attempt, exc: log.debug(f"[{node.name}] waiting for address ({attempt})"),
        )
        def _lookup() -> str:
            addr = self.hypervisor.info_address(node.name)
            if not addr:
                raise AddressPending(node.name)
            return addr

        try:
            node.address = _lookup()
        except RetryError as e:
            raise ResourceAbsent(node.name) from e
        except ParseError as e:
            raise BackendUnavailable(str(e)) from e
        return node.address

    def launch(self, node: Node, timeout: float) -> CommandResult:
        if node.state == NodeState.STOPPED:
            res = self.hypervisor.start(node.name, timeout)
        else:
            node.state = NodeState.CREATING
            res = self.hypervisor.launch(node, timeout)
        if res.ok:
            node.state = NodeState.RUNNING
        return res

    def destroy(self, node: Node, timeout: float) -> CommandResult:
        if self.ctx.dry_run and not self.available():
            return CommandResult.success(stdout=f"{node.name} not present", skipped=True)

        state = self.hypervisor.list().get(node.name)
        if state is None:
            node.state = NodeState.DELETED
            return CommandResult.success(stdout=f"{node.name} already deleted", skipped=True)

        if state != NodeState.DELETED:
            stop = self.hypervisor.stop(node.name, timeout)
            if not stop.ok:
                log.warning(f"[{node.name}] stop failed ({stop.describe()}), deleting anyway")
            else:
                node.state = NodeState.STOPPED

            res = self.hypervisor.delete(node.name, timeout)
            if not res.ok:
                return res

        purge = self.hypervisor.purge(timeout)
        if purge.ok:
            node.state = NodeState.DELETED
            node.address = None
        return purge

    def inventory(self) -> str:
        """`multipass list` as the user would see it, for the end of a teardown."""
        if not self.available():
            return ""
        res = self.hypervisor.listing()
        return res.output if res.ok else res.describe()
