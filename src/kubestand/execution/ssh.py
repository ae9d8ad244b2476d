# src/kubestand/execution/ssh.py

from __future__ import annotations

import logging
import shlex
import time
from pathlib import Path
from typing import Dict, Optional

import paramiko

from .errors import ResourceAbsent
from .gateway import ShellGateway
from .models import CommandResult
from ..plan.models import Node, NodeState
from ..utils.execution import ExecutionContext
from ..utils.redact import SecretStore

log = logging.getLogger("kubestand")


class SshGateway(ShellGateway):
    """
    Nodes are machines that already exist and are reachable over SSH.

    There is no hypervisor behind this backend: `launch` only confirms the
    machine answers and `destroy` leaves it alone (the Kubernetes state is
    removed by the reset steps that run before it).
    """

    def __init__(
        self,
        addresses: Dict[str, str],
        username: str = "ubuntu",
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: float = 10.0,
        ctx: Optional[ExecutionContext] = None,
        secrets: Optional[SecretStore] = None,
    ):
        super().__init__(ctx=ctx, secrets=secrets)
        self.addresses = dict(addresses)
        self.username = username
        self.key_path = str(Path(key_path).expanduser()) if key_path else None
        self.port = port
        self.connect_timeout = connect_timeout
        self._clients: Dict[str, paramiko.SSHClient] = {}

    # ------------------------- connections -------------------------

    def _client(self, node: Node) -> paramiko.SSHClient:
        cli = self._clients.get(node.name)
        if cli is not None:
            transport = cli.get_transport()
            if transport is not None and transport.is_active():
                return cli
            log.debug(f"[{node.name}] ssh session dropped, reconnecting")
            self._drop(node)
        if node.name not in self.addresses:
            raise ResourceAbsent(node.name)

        cli = paramiko.SSHClient()
        cli.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        cli.connect(
            hostname=self.addresses[node.name],
            port=self.port,
            username=self.username,
            key_filename=self.key_path,
            timeout=self.connect_timeout,
        )
        self._clients[node.name] = cli
        return cli

    def _drop(self, node: Node) -> None:
        cli = self._clients.pop(node.name, None)
        if cli is not None:
            cli.close()

    def close(self) -> None:
        for cli in self._clients.values():
            cli.close()
        self._clients.clear()

    # ------------------------- dispatch -------------------------

    def _execute_remote(self, node: Node, command: str, timeout: float, quiet: bool) -> CommandResult:
        final_cmd = f"bash -c {shlex.quote(command)}"
        log.debug(f"[{node.name}] $ {self.secrets.redact(command)}")

        if self.ctx.dry_run:
            log.info(f"[{node.name}] dry-run: {self.secrets.redact(command)}")
            return CommandResult.success()

        start = time.monotonic()
        try:
            cli = self._client(node)
        except (paramiko.SSHException, OSError) as e:
            return CommandResult(exit_code=255, stderr=f"ssh connect failed: {e}")

        out_chunks: list[bytes] = []
        err_chunks: list[bytes] = []
        deadline = start + timeout if timeout else None

        try:
            _, stdout, stderr = cli.exec_command(final_cmd)
            channel = stdout.channel

            while not channel.exit_status_ready():
                if channel.recv_ready():
                    out_chunks.append(channel.recv(4096))
                if channel.recv_stderr_ready():
                    err_chunks.append(channel.recv_stderr(4096))
                if deadline is not None and time.monotonic() >= deadline:
                    channel.close()
                    log.debug(f"[{node.name}] timed out after {time.monotonic() - start:.2f}s")
                    return CommandResult(
                        exit_code=None,
                        stdout=b"".join(out_chunks).decode("utf-8", "replace"),
                        stderr=b"".join(err_chunks).decode("utf-8", "replace"),
                        duration=time.monotonic() - start,
                        timed_out=True,
                    )
                time.sleep(0.1)

            rc = channel.recv_exit_status()
            out_chunks.append(stdout.read())
            err_chunks.append(stderr.read())
        except (paramiko.SSHException, OSError) as e:
            # the next call on this node opens a fresh connection
            self._drop(node)
            log.debug(f"[{node.name}] ssh session failed: {e}")
            return CommandResult(
                exit_code=255,
                stdout=b"".join(out_chunks).decode("utf-8", "replace"),
                stderr=f"ssh session failed: {e}",
                duration=time.monotonic() - start,
            )

        out = b"".join(out_chunks).decode("utf-8", "replace")
        err = b"".join(err_chunks).decode("utf-8", "replace")

        if not quiet:
            if out.strip():
                log.debug(f"[{node.name}][stdout]\n{self.secrets.redact(out.rstrip())}")
            if err.strip():
                log.debug(f"[{node.name}][stderr]\n{self.secrets.redact(err.rstrip())}")
        log.debug(f"[{node.name}][exit {rc}]")

        return CommandResult(exit_code=rc, stdout=out, stderr=err, duration=time.monotonic() - start)

    # ------------------------- lifecycle -------------------------

    def exists(self, node: Node) -> bool:
        if node.is_host:
            return True
        if self.ctx.dry_run:
            return node.name in self.addresses
        try:
            self._client(node)
        except (ResourceAbsent, paramiko.SSHException, OSError) as e:
            log.debug(f"[{node.name}] not reachable: {e}")
            node.state = NodeState.ABSENT
            return False
        node.state = NodeState.RUNNING
        return True

    def address(self, node: Node) -> str:
        if node.is_host:
            return "127.0.0.1"
        if node.name not in self.addresses:
            raise ResourceAbsent(node.name)
        node.address = self.addresses[node.name]
        return node.address

    def launch(self, node: Node, timeout: float) -> CommandResult:
        if self.exists(node):
            return CommandResult.success(stdout=f"{node.name} reachable", skipped=True)
        return CommandResult(
            exit_code=1,
            stderr=f"{node.name} is not reachable over ssh and this backend cannot create machines",
        )

    def destroy(self, node: Node, timeout: float) -> CommandResult:
        self._drop(node)
        return CommandResult.success(stdout=f"{node.name} left running (ssh backend)", skipped=True)
