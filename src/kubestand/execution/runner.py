from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

from .models import CommandResult
from ..utils.execution import ExecutionContext

Cmd = Sequence[Union[str, "os.PathLike[str]"]]

log = logging.getLogger("kubestand")


def _identity(text: str) -> str:
    return text


@dataclass
class CommandRunner:
    """
    Runs local processes with a hard time bound.

    Each process gets its own session so that a timeout can kill the whole
    process group, and so that a terminal Ctrl-C reaches the orchestrator
    but not the command it is waiting on.
    """
    ctx: ExecutionContext = field(default_factory=ExecutionContext)
    label: Optional[str] = None
    redact: Callable[[str], str] = _identity

    def run(
        self,
        cmd: Cmd,
        *,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        env: dict[str, str] | None = None,
        quiet: bool = False,
    ) -> CommandResult:
        label = self.label or "cmd"
        cmd_str = self.redact(" ".join(map(str, cmd)))

        log.debug(f"[{label}] $ {cmd_str}")

        if self.ctx.dry_run:
            log.info(f"[{label}] dry-run: {cmd_str}")
            return CommandResult.success()

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                [str(c) for c in cmd],
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            return CommandResult(exit_code=127, stderr=str(e), duration=time.monotonic() - start)

        try:
            out, err = proc.communicate(input=input, timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            out, err = proc.communicate()
            duration = time.monotonic() - start
            log.debug(f"[{label}] timed out after {duration:.2f}s")
            return CommandResult(
                exit_code=None, stdout=out or "", stderr=err or "",
                duration=duration, timed_out=True,
            )

        duration = time.monotonic() - start
        if out and not quiet:
            log.debug(f"[{label}][stdout]\n{self.redact(out.rstrip())}")
        if err and not quiet:
            log.debug(f"[{label}][stderr]\n{self.redact(err.rstrip())}")
        log.debug(f"[{label}][exit {proc.returncode}] ({duration:.2f}s)")

        return CommandResult(
            exit_code=proc.returncode, stdout=out or "", stderr=err or "", duration=duration
        )

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
