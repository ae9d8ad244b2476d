# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/deploy/executor.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence

from jinja2 import TemplateError

from ..execution.errors import BackendUnavailable, CommandTimeout, RemoteCommandFailure, ResourceAbsent
from ..execution.gateway import RemoteCommandGateway
from ..execution.models import CommandResult
from ..plan.models import Node, NodeState, Operation, Step, resolve_targets
from ..plan.template_renderer import TemplateRenderer
from ..state.recorder import Outcome, RunRecorder, Status
from ..utils.host import remove_files, write_private_file

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    stamp,
    StepStarted,
    StepSkipped,
    StepFinished,
    CommandDispatched,
    CommandSucceeded,
    CommandFailed,
    RunCancelled,
    RunSummary,
)

log = logging.getLogger("kubestand")

PROVISION = "provision"
DESTROY = "destroy"

SUCCEEDED = "succeeded"
ABORTED = "aborted"
CANCELLED = "cancelled"

OUTPUT_TAIL_LINES = 20


class CancelToken:
    """Set from a signal handler; the engine looks at it between commands."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class ExecutorOptions:
    command_timeout: float = 900.0
    query_timeout: float = 120.0
    fresh: bool = False            # ignore the run record
    dry_run: bool = False          # no checks evaluated, nothing recorded


@dataclass
class RunResult:
    status: str                    # "succeeded" | "aborted" | "cancelled"
    direction: str
    run_id: str
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    failed_step: Optional[str] = None
    failed_node: Optional[str] = None
    command: Optional[str] = None  # redacted
    exit_code: Optional[int] = None
    timed_out: bool = False
    detail: Optional[str] = None
    output_tail: str = ""
    log_path: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == SUCCEEDED


class AddressBook(Mapping):
    """
    Node addresses for runtime command templates, keyed by node name or
    role. Each lookup goes to the gateway the first time it is asked for
    during one dispatch, so a recreated VM is never addressed by a stale IP.
    """

    def __init__(self, gateway: RemoteCommandGateway, nodes: Sequence[Node]):
        self._gateway = gateway
        self._nodes = list(nodes)
        self._cache: Dict[str, str] = {}
        self.failure: Optional[Exception] = None

    def _node(self, key: str) -> Node:
        for n in self._nodes:
            if n.name == key:
                return n
        for n in self._nodes:
            if n.role.value == key:
                return n
        raise KeyError(key)

    def __getitem__(self, key: str) -> str:
        if key not in self._cache:
            node = self._node(key)
            try:
                self._cache[key] = self._gateway.address(node)
            except (ResourceAbsent, BackendUnavailable) as e:
                # jinja reads a LookupError as an undefined value
                self.failure = e
                raise
        return self._cache[key]

    def __iter__(self) -> Iterator[str]:
        return iter(n.name for n in self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)


class _Skip(Exception):
    def __init__(self, reason: str, record: bool = True):
        self.reason = reason
        self.record = record
        super().__init__(reason)


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join((text or "").rstrip().splitlines()[-lines:])


class Executor:
    """
    Runs a validated plan step by step against a gateway.

    Forward runs stop at the first failed critical step. Teardown plans are
    made of best-effort steps, so every step is attempted; the run only
    counts as failed when an unconditional step (VM deletion, host
    credential removal) could not be completed.
    """

    def __init__(
        self,
        gateway: RemoteCommandGateway,
        recorder: RunRecorder,
        bus: Optional[EventBus] = None,
        options: Optional[ExecutorOptions] = None,
        renderer: Optional[TemplateRenderer] = None,
        cancel: Optional[CancelToken] = None,
        run_ctx: Optional[dict] = None,
        log_path: Optional[str] = None,
    ):
        self.gateway = gateway
        self.recorder = recorder
        self.bus = bus or EventBus([])
        self.options = options or ExecutorOptions()
        self.renderer = renderer or TemplateRenderer()
        self.cancel = cancel or CancelToken()
        self.run_ctx = run_ctx
        self.log_path = log_path

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------
    def run(self, plan: Sequence[Step], nodes: Sequence[Node], direction: str) -> RunResult:
        ctx = self.run_ctx or new_ctx(direction=direction)
        self._ctx = ctx
        nodes = list(nodes)
        result = RunResult(status=SUCCEEDED, direction=direction, run_id=ctx["run_id"], log_path=self.log_path)
        total = len(plan)

        for index, s in enumerate(plan, 1):
            if self.cancel.cancelled:
                return self._cancelled(result, s)

            self.bus.emit(StepStarted(
                step=s.id, label=s.label, index=index, total=total, critical=s.critical, **stamp(ctx)
            ))
            log.info(f"[{index}/{total}] {s.label}")

            step_ok = True
            for node in resolve_targets(s.targets, nodes):
                if self.cancel.cancelled:
                    return self._cancelled(result, s)

                res = self._run_node(s, node, nodes, direction, result)
                if res is None or res.ok:
                    continue

                step_ok = False
                if s.critical:
                    self.bus.emit(StepFinished(step=s.id, ok=False, **stamp(ctx)))
                    return self._finish(result, ABORTED)

            self.bus.emit(StepFinished(step=s.id, ok=step_ok, **stamp(ctx)))

        status = ABORTED if result.failed_step else SUCCEEDED
        return self._finish(result, status)

    # ------------------------------------------------------------------
    # One (step, node) pair
    # ------------------------------------------------------------------
    def _run_node(
        self,
        s: Step,
        node: Node,
        nodes: List[Node],
        direction: str,
        result: RunResult,
    ) -> Optional[CommandResult]:
        """
        Returns None when the pair was skipped, otherwise the command result.
        Failures have already been recorded and reported when this returns.
        """
        command = ""
        try:
            if direction == DESTROY:
                self._teardown_precondition(s, node)
            else:
                self._forward_precondition(s, node)

            command, res = self._dispatch(s, node, nodes)

        except _Skip as skip:
            return self._skipped(s, node, direction, result, skip)

        except RemoteCommandFailure as e:
            # a failed query; its raw output may hold the secret, so keep only the error
            base = e.result
            res = CommandResult(
                exit_code=base.exit_code if base is not None and base.exit_code != 0 else None,
                stderr=str(e),
                duration=base.duration if base is not None else 0.0,
                timed_out=isinstance(e, CommandTimeout),
            )
            command = command or e.command

        except ResourceAbsent as e:
            if direction == DESTROY:
                return self._skipped(s, node, direction, result, _Skip("not present"))
            res = CommandResult(exit_code=None, stderr=str(e))

        except BackendUnavailable as e:
            res = CommandResult(exit_code=None, stderr=str(e))

        except OSError as e:
            # host-side file operations (kubeconfig fetch and removal)
            res = CommandResult(exit_code=None, stderr=str(e))

        if res.ok:
            if res.skipped:
                result.skipped += 1
                self._record(s, node, direction, Outcome.SKIPPED, exit_code=0, output=res.output)
                self.bus.emit(StepSkipped(
                    step=s.id, node=node.name, reason=_tail(res.output, 1) or "nothing to do", **stamp(self._ctx)
                ))
            else:
                result.succeeded += 1
                self._record(s, node, direction, Outcome.SUCCESS, exit_code=0, output=self._recordable(s, res))
                self.bus.emit(CommandSucceeded(
                    step=s.id, node=node.name, duration_ms=int(res.duration * 1000), **stamp(self._ctx)
                ))
            return res

        result.failed += 1
        outcome = Outcome.TIMEOUT if res.timed_out else Outcome.FAILED
        self._record(s, node, direction, outcome, exit_code=res.exit_code, output=self._recordable(s, res))
        error = self.gateway.secrets.redact(res.describe())
        self.bus.emit(CommandFailed(
            step=s.id, node=node.name, exit_code=res.exit_code, timed_out=res.timed_out,
            critical=s.critical, error=error, **stamp(self._ctx),
        ))

        # the first unconditional failure is what fails a teardown
        if s.critical or (s.unconditional and result.failed_step is None):
            self._mark_failure(result, s, node, res, command)
        if not s.critical:
            result.warnings.append(f"{s.id} on {node.name}: {error}")
        return res

    def _skipped(self, s: Step, node: Node, direction: str, result: RunResult, skip: _Skip) -> None:
        result.skipped += 1
        if skip.record:
            self._record(s, node, direction, Outcome.SKIPPED, output=skip.reason)
        self.bus.emit(StepSkipped(step=s.id, node=node.name, reason=skip.reason, **stamp(self._ctx)))
        return None

    def _forward_precondition(self, s: Step, node: Node) -> None:
        if not self.options.fresh and self.recorder.status(s.id, node.name) == Status.SUCCESS:
            raise _Skip("already complete", record=False)

        if s.operation == Operation.LAUNCH:
            if self.gateway.exists(node):
                if node.state != NodeState.STOPPED:
                    raise _Skip("already exists")
                log.info(f"[{node.name}] exists but is stopped, starting it")
            return

        if s.check and not self.options.dry_run:
            res = self.gateway.execute(node, s.check, self.options.query_timeout)
            if res.ok:
                raise _Skip("already satisfied")

    def _teardown_precondition(self, s: Step, node: Node) -> None:
        if node.is_host:
            return
        if not self.gateway.exists(node):
            log.debug(f"[{node.name}] {s.id}: {ResourceAbsent(node.name)}")
            raise _Skip("not present")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def _dispatch(self, s: Step, node: Node, nodes: List[Node]) -> tuple:
        timeout = s.timeout or self.options.command_timeout
        gw = self.gateway

        if s.operation == Operation.LAUNCH:
            self._dispatched(s, node, f"launch {node.name}")
            return "", gw.launch(node, timeout)

        if s.operation == Operation.DESTROY:
            self._dispatched(s, node, f"destroy {node.name}")
            return "", gw.destroy(node, timeout)

        if s.operation == Operation.FETCH:
            remote = s.params["remote_path"]
            local = s.params["local_path"]
            self._dispatched(s, node, f"fetch {node.name}:{remote} -> {local}")
            res = gw.read_file(node, remote, timeout)
            if not res.ok or self.options.dry_run:
                return "", res
            path = write_private_file(local, res.stdout)
            return "", CommandResult(exit_code=0, stdout=f"wrote {path}", duration=res.duration)

        if s.operation == Operation.REMOVE:
            paths = list(s.params.get("paths", []))
            self._dispatched(s, node, "remove " + " ".join(paths))
            if self.options.dry_run:
                return "", CommandResult.success()
            removed = remove_files(paths)
            if not removed:
                return "", CommandResult.success(stdout="nothing to remove", skipped=True)
            return "", CommandResult.success(stdout="removed " + ", ".join(map(str, removed)))

        command = s.command
        values = self._queries(s, nodes)
        if s.runtime_template:
            book = AddressBook(gw, nodes)
            context = {**values, "addresses": book, "node": node.name}
            try:
                command = self.renderer.render_string(command, context)
            except TemplateError as e:
                if book.failure is not None:
                    raise book.failure from e
                return "", CommandResult(exit_code=None, stderr=f"cannot render command: {e}")

        shown = gw.secrets.redact(command)
        self._dispatched(s, node, shown)
        return shown, gw.execute(node, command, timeout)

    def _queries(self, s: Step, nodes: List[Node]) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for q in s.queries:
            source = resolve_targets((q.node,), nodes)[0]
            log.debug(f"[{source.name}] query {q.name}")
            value = self.gateway.query(source, q.command, q.pattern, self.options.query_timeout)
            if q.secret:
                self.gateway.secrets.add(value)
            values[q.name] = value
        return values

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    def _dispatched(self, s: Step, node: Node, command: str) -> None:
        self.bus.emit(CommandDispatched(
            step=s.id, node=node.name, operation=s.operation.value, command=command, **stamp(self._ctx)
        ))

    def _recordable(self, s: Step, res: CommandResult) -> str:
        if s.operation == Operation.FETCH and res.ok:
            return res.stdout
        if s.operation == Operation.FETCH:
            return res.stderr
        return res.output

    def _record(
        self,
        s: Step,
        node: Node,
        direction: str,
        outcome: Outcome,
        exit_code: Optional[int] = None,
        output: str = "",
    ) -> None:
        if self.options.dry_run:
            return
        output = self.gateway.secrets.redact(output)
        self.recorder.append(self._ctx["run_id"], direction, s.id, node.name, outcome, exit_code, output)

    def _mark_failure(
        self,
        result: RunResult,
        s: Step,
        node: Node,
        res: CommandResult,
        command: str = "",
    ) -> None:
        redact = self.gateway.secrets.redact
        result.failed_step = s.id
        result.failed_node = node.name
        result.command = redact(command) if command else None
        result.exit_code = res.exit_code
        result.timed_out = res.timed_out
        result.detail = redact(res.describe())
        result.output_tail = redact(_tail(res.output)) if s.operation != Operation.FETCH else ""

    def _cancelled(self, result: RunResult, s: Step) -> RunResult:
        log.warning(f"Run cancelled before step {s.id}")
        self.bus.emit(RunCancelled(step=s.id, **stamp(self._ctx)))
        return self._finish(result, CANCELLED)

    def _finish(self, result: RunResult, status: str) -> RunResult:
        result.status = status
        self.bus.emit(RunSummary(
            status=status,
            succeeded=result.succeeded,
            skipped=result.skipped,
            failed=result.failed,
            log_path=self.log_path,
            failed_step=result.failed_step,
            failed_node=result.failed_node,
            warnings=list(result.warnings),
            **stamp(self._ctx),
        ))
        return result


def forward_pairs(plan: Sequence[Step], nodes: Sequence[Node]) -> List[tuple]:
    """(step, node) pairs a forward plan touches; what a teardown invalidates."""
    pairs = []
    for s in plan:
        for n in resolve_targets(s.targets, list(nodes)):
            pairs.append((s.id, n.name))
    return pairs
