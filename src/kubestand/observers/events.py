# src/kubestand/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict, field
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single run
    direction: str    # provision/destroy/plan

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(direction: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": utc_now(),
        "run_id": run_id or str(uuid.uuid4()),
        "direction": direction,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context with a fresh timestamp."""
    return {**ctx, "ts": utc_now()}


# ---------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PlanComputed(BaseEvent):
    order: List[str]

@dataclass(frozen=True)
class PlanFailed(BaseEvent):
    error: str
    step: Optional[str] = None


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    step: str
    label: str
    index: int
    total: int
    critical: bool

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    step: str
    node: str
    reason: str

@dataclass(frozen=True)
class StepFinished(BaseEvent):
    step: str
    ok: bool


# ---------------------------------------------------------------------
# Command lifecycle (one per step/node pair)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class CommandDispatched(BaseEvent):
    step: str
    node: str
    operation: str
    command: str        # already redacted

@dataclass(frozen=True)
class CommandSucceeded(BaseEvent):
    step: str
    node: str
    duration_ms: int

@dataclass(frozen=True)
class CommandFailed(BaseEvent):
    step: str
    node: str
    exit_code: Optional[int]
    timed_out: bool
    critical: bool
    error: str


# ---------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunCancelled(BaseEvent):
    step: Optional[str]

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    status: str                     # "succeeded" | "aborted" | "cancelled"
    succeeded: int
    skipped: int
    failed: int
    log_path: Optional[str] = None
    failed_step: Optional[str] = None
    failed_node: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
