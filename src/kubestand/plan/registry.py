# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import ALL, HOST, Node, Operation, ROLE_SELECTORS, Step, resolve_targets

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx


class PlanError(ValueError):
    def __init__(self, step_id: str, reason: str):
        self.step_id = step_id
        self.reason = reason
        super().__init__(f"Step '{step_id}': {reason}")


def _check_selectors(s: Step, names: Set[str]) -> None:
    if not s.targets:
        raise PlanError(s.id, "no target nodes")
    for sel in s.targets:
        if sel in (ALL, HOST) or sel in ROLE_SELECTORS or sel in names:
            continue
        raise PlanError(s.id, f"targets undeclared node '{sel}'")


def _vm_names(s: Step, nodes: List[Node]) -> List[str]:
    return [n.name for n in resolve_targets(s.targets, nodes) if not n.is_host]


def define(
    steps: Sequence[Step],
    nodes: Sequence[Node],
    introduced: Iterable[str] = (),
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> List[Step]:
    """
    Validate a plan and return it as an ordered list.

    A VM node only becomes addressable once an earlier LAUNCH step has
    introduced it; names in `introduced` are treated as pre-existing.
    Emits PlanComputed / PlanFailed if an EventBus is provided.
    """
    ctx = run_ctx or new_ctx(direction="plan")
    nodes = list(nodes)
    names = {n.name for n in nodes}

    try:
        seen: Dict[str, int] = {}
        live: Set[str] = set(introduced)
        all_ids = {s.id for s in steps}

        for index, s in enumerate(steps):
            if s.id in seen:
                raise PlanError(s.id, "duplicate step id")
            seen[s.id] = index

            _check_selectors(s, names)
            targets = _vm_names(s, nodes)

            for dep in s.requires:
                if dep not in all_ids:
                    raise PlanError(s.id, f"requires unknown step '{dep}'")
                if dep not in seen or dep == s.id:
                    raise PlanError(s.id, f"requires step '{dep}' which does not run earlier")

            for q in s.queries:
                if q.node != HOST and q.node not in ROLE_SELECTORS and q.node not in names:
                    raise PlanError(s.id, f"query '{q.name}' reads from undeclared node '{q.node}'")
                for n in resolve_targets((q.node,), nodes):
                    if not n.is_host and n.name not in live:
                        raise PlanError(
                            s.id, f"query '{q.name}' reads from node '{n.name}' before it is provisioned"
                        )

            if s.operation == Operation.LAUNCH:
                live.update(targets)
                continue

            missing = [t for t in targets if t not in live]
            if missing:
                raise PlanError(
                    s.id, f"targets node(s) {', '.join(missing)} before they are provisioned"
                )

        ordered = list(steps)
        if bus:
            bus.emit(PlanComputed(order=[s.id for s in ordered], **ctx))
        return ordered

    except PlanError as e:
        if bus:
            bus.emit(PlanFailed(error=str(e), step=e.step_id, **ctx))
        raise
