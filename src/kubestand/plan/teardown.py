# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import List, Sequence

from .models import Step


def derive(forward: Sequence[Step]) -> List[Step]:
    """
    Reverse plan for a forward plan.

    Walks the forward steps backwards and emits each step's `undo` as a
    best-effort step. Steps without an inverse (package installs, node prep)
    are dropped. Leading inverses (workload cleanup, which needs the API
    server and the kubelets still running) open the plan. Unconditional
    inverses (node deletion, host credential purge) close it. Each group
    keeps its relative reverse order.
    """
    head: List[Step] = []
    body: List[Step] = []
    tail: List[Step] = []

    for s in reversed(forward):
        if s.undo is None:
            continue
        inverse = s.undo.as_best_effort()
        if inverse.unconditional:
            tail.append(inverse)
        elif inverse.leading:
            head.append(inverse)
        else:
            body.append(inverse)

    return head + body + tail
