# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/plan/models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class NodeRole(str, Enum):
    CONTROL_PLANE = "control-plane"
    WORKER = "worker"
    HOST = "host"


class NodeState(str, Enum):
    ABSENT = "absent"
    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    DELETED = "deleted"


class Operation(str, Enum):
    """What the engine does with a step for each target node."""
    EXEC = "exec"          # run the command through the gateway
    LAUNCH = "launch"      # create the VM
    DESTROY = "destroy"    # stop + delete + purge the VM
    FETCH = "fetch"        # read a remote file, write it on the host (0600)
    REMOVE = "remove"      # delete host-side files


# Target selectors understood by the registry and the engine
ALL = "all"
HOST = "host"
ROLE_SELECTORS = (NodeRole.CONTROL_PLANE.value, NodeRole.WORKER.value)


@dataclass(frozen=True)
class Resources:
    cpus: int = 2
    memory: str = "2G"
    disk: str = "10G"


@dataclass
class Node:
    """
    A cluster machine. Identity (name) is stable, the address is not.
    """
    name: str
    role: NodeRole
    resources: Resources = field(default_factory=Resources)
    state: NodeState = NodeState.ABSENT
    address: Optional[str] = None

    @property
    def is_host(self) -> bool:
        return self.role == NodeRole.HOST


def host_node() -> Node:
    return Node(name=HOST, role=NodeRole.HOST, state=NodeState.RUNNING)


@dataclass(frozen=True)
class Query:
    """
    Reads a value back from a node before a step's command runs.

    The extracted value is exposed to the command template as `name`
    and is treated as a secret for the rest of the run.
    """
    name: str
    node: str              # selector, resolved to a single node
    command: str
    pattern: str           # regex; the named group "value" wins over group 0
    secret: bool = True


@dataclass(frozen=True)
class Step:
    id: str
    label: str
    targets: Tuple[str, ...]
    operation: Operation = Operation.EXEC
    command: str = ""
    critical: bool = True
    check: Optional[str] = None
    queries: Tuple[Query, ...] = ()
    requires: Tuple[str, ...] = ()
    undo: Optional["Step"] = None
    unconditional: bool = False
    leading: bool = False          # teardown: runs before the node resets
    timeout: Optional[float] = None
    runtime_template: bool = False
    params: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def best_effort(self) -> bool:
        return not self.critical

    def as_best_effort(self) -> "Step":
        return replace(self, critical=False)


def step(
    id: str,
    label: str,
    targets,
    **kwargs,
) -> Step:
    """Small constructor that accepts a single selector or any iterable of them."""
    if isinstance(targets, str):
        targets = (targets,)
    for key in ("queries", "requires"):
        if key in kwargs:
            kwargs[key] = tuple(kwargs[key])
    return Step(id=id, label=label, targets=tuple(targets), **kwargs)


def resolve_targets(selectors: Tuple[str, ...], nodes: List[Node]) -> List[Node]:
    """
    Expand selectors to concrete nodes, preserving selector order and
    dropping duplicates.
    """
    resolved: List[Node] = []
    by_name = {n.name: n for n in nodes}

    def _add(n: Node) -> None:
        if all(n.name != r.name for r in resolved):
            resolved.append(n)

    for sel in selectors:
        if sel == ALL:
            for n in nodes:
                if not n.is_host:
                    _add(n)
        elif sel in ROLE_SELECTORS:
            for n in nodes:
                if n.role.value == sel:
                    _add(n)
        elif sel == HOST:
            _add(by_name.get(HOST) or host_node())
        elif sel in by_name:
            _add(by_name[sel])
        else:
            raise KeyError(sel)
    return resolved
