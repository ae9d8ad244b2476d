from pathlib import Path

import pytest

from kubestand.execution.errors import QueryError, ResourceAbsent
from kubestand.execution.models import CommandResult
from kubestand.kube.parsing import ParseError, extract
from kubestand.plan.models import Node, NodeRole, NodeState, host_node
from kubestand.state.recorder import RunRecorder
from kubestand.utils.redact import SecretStore

JOIN_LINE = (
    "kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:" + "0" * 64
)


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)

    def of(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


class FakeGateway:
    """
    In-memory gateway. Every call is appended to `calls` as a tuple
    (operation, node, detail).

    responses: substring of an executed command -> exit code (first match wins)
    existing:  names of VMs that exist; None means every node exists
    stopped:   names of VMs that exist but are stopped
    unaddressable: names whose address lookup gives up
    """

    def __init__(self, responses=None, existing=None, query_output=JOIN_LINE,
                 files=None, failing_lifecycle=(), stopped=(), unaddressable=()):
        self.secrets = SecretStore()
        self.responses = dict(responses or {})
        self.existing = set(existing) if existing is not None else None
        self.query_output = query_output
        self.files = dict(files or {})
        self.failing_lifecycle = set(failing_lifecycle)
        self.stopped = set(stopped)
        self.unaddressable = set(unaddressable)
        self.addresses = {}
        self.calls = []
        self.on_execute = None

    def available(self):
        return True

    def execute(self, node, command, timeout):
        self.calls.append(("execute", node.name, command))
        if self.on_execute:
            self.on_execute(node, command)
        for needle, rc in self.responses.items():
            if needle in command:
                return CommandResult(exit_code=rc, stdout=f"ran {command}",
                                     stderr="" if rc == 0 else f"{needle} failed")
        return CommandResult(exit_code=0, stdout=f"ran {command}")

    def query(self, node, command, pattern, timeout):
        self.calls.append(("query", node.name, command))
        try:
            value = extract(pattern, self.query_output)
        except ParseError as e:
            raise QueryError(node.name, command, CommandResult(exit_code=0, stdout=self.query_output),
                             message=str(e)) from e
        self.secrets.add(value)
        return value

    def exists(self, node):
        self.calls.append(("exists", node.name, ""))
        if node.name in self.stopped:
            node.state = NodeState.STOPPED
            return True
        return node.is_host or self.existing is None or node.name in self.existing

    def address(self, node):
        self.calls.append(("address", node.name, ""))
        if node.name in self.unaddressable:
            raise ResourceAbsent(node.name)
        return self.addresses.get(node.name, "10.0.0.5")

    def launch(self, node, timeout):
        self.calls.append(("launch", node.name, ""))
        if node.name in self.stopped:
            self.stopped.discard(node.name)
            node.state = NodeState.RUNNING
            return CommandResult(exit_code=0, stdout=f"Started: {node.name}")
        if "launch" in self.failing_lifecycle:
            return CommandResult(exit_code=2, stderr="launch failed: not enough memory")
        if self.existing is not None:
            self.existing.add(node.name)
        return CommandResult(exit_code=0, stdout=f"Launched: {node.name}")

    def destroy(self, node, timeout):
        self.calls.append(("destroy", node.name, ""))
        if "destroy" in self.failing_lifecycle:
            return CommandResult(exit_code=1, stderr="delete failed")
        if self.existing is not None:
            self.existing.discard(node.name)
        return CommandResult(exit_code=0, stdout=f"{node.name} deleted")

    def read_file(self, node, path, timeout):
        self.calls.append(("read_file", node.name, path))
        if path not in self.files:
            return CommandResult(exit_code=1, stderr=f"cat: {path}: No such file or directory")
        return CommandResult(exit_code=0, stdout=self.files[path])

    def inventory(self):
        self.calls.append(("inventory", "", ""))
        return "No instances found."

    def executed(self):
        return [(n, c) for op, n, c in self.calls if op == "execute"]


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture
def nodes():
    return [
        Node(name="cp1", role=NodeRole.CONTROL_PLANE),
        Node(name="w1", role=NodeRole.WORKER),
        host_node(),
    ]


@pytest.fixture
def recorder(tmp_path: Path):
    return RunRecorder(tmp_path / "state" / "run-record.jsonl")


@pytest.fixture
def fake_gateway():
    return FakeGateway


@pytest.fixture
def join_line():
    return JOIN_LINE
