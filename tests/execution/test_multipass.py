import json
import subprocess

import pytest

from kubestand.execution.errors import ResourceAbsent
from kubestand.execution.multipass import MultipassGateway, MultipassHypervisor
from kubestand.plan.models import Node, NodeRole, NodeState, Resources
from kubestand.utils.execution import ExecutionContext


class FakePopen:
    """Scripted stand-in for subprocess.Popen, keyed by multipass subcommand."""

    calls = []
    script = {}

    def __init__(self, argv, **kwargs):
        self.argv = argv
        self.pid = 4242
        FakePopen.calls.append(argv)
        sub = argv[1]
        out = FakePopen.script.get(sub, (0, "", ""))
        if callable(out):
            out = out(argv)
        self.returncode, self._out, self._err = out

    def communicate(self, input=None, timeout=None):
        return self._out, self._err


@pytest.fixture
def popen(monkeypatch):
    FakePopen.calls = []
    FakePopen.script = {}
    monkeypatch.setattr(subprocess, "Popen", FakePopen)
    return FakePopen


def _list(**states):
    return json.dumps({"list": [{"name": n, "state": s, "ipv4": []} for n, s in states.items()]})


def _node(name="cp1"):
    return Node(name=name, role=NodeRole.CONTROL_PLANE, resources=Resources(cpus=2, memory="2.5G", disk="20G"))


def test_launch_builds_multipass_argv(popen):
    gw = MultipassGateway(hypervisor=MultipassHypervisor(image="24.04"))
    node = _node()
    res = gw.launch(node, timeout=600)
    assert res.ok
    assert popen.calls == [[
        "multipass", "launch", "24.04",
        "--name", "cp1", "--cpus", "2", "--memory", "2.5G", "--disk", "20G",
    ]]
    assert node.state == NodeState.RUNNING


def test_exec_runs_through_bash(popen):
    popen.script["exec"] = (0, "hello\n", "")
    res = MultipassGateway().execute(_node(), "echo hello | tr a b", timeout=30)
    assert res.stdout == "hello\n"
    assert popen.calls[0] == ["multipass", "exec", "cp1", "--", "bash", "-c", "echo hello | tr a b"]


def test_exists_reads_multipass_list(popen):
    popen.script["list"] = (0, _list(cp1="Running", w1="Deleted"), "")
    gw = MultipassGateway()
    assert gw.exists(_node("cp1"))
    assert not gw.exists(_node("w1"))
    assert not gw.exists(_node("w2"))


def test_address_comes_from_info_and_is_not_cached(popen):
    ips = iter(["192.168.64.5", "192.168.64.9"])
    popen.script["info"] = lambda argv: (0, json.dumps({"info": {"cp1": {"ipv4": [next(ips)]}}}), "")
    gw = MultipassGateway()
    node = _node()
    assert gw.address(node) == "192.168.64.5"
    assert gw.address(node) == "192.168.64.9"
    assert popen.calls[0] == ["multipass", "info", "cp1", "--format", "json"]


def test_address_waits_for_dhcp(popen):
    answers = iter([[], [], ["192.168.64.5"]])
    popen.script["info"] = lambda argv: (0, json.dumps({"info": {"cp1": {"ipv4": next(answers)}}}), "")
    gw = MultipassGateway(address_retries=3, address_delay=0)
    assert gw.address(_node()) == "192.168.64.5"
    assert len(popen.calls) == 3


def test_address_of_missing_instance(popen):
    popen.script["info"] = (2, "", 'info failed: instance "cp1" does not exist')
    with pytest.raises(ResourceAbsent):
        MultipassGateway().address(_node())


def test_destroy_stops_deletes_and_purges(popen):
    popen.script["list"] = (0, _list(cp1="Running"), "")
    node = _node()
    res = MultipassGateway().destroy(node, timeout=60)
    assert res.ok and not res.skipped
    assert [argv[1] for argv in popen.calls] == ["list", "stop", "delete", "purge"]
    assert node.state == NodeState.DELETED


def test_destroy_of_absent_node_is_skipped(popen):
    popen.script["list"] = (0, _list(), "")
    res = MultipassGateway().destroy(_node(), timeout=60)
    assert res.ok and res.skipped
    assert [argv[1] for argv in popen.calls] == ["list"]


def test_destroy_continues_when_stop_fails(popen):
    popen.script["list"] = (0, _list(cp1="Suspended"), "")
    popen.script["stop"] = (1, "", "stop failed")
    res = MultipassGateway().destroy(_node(), timeout=60)
    assert res.ok
    assert [argv[1] for argv in popen.calls] == ["list", "stop", "delete", "purge"]


def test_dry_run_reads_state_but_changes_nothing(popen, monkeypatch):
    monkeypatch.setattr(MultipassHypervisor, "installed", lambda self: True)
    popen.script["list"] = (0, _list(cp1="Running"), "")
    gw = MultipassGateway(ctx=ExecutionContext(dry_run=True))
    assert gw.exists(_node())
    res = gw.destroy(_node(), timeout=60)
    assert res.ok
    assert [argv[1] for argv in popen.calls] == ["list", "list"]


def test_stopped_instance_is_started_not_relaunched(popen):
    popen.script["list"] = (0, _list(cp1="Stopped"), "")
    gw = MultipassGateway()
    node = _node()
    assert gw.exists(node)
    assert node.state == NodeState.STOPPED

    res = gw.launch(node, timeout=60)
    assert res.ok
    assert popen.calls[-1] == ["multipass", "start", "cp1"]
    assert node.state == NodeState.RUNNING


def test_inventory_lists_remaining_instances(popen, monkeypatch):
    monkeypatch.setattr(MultipassHypervisor, "installed", lambda self: True)
    popen.script["list"] = (0, "No instances found.\n", "")
    assert MultipassGateway().inventory() == "No instances found."
    assert popen.calls[-1] == ["multipass", "list"]
