from kubestand.config.models import ClusterConfig, NodeSpec
from kubestand.kube.parsing import JOIN_COMMAND_PATTERN
from kubestand.plan.builder import build_plan
from kubestand.plan.models import Operation
from kubestand.plan.registry import define
from kubestand.plan.template_renderer import TemplateRenderer


def _by_id(plan):
    return {s.id: s for s in plan}


def test_default_plan_validates_and_follows_setup_order():
    cfg = ClusterConfig()
    plan = define(build_plan(cfg), cfg.nodes())
    assert [s.id for s in plan] == [
        "install_hypervisor",
        "create_nodes",
        "prep_nodes",
        "install_runtime",
        "install_k8s",
        "init_control_plane",
        "install_cni",
        "join_worker",
        "untaint_control_plane",
        "install_kubectl",
        "configure_kubectl",
        "shell_aliases",
        "verify_cluster",
    ]


def test_config_values_reach_the_commands():
    cfg = ClusterConfig(kubernetes_version="1.29", pod_network_cidr="10.10.0.0/16")
    steps = _by_id(build_plan(cfg))
    assert "pkgs.k8s.io/core:/stable:/v1.29/deb" in steps["install_k8s"].command
    assert "--pod-network-cidr=10.10.0.0/16" in steps["init_control_plane"].command
    assert "kube-flannel.yml" in steps["install_cni"].command


def test_join_worker_reads_join_command_from_control_plane():
    join = _by_id(build_plan(ClusterConfig()))["join_worker"]
    assert join.targets == ("worker",)
    assert join.runtime_template
    q = join.queries[0]
    assert q.node == "control-plane"
    assert q.pattern == JOIN_COMMAND_PATTERN
    assert "--print-join-command" in q.command
    assert "{{ join_command }}" in join.command


def test_runtime_template_renders_with_query_and_address():
    join = _by_id(build_plan(ClusterConfig()))["join_worker"]
    out = TemplateRenderer().render_string(
        join.command, {"join_command": "kubeadm join X", "addresses": {"control-plane": "10.1.2.3"}}
    )
    assert "/dev/tcp/10.1.2.3/6443" in out
    assert out.strip().endswith("sudo kubeadm join X")


def test_optional_steps_follow_config():
    cfg = ClusterConfig(allow_control_plane_scheduling=False, shell_aliases=False)
    ids = set(_by_id(build_plan(cfg)))
    assert "untaint_control_plane" not in ids
    assert "shell_aliases" not in ids


def test_ssh_backend_skips_hypervisor_install():
    cfg = ClusterConfig(
        backend="ssh",
        control_plane=NodeSpec(name="cp", address="192.168.1.10"),
        workers=[NodeSpec(name="w1", address="192.168.1.11")],
    )
    assert "install_hypervisor" not in _by_id(build_plan(cfg))


def test_kubeconfig_fetch_and_removal_use_configured_path():
    cfg = ClusterConfig(kubeconfig_path="/tmp/kube/cfg")
    steps = _by_id(build_plan(cfg))
    fetch = steps["configure_kubectl"]
    assert fetch.operation == Operation.FETCH
    assert fetch.params == {"remote_path": "/etc/kubernetes/admin.conf", "local_path": "/tmp/kube/cfg"}
    assert fetch.undo.operation == Operation.REMOVE
    assert fetch.undo.params["paths"] == ["/tmp/kube/cfg"]
    assert fetch.undo.unconditional
