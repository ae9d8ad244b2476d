# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/plan/builder.py

from __future__ import annotations

import shlex
from typing import List, Optional

from .models import ALL, HOST, Operation, Query, Step, step
from .teardown import derive
from .template_renderer import TemplateRenderer
from ..config.models import ClusterConfig
from ..kube.parsing import JOIN_COMMAND_PATTERN

CONTROL_PLANE = "control-plane"
WORKER = "worker"

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
API_PORT = 6443

KERNEL_MODULES = ["overlay", "br_netfilter"]
SYSCTL = {
    "net.bridge.bridge-nf-call-iptables": 1,
    "net.bridge.bridge-nf-call-ip6tables": 1,
    "net.ipv4.ip_forward": 1,
}
K8S_STATE_PATHS = ["/etc/kubernetes", "/var/lib/kubelet", "/var/lib/etcd"]
ALIASES = {
    "kgp": "kubectl get pods",
    "kgs": "kubectl get svc",
    "kgn": "kubectl get nodes",
}


def _package_repo(version: str) -> str:
    return f"https://pkgs.k8s.io/core:/stable:/{version}/deb"


def _reset_step(id: str, label: str, target: str, renderer: TemplateRenderer) -> Step:
    return step(
        id, label, target,
        command=renderer.render("reset_node.sh.j2", {"state_paths": K8S_STATE_PATHS}),
        critical=False,
    )


def build_plan(cfg: ClusterConfig, renderer: Optional[TemplateRenderer] = None) -> List[Step]:
    """
    Forward (provisioning) plan for a cluster config.

    Every EXEC step is safe to run again; where a cheap check exists it is
    attached so a node that is already set up is skipped.
    """
    r = renderer or TemplateRenderer()
    kubeconfig = cfg.kubeconfig_path
    steps: List[Step] = []

    if cfg.backend == "multipass":
        steps.append(step(
            "install_hypervisor", "Installing Multipass on host machine", HOST,
            command="sudo snap install multipass",
            check="command -v multipass",
        ))

    steps.append(step(
        "create_nodes", "Creating virtual machines", ALL,
        operation=Operation.LAUNCH,
        undo=step(
            "delete_nodes", "Stopping and deleting virtual machines", ALL,
            operation=Operation.DESTROY,
            critical=False,
            unconditional=True,
        ),
    ))

    steps.append(step(
        "prep_nodes", "Preparing control plane and worker nodes for Kubernetes", ALL,
        command=r.render("prep_node.sh.j2", {"kernel_modules": KERNEL_MODULES, "sysctl": SYSCTL}),
        requires=["create_nodes"],
    ))

    steps.append(step(
        "install_runtime", "Installing containerd on all nodes", ALL,
        command=r.render("install_containerd.sh.j2", {}),
        check="systemctl is-active --quiet containerd && grep -q 'SystemdCgroup = true' /etc/containerd/config.toml",
        requires=["prep_nodes"],
    ))

    steps.append(step(
        "install_k8s", f"Installing Kubernetes {cfg.kubernetes_version} components on all nodes", ALL,
        command=r.render("install_kubernetes.sh.j2", {"package_repo": _package_repo(cfg.kubernetes_version)}),
        check=(
            "command -v kubelet >/dev/null && command -v kubectl >/dev/null && "
            f"kubeadm version -o short | grep -q '^{cfg.kubernetes_version}\\.'"
        ),
        requires=["install_runtime"],
    ))

    steps.append(step(
        "init_control_plane", "Initializing Kubernetes control plane", CONTROL_PLANE,
        command=r.render("init_control_plane.sh.j2", {"pod_network_cidr": cfg.pod_network_cidr}),
        check=f"sudo test -f {ADMIN_CONF}",
        requires=["install_k8s"],
        undo=_reset_step("reset_control_plane", "Resetting Kubernetes state on control plane node", CONTROL_PLANE, r),
    ))

    steps.append(step(
        "install_cni", "Installing CNI plugin", CONTROL_PLANE,
        command=f"kubectl apply -f {shlex.quote(cfg.cni_manifest)}",
        requires=["init_control_plane"],
        undo=step(
            "cleanup_workloads", "Deleting Kubernetes workloads and namespaces", CONTROL_PLANE,
            command=r.render("cleanup_workloads.sh.j2", {"admin_kubeconfig": ADMIN_CONF, "delete_timeout": 120}),
            critical=False,
            leading=True,
        ),
    ))

    # The join command carries a short-lived token: it is read from the
    # control plane right before use, and the control plane address is
    # looked up again at that moment.
    steps.append(step(
        "join_worker", "Joining worker nodes to the cluster", WORKER,
        queries=[Query(
            name="join_command",
            node=CONTROL_PLANE,
            command="sudo kubeadm token create --print-join-command",
            pattern=JOIN_COMMAND_PATTERN,
        )],
        command=(
            f"timeout 120 bash -c 'until (echo > /dev/tcp/{{{{ addresses[\"{CONTROL_PLANE}\"] }}}}/{API_PORT}) 2>/dev/null; do sleep 2; done'\n"
            "sudo {{ join_command }}"
        ),
        runtime_template=True,
        check=f"sudo test -f {KUBELET_CONF}",
        requires=["install_cni"],
        undo=_reset_step("reset_worker", "Resetting Kubernetes state on worker nodes", WORKER, r),
    ))

    if cfg.allow_control_plane_scheduling:
        steps.append(step(
            "untaint_control_plane", "Removing control-plane taint", CONTROL_PLANE,
            command="kubectl taint nodes --all node-role.kubernetes.io/control-plane- || true",
            critical=False,
            requires=["init_control_plane"],
        ))

    steps.append(step(
        "install_kubectl", "Installing kubectl on host machine", HOST,
        command="sudo snap install kubectl --classic",
        check="command -v kubectl",
    ))

    steps.append(step(
        "configure_kubectl", "Configuring kubectl access on host machine", CONTROL_PLANE,
        operation=Operation.FETCH,
        params={"remote_path": ADMIN_CONF, "local_path": kubeconfig},
        requires=["init_control_plane"],
        undo=step(
            "remove_kubeconfig", "Removing kubectl configuration from host machine", HOST,
            operation=Operation.REMOVE,
            params={"paths": [kubeconfig]},
            critical=False,
            unconditional=True,
        ),
    ))

    if cfg.shell_aliases:
        steps.append(step(
            "shell_aliases", "Enabling kubectl autocomplete and aliases", HOST,
            command=r.render("shell_aliases.sh.j2", {"rc_file": "$HOME/.bashrc", "aliases": ALIASES}),
            critical=False,
            requires=["install_kubectl"],
        ))

    steps.append(step(
        "verify_cluster", "Verifying Kubernetes cluster status", HOST,
        command=f"kubectl --kubeconfig {shlex.quote(kubeconfig)} get nodes -o wide",
        requires=["configure_kubectl"],
    ))

    return steps


def build_teardown(cfg: ClusterConfig, renderer: Optional[TemplateRenderer] = None) -> List[Step]:
    return derive(build_plan(cfg, renderer))
