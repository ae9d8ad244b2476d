# src/kubestand/config/models.py

import ipaddress
import re
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..plan.models import Node, NodeRole, Resources, host_node

FLANNEL_MANIFEST = (
    "https://raw.githubusercontent.com/flannel-io/flannel/master/Documentation/kube-flannel.yml"
)

_SIZE = re.compile(r"^\d+(\.\d+)?[KMG]$")


class NodeSpec(BaseModel):
    name: str
    cpus: int = Field(2, ge=1)
    memory: str = "2G"                   # multipass size syntax: 1.5G, 512M
    disk: str = "10G"
    address: Optional[str] = None        # ssh backend only

    @field_validator("memory", "disk")
    @classmethod
    def _size(cls, v: str) -> str:
        if not _SIZE.match(v):
            raise ValueError(f"invalid size '{v}' (expected e.g. 2G, 1.5G, 512M)")
        return v

    @field_validator("name")
    @classmethod
    def _hostname(cls, v: str) -> str:
        if not re.fullmatch(r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?", v):
            raise ValueError(f"'{v}' is not a valid node name")
        if v == "host":
            raise ValueError("'host' is reserved for the local machine")
        return v

    def resources(self) -> Resources:
        return Resources(cpus=self.cpus, memory=self.memory, disk=self.disk)


class ClusterConfig(BaseModel):
    control_plane: NodeSpec = NodeSpec(name="k8s-controlplane", memory="2.5G", disk="20G")
    workers: List[NodeSpec] = Field(
        default_factory=lambda: [NodeSpec(name="k8s-worker1", memory="1.5G", disk="10G")]
    )
    image: Optional[str] = None                       # multipass image; None = multipass default
    pod_network_cidr: str = "10.244.0.0/16"           # what Flannel expects
    kubernetes_version: str = "v1.30"                 # pkgs.k8s.io stable channel
    cni_manifest: str = FLANNEL_MANIFEST

    backend: Literal["multipass", "ssh"] = "multipass"
    ssh_user: str = "ubuntu"
    ssh_key: Optional[str] = None

    command_timeout: float = Field(900, gt=0)         # seconds, per remote command
    query_timeout: float = Field(120, gt=0)

    allow_control_plane_scheduling: bool = True
    shell_aliases: bool = True

    kubeconfig_path: str = "~/.kube/config"
    state_dir: str = "~/.kubestand"
    log_dir: str = "~"

    @field_validator("pod_network_cidr")
    @classmethod
    def _cidr(cls, v: str) -> str:
        try:
            ipaddress.ip_network(v, strict=True)
        except ValueError as e:
            raise ValueError(f"invalid pod network CIDR '{v}': {e}") from e
        return v

    @field_validator("kubernetes_version")
    @classmethod
    def _channel(cls, v: str) -> str:
        if not v.startswith("v"):
            v = f"v{v}"
        if not re.fullmatch(r"v\d+\.\d+", v):
            raise ValueError(f"kubernetes_version must be a minor channel like v1.30, got '{v}'")
        return v

    @model_validator(mode="after")
    def _nodes(self) -> "ClusterConfig":
        if not self.workers:
            raise ValueError("at least one worker is required")
        names = [self.control_plane.name] + [w.name for w in self.workers]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate node names: {', '.join(dupes)}")
        if self.backend == "ssh":
            missing = [s.name for s in [self.control_plane, *self.workers] if not s.address]
            if missing:
                raise ValueError(f"ssh backend needs an address for: {', '.join(missing)}")
        return self

    # Helper methods
    def node_specs(self) -> List[NodeSpec]:
        return [self.control_plane, *self.workers]

    def nodes(self, include_host: bool = True) -> List[Node]:
        """Fresh Node objects for a run, control plane first."""
        out = [Node(name=self.control_plane.name, role=NodeRole.CONTROL_PLANE,
                    resources=self.control_plane.resources())]
        out += [Node(name=w.name, role=NodeRole.WORKER, resources=w.resources())
                for w in self.workers]
        if include_host:
            out.append(host_node())
        return out

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def run_record_path(self) -> Path:
        return self.state_path / "run-record.jsonl"

    @property
    def events_dir(self) -> Path:
        return self.state_path / "events"

    def log_path(self, direction: str) -> Path:
        name = "k8s-setup.log" if direction == "provision" else "k8s-destroy.log"
        return Path(self.log_dir).expanduser() / name
