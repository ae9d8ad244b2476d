from pathlib import Path
import textwrap

import pytest

from kubestand.config.loader import ConfigError, ENV_CONFIG, find_config, load_config, worker_overrides
from kubestand.config.models import ClusterConfig


def test_load_config_minimal_ok(tmp_path: Path):
    cfg_text = textwrap.dedent("""
        control_plane:
          name: cp
          memory: 4G
        workers:
          - name: node-a
          - name: node-b
            cpus: 4
        kubernetes_version: "1.31"
    """)
    f = tmp_path / "cluster.yaml"
    f.write_text(cfg_text)
    cfg = load_config(f)
    assert cfg.control_plane.name == "cp"
    assert cfg.control_plane.memory == "4G"
    assert [w.name for w in cfg.workers] == ["node-a", "node-b"]
    assert cfg.workers[1].cpus == 4
    assert cfg.kubernetes_version == "v1.31"


def test_defaults_match_two_node_cluster(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(ENV_CONFIG, raising=False)
    cfg = load_config()
    assert [n.name for n in cfg.nodes(include_host=False)] == ["k8s-controlplane", "k8s-worker1"]
    assert cfg.control_plane.memory == "2.5G" and cfg.control_plane.disk == "20G"
    assert cfg.pod_network_cidr == "10.244.0.0/16"
    assert cfg.log_path("provision").name == "k8s-setup.log"
    assert cfg.log_path("destroy").name == "k8s-destroy.log"


def test_env_vars_are_expanded(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("KS_STATE", str(tmp_path / "state"))
    f = tmp_path / "cluster.yaml"
    f.write_text("state_dir: ${KS_STATE}\n")
    cfg = load_config(f)
    assert cfg.run_record_path == tmp_path / "state" / "run-record.jsonl"


def test_overrides_win_unless_unset(tmp_path: Path):
    f = tmp_path / "cluster.yaml"
    f.write_text("pod_network_cidr: 10.10.0.0/16\nkubernetes_version: v1.29\n")
    cfg = load_config(f, overrides={"pod_network_cidr": None, "kubernetes_version": "v1.30"})
    assert cfg.pod_network_cidr == "10.10.0.0/16"
    assert cfg.kubernetes_version == "v1.30"


@pytest.mark.parametrize("body, needle", [
    ("pod_network_cidr: 10.244.0.1/16\n", "pod_network_cidr"),
    ("workers: []\n", "at least one worker"),
    ("workers:\n  - name: k8s-controlplane\n", "duplicate node names"),
    ("control_plane:\n  name: Bad_Name\n", "not a valid node name"),
    ("backend: ssh\n", "needs an address"),
    ("control_plane:\n  name: cp\n  memory: lots\n", "invalid size"),
])
def test_invalid_config_raises_config_error(tmp_path: Path, body, needle):
    f = tmp_path / "cluster.yaml"
    f.write_text(body)
    with pytest.raises(ConfigError, match=needle):
        load_config(f)


def test_bad_yaml_and_missing_file(tmp_path: Path):
    f = tmp_path / "cluster.yaml"
    f.write_text("workers: [unclosed\n")
    with pytest.raises(ConfigError, match="invalid YAML"):
        load_config(f)
    with pytest.raises(ConfigError, match="does not exist"):
        load_config(tmp_path / "missing.yaml")


def test_find_config_prefers_env_then_cwd(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(ENV_CONFIG, raising=False)
    assert find_config() is None

    local = tmp_path / "kubestand.yaml"
    local.write_text("{}\n")
    assert find_config() == local

    other = tmp_path / "other.yaml"
    other.write_text("{}\n")
    monkeypatch.setenv(ENV_CONFIG, str(other))
    assert find_config() == other


def test_worker_overrides_follow_first_worker():
    ws = worker_overrides(3, ClusterConfig())
    assert [w["name"] for w in ws] == ["k8s-worker1", "k8s-worker2", "k8s-worker3"]
    assert all(w["memory"] == "1.5G" for w in ws)
    assert worker_overrides(None) is None
    with pytest.raises(ConfigError):
        worker_overrides(0)
