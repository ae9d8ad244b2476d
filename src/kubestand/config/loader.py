# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/config/loader.py

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from .models import ClusterConfig

log = logging.getLogger("kubestand")

ENV_CONFIG = "KUBESTAND_CONFIG"


class ConfigError(ValueError):
    pass


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is set.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value is not None:
                base[key] = value
    return base


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def find_config(path: Optional[str | Path] = None) -> Optional[Path]:
    """
    Locate the cluster config using this priority:

    1. explicit path (--config)
    2. KUBESTAND_CONFIG environment variable
    3. ./kubestand.yaml in the working directory

    Returns None when nothing is found; the built-in defaults apply.
    """
    if path:
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigError(f"config file {p} does not exist")
        return p

    env = os.environ.get(ENV_CONFIG)
    if env:
        p = Path(env).expanduser()
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, using defaults", ENV_CONFIG, env)
        return None

    p = Path.cwd() / "kubestand.yaml"
    return p if p.is_file() else None


def load_config(
    path: Optional[str | Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ClusterConfig:
    """
    Load and validate the cluster config.

    Values from the YAML file (with ${ENV_VAR} placeholders resolved) are
    deep-merged with `overrides` (typically CLI flags, None meaning "not
    given") before validation.
    """
    source = find_config(path)
    data: dict = {}
    if source:
        log.debug("Loading config from %s", source)
        try:
            data = _load_yaml(source)
        except yaml.YAMLError as e:
            raise ConfigError(f"{source}: invalid YAML: {e}") from e
    else:
        log.debug("No config file, using defaults")

    if overrides:
        _deep_merge(data, overrides)

    try:
        return ClusterConfig.model_validate(data)
    except ValidationError as e:
        where = source or "defaults"
        raise ConfigError(f"invalid configuration ({where}):\n{e}") from e


def worker_overrides(count: Optional[int], base: Optional[ClusterConfig] = None) -> Optional[list]:
    """
    `--workers N` as a config override: worker-1..N named after the
    first configured worker, sized like it.
    """
    if count is None:
        return None
    if count < 1:
        raise ConfigError("--workers must be at least 1")
    base = base or ClusterConfig()
    template = base.workers[0]
    stem = template.name.rstrip("0123456789") or "k8s-worker"
    return [
        {**template.model_dump(exclude={"address"}), "name": f"{stem}{i}"}
        for i in range(1, count + 1)
    ]
