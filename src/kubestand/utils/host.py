# src/kubestand/utils/host.py
"""Host-side files: the admin kubeconfig we fetch, and removing it again."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List


def write_private_file(path: str | Path, content: str) -> Path:
    """
    Write `content` to `path` readable by the owner only (0600).
    """
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    os.chmod(path, 0o600)
    return path


def remove_files(paths: Iterable[str | Path]) -> List[Path]:
    """Remove the given files; returns the ones that actually existed."""
    removed: List[Path] = []
    for p in paths:
        p = Path(p).expanduser()
        if p.is_file() or p.is_symlink():
            p.unlink()
            removed.append(p)
    return removed
