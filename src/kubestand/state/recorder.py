# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kubestand/state/recorder.py

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..observers.events import utc_now
from ..utils.redact import SecretStore

log = logging.getLogger("kubestand")

# captured output kept per entry; the log file has the full trace
MAX_OUTPUT = 16 * 1024


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    INVALIDATED = "invalidated"


class Status(str, Enum):
    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILED = "failed"


_STATUS = {
    Outcome.SUCCESS: Status.SUCCESS,
    Outcome.SKIPPED: Status.SUCCESS,
    Outcome.FAILED: Status.FAILED,
    Outcome.TIMEOUT: Status.FAILED,
    Outcome.INVALIDATED: Status.UNKNOWN,
}


@dataclass(frozen=True)
class RunRecordEntry:
    run_id: str
    direction: str
    step: str
    node: str
    outcome: Outcome
    timestamp: str = ""
    exit_code: Optional[int] = None
    output: str = ""

    def to_json(self) -> str:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        return json.dumps(d)

    @classmethod
    def from_json(cls, line: str) -> "RunRecordEntry":
        d = json.loads(line)
        d["outcome"] = Outcome(d["outcome"])
        return cls(**d)


class RunRecorder:
    """
    Append-only run record plus a derived latest-status index.

    The file is JSON lines; it is only ever appended to. A (step, node)
    pair counts as complete when its most recent entry is a success
    (or a skip because it was already satisfied).
    """

    def __init__(self, path: str | Path, secrets: Optional[SecretStore] = None):
        self.path = Path(path).expanduser()
        self.secrets = secrets or SecretStore()
        self._latest: Dict[Tuple[str, str], RunRecordEntry] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    entry = RunRecordEntry.from_json(line)
                except (ValueError, KeyError, TypeError) as e:
                    log.warning(f"run record {self.path}:{lineno} unreadable, ignored ({e})")
                    continue
                self._latest[(entry.step, entry.node)] = entry

    def append(
        self,
        run_id: str,
        direction: str,
        step: str,
        node: str,
        outcome: Outcome,
        exit_code: Optional[int] = None,
        output: str = "",
    ) -> RunRecordEntry:
        output = self.secrets.redact(output or "")
        if len(output) > MAX_OUTPUT:
            output = "...\n" + output[-MAX_OUTPUT:]

        entry = RunRecordEntry(
            run_id=run_id,
            direction=direction,
            step=step,
            node=node,
            outcome=outcome,
            timestamp=utc_now(),
            exit_code=exit_code,
            output=output,
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(entry.to_json() + "\n")
        self._latest[(step, node)] = entry
        return entry

    def status(self, step: str, node: str) -> Status:
        entry = self._latest.get((step, node))
        if entry is None:
            return Status.UNKNOWN
        return _STATUS[entry.outcome]

    def latest(self, step: str, node: str) -> Optional[RunRecordEntry]:
        return self._latest.get((step, node))

    def entries(self) -> Iterator[RunRecordEntry]:
        """Every entry in append order, read back from disk."""
        if not self.path.exists():
            return
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    try:
                        yield RunRecordEntry.from_json(line)
                    except (ValueError, KeyError, TypeError):
                        continue

    def invalidate(self, run_id: str, pairs: Iterable[Tuple[str, str]]) -> List[RunRecordEntry]:
        """
        Forget completion of the given (step, node) pairs, e.g. after the
        cluster they describe has been torn down.
        """
        out = []
        for step, node in pairs:
            if self.status(step, node) != Status.UNKNOWN:
                out.append(self.append(run_id, "destroy", step, node, Outcome.INVALIDATED))
        return out
