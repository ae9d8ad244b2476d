from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CommandResult:
    exit_code: Optional[int]       # None when the command was killed on timeout
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    skipped: bool = False          # lifecycle no-op, e.g. deleting an absent node

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined output as written to the run record."""
        parts = [p.rstrip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)

    def describe(self) -> str:
        if self.timed_out:
            return f"timed out after {self.duration:.1f}s"
        tail = (self.stderr or self.stdout or "").strip().splitlines()
        last = f": {tail[-1]}" if tail else ""
        if self.exit_code is None:
            return f"error{last}"
        return f"exit {self.exit_code}{last}"

    @classmethod
    def success(cls, stdout: str = "", skipped: bool = False) -> "CommandResult":
        return cls(exit_code=0, stdout=stdout, skipped=skipped)
