from __future__ import annotations

from typing import Set

REDACTED = "[REDACTED]"


class SecretStore:
    """
    Values read back from nodes during a run (join tokens and the like).

    Lives only as long as the run; everything written to the log or the
    run record passes through `redact` first.
    """

    def __init__(self) -> None:
        self._values: Set[str] = set()

    def add(self, value: str) -> None:
        value = (value or "").strip()
        if value:
            self._values.add(value)

    def redact(self, text: str) -> str:
        if not text:
            return text
        # longest first so a full join command wins over the token inside it
        for value in sorted(self._values, key=len, reverse=True):
            text = text.replace(value, REDACTED)
        return text

    def __contains__(self, value: str) -> bool:
        return value in self._values

    def __len__(self) -> int:
        return len(self._values)
