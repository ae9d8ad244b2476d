from __future__ import annotations
import json
from pathlib import Path
from .interface import Observer
from .events import BaseEvent

class JsonFileObserver(Observer):
    """
    Structured event trail: one file per run under `directory`,
    one JSON object per line.
    """

    def __init__(self, directory: str | Path, run_id: str):
        self.path = Path(directory).expanduser() / f"{run_id}.jsonl"

    def notify(self, event: BaseEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        record = {"type": event.__class__.__name__, **event.dict()}
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
