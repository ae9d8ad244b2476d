from __future__ import annotations
import logging
from .events import BaseEvent, CommandFailed, RunSummary


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts", "run_id"))

        if isinstance(event, CommandFailed):
            level = logging.ERROR if event.critical else logging.WARNING
        elif isinstance(event, RunSummary) and event.status != "succeeded":
            level = logging.ERROR
        else:
            level = logging.DEBUG
        self.logger.log(level, f"[EVENT] {etype}: {msg}")
