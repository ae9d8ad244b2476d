# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/kubestand/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
import uuid

from ..utils.redact import SecretStore


class RedactingFormatter(logging.Formatter):
    """Formatter that scrubs secrets registered during the run."""

    def __init__(self, fmt: str, datefmt: str, secrets: SecretStore | None = None):
        super().__init__(fmt, datefmt=datefmt)
        self.secrets = secrets or SecretStore()

    def format(self, record: logging.LogRecord) -> str:
        return self.secrets.redact(super().format(record))


def init_logging(
    log_path: Path,
    *,
    name: str = "kubestand",
    verbose: bool = False,
    secrets: SecretStore | None = None,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - human readable log file at a fixed path, appended to across runs
      - console output (INFO, or DEBUG with --debug)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    log_path = Path(log_path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter = RedactingFormatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        secrets=secrets,
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG when --debug is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("=== kubestand run started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
