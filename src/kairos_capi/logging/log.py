# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/logging/log.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "kairos_capi"
DEFAULT_LOG_DIR = Path.home() / ".kairos-capi" / "logs"

_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def run_log_path(base_dir: Path, run_id: str, name: str = LOGGER_NAME) -> Path:
    """One file per CLI invocation, sortable by start time."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return base_dir / f"{name}-{ts}-{run_id}.log"


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = LOGGER_NAME,
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Set up the ``kairos_capi`` logger for one run.

    The run file gets every record at DEBUG. The console gets INFO, or DEBUG
    with ``--verbose``. Handlers from an earlier call are replaced, so calling
    this twice in one process does not duplicate lines.

    Returns ``(logger, run_id, log_path)``.
    """
    run_id = str(uuid.uuid4())
    base_dir = base_dir or DEFAULT_LOG_DIR
    base_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_log_path(base_dir, run_id, name)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False

    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    handlers = (
        (logging.FileHandler(log_path), logging.DEBUG),
        (logging.StreamHandler(), logging.DEBUG if verbose else logging.INFO),
    )
    for handler, level in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.info("kairos-capi run %s started, log file %s", run_id, log_path)
    return logger, run_id, log_path
