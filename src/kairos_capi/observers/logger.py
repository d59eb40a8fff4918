# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent

# carried by every event; the run log already has the timestamp
_CONTEXT_FIELDS = ("ts", "run_id", "env", "context")


class LoggerObserver:
    """
    Writes reconcile events to the run log.

    One line per event: ``[event] MachineCreated default/cp-0 run=... infrastructure_kind=...``.
    Events that carry an ``error`` are logged at WARNING so failed slots stand
    out on the console without ``--verbose``.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        data = event.dict()
        target = "/".join(str(data[k]) for k in ("namespace", "name") if data.get(k))
        fields = " ".join(
            f"{k}={v}" for k, v in data.items()
            if k not in _CONTEXT_FIELDS and k not in ("namespace", "name")
        )
        level = logging.WARNING if data.get("error") else logging.INFO
        self.logger.log(
            level,
            "[event] %s %s run=%s %s",
            event.__class__.__name__,
            target or "-",
            data["run_id"],
            fields,
        )
