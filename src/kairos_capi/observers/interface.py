# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/observers/interface.py
from __future__ import annotations

from typing import Protocol

from .events import BaseEvent


class Observer(Protocol):
    """Anything the reconcilers can report slot and bootstrap events to."""

    def notify(self, event: BaseEvent) -> None:
        """Called synchronously from the reconcile pass; failures are logged and ignored."""
