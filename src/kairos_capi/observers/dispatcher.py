# src/kairos_capi/observers/dispatcher.py
from __future__ import annotations
import logging
from typing import List
from .events import BaseEvent
from .interface import Observer

log = logging.getLogger("kairos_capi")


class EventBus:
    def __init__(self, observers: List[Observer] = None):
        self._observers = observers or []

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception:
                # observers must not break reconciles
                log.debug("observer %r failed on %s", ob, event.__class__.__name__, exc_info=True)
