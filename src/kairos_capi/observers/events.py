# src/kairos_capi/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one reconcile pass
    env: str          # controller / cli
    context: Optional[str]  # kube-context

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str]) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# Control plane (node-set) lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MachineCreated(BaseEvent):
    name: str
    namespace: str
    infrastructure_kind: str

@dataclass(frozen=True)
class MachineCreationFailed(BaseEvent):
    name: str
    namespace: str
    error: str
    terminal: bool

@dataclass(frozen=True)
class MachineDeleted(BaseEvent):
    name: str
    namespace: str

@dataclass(frozen=True)
class ScaleDownBlocked(BaseEvent):
    name: str
    namespace: str
    reason: str

@dataclass(frozen=True)
class ControlPlaneStatusUpdated(BaseEvent):
    name: str
    namespace: str
    ready_replicas: int
    desired_replicas: int
    initialized: bool


# ---------------------------------------------------------------------
# Bootstrap config lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapDataGenerated(BaseEvent):
    name: str
    namespace: str
    role: str
    secret_name: str

@dataclass(frozen=True)
class BootstrapWaiting(BaseEvent):
    name: str
    namespace: str
    reason: str

@dataclass(frozen=True)
class BootstrapFailed(BaseEvent):
    name: str
    namespace: str
    reason: str
    error: str
    terminal: bool
