# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/controlplane/status.py

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from ..api.capi import CONTROL_PLANE_NAME_LABEL, Machine
from ..api.conditions import (
    AVAILABLE_CONDITION,
    CONTROL_PLANE_INITIALIZATION_SUCCEEDED_REASON,
    WAITING_FOR_MACHINES_READY_REASON,
    WAITING_FOR_MACHINES_REASON,
)
from ..api.controlplane import KairosControlPlaneSpec, KairosControlPlaneStatus
from ..api.meta import set_condition


class SlotState(str, Enum):
    ABSENT = "Absent"
    PROVISIONING = "Provisioning"
    BOOTSTRAPPED = "Bootstrapped"
    READY = "Ready"
    TERMINATING = "Terminating"


def slot_state(machine: Optional[Machine]) -> SlotState:
    if machine is None:
        return SlotState.ABSENT
    if machine.metadata.deletion_timestamp:
        return SlotState.TERMINATING
    if machine.is_ready:
        return SlotState.READY
    if machine.spec.provider_id:
        return SlotState.BOOTSTRAPPED
    return SlotState.PROVISIONING


def aggregate(
    spec: KairosControlPlaneSpec,
    machines: List[Machine],
    previous: Optional[KairosControlPlaneStatus] = None,
    control_plane_name: str = "",
) -> KairosControlPlaneStatus:
    """
    Derive control-plane status from the observed machines.

    ``initialized`` is sticky: once true in *previous* it stays true.
    Conditions other than Available are carried over from *previous*.
    """
    ready = [m for m in machines if slot_state(m) is SlotState.READY]
    ready_replicas = len(ready)
    updated = [m for m in ready if spec.version and m.spec.version == spec.version]

    status = KairosControlPlaneStatus(
        initialized=bool(previous and previous.initialized) or ready_replicas > 0,
        ready=ready_replicas > 0,
        replicas=len(machines),
        ready_replicas=ready_replicas,
        updated_replicas=len(updated),
        unavailable_replicas=max(0, spec.replicas - ready_replicas),
        observed_generation=previous.observed_generation if previous else 0,
        version=spec.version or None,
        selector=f"{CONTROL_PLANE_NAME_LABEL}={control_plane_name}" if control_plane_name else None,
        conditions=[c.model_copy() for c in previous.conditions] if previous else [],
    )

    if ready_replicas >= 1:
        set_condition(
            status.conditions,
            AVAILABLE_CONDITION,
            True,
            reason=CONTROL_PLANE_INITIALIZATION_SUCCEEDED_REASON,
        )
    elif not machines:
        set_condition(
            status.conditions,
            AVAILABLE_CONDITION,
            False,
            reason=WAITING_FOR_MACHINES_REASON,
            message="no machines exist yet",
            severity="Info",
        )
    else:
        set_condition(
            status.conditions,
            AVAILABLE_CONDITION,
            False,
            reason=WAITING_FOR_MACHINES_READY_REASON,
            message=f"0 of {len(machines)} machines ready",
            severity="Info",
        )
    return status
