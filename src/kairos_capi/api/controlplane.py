# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/api/controlplane.py

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from .meta import Condition, KubeModel, ObjectMeta, ObjectReference

CONTROLPLANE_GROUP = "controlplane.cluster.x-k8s.io"
CONTROLPLANE_API_VERSION = f"{CONTROLPLANE_GROUP}/v1beta2"

KAIROS_CONTROL_PLANE_KIND = "KairosControlPlane"
KAIROS_CONTROL_PLANE_FINALIZER = "kairos.controlplane.cluster.x-k8s.io"


class MachineTemplate(KubeModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    infrastructure_ref: ObjectReference = Field(default_factory=ObjectReference)


class KairosConfigTemplateReference(KubeModel):
    name: str
    namespace: Optional[str] = None


class KairosControlPlaneSpec(KubeModel):
    # 0 or 1 today; higher counts get indexed slots without ordering guarantees
    replicas: int = Field(default=1, ge=0)
    version: str = ""
    machine_template: MachineTemplate = Field(default_factory=MachineTemplate)
    kairos_config_template: Optional[KairosConfigTemplateReference] = None
    pause: bool = False


class KairosControlPlaneStatus(KubeModel):
    initialized: bool = False
    ready: bool = False
    replicas: int = 0
    ready_replicas: int = 0
    updated_replicas: int = 0
    unavailable_replicas: int = 0
    observed_generation: int = 0
    version: Optional[str] = None
    selector: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)


class KairosControlPlane(KubeModel):
    api_version: str = CONTROLPLANE_API_VERSION
    kind: str = KAIROS_CONTROL_PLANE_KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: KairosControlPlaneSpec = Field(default_factory=KairosControlPlaneSpec)
    status: KairosControlPlaneStatus = Field(default_factory=KairosControlPlaneStatus)
