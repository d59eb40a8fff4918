# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/api/capi.py
"""
The slice of core Cluster API types the reconcilers read and write.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from .meta import Condition, KubeModel, ObjectMeta, ObjectReference, is_true

CLUSTER_GROUP = "cluster.x-k8s.io"
CLUSTER_API_VERSION = f"{CLUSTER_GROUP}/v1beta1"

MACHINE_KIND = "Machine"
CLUSTER_KIND = "Cluster"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"
CONTROL_PLANE_NAME_LABEL = "cluster.x-k8s.io/control-plane-name"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"

BOOTSTRAP_SECRET_TYPE = "cluster.x-k8s.io/secret"


class Bootstrap(KubeModel):
    config_ref: Optional[ObjectReference] = None
    data_secret_name: Optional[str] = None


class MachineSpec(KubeModel):
    cluster_name: str = ""
    version: Optional[str] = None
    bootstrap: Bootstrap = Field(default_factory=Bootstrap)
    infrastructure_ref: ObjectReference = Field(default_factory=ObjectReference)
    provider_id: Optional[str] = Field(default=None, alias="providerID")


class MachineStatus(KubeModel):
    node_ref: Optional[ObjectReference] = None
    phase: Optional[str] = None
    bootstrap_ready: bool = False
    infrastructure_ready: bool = False
    conditions: List[Condition] = Field(default_factory=list)


class Machine(KubeModel):
    api_version: str = CLUSTER_API_VERSION
    kind: str = MACHINE_KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: MachineSpec = Field(default_factory=MachineSpec)
    status: MachineStatus = Field(default_factory=MachineStatus)

    @property
    def is_ready(self) -> bool:
        """The backing compute reports ready."""
        if is_true(self.status.conditions, "Ready"):
            return True
        return self.status.node_ref is not None and self.status.phase == "Running"


class APIEndpoint(KubeModel):
    host: str = ""
    port: int = 0


class ClusterSpec(KubeModel):
    paused: bool = False
    control_plane_endpoint: APIEndpoint = Field(default_factory=APIEndpoint)
    control_plane_ref: Optional[ObjectReference] = None
    infrastructure_ref: Optional[ObjectReference] = None


class ClusterInitialization(KubeModel):
    infrastructure_provisioned: bool = False
    control_plane_initialized: bool = False


class ClusterStatus(KubeModel):
    infrastructure_ready: bool = False
    control_plane_ready: bool = False
    initialization: ClusterInitialization = Field(default_factory=ClusterInitialization)
    conditions: List[Condition] = Field(default_factory=list)


class Cluster(KubeModel):
    api_version: str = CLUSTER_API_VERSION
    kind: str = CLUSTER_KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @property
    def server_address(self) -> str:
        ep = self.spec.control_plane_endpoint
        if not ep.host:
            return ""
        return f"https://{ep.host}:{ep.port or 6443}"

    @property
    def control_plane_initialized(self) -> bool:
        return (
            self.status.control_plane_ready
            or self.status.initialization.control_plane_initialized
            or is_true(self.status.conditions, "ControlPlaneInitialized")
        )
