# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/api/bootstrap.py

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from .meta import Condition, KubeModel, ObjectMeta, ObjectReference

BOOTSTRAP_GROUP = "bootstrap.cluster.x-k8s.io"
BOOTSTRAP_API_VERSION = f"{BOOTSTRAP_GROUP}/v1beta2"

KAIROS_CONFIG_KIND = "KairosConfig"
KAIROS_CONFIG_TEMPLATE_KIND = "KairosConfigTemplate"

ROLE_CONTROL_PLANE = "control-plane"
ROLE_WORKER = "worker"

DEFAULT_USER_NAME = "kairos"
DEFAULT_USER_PASSWORD = "kairos"
DEFAULT_USER_GROUPS = ["admin"]


class File(KubeModel):
    path: str
    content: str = ""
    permissions: Optional[str] = None
    owner: Optional[str] = None


class Manifest(KubeModel):
    # directory under /var/lib/k0s/manifests/
    name: str
    file: str
    content: str = ""


class WorkerTokenSecretReference(KubeModel):
    name: str
    key: str = "token"
    namespace: Optional[str] = None


class KairosConfigSpec(KubeModel):
    role: Literal["control-plane", "worker"] = ROLE_WORKER
    # only k0s is implemented; k3s is accepted by the schema and rejected at synthesis
    distribution: str = "k0s"
    kubernetes_version: str = ""
    server_address: str = ""

    token: str = ""
    worker_token: str = ""
    token_secret_ref: Optional[ObjectReference] = None
    worker_token_secret_ref: Optional[WorkerTokenSecretReference] = None

    ca_cert_hashes: List[str] = Field(default_factory=list)
    ca_cert_secret_ref: Optional[ObjectReference] = None

    single_node: Optional[bool] = None

    user_name: str = DEFAULT_USER_NAME
    user_password: str = DEFAULT_USER_PASSWORD
    user_groups: List[str] = Field(default_factory=lambda: list(DEFAULT_USER_GROUPS))
    github_user: str = ""
    ssh_public_key: str = ""

    pre_commands: List[str] = Field(default_factory=list)
    post_commands: List[str] = Field(default_factory=list)
    files: List[File] = Field(default_factory=list)
    manifests: List[Manifest] = Field(default_factory=list)

    pause: bool = False

    def inline_token(self) -> str:
        return self.worker_token or self.token

    def token_secret(self) -> Optional[WorkerTokenSecretReference]:
        """The single secret reference to resolve, whichever field carries it."""
        if self.worker_token_secret_ref is not None:
            return self.worker_token_secret_ref
        if self.token_secret_ref is not None and self.token_secret_ref.name:
            return WorkerTokenSecretReference(
                name=self.token_secret_ref.name,
                namespace=self.token_secret_ref.namespace,
            )
        return None


class KairosConfigStatus(KubeModel):
    ready: bool = False
    data_secret_name: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    observed_generation: int = 0
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None


class KairosConfig(KubeModel):
    api_version: str = BOOTSTRAP_API_VERSION
    kind: str = KAIROS_CONFIG_KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: KairosConfigSpec = Field(default_factory=KairosConfigSpec)
    status: KairosConfigStatus = Field(default_factory=KairosConfigStatus)


class KairosConfigTemplateResource(KubeModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: KairosConfigSpec = Field(default_factory=KairosConfigSpec)


class KairosConfigTemplateSpec(KubeModel):
    template: KairosConfigTemplateResource = Field(default_factory=KairosConfigTemplateResource)


class KairosConfigTemplate(KubeModel):
    api_version: str = BOOTSTRAP_API_VERSION
    kind: str = KAIROS_CONFIG_TEMPLATE_KIND
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: KairosConfigTemplateSpec = Field(default_factory=KairosConfigTemplateSpec)
