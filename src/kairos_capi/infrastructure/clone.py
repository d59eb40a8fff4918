# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/infrastructure/clone.py
"""
Infrastructure machine cloning.

A control plane references an infrastructure *template* (DockerMachineTemplate,
KubevirtMachineTemplate, ...). Each slot gets its own machine object built
from that template. The builders are registered per template Kind so a new
provider is one ``register_cloner`` call away.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, Optional

from ..api.meta import ObjectReference
from ..errors import DependencyNotReady, NotFoundError, UnsupportedProvider
from ..kube.store import Store, check_cancelled

log = logging.getLogger("kairos_capi")

INFRASTRUCTURE_GROUP = "infrastructure.cluster.x-k8s.io"
GENERIC_MACHINE_VERSION = "v1beta1"
KUBEVIRT_FALLBACK_VERSION = "v1alpha1"
CLOUD_INIT_DISK_NAME = "cloudinitdisk"

# (template object, name, namespace, labels, annotations) -> machine object
Cloner = Callable[[dict, str, str, Dict[str, str], Dict[str, str]], dict]

_CLONERS: Dict[str, Cloner] = {}


def register_cloner(*kinds: str) -> Callable[[Cloner], Cloner]:
    def decorator(fn: Cloner) -> Cloner:
        for kind in kinds:
            _CLONERS[kind] = fn
        return fn
    return decorator


def registered_kinds() -> list[str]:
    return sorted(_CLONERS)


def _group_version(api_version: str) -> tuple[str, str]:
    group, _, version = api_version.rpartition("/")
    return group, version


def _nested(obj: Any, *path: str) -> Optional[Any]:
    for key in path:
        if not isinstance(obj, dict) or key not in obj:
            return None
        obj = obj[key]
    return obj


def _machine_object(
    group: str,
    version: str,
    kind: str,
    name: str,
    namespace: str,
    labels: Dict[str, str],
    annotations: Dict[str, str],
) -> dict:
    return {
        "apiVersion": f"{group}/{version}" if group else version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": dict(labels or {}),
            "annotations": dict(annotations or {}),
        },
    }


def _strip_template_suffix(kind: str) -> str:
    return kind[: -len("Template")] if kind.endswith("Template") else kind


# ---------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------
@register_cloner("DockerMachineTemplate", "VSphereMachineTemplate")
def clone_generic_template(
    template: dict,
    name: str,
    namespace: str,
    labels: Dict[str, str],
    annotations: Dict[str, str],
) -> dict:
    """spec.template.spec is copied verbatim into spec."""
    group, _ = _group_version(template.get("apiVersion", ""))
    machine = _machine_object(
        group or INFRASTRUCTURE_GROUP,
        GENERIC_MACHINE_VERSION,
        _strip_template_suffix(template.get("kind", "")),
        name,
        namespace,
        labels,
        annotations,
    )
    spec = _nested(template, "spec", "template", "spec")
    if isinstance(spec, dict):
        machine["spec"] = copy.deepcopy(spec)
    return machine


def _without_cloud_init_volumes(volumes: list) -> list:
    # the infra provider injects its own config-drive volume
    return [v for v in volumes if not (isinstance(v, dict) and "cloudInitNoCloud" in v)]


def _without_cloud_init_disks(disks: list) -> list:
    return [d for d in disks if not (isinstance(d, dict) and d.get("name") == CLOUD_INIT_DISK_NAME)]


@register_cloner("KubevirtMachineTemplate", "KubeVirtMachineTemplate")
def clone_kubevirt_template(
    template: dict,
    name: str,
    namespace: str,
    labels: Dict[str, str],
    annotations: Dict[str, str],
) -> dict:
    """
    spec.template.spec.virtualMachineTemplate.spec becomes
    spec.virtualMachineTemplate.spec, minus any cloud-init volume and disk.
    """
    group, version = _group_version(template.get("apiVersion", ""))
    machine = _machine_object(
        group or INFRASTRUCTURE_GROUP,
        version or KUBEVIRT_FALLBACK_VERSION,
        "KubevirtMachine",
        name,
        namespace,
        labels,
        annotations,
    )

    vm_spec = _nested(template, "spec", "template", "spec", "virtualMachineTemplate", "spec")
    if not isinstance(vm_spec, dict):
        return machine

    vm_spec = copy.deepcopy(vm_spec)
    target: Dict[str, Any] = {}
    if isinstance(vm_spec.get("running"), bool):
        target["running"] = vm_spec["running"]

    pod_spec = _nested(vm_spec, "template", "spec")
    if isinstance(pod_spec, dict):
        if isinstance(pod_spec.get("volumes"), list):
            pod_spec["volumes"] = _without_cloud_init_volumes(pod_spec["volumes"])
        devices = _nested(pod_spec, "domain", "devices")
        if isinstance(devices, dict) and isinstance(devices.get("disks"), list):
            devices["disks"] = _without_cloud_init_disks(devices["disks"])

    vm_spec.update(target)
    machine["spec"] = {"virtualMachineTemplate": {"spec": vm_spec}}
    return machine


# ---------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------
def clone_infrastructure_machine(
    store: Store,
    template_ref: ObjectReference,
    name: str,
    namespace: str,
    labels: Optional[Dict[str, str]] = None,
    annotations: Optional[Dict[str, str]] = None,
    *,
    cancel: Optional[threading.Event] = None,
) -> dict:
    """
    Build (but do not persist) the infrastructure machine for one slot.

    Raises DependencyNotReady when the template does not exist yet and
    UnsupportedProvider when no cloner is registered for its Kind.
    """
    log.info(
        "[infra] cloning %s %s/%s (apiVersion=%s) into %s",
        template_ref.kind,
        template_ref.namespace or namespace,
        template_ref.name,
        template_ref.api_version,
        name,
    )

    cloner = _CLONERS.get(template_ref.kind)
    unsupported = UnsupportedProvider(
        f"unsupported infrastructure provider: {template_ref.kind} "
        f"(Group: {template_ref.group}, Version: {template_ref.version}, "
        f"FullGVK: {template_ref.api_version}, Kind={template_ref.kind})"
    )

    check_cancelled(cancel)
    try:
        template = store.get(
            template_ref.api_version,
            template_ref.kind,
            template_ref.namespace or namespace,
            template_ref.name,
        )
    except NotFoundError as e:
        # an unknown Kind usually has no resource type either; report the Kind
        if cloner is None:
            raise unsupported from e
        raise DependencyNotReady(
            f"infrastructure template {template_ref.kind} {template_ref.name} not found"
        ) from e

    if cloner is None:
        raise unsupported
    return cloner(template, name, namespace, labels or {}, annotations or {})
