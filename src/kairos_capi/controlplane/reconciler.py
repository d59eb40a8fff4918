# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/controlplane/reconciler.py
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..api.bootstrap import (
    BOOTSTRAP_API_VERSION,
    KAIROS_CONFIG_KIND,
    KAIROS_CONFIG_TEMPLATE_KIND,
    ROLE_CONTROL_PLANE,
    KairosConfig,
    KairosConfigSpec,
    KairosConfigTemplate,
)
from ..api.capi import (
    CLUSTER_API_VERSION,
    CLUSTER_KIND,
    CLUSTER_NAME_LABEL,
    CONTROL_PLANE_LABEL,
    CONTROL_PLANE_NAME_LABEL,
    MACHINE_KIND,
    PAUSED_ANNOTATION,
    Bootstrap,
    Machine,
    MachineSpec,
)
from ..api.conditions import (
    BOOTSTRAP_DATA_SECRET_AVAILABLE_REASON,
    BOOTSTRAP_READY_CONDITION,
    BOOTSTRAP_SUCCEEDED_REASON,
    DATA_SECRET_AVAILABLE_CONDITION,
    MACHINE_CREATION_FAILED_REASON,
    MACHINES_CREATED_CONDITION,
    SCALING_DOWN_REASON,
    SCALING_UP_REASON,
)
from ..api.controlplane import (
    CONTROLPLANE_API_VERSION,
    KAIROS_CONTROL_PLANE_FINALIZER,
    KAIROS_CONTROL_PLANE_KIND,
    KairosControlPlane,
    KairosControlPlaneStatus,
)
from ..api.meta import ObjectMeta, ObjectReference, owner_ref_to, set_condition
from ..bootstrap.cloud_config import synthesize
from ..bootstrap.data_secret import write_data_secret
from ..errors import (
    AlreadyExistsError,
    DependencyNotReady,
    KairosCapiError,
    NotFoundError,
    ReconcileCancelled,
    ValidationError,
    is_terminal,
)
from ..infrastructure.clone import clone_infrastructure_machine
from ..kube.store import (
    SECRET_API_VERSION,
    SECRET_KIND,
    SecretLookup,
    Store,
    StoreSecretLookup,
    check_cancelled,
)
from ..observers.dispatcher import EventBus
from ..observers.events import (
    ControlPlaneStatusUpdated,
    MachineCreated,
    MachineCreationFailed,
    MachineDeleted,
    ScaleDownBlocked,
    new_ctx,
)
from ..observers.interface import Observer
from .status import SlotState, aggregate, slot_state

log = logging.getLogger("kairos_capi")


@dataclass
class ReconcileResult:
    requeue: bool = False
    status: Optional[KairosControlPlaneStatus] = None
    errors: List[str] = field(default_factory=list)


def slot_name(control_plane_name: str, index: int) -> str:
    return f"{control_plane_name}-{index}"


def slot_index(control_plane_name: str, machine_name: str) -> Optional[int]:
    m = re.fullmatch(re.escape(control_plane_name) + r"-(\d+)", machine_name)
    return int(m.group(1)) if m else None


def _age_key(machine: Machine) -> tuple:
    # RFC3339 timestamps in UTC sort lexically
    return (machine.metadata.creation_timestamp or "", machine.metadata.name)


class KairosControlPlaneReconciler:
    """
    Converges the Machines of one KairosControlPlane to spec.replicas.

    Each slot is a Machine named ``<control-plane>-<index>`` plus the
    KairosConfig, bootstrap data Secret and infrastructure machine it
    references, all sharing that name. Creation is idempotent on that name,
    so a pass interrupted half way is finished by the next one.
    """

    def __init__(
        self,
        store: Store,
        secrets: Optional[SecretLookup] = None,
        observers: Optional[List[Observer]] = None,
        cancel: Optional[threading.Event] = None,
        env: str = "controller",
        context: Optional[str] = None,
    ):
        self.store = store
        self.secrets = secrets or StoreSecretLookup(store)
        self.bus = EventBus(observers or [])
        self.cancel = cancel
        self.env = env
        self.context = context

    # -------------------------------------------------------------------------
    # Store helpers
    # -------------------------------------------------------------------------

    def _get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        check_cancelled(self.cancel)
        return self.store.get(api_version, kind, namespace, name)

    def _create_or_get(self, obj: dict) -> dict:
        check_cancelled(self.cancel)
        try:
            return self.store.create(obj)
        except AlreadyExistsError:
            meta = obj["metadata"]
            log.debug("[kcp] %s %s already exists, adopting", obj["kind"], meta["name"])
            return self._get(obj["apiVersion"], obj["kind"], meta["namespace"], meta["name"])

    def _delete_ignore_missing(self, api_version: str, kind: str, namespace: str, name: str) -> None:
        check_cancelled(self.cancel)
        try:
            self.store.delete(api_version, kind, namespace, name)
        except NotFoundError:
            pass

    def _list_machines(self, kcp: KairosControlPlane) -> List[Machine]:
        check_cancelled(self.cancel)
        items = self.store.list(
            CLUSTER_API_VERSION,
            MACHINE_KIND,
            kcp.metadata.namespace,
            labels={CONTROL_PLANE_NAME_LABEL: kcp.metadata.name},
        )
        return [Machine.model_validate(i) for i in items]

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        run_ctx = new_ctx(env=self.env, context=self.context)

        try:
            raw = self._get(CONTROLPLANE_API_VERSION, KAIROS_CONTROL_PLANE_KIND, namespace, name)
        except NotFoundError:
            log.info("[kcp] %s/%s not found, nothing to do", namespace, name)
            return ReconcileResult()
        kcp = KairosControlPlane.model_validate(raw)

        if kcp.spec.pause or kcp.metadata.annotations.get(PAUSED_ANNOTATION) is not None:
            log.info("[kcp] %s/%s is paused", namespace, name)
            return ReconcileResult(status=kcp.status)

        if kcp.metadata.deletion_timestamp:
            return self._reconcile_delete(kcp, run_ctx)

        if KAIROS_CONTROL_PLANE_FINALIZER not in kcp.metadata.finalizers:
            kcp.metadata.finalizers.append(KAIROS_CONTROL_PLANE_FINALIZER)
            check_cancelled(self.cancel)
            kcp = KairosControlPlane.model_validate(self.store.update(kcp.to_dict()))

        cluster_name = self._cluster_name(kcp)
        if not cluster_name:
            log.info("[kcp] %s/%s has no owning Cluster yet", namespace, name)
            return ReconcileResult(requeue=True, status=kcp.status, errors=["waiting for owning Cluster"])

        machines = self._list_machines(kcp)
        active = [m for m in machines if slot_state(m) is not SlotState.TERMINATING]
        desired = kcp.spec.replicas
        result = ReconcileResult()

        for machine in active:
            self._adopt_slot(machine)

        if len(active) < desired:
            self._scale_up(kcp, cluster_name, machines, desired - len(active), result, run_ctx)
        elif len(active) > desired:
            self._scale_down(kcp, active, desired, run_ctx)

        machines = self._list_machines(kcp)
        result.status = self._write_status(kcp, machines, result, run_ctx)
        if len([m for m in machines if slot_state(m) is not SlotState.TERMINATING]) != desired:
            result.requeue = True
        return result

    # -------------------------------------------------------------------------
    # Scale up
    # -------------------------------------------------------------------------

    def _scale_up(
        self,
        kcp: KairosControlPlane,
        cluster_name: str,
        machines: List[Machine],
        count: int,
        result: ReconcileResult,
        run_ctx: dict,
    ) -> None:
        used = {slot_index(kcp.metadata.name, m.metadata.name) for m in machines}
        free = (i for i in range(len(machines) + count + 1) if i not in used)

        for index in [next(free) for _ in range(count)]:
            name = slot_name(kcp.metadata.name, index)
            try:
                infra_kind = self._create_slot(kcp, cluster_name, name)
            except ReconcileCancelled:
                raise
            except KairosCapiError as e:
                terminal = is_terminal(e)
                log.warning("[kcp] creating machine %s failed (terminal=%s): %s", name, terminal, e)
                result.requeue = True
                result.errors.append(f"{name}: {e}")
                self.bus.emit(
                    MachineCreationFailed(
                        name=name,
                        namespace=kcp.metadata.namespace,
                        error=str(e),
                        terminal=terminal,
                        **run_ctx,
                    )
                )
                continue

            log.info("[kcp] created machine %s/%s", kcp.metadata.namespace, name)
            self.bus.emit(
                MachineCreated(
                    name=name,
                    namespace=kcp.metadata.namespace,
                    infrastructure_kind=infra_kind,
                    **run_ctx,
                )
            )

    def _bootstrap_spec(self, kcp: KairosControlPlane) -> KairosConfigSpec:
        ref = kcp.spec.kairos_config_template
        if ref is None:
            spec = KairosConfigSpec()
        else:
            try:
                raw = self._get(
                    BOOTSTRAP_API_VERSION,
                    KAIROS_CONFIG_TEMPLATE_KIND,
                    ref.namespace or kcp.metadata.namespace,
                    ref.name,
                )
            except NotFoundError as e:
                raise DependencyNotReady(f"KairosConfigTemplate {ref.name} not found") from e
            try:
                template = KairosConfigTemplate.model_validate(raw)
            except PydanticValidationError as e:
                raise ValidationError(f"KairosConfigTemplate {ref.name} is invalid: {e}") from e
            spec = template.spec.template.spec.model_copy(deep=True)

        spec.role = ROLE_CONTROL_PLANE
        if not spec.kubernetes_version:
            spec.kubernetes_version = kcp.spec.version
        if spec.single_node is None:
            spec.single_node = kcp.spec.replicas == 1
        return spec

    def _create_slot(self, kcp: KairosControlPlane, cluster_name: str, name: str) -> str:
        namespace = kcp.metadata.namespace
        template_meta = kcp.spec.machine_template.metadata
        labels: Dict[str, str] = {
            **template_meta.labels,
            CLUSTER_NAME_LABEL: cluster_name,
            CONTROL_PLANE_LABEL: "",
            CONTROL_PLANE_NAME_LABEL: kcp.metadata.name,
        }
        annotations = dict(template_meta.annotations)
        kcp_owner = owner_ref_to(kcp.metadata, CONTROLPLANE_API_VERSION, KAIROS_CONTROL_PLANE_KIND)

        # 1. everything that can fail on spec problems runs before any write
        spec = self._bootstrap_spec(kcp)
        try:
            document = synthesize(
                spec,
                ROLE_CONTROL_PLANE,
                spec.server_address,
                secrets=self.secrets,
                namespace=namespace,
            )
        except NotFoundError as e:
            raise DependencyNotReady(f"bootstrap secret for {name} not available: {e}") from e

        infra_ref = kcp.spec.machine_template.infrastructure_ref
        infra = clone_infrastructure_machine(
            self.store,
            infra_ref,
            name,
            namespace,
            labels,
            annotations,
            cancel=self.cancel,
        )
        infra["metadata"]["ownerReferences"] = [kcp_owner.to_dict()]

        # 2. bootstrap config + data secret
        config = KairosConfig(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels,
                annotations=annotations,
                owner_references=[kcp_owner],
            ),
            spec=spec,
        )
        config_obj = config.to_dict()
        config_obj.pop("status", None)
        config = KairosConfig.model_validate(self._create_or_get(config_obj))

        write_data_secret(self.store, config.metadata, cluster_name, document, cancel=self.cancel)

        config.status.ready = True
        config.status.data_secret_name = name
        config.status.observed_generation = config.metadata.generation
        set_condition(config.status.conditions, BOOTSTRAP_READY_CONDITION, True, reason=BOOTSTRAP_SUCCEEDED_REASON)
        set_condition(
            config.status.conditions,
            DATA_SECRET_AVAILABLE_CONDITION,
            True,
            reason=BOOTSTRAP_DATA_SECRET_AVAILABLE_REASON,
        )
        check_cancelled(self.cancel)
        config = KairosConfig.model_validate(self.store.update_status(config.to_dict()))

        # 3. infrastructure machine
        infra = self._create_or_get(infra)

        # 4. the Machine itself
        machine = Machine(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels,
                annotations=annotations,
                owner_references=[kcp_owner],
            ),
            spec=MachineSpec(
                cluster_name=cluster_name,
                version=kcp.spec.version or None,
                bootstrap=Bootstrap(
                    config_ref=ObjectReference(
                        api_version=BOOTSTRAP_API_VERSION,
                        kind=KAIROS_CONFIG_KIND,
                        name=name,
                        namespace=namespace,
                    ),
                    data_secret_name=name,
                ),
                infrastructure_ref=ObjectReference(
                    api_version=infra["apiVersion"],
                    kind=infra["kind"],
                    name=name,
                    namespace=namespace,
                ),
            ),
        )
        machine_obj = machine.to_dict()
        machine_obj.pop("status", None)
        machine = Machine.model_validate(self._create_or_get(machine_obj))

        # 5. hand ownership of the slot's objects to the Machine
        self._adopt(infra, machine)
        self._adopt(config.to_dict(), machine)
        return infra["kind"]

    def _adopt_slot(self, machine: Machine) -> None:
        """Finish ownership for a slot whose adoption was cut short on an earlier pass."""
        ns = machine.metadata.namespace
        refs = [machine.spec.infrastructure_ref, machine.spec.bootstrap.config_ref]
        for ref in refs:
            if ref is None or not ref.kind or not ref.name:
                continue
            try:
                obj = self._get(ref.api_version, ref.kind, ref.namespace or ns, ref.name)
            except NotFoundError:
                continue
            self._adopt(obj, machine)

    def _adopt(self, obj: dict, machine: Machine) -> None:
        owner = owner_ref_to(machine.metadata, CLUSTER_API_VERSION, MACHINE_KIND).to_dict()
        refs = obj["metadata"].get("ownerReferences") or []
        if any(r.get("kind") == MACHINE_KIND and r.get("name") == machine.metadata.name for r in refs):
            return
        # the Machine becomes the controller; the control plane stays a plain owner
        for r in refs:
            r["controller"] = False
        obj["metadata"]["ownerReferences"] = refs + [owner]
        check_cancelled(self.cancel)
        self.store.update(obj)

    # -------------------------------------------------------------------------
    # Scale down / delete
    # -------------------------------------------------------------------------

    def _scale_down(
        self,
        kcp: KairosControlPlane,
        active: List[Machine],
        desired: int,
        run_ctx: dict,
    ) -> None:
        ordered = sorted(active, key=_age_key)
        ready = [m for m in ordered if slot_state(m) is SlotState.READY]
        if len(ready) == 1:
            # the only initialized machine is kept first, whatever its age
            ordered.remove(ready[0])
            ordered.insert(0, ready[0])
        excess = list(reversed(ordered[desired:]))
        ready_count = len(ready)

        for machine in excess:
            is_ready = slot_state(machine) is SlotState.READY
            if is_ready and ready_count == 1:
                log.warning(
                    "[kcp] not deleting %s: it is the only initialized control plane machine",
                    machine.metadata.name,
                )
                self.bus.emit(
                    ScaleDownBlocked(
                        name=machine.metadata.name,
                        namespace=machine.metadata.namespace,
                        reason="sole initialized machine",
                        **run_ctx,
                    )
                )
                continue
            self._delete_slot(machine, run_ctx)
            if is_ready:
                ready_count -= 1

    def _delete_slot(self, machine: Machine, run_ctx: dict) -> None:
        ns = machine.metadata.namespace
        infra = machine.spec.infrastructure_ref
        if infra.kind and infra.name:
            self._delete_ignore_missing(infra.api_version, infra.kind, infra.namespace or ns, infra.name)

        config_ref = machine.spec.bootstrap.config_ref
        if config_ref is not None and config_ref.name:
            self._delete_ignore_missing(
                config_ref.api_version or BOOTSTRAP_API_VERSION,
                config_ref.kind or KAIROS_CONFIG_KIND,
                config_ref.namespace or ns,
                config_ref.name,
            )
        if machine.spec.bootstrap.data_secret_name:
            self._delete_ignore_missing(SECRET_API_VERSION, SECRET_KIND, ns, machine.spec.bootstrap.data_secret_name)

        self._delete_ignore_missing(CLUSTER_API_VERSION, MACHINE_KIND, ns, machine.metadata.name)
        log.info("[kcp] deleted machine %s/%s", ns, machine.metadata.name)
        self.bus.emit(MachineDeleted(name=machine.metadata.name, namespace=ns, **run_ctx))

    def _reconcile_delete(self, kcp: KairosControlPlane, run_ctx: dict) -> ReconcileResult:
        machines = self._list_machines(kcp)
        for machine in machines:
            if slot_state(machine) is not SlotState.TERMINATING:
                self._delete_slot(machine, run_ctx)

        if self._list_machines(kcp):
            return ReconcileResult(requeue=True, status=kcp.status)

        if KAIROS_CONTROL_PLANE_FINALIZER in kcp.metadata.finalizers:
            kcp.metadata.finalizers.remove(KAIROS_CONTROL_PLANE_FINALIZER)
            check_cancelled(self.cancel)
            self.store.update(kcp.to_dict())
        log.info("[kcp] %s/%s finalized", kcp.metadata.namespace, kcp.metadata.name)
        return ReconcileResult(status=kcp.status)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _cluster_name(self, kcp: KairosControlPlane) -> str:
        label = kcp.metadata.labels.get(CLUSTER_NAME_LABEL)
        if label:
            return label
        owner = kcp.metadata.owner_of_kind(CLUSTER_KIND)
        return owner.name if owner else ""

    def _write_status(
        self,
        kcp: KairosControlPlane,
        machines: List[Machine],
        result: ReconcileResult,
        run_ctx: dict,
    ) -> KairosControlPlaneStatus:
        status = aggregate(kcp.spec, machines, previous=kcp.status, control_plane_name=kcp.metadata.name)
        status.observed_generation = kcp.metadata.generation

        active = [m for m in machines if slot_state(m) is not SlotState.TERMINATING]
        desired = kcp.spec.replicas
        if result.errors:
            set_condition(
                status.conditions,
                MACHINES_CREATED_CONDITION,
                False,
                reason=MACHINE_CREATION_FAILED_REASON,
                message="; ".join(result.errors),
                severity="Error",
            )
        elif len(active) < desired:
            set_condition(
                status.conditions,
                MACHINES_CREATED_CONDITION,
                False,
                reason=SCALING_UP_REASON,
                message=f"{len(active)} of {desired} machines created",
                severity="Info",
            )
        elif len(active) > desired:
            set_condition(
                status.conditions,
                MACHINES_CREATED_CONDITION,
                False,
                reason=SCALING_DOWN_REASON,
                message=f"{len(active)} machines exist, {desired} desired",
                severity="Info",
            )
        else:
            set_condition(status.conditions, MACHINES_CREATED_CONDITION, True)

        kcp.status = status
        check_cancelled(self.cancel)
        self.store.update_status(kcp.to_dict())

        self.bus.emit(
            ControlPlaneStatusUpdated(
                name=kcp.metadata.name,
                namespace=kcp.metadata.namespace,
                ready_replicas=status.ready_replicas,
                desired_replicas=desired,
                initialized=status.initialized,
                **run_ctx,
            )
        )
        return status
