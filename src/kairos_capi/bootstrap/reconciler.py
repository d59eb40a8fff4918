# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/bootstrap/reconciler.py
from __future__ import annotations

import logging
import threading
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..api.bootstrap import (
    BOOTSTRAP_API_VERSION,
    KAIROS_CONFIG_KIND,
    ROLE_WORKER,
    KairosConfig,
    KairosConfigStatus,
)
from ..api.capi import (
    CLUSTER_API_VERSION,
    CLUSTER_KIND,
    CLUSTER_NAME_LABEL,
    MACHINE_KIND,
    PAUSED_ANNOTATION,
    Cluster,
    Machine,
)
from ..api.conditions import (
    BOOTSTRAP_DATA_SECRET_AVAILABLE_REASON,
    BOOTSTRAP_DATA_SECRET_GENERATION_FAILED_REASON,
    BOOTSTRAP_FAILED_REASON,
    BOOTSTRAP_READY_CONDITION,
    BOOTSTRAP_SUCCEEDED_REASON,
    DATA_SECRET_AVAILABLE_CONDITION,
    WAITING_FOR_CLUSTER_INFRASTRUCTURE_REASON,
    WAITING_FOR_CONTROL_PLANE_INITIALIZATION_REASON,
    WAITING_FOR_MACHINE_REASON,
)
from ..api.meta import set_condition
from ..errors import (
    DependencyNotReady,
    KairosCapiError,
    NotFoundError,
    ReconcileCancelled,
    StoreError,
    ValidationError,
    is_terminal,
)
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
    BootstrapDataGenerated,
    BootstrapFailed,
    BootstrapWaiting,
    new_ctx,
)
from ..observers.interface import Observer
from .cloud_config import synthesize
from .data_secret import write_data_secret

log = logging.getLogger("kairos_capi")


class KairosConfigReconciler:
    """
    Turns a KairosConfig owned by a Machine into its bootstrap data Secret.

    Failure policy:
      - ValidationError / UnsupportedCapability set failureReason and
        failureMessage. They stay until metadata.generation moves past
        status.observedGeneration; passes in between are no-ops.
      - DependencyNotReady and store errors only mark the conditions false
        and are re-raised so the scheduler requeues.
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

    def _get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        check_cancelled(self.cancel)
        return self.store.get(api_version, kind, namespace, name)

    def _write_status(self, config: KairosConfig) -> KairosConfig:
        check_cancelled(self.cancel)
        return KairosConfig.model_validate(self.store.update_status(config.to_dict()))

    def _secret_exists(self, namespace: str, name: str) -> bool:
        try:
            self._get(SECRET_API_VERSION, SECRET_KIND, namespace, name)
        except NotFoundError:
            return False
        return True

    def _wait(self, config: KairosConfig, reason: str, message: str, run_ctx: dict) -> KairosConfig:
        log.info("[kairosconfig] %s/%s waiting: %s", config.metadata.namespace, config.metadata.name, message)
        set_condition(config.status.conditions, BOOTSTRAP_READY_CONDITION, False, reason=reason, message=message, severity="Info")
        self.bus.emit(
            BootstrapWaiting(
                name=config.metadata.name,
                namespace=config.metadata.namespace,
                reason=reason,
                **run_ctx,
            )
        )
        return self._write_status(config)

    def reconcile(self, namespace: str, name: str) -> Optional[KairosConfig]:
        run_ctx = new_ctx(env=self.env, context=self.context)

        try:
            raw = self._get(BOOTSTRAP_API_VERSION, KAIROS_CONFIG_KIND, namespace, name)
        except NotFoundError:
            log.info("[kairosconfig] %s/%s not found, nothing to do", namespace, name)
            return None
        try:
            config = KairosConfig.model_validate(raw)
        except PydanticValidationError as e:
            return self._reject_invalid(raw, e, run_ctx)

        meta, status = config.metadata, config.status
        if config.spec.pause or meta.annotations.get(PAUSED_ANNOTATION) is not None:
            log.info("[kairosconfig] %s/%s is paused", namespace, name)
            return config

        if meta.deletion_timestamp:
            # the data secret is owned by the config and garbage collected with it
            return config

        same_generation = status.observed_generation == meta.generation
        if status.failure_reason and same_generation:
            log.debug("[kairosconfig] %s/%s failed permanently (%s), waiting for a spec change",
                      namespace, name, status.failure_reason)
            return config

        if status.ready and same_generation and status.data_secret_name:
            if self._secret_exists(namespace, status.data_secret_name):
                return config

        if not same_generation:
            status.failure_reason = None
            status.failure_message = None

        owner = meta.owner_of_kind(MACHINE_KIND)
        if owner is None:
            return self._wait(config, WAITING_FOR_MACHINE_REASON, "no owning Machine yet", run_ctx)

        try:
            machine = Machine.model_validate(self._get(CLUSTER_API_VERSION, MACHINE_KIND, namespace, owner.name))
        except NotFoundError:
            return self._wait(config, WAITING_FOR_MACHINE_REASON, f"Machine {owner.name} not found", run_ctx)

        cluster_name = machine.spec.cluster_name or meta.labels.get(CLUSTER_NAME_LABEL, "")
        cluster: Optional[Cluster] = None
        if cluster_name:
            try:
                cluster = Cluster.model_validate(self._get(CLUSTER_API_VERSION, CLUSTER_KIND, namespace, cluster_name))
            except NotFoundError:
                cluster = None
        if cluster is None:
            return self._wait(
                config,
                WAITING_FOR_CLUSTER_INFRASTRUCTURE_REASON,
                f"Cluster {cluster_name or '<unset>'} not found",
                run_ctx,
            )

        role = config.spec.role
        server_address = config.spec.server_address or cluster.server_address
        if role == ROLE_WORKER and not cluster.control_plane_initialized:
            return self._wait(
                config,
                WAITING_FOR_CONTROL_PLANE_INITIALIZATION_REASON,
                "control plane is not initialized yet",
                run_ctx,
            )

        try:
            document = synthesize(
                config.spec,
                role,
                server_address,
                secrets=self.secrets,
                namespace=namespace,
            )
            secret_name = write_data_secret(self.store, meta, cluster_name, document, cancel=self.cancel)
        except NotFoundError as e:
            # a referenced token secret that does not exist yet
            self._record_failure(config, DependencyNotReady(str(e)), run_ctx)
            raise DependencyNotReady(f"{namespace}/{name}: {e}") from e
        except (ReconcileCancelled, StoreError):
            raise
        except KairosCapiError as e:
            self._record_failure(config, e, run_ctx)
            if is_terminal(e):
                return self._write_status(config)
            raise

        status.ready = True
        status.data_secret_name = secret_name
        status.observed_generation = meta.generation
        set_condition(status.conditions, BOOTSTRAP_READY_CONDITION, True, reason=BOOTSTRAP_SUCCEEDED_REASON)
        set_condition(
            status.conditions,
            DATA_SECRET_AVAILABLE_CONDITION,
            True,
            reason=BOOTSTRAP_DATA_SECRET_AVAILABLE_REASON,
        )
        log.info("[kairosconfig] %s/%s bootstrap data written to secret %s", namespace, name, secret_name)
        self.bus.emit(
            BootstrapDataGenerated(
                name=name,
                namespace=namespace,
                role=role,
                secret_name=secret_name,
                **run_ctx,
            )
        )
        return self._write_status(config)

    def _reject_invalid(self, raw: dict, err: PydanticValidationError, run_ctx: dict) -> KairosConfig:
        """
        Record a spec that does not parse as a permanent InvalidConfiguration.

        Only status is written; the stored spec stays as the user wrote it.
        """
        config = KairosConfig.model_validate({k: v for k, v in raw.items() if k != "spec"})
        meta, status = config.metadata, config.status
        if status.failure_reason and status.observed_generation == meta.generation:
            return config
        status.failure_reason = None
        status.failure_message = None

        self._record_failure(
            config,
            ValidationError(f"KairosConfig {meta.name} is invalid: {err}"),
            run_ctx,
        )
        check_cancelled(self.cancel)
        written = self.store.update_status({**raw, "status": status.to_dict()})
        config.status = KairosConfigStatus.model_validate(written.get("status") or {})
        return config

    def _record_failure(self, config: KairosConfig, err: KairosCapiError, run_ctx: dict) -> None:
        terminal = is_terminal(err)
        status = config.status
        reason = getattr(err, "reason", BOOTSTRAP_FAILED_REASON)
        log.warning(
            "[kairosconfig] %s/%s bootstrap data generation failed (terminal=%s): %s",
            config.metadata.namespace, config.metadata.name, terminal, err,
        )

        set_condition(
            status.conditions,
            BOOTSTRAP_READY_CONDITION,
            False,
            reason=BOOTSTRAP_FAILED_REASON if terminal else reason,
            message=str(err),
            severity="Error" if terminal else "Warning",
        )
        set_condition(
            status.conditions,
            DATA_SECRET_AVAILABLE_CONDITION,
            False,
            reason=BOOTSTRAP_DATA_SECRET_GENERATION_FAILED_REASON,
            message=str(err),
            severity="Error" if terminal else "Warning",
        )

        if terminal:
            # sticky: only a new generation clears it
            if not status.failure_reason:
                status.failure_reason = reason
                status.failure_message = str(err)
            status.ready = False
            status.observed_generation = config.metadata.generation

        self.bus.emit(
            BootstrapFailed(
                name=config.metadata.name,
                namespace=config.metadata.namespace,
                reason=reason,
                error=str(err),
                terminal=terminal,
                **run_ctx,
            )
        )
        if not terminal:
            self._write_status(config)
