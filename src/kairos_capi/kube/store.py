# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/kube/store.py
"""
Ports to the orchestration runtime.

Reconcilers never talk to the API server directly; they are handed a
``Store`` and a ``SecretLookup``. ``KubernetesStore`` (kube/client.py) is the
production implementation, tests use an in-memory fake.
"""

from __future__ import annotations

import base64
import threading
from typing import Dict, List, Optional, Protocol

from ..errors import NotFoundError, ReconcileCancelled

SECRET_API_VERSION = "v1"
SECRET_KIND = "Secret"


class Store(Protocol):
    """
    Single-object, individually atomic operations on namespaced resources.

    Raises NotFoundError / AlreadyExistsError / ConflictError for the
    matching outcomes and TransientStoreError for anything else.
    """

    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict: ...

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[dict]: ...

    def create(self, obj: dict) -> dict: ...

    def update(self, obj: dict) -> dict: ...

    def update_status(self, obj: dict) -> dict: ...

    def delete(self, api_version: str, kind: str, namespace: str, name: str) -> None: ...


class SecretLookup(Protocol):
    def get(self, namespace: str, name: str, key: str) -> bytes: ...


class StoreSecretLookup:
    """SecretLookup reading core/v1 Secrets through a Store."""

    def __init__(self, store: Store):
        self.store = store

    def get(self, namespace: str, name: str, key: str) -> bytes:
        secret = self.store.get(SECRET_API_VERSION, SECRET_KIND, namespace, name)
        data = secret.get("data") or {}
        if key in data:
            return base64.b64decode(data[key])
        string_data = secret.get("stringData") or {}
        if key in string_data:
            return string_data[key].encode("utf-8")
        raise NotFoundError(f"secret {namespace}/{name} has no key '{key}'")


def check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled("reconcile cancelled")


def object_key(obj: dict) -> tuple[str, str, str, str]:
    meta = obj.get("metadata") or {}
    return (
        obj.get("apiVersion", ""),
        obj.get("kind", ""),
        meta.get("namespace") or "default",
        meta.get("name", ""),
    )
