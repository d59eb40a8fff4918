# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/kube/client.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from kubernetes import config, dynamic
from kubernetes.client import ApiClient
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError
from urllib3.exceptions import HTTPError

from ..errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    TransientStoreError,
)
from .store import object_key

log = logging.getLogger("kairos_capi")


def build_api_client(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    in_cluster: bool = False,
) -> ApiClient:
    if in_cluster:
        config.load_incluster_config()
        return ApiClient()
    return config.new_client_from_config(config_file=kubeconfig, context=context)


def label_selector(labels: Optional[Dict[str, str]]) -> Optional[str]:
    if not labels:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubernetesStore:
    """
    Store backed by the kubernetes dynamic client.

    Every method is a single API call; status codes are translated into the
    typed store outcomes the reconcilers branch on.
    """

    def __init__(self, api_client: ApiClient):
        self.client = dynamic.DynamicClient(api_client)

    def _resource(self, api_version: str, kind: str):
        try:
            return self.client.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise NotFoundError(f"no resource type {kind} in {api_version}") from e

    @staticmethod
    def _translate(e: Exception, what: str, *, creating: bool = False) -> Exception:
        status = getattr(e, "status", None)
        if status == 404:
            return NotFoundError(f"{what} not found")
        if status == 409:
            if creating:
                return AlreadyExistsError(f"{what} already exists")
            return ConflictError(f"{what} was modified concurrently")
        return TransientStoreError(f"{what}: {e}")

    def get(self, api_version: str, kind: str, namespace: str, name: str) -> dict:
        what = f"{kind} {namespace}/{name}"
        try:
            return self._resource(api_version, kind).get(name=name, namespace=namespace).to_dict()
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what) from e

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> List[dict]:
        what = f"{kind} list in {namespace}"
        try:
            result = self._resource(api_version, kind).get(
                namespace=namespace,
                label_selector=label_selector(labels),
            )
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what) from e
        return result.to_dict().get("items", [])

    def create(self, obj: dict) -> dict:
        api_version, kind, namespace, name = object_key(obj)
        what = f"{kind} {namespace}/{name}"
        log.debug("[store] create %s", what)
        try:
            return self._resource(api_version, kind).create(body=obj, namespace=namespace).to_dict()
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what, creating=True) from e

    def update(self, obj: dict) -> dict:
        api_version, kind, namespace, name = object_key(obj)
        what = f"{kind} {namespace}/{name}"
        log.debug("[store] update %s", what)
        try:
            return self._resource(api_version, kind).replace(body=obj, namespace=namespace).to_dict()
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what) from e

    def update_status(self, obj: dict) -> dict:
        api_version, kind, namespace, name = object_key(obj)
        what = f"{kind} {namespace}/{name} status"
        resource = self._resource(api_version, kind)
        status = resource.subresources.get("status")
        if status is None:
            return self.update(obj)
        try:
            return self.client.replace(status, body=obj, namespace=namespace).to_dict()
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what) from e

    def delete(self, api_version: str, kind: str, namespace: str, name: str) -> None:
        what = f"{kind} {namespace}/{name}"
        log.debug("[store] delete %s", what)
        try:
            self._resource(api_version, kind).delete(name=name, namespace=namespace)
        except (DynamicApiError, HTTPError) as e:
            raise self._translate(e, what) from e
