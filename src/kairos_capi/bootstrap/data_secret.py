# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/bootstrap/data_secret.py

from __future__ import annotations

import base64
import logging
import threading
from typing import Optional

from ..api.bootstrap import BOOTSTRAP_API_VERSION, KAIROS_CONFIG_KIND
from ..api.capi import BOOTSTRAP_SECRET_TYPE, CLUSTER_NAME_LABEL
from ..api.meta import ObjectMeta, owner_ref_to
from ..errors import AlreadyExistsError
from ..kube.store import SECRET_API_VERSION, SECRET_KIND, Store, check_cancelled

log = logging.getLogger("kairos_capi")

DATA_SECRET_VALUE_KEY = "value"
DATA_SECRET_FORMAT_KEY = "format"
DATA_SECRET_FORMAT = "cloud-config"


def build_data_secret(config_meta: ObjectMeta, cluster_name: str, document: str) -> dict:
    """The Secret carrying *document* for the KairosConfig described by *config_meta*."""
    labels = {}
    if cluster_name:
        labels[CLUSTER_NAME_LABEL] = cluster_name
    return {
        "apiVersion": SECRET_API_VERSION,
        "kind": SECRET_KIND,
        "metadata": {
            "name": config_meta.name,
            "namespace": config_meta.namespace,
            "labels": labels,
            "ownerReferences": [
                owner_ref_to(config_meta, BOOTSTRAP_API_VERSION, KAIROS_CONFIG_KIND).to_dict()
            ],
        },
        "type": BOOTSTRAP_SECRET_TYPE,
        "data": {
            DATA_SECRET_VALUE_KEY: base64.b64encode(document.encode("utf-8")).decode("ascii"),
            DATA_SECRET_FORMAT_KEY: base64.b64encode(DATA_SECRET_FORMAT.encode("ascii")).decode("ascii"),
        },
    }


def write_data_secret(
    store: Store,
    config_meta: ObjectMeta,
    cluster_name: str,
    document: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> str:
    """Create the bootstrap data secret, or overwrite its data if it exists. Returns its name."""
    secret = build_data_secret(config_meta, cluster_name, document)
    check_cancelled(cancel)
    try:
        store.create(secret)
        log.debug("[bootstrap] created data secret %s/%s", config_meta.namespace, config_meta.name)
    except AlreadyExistsError:
        check_cancelled(cancel)
        existing = store.get(SECRET_API_VERSION, SECRET_KIND, config_meta.namespace, config_meta.name)
        existing["data"] = secret["data"]
        existing["type"] = existing.get("type") or BOOTSTRAP_SECRET_TYPE
        check_cancelled(cancel)
        store.update(existing)
        log.debug("[bootstrap] updated data secret %s/%s", config_meta.namespace, config_meta.name)
    return config_meta.name


def read_data_secret(store: Store, namespace: str, name: str) -> str:
    secret = store.get(SECRET_API_VERSION, SECRET_KIND, namespace, name)
    raw = (secret.get("data") or {}).get(DATA_SECRET_VALUE_KEY, "")
    return base64.b64decode(raw).decode("utf-8")
