# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/bootstrap/token.py

from __future__ import annotations

import logging
from typing import Optional

from ..api.bootstrap import ROLE_WORKER, KairosConfigSpec
from ..errors import MissingToken
from ..kube.store import SecretLookup

log = logging.getLogger("kairos_capi")


def resolve_token(
    spec: KairosConfigSpec,
    *,
    namespace: str,
    secrets: Optional[SecretLookup] = None,
    role: Optional[str] = None,
) -> str:
    """
    Return the join token for *spec*.

    Precedence:
      1. a secret reference, when set, is the only source considered; a
         lookup failure propagates as-is
      2. the inline token
      3. nothing: MissingToken for workers, "" for control-plane nodes
    """
    ref = spec.token_secret()
    if ref is not None:
        if secrets is None:
            raise MissingToken(
                f"worker token is required: secret {ref.name} is referenced but no secret lookup is available"
            )
        ns = ref.namespace or namespace
        log.debug("[token] reading join token from secret %s/%s key=%s", ns, ref.name, ref.key)
        return secrets.get(ns, ref.name, ref.key).decode("utf-8").strip()

    inline = spec.inline_token()
    if inline:
        return inline

    if (role or spec.role) == ROLE_WORKER:
        raise MissingToken(
            "worker token is required: set workerToken or workerTokenSecretRef"
        )
    return ""
