# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/config/models.py

from typing import Optional
from pathlib import Path
from pydantic import BaseModel, Field


class ControllerConfig(BaseModel):
    """Settings for the kairos-capi CLI and single-pass reconciles."""

    kubeconfig: Optional[str] = None    # path; None = default loading rules
    context: Optional[str] = None       # kube-context on the management cluster
    in_cluster: bool = False            # use the pod service account instead of a kubeconfig
    namespace: str = "default"
    env: str = "controller"             # tag carried on every emitted event
    log_dir: Optional[Path] = None
    verbose: bool = False
    console_events: bool = Field(default=True, description="echo reconcile events to stdout")
