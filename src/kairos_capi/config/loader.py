# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Optional

from .models import ControllerConfig

log = logging.getLogger("kairos_capi")

CONFIG_ENV_VAR = "KAIROS_CAPI_CONFIG"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def find_config_file(explicit: Optional[str | Path] = None) -> Optional[Path]:
    """
    Locate the controller config using this priority:

    1. an explicit path (``--config``); it must exist
    2. KAIROS_CAPI_CONFIG environment variable
    3. none: defaults apply
    """
    if explicit:
        p = Path(explicit)
        if not p.is_file():
            raise FileNotFoundError(f"config file {p} does not exist")
        return p

    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, using defaults", CONFIG_ENV_VAR, env)
    return None


def load_config(path: Optional[str | Path] = None, **overrides) -> ControllerConfig:
    """
    Load and validate the controller config.

    Keyword *overrides* (CLI flags) win over the file when they are not None.
    """
    data: dict = {}
    found = find_config_file(path)
    if found:
        log.debug("Loading controller config from %s", found)
        data = _load_yaml(found)

    for key, value in overrides.items():
        if value is not None:
            data[key] = value

    return ControllerConfig.model_validate(data)
