# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/bootstrap/cloud_config.py
"""
Kairos cloud-config synthesis for k0s nodes.

The document is assembled as plain dicts and serialized with PyYAML. It is
never run through a template engine: the hostname value is a Kairos
first-boot template expression that has to reach the node untouched.
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any, Dict, List, Optional

import yaml

from ..api.bootstrap import (
    DEFAULT_USER_GROUPS,
    DEFAULT_USER_NAME,
    DEFAULT_USER_PASSWORD,
    ROLE_CONTROL_PLANE,
    ROLE_WORKER,
    KairosConfigSpec,
)
from ..errors import MissingServerAddress, UnsupportedDistribution, ValidationError
from ..kube.store import SecretLookup
from .token import resolve_token

log = logging.getLogger("kairos_capi")

CLOUD_CONFIG_HEADER = "#cloud-config"

SUPPORTED_DISTRIBUTION = "k0s"

# Evaluated by Kairos on the node, not here.
HOSTNAME_TEMPLATE = "metal-{{ trunc 4 .MachineID }}"

K0S_TOKEN_FILE = "/etc/k0s/token"
K0S_MANIFESTS_DIR = "/var/lib/k0s/manifests"
K0S_SINGLE_NODE_FLAG = "--single"

DEFAULT_FILE_PERMISSIONS = "0644"
DEFAULT_FILE_OWNER = "root:root"
TOKEN_FILE_PERMISSIONS = "0600"


class _CloudConfigDumper(yaml.SafeDumper):
    """Block-style dumper that indents sequences under their parent key."""

    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def _literal_str(dumper: yaml.SafeDumper, data: str):
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_CloudConfigDumper.add_representer(str, _literal_str)


def render_document(doc: Dict[str, Any]) -> str:
    body = yaml.dump(
        doc,
        Dumper=_CloudConfigDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=4096,
    )
    return f"{CLOUD_CONFIG_HEADER}\n{body}"


def _users_block(spec: KairosConfigSpec) -> List[Dict[str, Any]]:
    user: Dict[str, Any] = {
        "name": spec.user_name or DEFAULT_USER_NAME,
        "passwd": spec.user_password or DEFAULT_USER_PASSWORD,
        "groups": list(spec.user_groups or DEFAULT_USER_GROUPS),
    }
    keys = []
    if spec.github_user:
        keys.append(f"github:{spec.github_user}")
    if spec.ssh_public_key:
        keys.append(spec.ssh_public_key.strip())
    # cloud-init drops an empty ssh_authorized_keys list with a warning
    if keys:
        user["ssh_authorized_keys"] = keys
    return [user]


def _file_entry(path: str, content: str, permissions: Optional[str], owner: Optional[str]) -> Dict[str, Any]:
    return {
        "path": path,
        "permissions": permissions or DEFAULT_FILE_PERMISSIONS,
        "owner": owner or DEFAULT_FILE_OWNER,
        "content": content,
    }


def _write_files(spec: KairosConfigSpec) -> List[Dict[str, Any]]:
    files = []
    for f in spec.files:
        if not f.path.startswith("/"):
            raise ValidationError(f"file path must be absolute: {f.path!r}")
        files.append(_file_entry(f.path, f.content, f.permissions, f.owner))

    for m in spec.manifests:
        if not m.name or not m.file or "/" in m.file or "/" in m.name:
            raise ValidationError(
                f"manifest needs a plain directory name and file name, got {m.name!r}/{m.file!r}"
            )
        path = posixpath.join(K0S_MANIFESTS_DIR, m.name, m.file)
        files.append(_file_entry(path, m.content, None, None))
    return files


def _stages(spec: KairosConfigSpec) -> Dict[str, Any]:
    stages: Dict[str, Any] = {}
    if spec.pre_commands:
        stages["boot.before"] = [
            {"name": "Run pre-install commands", "commands": list(spec.pre_commands)}
        ]
    if spec.post_commands:
        stages["boot.after"] = [
            {"name": "Run post-install commands", "commands": list(spec.post_commands)}
        ]
    return stages


def synthesize(
    spec: KairosConfigSpec,
    role: str,
    server_address: str = "",
    *,
    secrets: Optional[SecretLookup] = None,
    namespace: str = "default",
) -> str:
    """
    Build the k0s cloud-config for a node of *role*.

    Raises UnsupportedDistribution, MissingToken or MissingServerAddress
    before anything is assembled; no partial document is ever returned.
    The only I/O is the single secret read when the spec references a
    token secret.
    """
    if spec.distribution != SUPPORTED_DISTRIBUTION:
        raise UnsupportedDistribution(
            f"unsupported distribution {spec.distribution!r}: only {SUPPORTED_DISTRIBUTION} is implemented"
        )
    if role not in (ROLE_CONTROL_PLANE, ROLE_WORKER):
        raise ValidationError(f"unknown role {role!r}")

    token = ""
    if role == ROLE_WORKER:
        token = resolve_token(spec, namespace=namespace, secrets=secrets, role=role)
        if not server_address:
            raise MissingServerAddress(
                "server address is required for worker nodes"
            )

    doc: Dict[str, Any] = {
        "hostname": HOSTNAME_TEMPLATE,
        "users": _users_block(spec),
        "install": {"auto": True, "device": "auto", "reboot": True},
    }

    write_files = _write_files(spec)

    if role == ROLE_CONTROL_PLANE:
        args = []
        if spec.single_node:
            args.append(K0S_SINGLE_NODE_FLAG)
        doc["k0s"] = {"enabled": True, "args": args}
    else:
        doc["k0s-worker"] = {
            "enabled": True,
            "args": [f"--token-file {K0S_TOKEN_FILE}"],
        }
        write_files.insert(
            0,
            _file_entry(K0S_TOKEN_FILE, token, TOKEN_FILE_PERMISSIONS, DEFAULT_FILE_OWNER),
        )

    if write_files:
        doc["write_files"] = write_files

    stages = _stages(spec)
    if stages:
        doc["stages"] = stages

    log.debug(
        "[cloud-config] synthesized role=%s single_node=%s files=%d",
        role, bool(spec.single_node), len(write_files),
    )
    return render_document(doc)
