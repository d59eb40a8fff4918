# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/kairos_capi/api/meta.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    """
    Base for every resource model.

    Field names are snake_case in Python and camelCase on the wire, so the
    unstructured dicts returned by the Store validate directly and dump back
    with ``to_dict()``. Unknown fields are kept so a round trip through the
    model never drops what another controller wrote.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: str = "default"
    uid: str = ""
    generation: int = 0
    resource_version: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list)
    finalizers: List[str] = Field(default_factory=list)
    creation_timestamp: Optional[str] = None
    deletion_timestamp: Optional[str] = None

    def owner_of_kind(self, kind: str) -> Optional[OwnerReference]:
        for ref in self.owner_references:
            if ref.kind == kind:
                return ref
        return None


class ObjectReference(KubeModel):
    api_version: str = ""
    kind: str = ""
    name: str = ""
    namespace: Optional[str] = None

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]


class Condition(KubeModel):
    type: str
    status: str = "Unknown"
    reason: Optional[str] = None
    message: Optional[str] = None
    severity: Optional[str] = None
    last_transition_time: Optional[str] = None


def get_condition(conditions: List[Condition], ctype: str) -> Optional[Condition]:
    for c in conditions:
        if c.type == ctype:
            return c
    return None


def is_true(conditions: List[Condition], ctype: str) -> bool:
    c = get_condition(conditions, ctype)
    return c is not None and c.status == "True"


def set_condition(
    conditions: List[Condition],
    ctype: str,
    status: bool,
    reason: Optional[str] = None,
    message: Optional[str] = None,
    severity: Optional[str] = None,
) -> List[Condition]:
    """
    Replace the condition of type *ctype* in place.

    lastTransitionTime only moves when the status actually flips.
    """
    value = "True" if status else "False"
    existing = get_condition(conditions, ctype)
    ts = now_iso()
    if existing is not None and existing.status == value:
        ts = existing.last_transition_time or ts

    new = Condition(
        type=ctype,
        status=value,
        reason=reason,
        message=message,
        severity=None if status else (severity or "Warning"),
        last_transition_time=ts,
    )
    for i, c in enumerate(conditions):
        if c.type == ctype:
            conditions[i] = new
            break
    else:
        conditions.append(new)
    return conditions


def owner_ref_to(obj_meta: ObjectMeta, api_version: str, kind: str, controller: bool = True) -> OwnerReference:
    return OwnerReference(
        api_version=api_version,
        kind=kind,
        name=obj_meta.name,
        uid=obj_meta.uid,
        controller=controller,
        block_owner_deletion=True,
    )
