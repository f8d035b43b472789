"""
Attestations: invert "what can X do" into "who can do X".

The remote store reports permissions per principal; an attestation groups the
same data per permission token for drift inspection and reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple


@dataclass(frozen=True)
class PrincipalPermissions:
    """One principal as reported by the remote store."""
    name: str
    permissions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AssignedPermissions:
    """Users and groups currently holding permissions on an entity."""
    users: Tuple[PrincipalPermissions, ...] = ()
    groups: Tuple[PrincipalPermissions, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssignedPermissions":
        def _items(key: str) -> Tuple[PrincipalPermissions, ...]:
            return tuple(
                PrincipalPermissions(str(it["name"]), tuple(it.get("permissions") or ()))
                for it in data.get(key) or ()
            )
        return cls(users=_items("users"), groups=_items("groups"))


@dataclass
class Attestation:
    users: Dict[str, List[str]] = field(default_factory=dict)
    groups: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        return {"users": dict(self.users), "groups": dict(self.groups)}


def _invert(principals: Iterable[PrincipalPermissions]) -> Dict[str, List[str]]:
    buckets: Dict[str, List[str]] = {}
    for principal in principals:
        for permission in principal.permissions:
            buckets.setdefault(permission, []).append(principal.name)
    return buckets


def create_attestation(assigned: AssignedPermissions) -> Attestation:
    """Map each permission to the users and groups holding it."""
    return Attestation(users=_invert(assigned.users), groups=_invert(assigned.groups))
