"""
Entity permission lifecycle: create, read, update, delete and attest.

Each call resolves the rules it is given, runs one reconciliation phase and
returns what should be recorded. Nothing is kept between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from .assignments import (
    AssignmentOrder,
    AssignmentResult,
    AssignmentRule,
    ComputedAssignment,
    resolve_assignments,
)
from .attestations import Attestation, create_attestation
from .diff_engine import equals_ignore_order
from .entities import EntityRef
from .reconciler import AssignmentReconciler, PermissionStore


@dataclass(frozen=True)
class PermissionSpec:
    """Desired permissions of one entity."""
    entity: EntityRef
    assignments: Tuple[AssignmentRule, ...] = ()
    assignment_version: Optional[str] = None
    retain_on_delete: bool = True


@dataclass(frozen=True)
class PermissionRecord:
    """A spec as last applied, plus the computed outcome."""
    spec: PermissionSpec
    result: AssignmentResult = field(default_factory=AssignmentResult)

    @property
    def entity(self) -> EntityRef:
        return self.spec.entity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.entity.kind,
            "key": self.entity.key,
            "assignment_version": self.spec.assignment_version,
            "retain_on_delete": self.spec.retain_on_delete,
            "assignments": [r.to_dict() for r in self.spec.assignments],
            **self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermissionRecord":
        spec = PermissionSpec(
            entity=EntityRef(str(data["kind"]), str(data["key"])),
            assignments=tuple(AssignmentRule.from_dict(r) for r in data.get("assignments") or ()),
            assignment_version=data.get("assignment_version"),
            retain_on_delete=bool(data.get("retain_on_delete", True)),
        )
        result = AssignmentResult.build(
            [ComputedAssignment.from_dict(a) for a in data.get("computed_users") or ()],
            [ComputedAssignment.from_dict(a) for a in data.get("computed_groups") or ()],
        )
        return cls(spec=spec, result=result)


def recorded_baseline(order: AssignmentOrder, result: AssignmentResult) -> AssignmentOrder:
    """Overlay recorded computed permissions onto the recorded order.

    A principal whose computed permissions were refreshed away from its rule
    then compares as changed, so the next update pushes the desired set back.
    """
    held_users = {a.name: a.permissions for a in result.computed_users}
    held_groups = {a.name: a.permissions for a in result.computed_groups}
    return replace(
        order,
        users={n: held_users.get(n, p) for n, p in order.users.items()},
        groups={n: held_groups.get(n, p) for n, p in order.groups.items()},
    )


def has_drift(order: AssignmentOrder, result: AssignmentResult) -> bool:
    baseline = recorded_baseline(order, result)
    return any(
        not equals_ignore_order(baseline.users[n], p) for n, p in order.users.items()
    ) or any(
        not equals_ignore_order(baseline.groups[n], p) for n, p in order.groups.items()
    )


class EntityPermissions:
    """Drive the reconciler through an entity's permission lifecycle."""

    def __init__(
        self,
        store: PermissionStore,
        reconciler: Optional[AssignmentReconciler] = None,
        *,
        strict_priorities: bool = True,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.store = store
        self.log = logger or logging.getLogger("bsync.permissions")
        self.reconciler = reconciler or AssignmentReconciler(store, logger=self.log)
        self.strict_priorities = strict_priorities

    def resolve(self, spec: PermissionSpec, *, recorded: bool = False) -> AssignmentOrder:
        # Recorded rules were accepted when first applied; never reject them now.
        strict = self.strict_priorities and not recorded
        return resolve_assignments(list(spec.assignments), strict=strict)

    def _zero_default_roles(self, entity: EntityRef) -> None:
        for role in entity.default_roles:
            try:
                self.store.set_role_permissions(entity, role, [])
            except Exception as exc:
                self.log.warning("Could not clear role %s on %s: %s", role, entity, exc)

    def create(self, spec: PermissionSpec) -> PermissionRecord:
        order = self.resolve(spec)
        self._zero_default_roles(spec.entity)
        result = self.reconciler.apply(spec.entity, order)
        return PermissionRecord(spec=spec, result=result)

    def read(self, record: PermissionRecord) -> PermissionRecord:
        order = self.resolve(record.spec, recorded=True)
        assigned = self.store.read_assigned_permissions(record.entity)
        return replace(record, result=self.reconciler.compute(assigned, order))

    def update(self, spec: PermissionSpec, record: PermissionRecord) -> PermissionRecord:
        current = self.resolve(spec)
        previous = recorded_baseline(self.resolve(record.spec, recorded=True), record.result)
        force_update = spec.assignment_version != record.spec.assignment_version
        # The recorded entity key is authoritative for where permissions live.
        result = self.reconciler.update(record.entity, previous, current, force_update)
        return PermissionRecord(spec=spec, result=result)

    def delete(self, record: PermissionRecord) -> bool:
        """Revoke recorded principals unless the record retains them. Returns True if revoked."""
        if record.spec.retain_on_delete:
            self.log.info("Retaining permissions on %s", record.entity)
            return False
        order = self.resolve(record.spec, recorded=True)
        assigned = self.store.read_assigned_permissions(record.entity)
        self.reconciler.remove(record.entity, assigned, order)
        return True

    def attest(self, entity: EntityRef) -> Attestation:
        return create_attestation(self.store.read_assigned_permissions(entity))

