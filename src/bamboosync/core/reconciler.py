"""
Permission reconciliation engine.

Lifecycle per entity:
  apply   -> push every validated principal's permission set (first creation)
  update  -> diff recorded vs desired orders, push changes, revoke dropped principals
  compute -> intersect remote-reported permissions with the desired principals (no writes)
  remove  -> revoke every desired principal that still holds permissions

Failure policy:
  - a principal that cannot be found is skipped silently (no write, no output)
  - the first failed write stops the phase and raises PermissionPushError
  - nothing is rolled back; re-running the same call converges because every
    write sets an exact permission set
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Protocol, Tuple, Union

from .assignments import AssignmentOrder, AssignmentResult, ComputedAssignment
from .attestations import AssignedPermissions, PrincipalPermissions
from .diff_engine import delta, equals_ignore_order
from .entities import EntityRef
from .errors import Operation, PermissionPushError

PrincipalKind = Literal["user", "group"]
Logger = Union[logging.Logger, logging.LoggerAdapter]


class PermissionStore(Protocol):
    """Remote permission store operations the engine relies on."""

    def lookup_principal(self, kind: PrincipalKind, name: str) -> bool: ...

    def find_principal(self, entity: EntityRef, kind: PrincipalKind, name: str) -> Optional[Dict[str, Any]]: ...

    def validate_principal(self, kind: PrincipalKind, name: str) -> None: ...

    def read_assigned_permissions(self, entity: EntityRef) -> AssignedPermissions: ...

    def set_user_permissions(self, entity: EntityRef, name: str, permissions: List[str]) -> None: ...

    def set_group_permissions(self, entity: EntityRef, name: str, permissions: List[str]) -> None: ...

    def set_role_permissions(self, entity: EntityRef, role: str, permissions: List[str]) -> None: ...


class PrincipalValidator(Protocol):
    def exists(self, entity: EntityRef, kind: PrincipalKind, name: str) -> bool: ...


class StorePrincipalValidator:
    """Two-tier existence check: local directory first, then a remote search.

    Search errors count as "not found"; the principal is skipped, never fatal.
    """

    def __init__(self, store: PermissionStore, logger: Optional[Logger] = None) -> None:
        self.store = store
        self.log = logger or logging.getLogger("bsync.engine")

    def exists(self, entity: EntityRef, kind: PrincipalKind, name: str) -> bool:
        if self.store.lookup_principal(kind, name):
            return True
        try:
            found = self.store.find_principal(entity, kind, name)
        except Exception as exc:
            self.log.debug("Lookup of %s '%s' on %s failed: %s", kind, name, entity, exc)
            found = None
        if found is None:
            return False
        self.store.validate_principal(kind, name)
        return True


class TrustingValidator:
    """Accept every principal (no existence check)."""

    def exists(self, entity: EntityRef, kind: PrincipalKind, name: str) -> bool:
        return True


_OPS: Dict[PrincipalKind, Tuple[Operation, Operation]] = {
    "user": ("update-user", "remove-user"),
    "group": ("update-group", "remove-group"),
}


class AssignmentReconciler:
    """Reconcile desired assignment orders against a remote permission store."""

    def __init__(
        self,
        store: PermissionStore,
        *,
        validator: Optional[PrincipalValidator] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self.store = store
        self.log = logger or logging.getLogger("bsync.engine")
        self.validator = validator or StorePrincipalValidator(store, logger=self.log)

    # ------------- Helpers -------------

    def _push(self, entity: EntityRef, kind: PrincipalKind, name: str, permissions: List[str], op: Operation) -> None:
        setter = self.store.set_user_permissions if kind == "user" else self.store.set_group_permissions
        try:
            setter(entity, name, permissions)
        except Exception as exc:
            self.log.error("%s %s '%s' on %s failed: %s", op, kind, name, entity, exc)
            raise PermissionPushError(op, str(entity), name, exc) from exc
        self.log.debug("%s %s '%s' on %s -> %s", op, kind, name, entity, permissions)

    def _exists(self, entity: EntityRef, kind: PrincipalKind, name: str) -> bool:
        if self.validator.exists(entity, kind, name):
            return True
        self.log.info("Skipping unknown %s '%s' on %s", kind, name, entity)
        return False

    @staticmethod
    def _side(order: AssignmentOrder, kind: PrincipalKind) -> Tuple[Dict[str, Tuple[str, ...]], Tuple[str, ...]]:
        if kind == "user":
            return order.users, order.user_names
        return order.groups, order.group_names

    # ------------- Apply (create) -------------

    def _apply_side(self, entity: EntityRef, order: AssignmentOrder, kind: PrincipalKind) -> Tuple[List[ComputedAssignment], int]:
        mapping, names = self._side(order, kind)
        update_op, _ = _OPS[kind]
        computed: List[ComputedAssignment] = []
        writes = 0
        for name in names:
            if not self._exists(entity, kind, name):
                continue
            requested = list(mapping[name])
            self._push(entity, kind, name, requested, update_op)
            writes += 1
            computed.append(ComputedAssignment(name, tuple(requested)))
        return computed, writes

    def apply(self, entity: EntityRef, order: AssignmentOrder) -> AssignmentResult:
        """Push the full permission set of every known principal in ``order``."""
        users, user_writes = self._apply_side(entity, order, "user")
        groups, group_writes = self._apply_side(entity, order, "group")
        self.log.info("Applied %d user(s) and %d group(s) on %s", len(users), len(groups), entity)
        return AssignmentResult.build(users, groups, writes=user_writes + group_writes)

    # ------------- Update -------------

    def _update_side(
        self,
        entity: EntityRef,
        previous: AssignmentOrder,
        current: AssignmentOrder,
        kind: PrincipalKind,
        force_update: bool,
    ) -> Tuple[List[ComputedAssignment], int]:
        prev_map, prev_names = self._side(previous, kind)
        cur_map, cur_names = self._side(current, kind)
        update_op, remove_op = _OPS[kind]

        _, removing = delta(prev_names, cur_names)
        removing_set = set(removing)

        computed: List[ComputedAssignment] = []
        writes = 0
        for name in cur_names:
            if name in removing_set:
                continue
            if not self._exists(entity, kind, name):
                continue

            requested = list(cur_map[name])
            recorded = prev_map.get(name)
            computed.append(ComputedAssignment(name, tuple(requested)))

            if force_update or not equals_ignore_order(recorded, requested):
                self._push(entity, kind, name, requested, update_op)
                writes += 1

        for name in removing:
            self._push(entity, kind, name, [], remove_op)
            writes += 1

        return computed, writes

    def update(
        self,
        entity: EntityRef,
        previous: AssignmentOrder,
        current: AssignmentOrder,
        force_update: bool = False,
    ) -> AssignmentResult:
        """Move ``entity`` from the recorded ``previous`` order to ``current``.

        Only changed principals are pushed unless ``force_update`` is set;
        principals dropped from ``current`` are revoked.
        """
        users, user_writes = self._update_side(entity, previous, current, "user", force_update)
        groups, group_writes = self._update_side(entity, previous, current, "group", force_update)
        writes = user_writes + group_writes
        self.log.info("Updated %s: %d write(s) (force=%s)", entity, writes, force_update)
        return AssignmentResult.build(users, groups, writes=writes)

    # ------------- Compute (refresh) -------------

    @staticmethod
    def _intersect(reported: Tuple[PrincipalPermissions, ...], mapping: Dict[str, Tuple[str, ...]]) -> List[ComputedAssignment]:
        return [
            ComputedAssignment(p.name, tuple(p.permissions))
            for p in reported
            if p.name in mapping
        ]

    def compute(self, assigned: AssignedPermissions, order: AssignmentOrder) -> AssignmentResult:
        """Report what the desired principals actually hold remotely (drift included)."""
        return AssignmentResult.build(
            self._intersect(assigned.users, order.users),
            self._intersect(assigned.groups, order.groups),
        )

    # ------------- Remove (delete) -------------

    def remove(self, entity: EntityRef, assigned: AssignedPermissions, order: AssignmentOrder) -> int:
        """Revoke every desired principal still holding permissions. Returns the write count."""
        writes = 0
        for kind, reported in (("user", assigned.users), ("group", assigned.groups)):
            mapping, _ = self._side(order, kind)
            _, remove_op = _OPS[kind]
            for principal in reported:
                if principal.name in mapping:
                    self._push(entity, kind, principal.name, [], remove_op)
                    writes += 1
        self.log.info("Revoked %d principal(s) on %s", writes, entity)
        return writes
