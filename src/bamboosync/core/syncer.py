"""
Permission syncer: a whole desired-state file against recorded state.

Per entity:
  desired only        -> create   (CREATED)
  desired + recorded  -> update   (UPDATED when something was pushed, else UNCHANGED)
  recorded only       -> delete   (DELETED, or RETAINED when retain_on_delete)

Entity-level isolation: a failing entity is reported as ERROR/EXCEPTION, keeps
its previous record, and the run continues with the next entity. Re-running
converges because every write sets an exact permission set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .assignments import AssignmentOrder, resolve_assignments
from .bamboo_client import HttpError
from .diff_engine import equals_ignore_order
from .entities import EntityRef
from .errors import BambooSyncError
from .permissions import EntityPermissions, PermissionRecord, PermissionSpec, has_drift
from .state import StateStore

STATUS_ORDER = [
    "CREATE", "UPDATE", "DELETE",
    "CREATED", "UPDATED", "UNCHANGED", "DELETED", "RETAINED",
    "IN_SYNC", "DRIFT",
    "ERROR", "EXCEPTION",
]


@dataclass(frozen=True)
class SyncResult:
    entity: EntityRef
    status: str
    reason: str = ""
    error: str = ""
    writes: int = 0

    def to_row(self) -> Dict[str, object]:
        return {
            "kind": self.entity.kind,
            "key": self.entity.key,
            "status": self.status,
            "reason": self.reason,
            "writes": self.writes,
            "error": self.error,
        }


def _same_assignments(a: AssignmentOrder, b: AssignmentOrder) -> bool:
    """Compare the principal-to-permissions mappings, ignoring name and token order."""
    for left, right in ((a.users, b.users), (a.groups, b.groups)):
        if set(left) != set(right):
            return False
        if not all(equals_ignore_order(left[n], right[n]) for n in left):
            return False
    return True


class PermissionSyncer:
    def __init__(
        self,
        state: StateStore,
        permissions: Optional[EntityPermissions] = None,
        *,
        strict_priorities: bool = True,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.state = state
        self.permissions = permissions
        self.strict_priorities = strict_priorities
        self.log = logger or logging.getLogger("bsync.syncer")

    def _require_permissions(self) -> EntityPermissions:
        if self.permissions is None:
            raise RuntimeError("This operation needs a remote permission store")
        return self.permissions

    # ------------- Plan (dry-run) -------------

    def plan(self, desired: Iterable[PermissionSpec]) -> Tuple[List[SyncResult], Dict[str, int]]:
        """Report intended actions without any remote call."""
        records = self.state.load()
        results: List[SyncResult] = []
        counts: Dict[str, int] = {}
        seen = set()

        for spec in desired:
            seen.add(spec.entity)
            try:
                order = resolve_assignments(list(spec.assignments), strict=self.strict_priorities)
            except BambooSyncError as e:
                self._append(results, counts, SyncResult(spec.entity, "ERROR", error=str(e)))
                continue

            principals = f"{len(order.users)} user(s), {len(order.groups)} group(s)"
            record = records.get(spec.entity)
            if record is None:
                self._append(results, counts, SyncResult(spec.entity, "CREATE", reason=principals))
                continue

            previous = resolve_assignments(list(record.spec.assignments), strict=False)
            unchanged = (
                _same_assignments(previous, order)
                and spec.assignment_version == record.spec.assignment_version
                and not has_drift(previous, record.result)
            )
            if unchanged:
                self._append(results, counts, SyncResult(spec.entity, "UNCHANGED", reason=principals))
            else:
                self._append(results, counts, SyncResult(spec.entity, "UPDATE", reason=principals))

        for entity, record in records.items():
            if entity not in seen:
                reason = "retain_on_delete" if record.spec.retain_on_delete else "revoke recorded principals"
                self._append(results, counts, SyncResult(entity, "DELETE", reason=reason))

        return results, counts

    # ------------- Apply -------------

    def apply(self, desired: Iterable[PermissionSpec]) -> Tuple[List[SyncResult], Dict[str, int]]:
        permissions = self._require_permissions()
        records = self.state.load()
        updated: Dict[EntityRef, PermissionRecord] = dict(records)
        results: List[SyncResult] = []
        counts: Dict[str, int] = {}
        seen = set()

        for spec in desired:
            seen.add(spec.entity)
            record = records.get(spec.entity)
            try:
                if record is None:
                    new_record = permissions.create(spec)
                    status = "CREATED"
                else:
                    new_record = permissions.update(spec, record)
                    status = "UPDATED" if new_record.result.writes else "UNCHANGED"
                updated[spec.entity] = new_record
                self._append(results, counts, SyncResult(spec.entity, status, writes=new_record.result.writes))
            except (BambooSyncError, HttpError) as e:
                self.log.error("Sync of %s failed: %s", spec.entity, e)
                self._append(results, counts, SyncResult(spec.entity, "ERROR", error=str(e)))
            except Exception as e:
                self.log.exception("Unexpected failure syncing %s", spec.entity)
                self._append(results, counts, SyncResult(spec.entity, "EXCEPTION", error=str(e)))

        for entity, record in records.items():
            if entity in seen:
                continue
            try:
                revoked = permissions.delete(record)
                del updated[entity]
                self._append(results, counts, SyncResult(entity, "DELETED" if revoked else "RETAINED"))
            except (BambooSyncError, HttpError) as e:
                self.log.error("Delete of %s failed: %s", entity, e)
                self._append(results, counts, SyncResult(entity, "ERROR", error=str(e)))
            except Exception as e:
                self.log.exception("Unexpected failure deleting %s", entity)
                self._append(results, counts, SyncResult(entity, "EXCEPTION", error=str(e)))

        self.state.save(updated.values())
        return results, counts

    # ------------- Refresh -------------

    def refresh(self) -> Tuple[List[SyncResult], Dict[str, int]]:
        """Re-read every recorded entity and store what it actually holds."""
        permissions = self._require_permissions()
        records = self.state.load()
        updated: Dict[EntityRef, PermissionRecord] = dict(records)
        results: List[SyncResult] = []
        counts: Dict[str, int] = {}

        for entity, record in records.items():
            try:
                fresh = permissions.read(record)
            except (BambooSyncError, HttpError) as e:
                self.log.error("Refresh of %s failed: %s", entity, e)
                self._append(results, counts, SyncResult(entity, "ERROR", error=str(e)))
                continue
            updated[entity] = fresh
            if fresh.result == record.result:
                self._append(results, counts, SyncResult(entity, "IN_SYNC"))
            else:
                self.log.warning("Drift detected on %s", entity)
                self._append(results, counts, SyncResult(entity, "DRIFT"))

        self.state.save(updated.values())
        return results, counts

    @staticmethod
    def _append(results: List[SyncResult], counts: Dict[str, int], res: SyncResult) -> None:
        results.append(res)
        counts[res.status] = counts.get(res.status, 0) + 1
