"""
Assignment rules and their resolution.

A rule maps a set of users and groups to a permission set at a given priority.
Resolving a list of rules collapses it into one AssignmentOrder where every
principal holds the permission set of the highest-priority rule naming it:

    rules = [
        AssignmentRule(users=("alice",), permissions=("READ",), priority=1),
        AssignmentRule(users=("alice",), permissions=("WRITE",), priority=5),
    ]
    resolve_assignments(rules).users  # {"alice": ("WRITE",)}

Resolution is pure: no remote calls, same input -> same output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from .errors import DuplicatePriorityError

log = logging.getLogger("bsync.assignments")


@dataclass(frozen=True)
class AssignmentRule:
    """One prioritized rule read from desired or recorded configuration."""
    users: Tuple[str, ...] = ()
    groups: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()
    priority: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssignmentRule":
        return cls(
            users=tuple(data.get("users") or ()),
            groups=tuple(data.get("groups") or ()),
            permissions=tuple(data.get("permissions") or ()),
            priority=int(data.get("priority", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "users": list(self.users),
            "groups": list(self.groups),
            "permissions": list(self.permissions),
            "priority": self.priority,
        }


@dataclass(frozen=True)
class AssignmentOrder:
    """Flattened principal -> permission-set mapping.

    ``user_names``/``group_names`` only drive iteration order (ascending
    priority, then rule order, each name once). Conflicts are settled by
    priority during resolution, never by this order.
    """
    users: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    user_names: Tuple[str, ...] = ()
    groups: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    group_names: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.users and not self.groups


@dataclass(frozen=True)
class ComputedAssignment:
    """What a principal ends up provisioned with."""
    name: str
    permissions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "permissions": list(self.permissions)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComputedAssignment":
        return cls(name=str(data["name"]), permissions=tuple(data.get("permissions") or ()))


def normalize(assignments: Iterable[ComputedAssignment]) -> List[ComputedAssignment]:
    """Sort by principal name and sort each permission list.

    Serializing the output of two computations over unchanged input yields
    identical bytes.
    """
    ordered = sorted(assignments, key=lambda a: a.name)
    return [ComputedAssignment(a.name, tuple(sorted(a.permissions))) for a in ordered]


@dataclass(frozen=True)
class AssignmentResult:
    """Normalized computed users and groups for one entity.

    ``writes`` counts the permission pushes issued while producing the result;
    it is not part of the computed output.
    """
    computed_users: Tuple[ComputedAssignment, ...] = ()
    computed_groups: Tuple[ComputedAssignment, ...] = ()
    writes: int = field(default=0, compare=False)

    @classmethod
    def build(
        cls,
        users: Iterable[ComputedAssignment],
        groups: Iterable[ComputedAssignment],
        *,
        writes: int = 0,
    ) -> "AssignmentResult":
        return cls(tuple(normalize(users)), tuple(normalize(groups)), writes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "computed_users": [a.to_dict() for a in self.computed_users],
            "computed_groups": [a.to_dict() for a in self.computed_groups],
        }


def resolve_assignments(rules: Sequence[AssignmentRule], *, strict: bool = True) -> AssignmentOrder:
    """Collapse ``rules`` into an :class:`AssignmentOrder`.

    Rules are applied in ascending priority and later assignment overwrites
    earlier, so the highest priority naming a principal wins.

    Two rules with the same priority cannot both be honoured. With
    ``strict=True`` this raises :class:`DuplicatePriorityError`; with
    ``strict=False`` the rule appearing later in ``rules`` replaces the
    earlier one for that priority, which is how previously recorded state was
    resolved.
    """
    by_priority: Dict[int, AssignmentRule] = {}
    for rule in rules:
        if rule.priority in by_priority:
            if strict:
                raise DuplicatePriorityError(rule.priority)
            log.warning("Priority %s declared twice; keeping the later rule", rule.priority)
        by_priority[rule.priority] = rule

    users: Dict[str, Tuple[str, ...]] = {}
    groups: Dict[str, Tuple[str, ...]] = {}
    user_names: Dict[str, None] = {}
    group_names: Dict[str, None] = {}

    for priority in sorted(by_priority):
        rule = by_priority[priority]
        for user in rule.users:
            users[user] = tuple(rule.permissions)
            user_names.setdefault(user, None)
        for group in rule.groups:
            groups[group] = tuple(rule.permissions)
            group_names.setdefault(group, None)

    return AssignmentOrder(
        users=users,
        user_names=tuple(user_names),
        groups=groups,
        group_names=tuple(group_names),
    )
