"""
Error taxonomy for BambooSync.

Two classes of failure exist during reconciliation:
  - principal-scoped lookups (unknown user/group) never raise; the principal is skipped.
  - call-scoped writes raise PermissionPushError and stop the current phase.

Every error carries enough context (operation tag, entity) for callers to tell
failure modes apart without matching on message text.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Operation = Literal[
    "update-user",
    "remove-user",
    "update-group",
    "remove-group",
    "update-role",
]

_MESSAGES = {
    "update-user": "Failed to update user permissions",
    "remove-user": "Failed to remove user permissions",
    "update-group": "Failed to update group permissions",
    "remove-group": "Failed to remove group permissions",
    "update-role": "Failed to update role permissions",
}


class BambooSyncError(Exception):
    """Base class for all BambooSync errors."""


class ConfigError(BambooSyncError):
    """Raised when runtime configuration cannot be resolved."""


class RuleValidationError(BambooSyncError):
    """Raised when desired-state input is malformed or uses a forbidden permission."""


class StateError(BambooSyncError):
    """Raised when the recorded state file cannot be read."""


@dataclass
class DuplicatePriorityError(BambooSyncError):
    """Two assignment rules share the same priority (strict resolution only)."""
    priority: int

    def __str__(self) -> str:
        return f"Duplicate assignment priority {self.priority}; every rule needs a distinct priority"


@dataclass
class PermissionPushError(BambooSyncError):
    """A permission write to the remote store failed."""
    operation: Operation
    entity: str
    principal: str
    cause: Optional[BaseException] = None

    @property
    def summary(self) -> str:
        return _MESSAGES[self.operation]

    def __str__(self) -> str:
        base = f"{self.summary} (entity={self.entity}, principal={self.principal})"
        if self.cause is not None:
            base += f": {self.cause}"
        return base


@dataclass
class PermissionReadError(BambooSyncError):
    """Reading the assigned permissions of an entity failed."""
    entity: str
    cause: Optional[BaseException] = None

    def __str__(self) -> str:
        base = f"Failed to read permissions (entity={self.entity})"
        if self.cause is not None:
            base += f": {self.cause}"
        return base
