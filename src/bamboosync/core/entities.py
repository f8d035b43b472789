"""
Bamboo entities that carry user/group permissions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .errors import RuleValidationError

_BUILD_PERMISSIONS: Tuple[str, ...] = (
    "READ",
    "VIEWCONFIGURATION",
    "WRITE",
    "BUILD",
    "CLONE",
    "CREATE",
    "CREATEREPOSITORY",
    "ADMINISTRATION",
)

ALLOWED_PERMISSIONS: Dict[str, Tuple[str, ...]] = {
    "project": _BUILD_PERMISSIONS,
    "plan": _BUILD_PERMISSIONS,
    "deployment": _BUILD_PERMISSIONS,
    "repository": ("READ", "ADMINISTRATION"),
}

# Implicit roles zeroed out when permissions are first created on an entity
DEFAULT_ROLES: Dict[str, Tuple[str, ...]] = {
    "project": ("LOGGED_IN", "ANONYMOUS"),
    "plan": ("LOGGED_IN", "ANONYMOUS"),
    "deployment": ("LOGGED_IN", "ANONYMOUS"),
    "repository": ("LOGGED_IN",),
}


@dataclass(frozen=True)
class EntityRef:
    """A permission-bearing entity: ``kind`` plus its key or numeric id."""
    kind: str
    key: str

    def __post_init__(self) -> None:
        if self.kind not in ALLOWED_PERMISSIONS:
            raise RuleValidationError(
                f"Unknown entity kind '{self.kind}' (expected one of: {', '.join(ALLOWED_PERMISSIONS)})"
            )
        if not str(self.key).strip():
            raise RuleValidationError(f"Entity of kind '{self.kind}' has an empty key")

    @property
    def allowed_permissions(self) -> Tuple[str, ...]:
        return ALLOWED_PERMISSIONS[self.kind]

    @property
    def default_roles(self) -> Tuple[str, ...]:
        return DEFAULT_ROLES[self.kind]

    def __str__(self) -> str:
        return f"{self.kind}:{self.key}"
