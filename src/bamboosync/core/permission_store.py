"""
Bamboo-backed permission store.

Endpoints (under rest/api/latest/permissions/<resource>/<key>):
  users | groups | roles                     GET    paged listing {results, isLastPage}
  users/<name> | groups/<name> | roles/<r>   PUT    grant the permissions in the body
                                             DELETE revoke the permissions in the body
  available-users | available-groups         GET    search principals eligible on the entity

``set_*_permissions`` sets an exact permission set: it reads what the principal
holds, grants the missing tokens and revokes the extra ones, so repeating a
call with the same set issues no further writes.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Set
from urllib.parse import quote

from .attestations import AssignedPermissions, PrincipalPermissions
from .bamboo_client import BambooClient, HttpError
from .diff_engine import delta
from .entities import EntityRef
from .errors import PermissionReadError

__all__ = ["BambooPermissionStore", "PrincipalDirectory"]

_RESOURCE_SEGMENTS: Dict[str, str] = {
    "project": "project",
    "plan": "plan",
    "deployment": "deployment",
    "repository": "repository",
}

_COLLECTIONS = {"user": "users", "group": "groups", "role": "roles"}


class PrincipalDirectory:
    """Per-run memory of principals already known to exist."""

    def __init__(self) -> None:
        self._known: Dict[str, Set[str]] = {"user": set(), "group": set()}

    def lookup(self, kind: str, name: str) -> bool:
        return name in self._known[kind]

    def validate(self, kind: str, name: str) -> None:
        self._known[kind].add(name)


class BambooPermissionStore:
    """Remote permission store over the Bamboo REST permissions API."""

    def __init__(
        self,
        client: BambooClient,
        *,
        directory: Optional[PrincipalDirectory] = None,
        page_size: int = 100,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.client = client
        self.directory = directory or PrincipalDirectory()
        self.page_size = int(page_size)
        self.log = logger or logging.getLogger("bsync.store")

    # ------------- Paths -------------

    def _base(self, entity: EntityRef) -> str:
        key = quote(str(entity.key), safe="")
        return self.client.api_path("permissions", _RESOURCE_SEGMENTS[entity.kind], key)

    def _item_path(self, entity: EntityRef, collection: str, name: str) -> str:
        # names may carry "/", "#" or "?", so the segment is fully escaped
        return f"{self._base(entity)}/{collection}/{quote(name, safe='')}"

    # ------------- Reads -------------

    def _paged(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        start = 0
        while True:
            query = dict(params or {})
            query.update({"start": start, "limit": self.page_size})
            payload = self.client.get_json(path, params=query) or {}
            results = payload.get("results") if isinstance(payload, dict) else payload
            items = [it for it in (results or []) if isinstance(it, dict)]
            yield from items
            if not isinstance(payload, dict) or payload.get("isLastPage", True) or not items:
                return
            start += len(items)

    def _list(self, entity: EntityRef, collection: str, name: Optional[str] = None) -> List[PrincipalPermissions]:
        params = {"name": name} if name else None
        out = []
        for it in self._paged(f"{self._base(entity)}/{collection}", params):
            if name and it.get("name") != name:
                continue
            out.append(PrincipalPermissions(str(it.get("name")), tuple(it.get("permissions") or ())))
        return out

    def read_assigned_permissions(self, entity: EntityRef) -> AssignedPermissions:
        """Users and groups currently holding at least one permission on ``entity``."""
        try:
            users = [p for p in self._list(entity, "users") if p.permissions]
            groups = [p for p in self._list(entity, "groups") if p.permissions]
        except HttpError as e:
            raise PermissionReadError(str(entity), e) from e
        self.log.debug("Read %s: %d user(s), %d group(s)", entity, len(users), len(groups))
        return AssignedPermissions(users=tuple(users), groups=tuple(groups))

    # ------------- Principals -------------

    def lookup_principal(self, kind: str, name: str) -> bool:
        return self.directory.lookup(kind, name)

    def validate_principal(self, kind: str, name: str) -> None:
        self.directory.validate(kind, name)

    def find_principal(self, entity: EntityRef, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Search principals eligible on ``entity``; also matches those already assigned."""
        collection = _COLLECTIONS[kind]
        for it in self._paged(f"{self._base(entity)}/available-{collection}", {"filter": name}):
            if it.get("name") == name:
                return it
        for it in self._paged(f"{self._base(entity)}/{collection}", {"name": name}):
            if it.get("name") == name:
                return it
        return None

    # ------------- Writes -------------

    def _set(self, entity: EntityRef, kind: str, name: str, permissions: List[str]) -> None:
        collection = _COLLECTIONS[kind]
        held = [p for holder in self._list(entity, collection, name) for p in holder.permissions]
        grant, revoke = delta(held, permissions)
        path = self._item_path(entity, collection, name)
        if grant:
            self.client.put_json(path, grant)
        if revoke:
            self.client.delete_json(path, revoke)
        self.log.debug("Set %s '%s' on %s: +%s -%s", kind, name, entity, grant, revoke)

    def set_user_permissions(self, entity: EntityRef, name: str, permissions: List[str]) -> None:
        self._set(entity, "user", name, permissions)

    def set_group_permissions(self, entity: EntityRef, name: str, permissions: List[str]) -> None:
        self._set(entity, "group", name, permissions)

    def set_role_permissions(self, entity: EntityRef, role: str, permissions: List[str]) -> None:
        self._set(entity, "role", role, permissions)
