import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qs, unquote, urlparse

import pytest

from bamboosync.core.attestations import AssignedPermissions, PrincipalPermissions
from bamboosync.core.entities import EntityRef


class FakeStore:
    """In-memory permission store with call recording and failure injection."""

    def __init__(self, users=(), groups=()) -> None:
        self.known: Dict[str, Set[str]] = {"user": set(users), "group": set(groups)}
        self.validated: Dict[str, Set[str]] = {"user": set(), "group": set()}
        self.perms: Dict[EntityRef, Dict[str, Dict[str, List[str]]]] = {}
        self.calls: List[Tuple[str, str, str, List[str]]] = []
        self.finds: List[Tuple[str, str]] = []
        self.fail_on: Set[Tuple[str, str]] = set()
        self.fail_find: Set[str] = set()

    def _bucket(self, entity: EntityRef, kind: str) -> Dict[str, List[str]]:
        return self.perms.setdefault(entity, {"user": {}, "group": {}, "role": {}})[kind]

    def grant(self, entity: EntityRef, kind: str, name: str, permissions: List[str]) -> None:
        self._bucket(entity, kind)[name] = list(permissions)

    def held(self, entity: EntityRef, kind: str, name: str) -> List[str]:
        return self._bucket(entity, kind).get(name, [])

    # --- PermissionStore ---

    def lookup_principal(self, kind: str, name: str) -> bool:
        return name in self.validated[kind]

    def find_principal(self, entity: EntityRef, kind: str, name: str) -> Optional[Dict[str, Any]]:
        self.finds.append((kind, name))
        if name in self.fail_find:
            raise RuntimeError("search unavailable")
        return {"name": name} if name in self.known[kind] else None

    def validate_principal(self, kind: str, name: str) -> None:
        self.validated[kind].add(name)

    def read_assigned_permissions(self, entity: EntityRef) -> AssignedPermissions:
        def _items(kind):
            return tuple(
                PrincipalPermissions(n, tuple(p))
                for n, p in self._bucket(entity, kind).items()
                if p
            )
        return AssignedPermissions(users=_items("user"), groups=_items("group"))

    def _set(self, kind: str, entity: EntityRef, name: str, permissions: List[str]) -> None:
        if (kind, name) in self.fail_on:
            raise RuntimeError(f"boom on {name}")
        self.calls.append((kind, str(entity), name, list(permissions)))
        self._bucket(entity, kind)[name] = list(permissions)

    def set_user_permissions(self, entity, name, permissions):
        self._set("user", entity, name, permissions)

    def set_group_permissions(self, entity, name, permissions):
        self._set("group", entity, name, permissions)

    def set_role_permissions(self, entity, role, permissions):
        self._set("role", entity, role, permissions)


@pytest.fixture
def store():
    return FakeStore(users={"alice", "bob", "carol"}, groups={"devs", "ops"})


@pytest.fixture
def project():
    return EntityRef("project", "PRJ")


PERMISSIONS_PREFIX = "/rest/api/latest/permissions/"


class FakeBamboo(BaseHTTPRequestHandler):
    """Tiny in-memory Bamboo permissions API."""

    url = ""
    # {(resource, key): {"users": {name: [perms]}, "groups": {...}, "roles": {...}}}
    perms: Dict[Tuple[str, str], Dict[str, Dict[str, List[str]]]] = {}
    directory: Dict[str, Set[str]] = {"users": set(), "groups": set()}
    writes: List[Tuple[Any, ...]] = []
    requests: List[Tuple[str, str]] = []

    protocol_version = "HTTP/1.1"

    @classmethod
    def seed(cls, resource: str, key: str, **collections: Dict[str, List[str]]) -> None:
        entry = cls.perms.setdefault((resource, key), {"users": {}, "groups": {}, "roles": {}})
        for collection, held in collections.items():
            entry[collection] = {n: list(p) for n, p in held.items()}

    def _send_json(self, status, obj=None):
        raw = json.dumps(obj).encode("utf-8") if obj is not None else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _route(self):
        url = urlparse(self.path)
        FakeBamboo.requests.append((self.command, url.path))
        if not url.path.startswith(PERMISSIONS_PREFIX):
            return None
        parts = [unquote(p) for p in url.path[len(PERMISSIONS_PREFIX):].split("/")]
        return parts, {k: v[0] for k, v in parse_qs(url.query).items()}

    def _entity(self, resource, key):
        return FakeBamboo.perms.setdefault((resource, key), {"users": {}, "groups": {}, "roles": {}})

    def do_GET(self):  # noqa: N802
        routed = self._route()
        if routed is None:
            self._send_json(404, {"error": "not found"})
            return
        (resource, key, collection, *_), query = routed
        if key == "BROKEN":
            self._send_json(500, {"error": "boom"})
            return

        if collection.startswith("available-"):
            kind = collection[len("available-"):]
            needle = query.get("filter", "")
            items = [{"name": n} for n in sorted(FakeBamboo.directory[kind]) if needle in n]
        else:
            held = self._entity(resource, key)[collection]
            items = [{"name": n, "permissions": p} for n, p in sorted(held.items())]
            if "name" in query:
                items = [it for it in items if it["name"] == query["name"]]

        start, limit = int(query.get("start", 0)), int(query.get("limit", 100))
        page = items[start:start + limit]
        self._send_json(200, {
            "start": start,
            "limit": limit,
            "size": len(page),
            "isLastPage": start + limit >= len(items),
            "results": page,
        })

    def _write(self, grant):
        (resource, key, collection, name), _ = self._route()
        length = int(self.headers.get("Content-Length") or 0)
        body = json.loads(self.rfile.read(length) or b"[]")
        FakeBamboo.writes.append((self.command, resource, key, collection, name, body))
        held = self._entity(resource, key)[collection]
        current = held.get(name, [])
        if grant:
            held[name] = current + [p for p in body if p not in current]
        else:
            held[name] = [p for p in current if p not in body]
        self._send_json(204)

    def do_PUT(self):  # noqa: N802
        self._write(grant=True)

    def do_DELETE(self):  # noqa: N802
        self._write(grant=False)

    def log_message(self, fmt, *args):
        return


@pytest.fixture
def bamboo_api():
    FakeBamboo.perms = {}
    FakeBamboo.directory = {"users": {"alice", "bob"}, "groups": {"devs"}}
    FakeBamboo.writes = []
    FakeBamboo.requests = []
    srv = ThreadingHTTPServer(("127.0.0.1", 0), FakeBamboo)
    th = threading.Thread(target=srv.serve_forever, daemon=True)
    th.start()
    FakeBamboo.url = f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    try:
        yield FakeBamboo
    finally:
        srv.shutdown()
        th.join(timeout=1.0)
