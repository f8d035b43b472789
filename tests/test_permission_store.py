import pytest

from bamboosync.core.assignments import AssignmentRule
from bamboosync.core.bamboo_client import BambooClient
from bamboosync.core.entities import EntityRef
from bamboosync.core.errors import PermissionReadError
from bamboosync.core.permission_store import BambooPermissionStore
from bamboosync.core.permissions import EntityPermissions, PermissionSpec

PREFIX = "/rest/api/latest/permissions/"


@pytest.fixture
def store_http(bamboo_api):
    client = BambooClient(bamboo_api.url, "TEST", retries=0, timeout_sec=5)
    return BambooPermissionStore(client, page_size=2)


def test_set_permissions_grants_and_revokes_exact_set(bamboo_api, store_http):
    prj = EntityRef("project", "PRJ")
    bamboo_api.seed("project", "PRJ", users={"alice": ["READ", "ADMINISTRATION"]})

    store_http.set_user_permissions(prj, "alice", ["READ", "BUILD"])

    assert bamboo_api.perms[("project", "PRJ")]["users"]["alice"] == ["READ", "BUILD"]
    assert bamboo_api.writes == [
        ("PUT", "project", "PRJ", "users", "alice", ["BUILD"]),
        ("DELETE", "project", "PRJ", "users", "alice", ["ADMINISTRATION"]),
    ]

    bamboo_api.writes.clear()
    store_http.set_user_permissions(prj, "alice", ["BUILD", "READ"])
    assert bamboo_api.writes == []


def test_read_assigned_permissions_follows_pages_and_drops_empty(bamboo_api, store_http):
    bamboo_api.seed(
        "plan", "PRJ-PLAN",
        users={"u1": ["READ"], "u2": [], "u3": ["BUILD"], "u4": ["READ"], "u5": ["WRITE"]},
        groups={"devs": ["READ"]},
    )

    assigned = store_http.read_assigned_permissions(EntityRef("plan", "PRJ-PLAN"))

    assert [p.name for p in assigned.users] == ["u1", "u3", "u4", "u5"]
    assert [p.name for p in assigned.groups] == ["devs"]
    user_pages = [r for r in bamboo_api.requests if r == ("GET", PREFIX + "plan/PRJ-PLAN/users")]
    assert len(user_pages) == 3


def test_read_failure_is_wrapped(store_http):
    with pytest.raises(PermissionReadError) as exc:
        store_http.read_assigned_permissions(EntityRef("project", "BROKEN"))
    assert exc.value.entity == "project:BROKEN"


def test_find_principal_searches_available_principals(store_http):
    prj = EntityRef("project", "PRJ")
    assert store_http.find_principal(prj, "user", "alice") == {"name": "alice"}
    assert store_http.find_principal(prj, "group", "ghosts") is None


def test_find_principal_matches_already_assigned(bamboo_api, store_http):
    bamboo_api.seed("project", "PRJ", users={"carol": ["READ"]})
    found = store_http.find_principal(EntityRef("project", "PRJ"), "user", "carol")
    assert found == {"name": "carol", "permissions": ["READ"]}


def test_role_permissions_target_roles_collection(bamboo_api, store_http):
    bamboo_api.seed("repository", "42", roles={"LOGGED_IN": ["READ"]})
    store_http.set_role_permissions(EntityRef("repository", "42"), "LOGGED_IN", [])
    assert bamboo_api.writes == [("DELETE", "repository", "42", "roles", "LOGGED_IN", ["READ"])]


def test_principal_names_with_reserved_characters_are_escaped(bamboo_api, store_http):
    prj = EntityRef("project", "PRJ")
    bamboo_api.seed("project", "PRJ", groups={"qa": ["ADMINISTRATION"], "dept": ["ADMINISTRATION"]})

    store_http.set_group_permissions(prj, "qa#leads", ["READ"])
    store_http.set_group_permissions(prj, "dept/qa", ["READ"])
    store_http.set_user_permissions(prj, "who?me", ["READ"])

    assert bamboo_api.writes == [
        ("PUT", "project", "PRJ", "groups", "qa#leads", ["READ"]),
        ("PUT", "project", "PRJ", "groups", "dept/qa", ["READ"]),
        ("PUT", "project", "PRJ", "users", "who?me", ["READ"]),
    ]
    groups = bamboo_api.perms[("project", "PRJ")]["groups"]
    assert groups["qa"] == ["ADMINISTRATION"]
    assert groups["dept"] == ["ADMINISTRATION"]
    assert groups["qa#leads"] == ["READ"]
    assert groups["dept/qa"] == ["READ"]
    assert ("PUT", PREFIX + "project/PRJ/groups/qa%23leads") in bamboo_api.requests


def test_entity_key_is_escaped(bamboo_api, store_http):
    store_http.set_user_permissions(EntityRef("plan", "PRJ/PLAN"), "alice", ["READ"])
    assert bamboo_api.writes == [("PUT", "plan", "PRJ/PLAN", "users", "alice", ["READ"])]


def test_entity_lifecycle_over_http(bamboo_api, store_http):
    prj = EntityRef("project", "PRJ")
    bamboo_api.seed("project", "PRJ", roles={"LOGGED_IN": ["READ"], "ANONYMOUS": ["READ"]})
    perms = EntityPermissions(store_http)
    spec = PermissionSpec(
        entity=prj,
        assignments=(
            AssignmentRule(users=("alice", "ghost"), groups=("devs",), permissions=("READ",), priority=1),
            AssignmentRule(users=("alice",), permissions=("READ", "WRITE"), priority=2),
        ),
    )

    record = perms.create(spec)

    remote = bamboo_api.perms[("project", "PRJ")]
    assert remote["roles"] == {"LOGGED_IN": [], "ANONYMOUS": []}
    assert remote["users"] == {"alice": ["READ", "WRITE"]}
    assert remote["groups"] == {"devs": ["READ"]}
    assert [a.name for a in record.result.computed_users] == ["alice"]

    assert perms.read(record).result == record.result
