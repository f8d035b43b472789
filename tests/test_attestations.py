from bamboosync.core.attestations import (
    AssignedPermissions,
    PrincipalPermissions,
    create_attestation,
)


def test_attestation_groups_principals_by_permission():
    assigned = AssignedPermissions(
        users=(
            PrincipalPermissions("alice", ("READ", "WRITE")),
            PrincipalPermissions("bob", ("READ",)),
        ),
        groups=(PrincipalPermissions("devs", ("BUILD",)),),
    )
    att = create_attestation(assigned)
    assert att.users == {"READ": ["alice", "bob"], "WRITE": ["alice"]}
    assert att.groups == {"BUILD": ["devs"]}


def test_attestation_of_empty_entity_has_no_buckets():
    att = create_attestation(AssignedPermissions())
    assert att.to_dict() == {"users": {}, "groups": {}}


def test_assigned_permissions_from_dict():
    assigned = AssignedPermissions.from_dict({
        "users": [{"name": "alice", "permissions": ["READ"]}],
        "groups": None,
    })
    assert assigned.users == (PrincipalPermissions("alice", ("READ",)),)
    assert assigned.groups == ()
