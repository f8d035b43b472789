import pytest

from bamboosync.core.assignments import (
    AssignmentResult,
    AssignmentRule,
    ComputedAssignment,
    normalize,
    resolve_assignments,
)
from bamboosync.core.errors import DuplicatePriorityError


def _rule(priority, users=(), groups=(), permissions=()):
    return AssignmentRule(users=tuple(users), groups=tuple(groups), permissions=tuple(permissions), priority=priority)


def test_highest_priority_wins_in_any_declaration_order():
    low = _rule(1, users=["alice"], permissions=["READ"])
    high = _rule(5, users=["alice"], permissions=["WRITE"])

    for rules in ([low, high], [high, low]):
        order = resolve_assignments(rules)
        assert order.users == {"alice": ("WRITE",)}
        assert order.user_names == ("alice",)


def test_users_and_groups_resolve_independently():
    order = resolve_assignments([
        _rule(1, users=["alice"], groups=["devs"], permissions=["READ"]),
        _rule(2, groups=["devs"], permissions=["READ", "BUILD"]),
    ])
    assert order.users == {"alice": ("READ",)}
    assert order.groups == {"devs": ("READ", "BUILD")}


def test_names_follow_ascending_priority_and_appear_once():
    order = resolve_assignments([
        _rule(9, users=["carol", "alice"], permissions=["READ"]),
        _rule(3, users=["bob", "alice"], permissions=["BUILD"]),
    ])
    assert order.user_names == ("bob", "alice", "carol")
    assert order.users["alice"] == ("READ",)
    assert order.users["bob"] == ("BUILD",)


def test_duplicate_priority_raises_in_strict_mode():
    with pytest.raises(DuplicatePriorityError) as exc:
        resolve_assignments([
            _rule(2, users=["alice"], permissions=["READ"]),
            _rule(2, users=["bob"], permissions=["WRITE"]),
        ])
    assert exc.value.priority == 2


def test_duplicate_priority_last_rule_wins_in_legacy_mode():
    order = resolve_assignments(
        [
            _rule(2, users=["alice"], permissions=["READ"]),
            _rule(2, users=["bob"], permissions=["WRITE"]),
        ],
        strict=False,
    )
    # The earlier rule is discarded entirely, not merged.
    assert order.users == {"bob": ("WRITE",)}


def test_empty_rules_give_empty_order():
    order = resolve_assignments([])
    assert order.is_empty()
    assert order.user_names == () and order.group_names == ()


def test_normalize_sorts_names_and_permissions():
    out = normalize([
        ComputedAssignment("zed", ("WRITE", "READ")),
        ComputedAssignment("amy", ("BUILD",)),
    ])
    assert [a.name for a in out] == ["amy", "zed"]
    assert out[1].permissions == ("READ", "WRITE")


def test_result_equality_ignores_write_count():
    a = AssignmentResult.build([ComputedAssignment("alice", ("READ",))], [], writes=3)
    b = AssignmentResult.build([ComputedAssignment("alice", ("READ",))], [], writes=0)
    assert a == b
    assert "writes" not in a.to_dict()


def test_rule_dict_roundtrip_keeps_priority():
    rule = _rule(7, users=["alice"], groups=["devs"], permissions=["READ"])
    assert AssignmentRule.from_dict(rule.to_dict()) == rule
