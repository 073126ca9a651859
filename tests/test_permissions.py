from __future__ import annotations

from phone_assets.domain.permissions import (
    ALL_DEPARTMENTS,
    Grant,
    PermissionScope,
    Principal,
    build_principal,
    can_manage,
    can_view,
    is_super_admin,
    managed_department_ids,
    resolve,
    viewable_department_ids,
)


def _principal(*grants: Grant, super_admin: bool = False, legacy_role: str | None = None) -> Principal:
    return build_principal("user-1", is_super_admin=super_admin, grants=grants, legacy_role=legacy_role)


def test_grant_covers_only_listed_sub_departments() -> None:
    principal = _principal(Grant(3, PermissionScope.VIEW, frozenset({31, 32})))

    assert resolve(principal, 3) == PermissionScope.VIEW
    assert resolve(principal, 31) == PermissionScope.VIEW
    assert resolve(principal, 32) == PermissionScope.VIEW
    # 33 may sit under 3 in the tree, but it is not on the allow-list.
    assert resolve(principal, 33) == PermissionScope.NONE


def test_highest_candidate_scope_wins() -> None:
    principal = _principal(
        Grant(3, PermissionScope.VIEW, frozenset({31})),
        Grant(31, PermissionScope.MANAGE),
    )

    assert resolve(principal, 31) == PermissionScope.MANAGE
    assert resolve(principal, 3) == PermissionScope.VIEW
    assert can_manage(principal, 31)
    assert not can_manage(principal, 3)
    assert can_view(principal, 3)


def test_super_admin_manages_everything() -> None:
    principal = _principal(super_admin=True)

    assert resolve(principal, 12345) == PermissionScope.MANAGE
    assert managed_department_ids(principal) is ALL_DEPARTMENTS
    assert viewable_department_ids(principal) is ALL_DEPARTMENTS
    assert 999 in managed_department_ids(principal)
    assert can_manage(principal, None)


def test_resolution_is_deterministic() -> None:
    principal = _principal(Grant(5, PermissionScope.MANAGE, frozenset({51, 52})))

    results = {resolve(principal, department_id) for department_id in [51] * 10}

    assert results == {PermissionScope.MANAGE}


def test_department_sets_follow_grant_scopes() -> None:
    principal = _principal(
        Grant(1, PermissionScope.MANAGE, frozenset({11})),
        Grant(2, PermissionScope.VIEW, frozenset({21, 22})),
    )

    assert managed_department_ids(principal) == frozenset({1, 11})
    assert viewable_department_ids(principal) == frozenset({1, 11, 2, 21, 22})


def test_no_grants_means_no_access() -> None:
    principal = _principal()

    assert resolve(principal, 1) == PermissionScope.NONE
    assert managed_department_ids(principal) == frozenset()
    assert not can_view(principal, None)


def test_legacy_role_only_applies_without_grants() -> None:
    legacy = _principal(legacy_role="super_admin")
    granted = _principal(Grant(1, PermissionScope.VIEW), legacy_role="super_admin")

    assert legacy.uses_legacy_role
    assert is_super_admin(legacy)
    assert resolve(legacy, 77) == PermissionScope.MANAGE

    assert not granted.uses_legacy_role
    assert not is_super_admin(granted)
    assert resolve(granted, 77) == PermissionScope.NONE
