"""Department permission resolution.

Grants are explicit allow-lists: a grant covers its own department plus the
sub-department ids listed on it, and nothing else. Being a structural child of
a granted department in the tree confers no authority.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final


class PermissionScope(StrEnum):
    NONE = "none"
    VIEW = "view"
    MANAGE = "manage"


SCOPE_RANK: Final[dict[PermissionScope, int]] = {
    PermissionScope.NONE: 0,
    PermissionScope.VIEW: 1,
    PermissionScope.MANAGE: 2,
}

LEGACY_ROLE_SUPER_ADMIN = "super_admin"


class _AllDepartments:
    """Sentinel returned instead of enumerating every department."""

    _instance: _AllDepartments | None = None

    def __new__(cls) -> _AllDepartments:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __contains__(self, _item: object) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALL_DEPARTMENTS"


ALL_DEPARTMENTS: Final = _AllDepartments()

DepartmentSet = frozenset[int] | _AllDepartments


@dataclass(frozen=True)
class Grant:
    department_id: int
    scope: PermissionScope
    included_sub_department_ids: frozenset[int] = frozenset()

    def covers(self, department_id: int) -> bool:
        return department_id == self.department_id or department_id in self.included_sub_department_ids

    def department_ids(self) -> frozenset[int]:
        return frozenset({self.department_id, *self.included_sub_department_ids})


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_super_admin: bool = False
    grants: tuple[Grant, ...] = field(default_factory=tuple)
    legacy_role: str | None = None

    @property
    def uses_legacy_role(self) -> bool:
        return (
            not self.is_super_admin
            and not self.grants
            and self.legacy_role == LEGACY_ROLE_SUPER_ADMIN
        )


def build_principal(
    user_id: str,
    *,
    is_super_admin: bool,
    grants: Iterable[Grant],
    legacy_role: str | None = None,
) -> Principal:
    return Principal(
        user_id=user_id,
        is_super_admin=is_super_admin,
        grants=tuple(grants),
        legacy_role=legacy_role,
    )


def is_super_admin(principal: Principal) -> bool:
    # Role strings only count when no grant list exists for the user.
    return principal.is_super_admin or principal.uses_legacy_role


def resolve(principal: Principal, department_id: int) -> PermissionScope:
    if is_super_admin(principal):
        return PermissionScope.MANAGE
    best = PermissionScope.NONE
    for grant in principal.grants:
        if grant.covers(department_id) and SCOPE_RANK[grant.scope] > SCOPE_RANK[best]:
            best = grant.scope
    return best


def can_manage(principal: Principal, department_id: int | None) -> bool:
    if department_id is None:
        return is_super_admin(principal)
    return resolve(principal, department_id) == PermissionScope.MANAGE


def can_view(principal: Principal, department_id: int | None) -> bool:
    if department_id is None:
        return is_super_admin(principal)
    return resolve(principal, department_id) != PermissionScope.NONE


def _collect(principal: Principal, scopes: set[PermissionScope]) -> DepartmentSet:
    if is_super_admin(principal):
        return ALL_DEPARTMENTS
    collected: set[int] = set()
    for grant in principal.grants:
        if grant.scope in scopes:
            collected.update(grant.department_ids())
    return frozenset(collected)


def managed_department_ids(principal: Principal) -> DepartmentSet:
    return _collect(principal, {PermissionScope.MANAGE})


def viewable_department_ids(principal: Principal) -> DepartmentSet:
    return _collect(principal, {PermissionScope.MANAGE, PermissionScope.VIEW})
