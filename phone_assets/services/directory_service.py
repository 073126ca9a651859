"""Read access to the employee directory, department tree and grant store.

The core services only read through this module. The maintenance commands at
the bottom exist so operators can load directory data; no asset, transfer or
inventory path calls them.
"""

from __future__ import annotations

from typing import ClassVar

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from phone_assets.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from phone_assets.domain.models import (
    AdminUser,
    AdminUserCreate,
    Department,
    DepartmentNode,
    DepartmentUpsert,
    Employee,
    EmployeeUpsert,
    GrantWrite,
    PermissionGrant,
    now_utc,
)
from phone_assets.domain.permissions import (
    Grant,
    PermissionScope,
    Principal,
    build_principal,
    can_manage,
    is_super_admin,
    resolve,
)
from phone_assets.infra.db import get_engine
from phone_assets.services.identity_service import hash_password

logger = structlog.get_logger(__name__)


def load_employee(session: Session, employee_id: str) -> Employee:
    employee = session.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(f"employee not found: {employee_id}")
    return employee


def load_principal(session: Session, user_id: str) -> Principal:
    user = session.get(AdminUser, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("user not found")
    grants = session.exec(select(PermissionGrant).where(PermissionGrant.user_id == user_id)).all()
    principal = build_principal(
        user.id,
        is_super_admin=user.is_super_admin,
        grants=(
            Grant(
                department_id=row.department_id,
                scope=row.scope,
                included_sub_department_ids=frozenset(row.included_sub_department_ids),
            )
            for row in grants
        ),
        legacy_role=user.legacy_role,
    )
    if principal.uses_legacy_role:
        logger.warning("permissions.legacy_role_fallback", user_id=user.id, legacy_role=user.legacy_role)
    return principal


class DirectoryService:
    MAX_DEPTH: ClassVar[int] = 32

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def get_employee(self, employee_id: str) -> Employee:
        with self._session() as session:
            return load_employee(session, employee_id)

    def list_employees(
        self,
        *,
        department_id: int | None = None,
        employment_status: str | None = None,
    ) -> list[Employee]:
        with self._session() as session:
            statement = select(Employee)
            if department_id is not None:
                statement = statement.where(Employee.department_id == department_id)
            if employment_status is not None:
                statement = statement.where(Employee.employment_status == employment_status)
            return list(session.exec(statement.order_by(Employee.id)).all())

    def get_department(self, department_id: int) -> Department:
        with self._session() as session:
            department = session.get(Department, department_id)
            if department is None:
                raise NotFoundError(f"department not found: {department_id}")
            return department

    def list_departments(self, *, include_inactive: bool = False) -> list[Department]:
        with self._session() as session:
            statement = select(Department)
            if not include_inactive:
                statement = statement.where(Department.active == True)  # noqa: E712
            return list(session.exec(statement.order_by(Department.id)).all())

    def department_tree(self, *, include_inactive: bool = False) -> list[DepartmentNode]:
        rows = self.list_departments(include_inactive=include_inactive)
        nodes = {
            row.id: DepartmentNode(id=row.id, name=row.name, parent_id=row.parent_id, active=row.active)
            for row in rows
        }
        roots: list[DepartmentNode] = []
        for node in nodes.values():
            parent = nodes.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots

    def get_principal(self, user_id: str) -> Principal:
        with self._session() as session:
            return load_principal(session, user_id)

    def effective_permission(self, user_id: str, department_id: int) -> PermissionScope:
        return resolve(self.get_principal(user_id), department_id)

    def list_admin_users(self) -> list[AdminUser]:
        with self._session() as session:
            return list(session.exec(select(AdminUser).order_by(AdminUser.username)).all())

    def list_grants(self, user_id: str) -> list[PermissionGrant]:
        with self._session() as session:
            if session.get(AdminUser, user_id) is None:
                raise NotFoundError("user not found")
            statement = select(PermissionGrant).where(PermissionGrant.user_id == user_id)
            return list(session.exec(statement.order_by(PermissionGrant.department_id)).all())

    def _ensure_acyclic(self, session: Session, department_id: int, parent_id: int | None) -> None:
        depth = 0
        cursor = parent_id
        while cursor is not None:
            if cursor == department_id:
                raise ValidationError("department parent would create a cycle")
            depth += 1
            if depth > self.MAX_DEPTH:
                raise ValidationError("department tree exceeds maximum depth")
            parent = session.get(Department, cursor)
            if parent is None:
                raise NotFoundError(f"department not found: {cursor}")
            cursor = parent.parent_id

    def upsert_department(self, principal: Principal, payload: DepartmentUpsert) -> Department:
        if not is_super_admin(principal):
            raise ForbiddenError("only super admins maintain departments")
        with self._session() as session:
            self._ensure_acyclic(session, payload.id, payload.parent_id)
            department = session.get(Department, payload.id)
            if department is None:
                department = Department(id=payload.id, name=payload.name)
            department.name = payload.name
            department.parent_id = payload.parent_id
            department.active = payload.active
            session.add(department)
            session.commit()
            session.refresh(department)

        logger.info("directory.department_upserted", department_id=department.id, active=department.active)
        return department

    def upsert_employee(self, principal: Principal, payload: EmployeeUpsert) -> Employee:
        with self._session() as session:
            if session.get(Department, payload.department_id) is None:
                raise NotFoundError(f"department not found: {payload.department_id}")
            employee = session.get(Employee, payload.id)
            if not can_manage(principal, payload.department_id):
                raise ForbiddenError("manage permission required on target department")
            if employee is not None and not can_manage(principal, employee.department_id):
                raise ForbiddenError("manage permission required on current department")
            if employee is None:
                employee = Employee(id=payload.id, name=payload.name, department_id=payload.department_id)
            employee.name = payload.name
            employee.department_id = payload.department_id
            employee.employment_status = payload.employment_status
            if payload.password is not None:
                employee.password_hash = hash_password(payload.password)
            employee.updated_at = now_utc()
            session.add(employee)
            session.commit()
            session.refresh(employee)

        logger.info(
            "directory.employee_upserted",
            employee_id=employee.id,
            department_id=employee.department_id,
            employment_status=employee.employment_status,
        )
        return employee

    def create_admin_user(self, principal: Principal, payload: AdminUserCreate) -> AdminUser:
        if not is_super_admin(principal):
            raise ForbiddenError("only super admins create administrators")
        with self._session() as session:
            user = AdminUser(
                username=payload.username,
                password_hash=hash_password(payload.password),
                is_super_admin=payload.is_super_admin,
                legacy_role=payload.legacy_role,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("username already exists") from exc
            session.refresh(user)
            return user

    def replace_grants(self, principal: Principal, user_id: str, grants: list[GrantWrite]) -> list[PermissionGrant]:
        if not is_super_admin(principal):
            raise ForbiddenError("only super admins edit grants")
        department_ids = {item.department_id for item in grants}
        if len(department_ids) != len(grants):
            raise ValidationError("at most one grant per department")
        with self._session() as session:
            if session.get(AdminUser, user_id) is None:
                raise NotFoundError("user not found")
            referenced = department_ids | {sub for item in grants for sub in item.included_sub_department_ids}
            if referenced:
                known = set(
                    session.exec(select(Department.id).where(col(Department.id).in_(referenced))).all()
                )
                missing = sorted(referenced - known)
                if missing:
                    raise NotFoundError(f"department not found: {missing[0]}")
            for row in session.exec(select(PermissionGrant).where(PermissionGrant.user_id == user_id)).all():
                session.delete(row)
            session.flush()
            rows = [
                PermissionGrant(
                    user_id=user_id,
                    department_id=item.department_id,
                    scope=item.scope,
                    included_sub_department_ids=sorted(set(item.included_sub_department_ids)),
                )
                for item in grants
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)

        logger.info("directory.grants_replaced", user_id=user_id, grant_count=len(rows))
        return rows
