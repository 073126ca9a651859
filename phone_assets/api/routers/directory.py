from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from phone_assets.api.deps import AdminPrincipal
from phone_assets.domain.models import (
    AdminUserCreate,
    AdminUserRead,
    DepartmentNode,
    DepartmentRead,
    DepartmentUpsert,
    EffectivePermissionRead,
    EmployeeRead,
    EmployeeUpsert,
    EmploymentStatus,
    GrantRead,
    GrantsReplaceRequest,
)
from phone_assets.infra.audit import set_audit_context
from phone_assets.services.directory_service import DirectoryService

router = APIRouter()


def get_directory_service() -> DirectoryService:
    return DirectoryService()


Service = Annotated[DirectoryService, Depends(get_directory_service)]


@router.get("/departments", response_model=list[DepartmentRead])
def list_departments(
    principal: AdminPrincipal,
    service: Service,
    include_inactive: bool = False,
) -> list[DepartmentRead]:
    rows = service.list_departments(include_inactive=include_inactive)
    return [DepartmentRead.model_validate(item) for item in rows]


@router.get("/departments/tree", response_model=list[DepartmentNode])
def department_tree(
    principal: AdminPrincipal,
    service: Service,
    include_inactive: bool = False,
) -> list[DepartmentNode]:
    return service.department_tree(include_inactive=include_inactive)


@router.get("/departments/{department_id}", response_model=DepartmentRead)
def get_department(department_id: int, principal: AdminPrincipal, service: Service) -> DepartmentRead:
    return DepartmentRead.model_validate(service.get_department(department_id))


@router.put("/departments", response_model=DepartmentRead)
def upsert_department(
    payload: DepartmentUpsert,
    request: Request,
    principal: AdminPrincipal,
    service: Service,
) -> DepartmentRead:
    set_audit_context(
        request,
        action="directory.department.upsert",
        detail={"what": {"department_id": payload.id, "parent_id": payload.parent_id}},
    )
    return DepartmentRead.model_validate(service.upsert_department(principal, payload))


@router.get("/employees", response_model=list[EmployeeRead])
def list_employees(
    principal: AdminPrincipal,
    service: Service,
    department_id: int | None = None,
    employment_status: EmploymentStatus | None = None,
) -> list[EmployeeRead]:
    rows = service.list_employees(department_id=department_id, employment_status=employment_status)
    return [EmployeeRead.model_validate(item) for item in rows]


@router.get("/employees/{employee_id}", response_model=EmployeeRead)
def get_employee(employee_id: str, principal: AdminPrincipal, service: Service) -> EmployeeRead:
    return EmployeeRead.model_validate(service.get_employee(employee_id))


@router.put("/employees", response_model=EmployeeRead)
def upsert_employee(
    payload: EmployeeUpsert,
    request: Request,
    principal: AdminPrincipal,
    service: Service,
) -> EmployeeRead:
    set_audit_context(
        request,
        action="directory.employee.upsert",
        detail={"what": {"employee_id": payload.id, "department_id": payload.department_id}},
    )
    return EmployeeRead.model_validate(service.upsert_employee(principal, payload))


@router.get("/admin-users", response_model=list[AdminUserRead])
def list_admin_users(principal: AdminPrincipal, service: Service) -> list[AdminUserRead]:
    return [AdminUserRead.model_validate(item) for item in service.list_admin_users()]


@router.post("/admin-users", response_model=AdminUserRead, status_code=status.HTTP_201_CREATED)
def create_admin_user(
    payload: AdminUserCreate,
    request: Request,
    principal: AdminPrincipal,
    service: Service,
) -> AdminUserRead:
    set_audit_context(request, action="directory.admin_user.create", detail={"what": {"username": payload.username}})
    return AdminUserRead.model_validate(service.create_admin_user(principal, payload))


@router.get("/admin-users/{user_id}/grants", response_model=list[GrantRead])
def list_grants(user_id: str, principal: AdminPrincipal, service: Service) -> list[GrantRead]:
    return [GrantRead.model_validate(item) for item in service.list_grants(user_id)]


@router.put("/admin-users/{user_id}/grants", response_model=list[GrantRead])
def replace_grants(
    user_id: str,
    payload: GrantsReplaceRequest,
    request: Request,
    principal: AdminPrincipal,
    service: Service,
) -> list[GrantRead]:
    set_audit_context(
        request,
        action="directory.grants.replace",
        detail={"what": {"user_id": user_id, "department_ids": [item.department_id for item in payload.grants]}},
    )
    rows = service.replace_grants(principal, user_id, payload.grants)
    return [GrantRead.model_validate(item) for item in rows]


@router.get("/admin-users/{user_id}/effective-permission", response_model=EffectivePermissionRead)
def effective_permission(
    user_id: str,
    department_id: int,
    principal: AdminPrincipal,
    service: Service,
) -> EffectivePermissionRead:
    scope = service.effective_permission(user_id, department_id)
    return EffectivePermissionRead(user_id=user_id, department_id=department_id, scope=scope)
