from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from phone_assets.api.deps import Claims
from phone_assets.domain.models import (
    AdminUserRead,
    BootstrapAdminRequest,
    DevLoginRequest,
    EmployeeLoginRequest,
    TokenResponse,
)
from phone_assets.infra.auth import PRINCIPAL_ADMIN, PRINCIPAL_EMPLOYEE, create_access_token
from phone_assets.services.identity_service import AuthError, IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_auth_error(exc: AuthError) -> None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc


@router.post("/bootstrap-admin", response_model=AdminUserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> AdminUserRead:
    user = service.bootstrap_admin(payload)
    return AdminUserRead.model_validate(user)


@router.post("/login", response_model=TokenResponse)
def login(payload: DevLoginRequest, service: Service) -> TokenResponse:
    try:
        user = service.admin_login(payload.username, payload.password)
    except AuthError as exc:
        _handle_auth_error(exc)
        raise
    token = create_access_token(subject=user.id, kind=PRINCIPAL_ADMIN)
    return TokenResponse(access_token=token, principal_kind=PRINCIPAL_ADMIN)


@router.post("/employee-login", response_model=TokenResponse)
def employee_login(payload: EmployeeLoginRequest, service: Service) -> TokenResponse:
    try:
        employee = service.employee_login(payload.employee_id, payload.password)
    except AuthError as exc:
        _handle_auth_error(exc)
        raise
    token = create_access_token(subject=employee.id, kind=PRINCIPAL_EMPLOYEE)
    return TokenResponse(access_token=token, principal_kind=PRINCIPAL_EMPLOYEE)


@router.get("/me")
def me(claims: Claims) -> dict[str, str]:
    return {"sub": claims["sub"], "kind": claims["kind"]}
