from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer

from phone_assets.domain.actors import Actor
from phone_assets.domain.errors import DomainError, ErrorKind, NotFoundError, ValidationError
from phone_assets.domain.models import EmploymentStatus
from phone_assets.domain.permissions import Principal
from phone_assets.infra.auth import PRINCIPAL_ADMIN, PRINCIPAL_EMPLOYEE, decode_access_token
from phone_assets.infra.context import set_request_context
from phone_assets.services.directory_service import DirectoryService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/login")

logger = structlog.get_logger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
}


async def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    # Async so the request context is set on the request task and reaches sync handlers.
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    set_request_context(claims.get("sub"), claims.get("kind"))
    return claims


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]


def get_admin_actor(claims: Claims) -> Actor:
    if claims.get("kind") != PRINCIPAL_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator token required")
    try:
        principal = DirectoryService().get_principal(claims["sub"])
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user") from exc
    return Actor.admin(principal)


def get_employee_actor(claims: Claims) -> Actor:
    if claims.get("kind") != PRINCIPAL_EMPLOYEE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Employee token required")
    try:
        employee = DirectoryService().get_employee(claims["sub"])
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown employee") from exc
    if employee.employment_status != EmploymentStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Employee has departed")
    return Actor.employee(employee.id)


def get_any_actor(claims: Claims) -> Actor:
    if claims.get("kind") == PRINCIPAL_EMPLOYEE:
        return get_employee_actor(claims)
    return get_admin_actor(claims)


AdminActor = Annotated[Actor, Depends(get_admin_actor)]
EmployeeActor = Annotated[Actor, Depends(get_employee_actor)]
AnyActor = Annotated[Actor, Depends(get_any_actor)]


def get_admin_principal(actor: AdminActor) -> Principal:
    if actor.principal is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator token required")
    return actor.principal


AdminPrincipal = Annotated[Principal, Depends(get_admin_principal)]


def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "command.rejected",
        kind=exc.kind.value,
        message=exc.message,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content={"error": exc.to_dict()})


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid value')}"
        for error in exc.errors()
    ]
    return domain_error_handler(request, ValidationError("; ".join(problems) or "invalid request"))
