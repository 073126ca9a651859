from __future__ import annotations

import hashlib
import os

import structlog
from sqlmodel import Session, select

from phone_assets.domain.errors import ConflictError, DomainError, ErrorKind
from phone_assets.domain.models import AdminUser, BootstrapAdminRequest, Employee, EmploymentStatus
from phone_assets.infra.db import get_engine

logger = structlog.get_logger(__name__)


class AuthError(DomainError):
    kind = ErrorKind.FORBIDDEN


def hash_password(raw_password: str) -> str:
    salt = os.getenv("PASSWORD_SALT", "phone-assets-dev-salt")
    return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> AdminUser:
        with self._session() as session:
            if session.exec(select(AdminUser)).first() is not None:
                raise ConflictError("registry already initialized")
            admin = AdminUser(
                username=payload.username,
                password_hash=hash_password(payload.password),
                is_super_admin=True,
            )
            session.add(admin)
            session.commit()
            session.refresh(admin)

        logger.info("identity.bootstrap_admin", user_id=admin.id, username=admin.username)
        return admin

    def admin_login(self, username: str, password: str) -> AdminUser:
        with self._session() as session:
            user = session.exec(select(AdminUser).where(AdminUser.username == username)).first()
            if user is None or user.password_hash != hash_password(password):
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            return user

    def employee_login(self, employee_id: str, password: str) -> Employee:
        with self._session() as session:
            employee = session.get(Employee, employee_id)
            if employee is None or employee.password_hash is None:
                raise AuthError("invalid credentials")
            if employee.password_hash != hash_password(password):
                raise AuthError("invalid credentials")
            if employee.employment_status != EmploymentStatus.ACTIVE:
                raise AuthError("employee has departed")
            return employee
