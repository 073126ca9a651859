from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from phone_assets.domain.permissions import Principal


class ActorKind(StrEnum):
    ADMIN = "admin"
    EMPLOYEE = "employee"


@dataclass(frozen=True)
class Actor:
    """Caller of a command: an administrator principal or a self-service employee."""

    kind: ActorKind
    id: str
    principal: Principal | None = None

    @classmethod
    def admin(cls, principal: Principal) -> Actor:
        return cls(kind=ActorKind.ADMIN, id=principal.user_id, principal=principal)

    @classmethod
    def employee(cls, employee_id: str) -> Actor:
        return cls(kind=ActorKind.EMPLOYEE, id=employee_id)

    @property
    def is_admin(self) -> bool:
        return self.kind == ActorKind.ADMIN and self.principal is not None

    @property
    def is_employee(self) -> bool:
        return self.kind == ActorKind.EMPLOYEE
