from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = "Validation"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    INVALID_STATE = "InvalidState"
    CONFLICT = "Conflict"


class DomainError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(DomainError):
    kind = ErrorKind.FORBIDDEN


class InvalidStateError(DomainError):
    kind = ErrorKind.INVALID_STATE


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT
