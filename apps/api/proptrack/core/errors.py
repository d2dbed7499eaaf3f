from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    VALIDATION = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


class DomainError(Exception):
    """Base class for user-visible failures carrying a stable error kind."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 400

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class ForbiddenError(DomainError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(DomainError):
    kind = ErrorKind.CONFLICT
    status_code = 409
