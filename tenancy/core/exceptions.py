"""
Exception hierarchy for the application.

Every failure that crosses a service boundary is a TenancyError carrying
one ErrorKind. The HTTP layer maps kinds to status codes in one place.
"""

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ErrorKind(str, Enum):
    """Caller-visible failure categories."""
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    PROVISIONING_FAILED = "provisioning_failed"
    RECONCILIATION_INCOMPLETE = "reconciliation_incomplete"
    INTERNAL = "internal"


ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.PROVISIONING_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.RECONCILIATION_INCOMPLETE: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class TenancyError(Exception):
    """Base exception for all application exceptions."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        violations: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.kind = kind
        self.message = message
        self.violations = violations or []
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "violations": self.violations,
        }

    @classmethod
    def validation(cls, message: str, violations: list[str] | None = None) -> "TenancyError":
        return cls(ErrorKind.VALIDATION, message, violations)

    @classmethod
    def conflict(cls, message: str, violations: list[str] | None = None) -> "TenancyError":
        return cls(ErrorKind.CONFLICT, message, violations)

    @classmethod
    def not_found(cls, message: str) -> "TenancyError":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def provisioning_failed(cls, message: str, **details: Any) -> "TenancyError":
        return cls(ErrorKind.PROVISIONING_FAILED, message, details=details)

    @classmethod
    def reconciliation_incomplete(cls, message: str, **details: Any) -> "TenancyError":
        return cls(ErrorKind.RECONCILIATION_INCOMPLETE, message, details=details)

    @classmethod
    def internal(cls, message: str) -> "TenancyError":
        return cls(ErrorKind.INTERNAL, message)


async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    """Render a TenancyError as {"kind", "message", "violations"}."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Render schema validation failures in the same shape as TenancyError.

    Each pydantic error becomes one violation string prefixed by its field path.
    """
    violations = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        violations.append(f"{location}: {message}" if location else message)

    body = TenancyError.validation("Request validation failed", violations).to_dict()
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)


# HTTP Exception helpers
def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    """Return 401 Unauthorized exception."""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    """Return 403 Forbidden exception."""
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )
