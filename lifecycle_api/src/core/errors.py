"""
Domain error hierarchy.

Services and the lifecycle engine raise these instead of HTTPException so the
same rules can run outside a request. The handlers in src.api.errors map
each class to its HTTP status and expose `code` as the error type.
"""
from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base class for business-rule failures carrying an HTTP status and code."""

    status_code: int = 400
    code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationFailedError(DomainError):
    status_code = 400
    code = "VALIDATION_ERROR"


class PermissionDeniedError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class ConflictError(DomainError):
    status_code = 409
    code = "CONFLICT"
