from __future__ import annotations

from src.core.errors import ConflictError, DomainError, NotFoundError, PermissionDeniedError


class UnknownEntityError(NotFoundError):
    code = "UNKNOWN_ENTITY_TYPE"


class InvalidTransitionError(DomainError):
    status_code = 400
    code = "INVALID_TRANSITION"


class ReasonRequiredError(DomainError):
    status_code = 400
    code = "REASON_CODE_REQUIRED"


class SoDViolationError(PermissionDeniedError):
    code = "SOD_VIOLATION"


class NotEligibleError(DomainError):
    status_code = 409
    code = "NOT_ELIGIBLE"


class ConcurrentOperationError(ConflictError):
    code = "CONCURRENT_OPERATION"
