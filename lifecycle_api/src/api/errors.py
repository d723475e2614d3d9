"""
Error envelope shared by every HTTP error the API returns.

Business-rule failures carry their domain code as the error type
(INVALID_TRANSITION, SOD_VIOLATION, NOT_ELIGIBLE, ...); framework errors
map to `http_error`, `validation_error` and `internal_error`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from src.core.errors import DomainError
from src.schemas.common import ErrorInfo, ErrorResponse

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def error_envelope(request: Request, status_code: int, error_type: str, message: str, details: Any = None) -> JSONResponse:
    """Render an ErrorResponse carrying the request's correlation and tenant ids."""
    body = ErrorResponse(
        status=status_code,
        error=ErrorInfo(type=error_type, message=message, details=details),
        correlation_id=getattr(request.state, "correlation_id", None),
        tenant_id=getattr(request.state, "tenant_id", None),
        path=request.url.path,
        method=request.method,
        timestamp=datetime.now(tz=timezone.utc),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def _on_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Domain error %s: %s", exc.code, exc.message)
    else:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.code)
    return error_envelope(request, exc.status_code, exc.code, exc.message, exc.details)


async def _on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, str):
        return error_envelope(request, exc.status_code, "http_error", exc.detail)
    return error_envelope(request, exc.status_code, "http_error", "HTTP Error", exc.detail)


async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_envelope(request, 422, "validation_error", "Request validation failed", exc.errors())


async def _on_unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error processing %s %s", request.method, request.url.path)
    return error_envelope(request, 500, "internal_error", "An unexpected error occurred")


# PUBLIC_INTERFACE
def register_exception_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on `app`."""
    app.add_exception_handler(DomainError, _on_domain_error)
    app.add_exception_handler(HTTPException, _on_http_error)
    app.add_exception_handler(RequestValidationError, _on_validation_error)
    app.add_exception_handler(Exception, _on_unhandled)
