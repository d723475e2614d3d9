from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class MessageResponse(BaseModel):
    message: str = Field(..., description="Human readable message")
    details: Optional[dict] = Field(default=None, description="Extra data, e.g. the registered document types")


class TenantEcho(BaseModel):
    tenant_id: UUID = Field(..., description="Tenant resolved from the X-Tenant-ID header")


class ErrorInfo(BaseModel):
    """What went wrong, keyed by a stable code clients can branch on."""
    type: str = Field(
        ...,
        description=(
            "Domain code such as INVALID_TRANSITION, REASON_CODE_REQUIRED, SOD_VIOLATION, NOT_ELIGIBLE or "
            "CONCURRENT_OPERATION; http_error, validation_error or internal_error otherwise"
        ),
    )
    message: str = Field(..., description="Human-readable explanation")
    details: Optional[Any] = Field(default=None, description="Code-specific context, e.g. the allowed actions")


# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Envelope of every non-2xx response."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": 403,
                "error": {
                    "type": "SOD_VIOLATION",
                    "message": "Segregation of duties: a user who performed CREATE/SUBMIT cannot perform APPROVE",
                    "details": {
                        "rule_code": "PO_CREATOR_APPROVES",
                        "conflicting_actions": ["CREATE", "SUBMIT"],
                        "scope": "SAME_DOCUMENT",
                    },
                },
                "correlation_id": "5f0c7d3e-3c1b-4a57-9d7e-0e6f1c2b9a11",
                "tenant_id": "2a6f0b1e-8f0d-4d7e-bb8e-4f7a0c1d2e3f",
                "path": "/api/v1/procurement/purchase-orders/7c1e2d4a-0b5f-4e39-a1d2-93c8f0e6b7a4/actions",
                "method": "POST",
                "timestamp": "2026-03-02T09:30:00Z",
            }
        }
    )

    status: int = Field(..., description="HTTP status code")
    error: ErrorInfo
    correlation_id: Optional[str] = Field(default=None, description="Echo of X-Correlation-ID")
    tenant_id: Optional[str] = Field(default=None, description="Raw X-Tenant-ID header, if sent")
    path: Optional[str] = None
    method: Optional[str] = None
    timestamp: datetime = Field(..., description="UTC time the error was produced")
