from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends

from src.core.deps import get_tenant_id
from src.lifecycle.definitions import REGISTRY
from src.schemas.common import MessageResponse, TenantEcho

router = APIRouter(tags=["Health"])

LIFECYCLE_WS_PATH = "/ws/lifecycle"


# PUBLIC_INTERFACE
@router.get("/health", response_model=MessageResponse, summary="Health Check")
def health_check() -> MessageResponse:
    """Liveness check; lists the document families with a registered state machine."""
    return MessageResponse(message="Healthy", details={"document_types": REGISTRY.entity_types()})


# PUBLIC_INTERFACE
@router.get(
    "/health/tenant",
    response_model=TenantEcho,
    summary="Tenant Health Echo",
    description="Echoes the X-Tenant-ID header to verify tenant resolution.",
)
async def tenant_health_echo(tenant_id: UUID = Depends(get_tenant_id)) -> TenantEcho:
    return TenantEcho(tenant_id=tenant_id)


# PUBLIC_INTERFACE
@router.get(
    "/websocket-info",
    response_model=Dict[str, Any],
    summary="WebSocket Usage Information",
    description="Connection details for the transition feed, which OpenAPI cannot describe.",
    tags=["WebSocket"],
)
def websocket_info() -> Dict[str, Any]:
    return {
        "usage": (
            "Connect with an access token in the 'token' query parameter and the 'X-Tenant-ID' header. "
            "Pass 'entity_type' to follow a single document family."
        ),
        "security": {
            "token": "Access JWT whose 'tenant_id' claim equals the X-Tenant-ID header.",
            "header": "X-Tenant-ID: UUID",
            "close_codes": {"4401": "missing or invalid token", "4403": "tenant mismatch", "4404": "unknown entity_type"},
        },
        "endpoints": [
            {
                "path": LIFECYCLE_WS_PATH,
                "summary": "Every committed document transition of the tenant.",
                "query": ["token", "entity_type?"],
                "headers": ["X-Tenant-ID"],
                "messages": {
                    "client_to_server": ["ping"],
                    "server_to_client": ["document.transitioned"],
                },
            }
        ],
        "document_types": REGISTRY.entity_types(),
    }
