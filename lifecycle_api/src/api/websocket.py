"""
Transition feed over WebSocket.

The socket is accepted first so authorization failures can be reported with
application close codes instead of a bare handshake rejection:

  4401  missing/invalid token, unknown or inactive user
  4403  wrong tenant, missing `lifecycle.subscribe` or family view permission,
        extended view mode without `view_mode.extended`
  4404  unknown document family
"""
from __future__ import annotations

import logging
from typing import FrozenSet, Optional
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from jose import JWTError

from src.api.routes.health import LIFECYCLE_WS_PATH
from src.core.deps import effective_permissions
from src.core.errors import ValidationFailedError
from src.core.security import decode_token, has_permission
from src.core.settings import get_app_settings
from src.core.view_mode import EXTENDED_VIEW_PERMISSION, ViewMode, parse_view_mode
from src.db.session import get_async_session, tenant_context
from src.lifecycle.definitions import REGISTRY, VIEW_PERMISSIONS
from src.repositories.security import SecurityRepository
from src.services.realtime import broadcast_manager

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_UNAUTHENTICATED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_UNKNOWN_ENTITY = 4404

SUBSCRIBE_PERMISSION = "lifecycle.subscribe"


class HandshakeRejected(Exception):
    def __init__(self, code: int, reason: str) -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason


def _claims_from_handshake(websocket: WebSocket) -> tuple[UUID, UUID]:
    """(tenant_id, user_id) from the `token` query parameter and the X-Tenant-ID header."""
    token = websocket.query_params.get("token")
    tenant_header = websocket.headers.get("x-tenant-id")
    if not token or not tenant_header:
        raise HandshakeRejected(CLOSE_UNAUTHENTICATED, "token and X-Tenant-ID are required")
    try:
        claims = decode_token(token)
        user_id = UUID(str(claims.get("sub")))
        tenant_id = UUID(tenant_header)
    except (JWTError, ValueError):
        raise HandshakeRejected(CLOSE_UNAUTHENTICATED, "invalid token")
    if claims.get("type") != "access":
        raise HandshakeRejected(CLOSE_UNAUTHENTICATED, "invalid token type")
    if str(claims.get("tenant_id")) != str(tenant_id):
        raise HandshakeRejected(CLOSE_FORBIDDEN, "tenant mismatch")
    return tenant_id, user_id


# PUBLIC_INTERFACE
async def load_subscriber_permissions(tenant_id: UUID, user_id: UUID) -> Optional[FrozenSet[str]]:
    """Permissions of an active user of `tenant_id`, or None when there is no such user."""
    permissions: Optional[FrozenSet[str]] = None
    async for session in get_async_session():
        async with tenant_context(session, tenant_id):
            repo = SecurityRepository(session)
            user = await repo.get_user_by_id(user_id)
            if user is not None and user.is_active:
                permissions = await effective_permissions(repo, user)
    return permissions


def _view_mode(websocket: WebSocket, permissions: FrozenSet[str]) -> ViewMode:
    raw = websocket.query_params.get("view_mode") or websocket.headers.get("x-view-mode")
    try:
        mode = parse_view_mode(raw, default=get_app_settings().DEFAULT_VIEW_MODE)
    except ValidationFailedError as exc:
        raise HandshakeRejected(CLOSE_FORBIDDEN, exc.message)
    if mode == ViewMode.EXTENDED and not has_permission(permissions, EXTENDED_VIEW_PERMISSION):
        raise HandshakeRejected(CLOSE_FORBIDDEN, "extended view mode not permitted")
    return mode


async def _authorize(websocket: WebSocket, entity_type: Optional[str]) -> tuple[UUID, ViewMode]:
    tenant_id, user_id = _claims_from_handshake(websocket)
    if entity_type and entity_type not in REGISTRY:
        raise HandshakeRejected(CLOSE_UNKNOWN_ENTITY, f"unknown entity type {entity_type}")
    permissions = await load_subscriber_permissions(tenant_id, user_id)
    if permissions is None:
        raise HandshakeRejected(CLOSE_UNAUTHENTICATED, "unknown or inactive user")
    if not has_permission(permissions, SUBSCRIBE_PERMISSION):
        raise HandshakeRejected(CLOSE_FORBIDDEN, f"missing {SUBSCRIBE_PERMISSION}")
    if entity_type and not has_permission(permissions, VIEW_PERMISSIONS[entity_type]):
        raise HandshakeRejected(CLOSE_FORBIDDEN, f"missing {VIEW_PERMISSIONS[entity_type]}")
    return tenant_id, _view_mode(websocket, permissions)


# PUBLIC_INTERFACE
@router.websocket(LIFECYCLE_WS_PATH)
async def ws_lifecycle(websocket: WebSocket):
    """
    Push `document.transitioned` events for the caller's tenant.

    Query parameters: `token` (access JWT), optional `entity_type` and
    `view_mode` (S or E, also read from the X-View-Mode header). Events of T2
    documents are only sent in extended mode.
    The client may send 'ping' and gets 'pong' back; other messages are ignored.
    """
    await websocket.accept()
    entity_type = websocket.query_params.get("entity_type")
    try:
        tenant_id, mode = await _authorize(websocket, entity_type)
    except HandshakeRejected as exc:
        logger.info("Rejected lifecycle socket with close code %s: %s", exc.code, exc.reason)
        await websocket.close(code=exc.code, reason=exc.reason)
        return

    topic = broadcast_manager.lifecycle_topic(tenant_id, entity_type)
    await broadcast_manager.connect(topic, websocket, extended=mode == ViewMode.EXTENDED)
    try:
        while True:
            if (await websocket.receive_text()).lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.debug("Lifecycle socket left %s", topic)
    finally:
        await broadcast_manager.disconnect(topic, websocket)
