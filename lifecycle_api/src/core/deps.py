from __future__ import annotations

import logging
from typing import AsyncGenerator, FrozenSet
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import actor_id_var
from src.core.security import WILDCARD_PERMISSION, decode_token, has_permission
from src.core.settings import get_app_settings
from src.core.view_mode import EXTENDED_VIEW_PERMISSION, ViewMode, parse_view_mode
from src.db.session import get_async_session, tenant_context
from src.repositories.security import SecurityRepository
from src.services.base import Actor

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

# Role names that implicitly hold every permission.
ADMIN_ROLES = frozenset({"admin"})


def _reject(code: int, detail: str) -> HTTPException:
    return HTTPException(status_code=code, detail=detail)


# PUBLIC_INTERFACE
async def get_tenant_id(x_tenant_id: str | None = Header(default=None, alias="X-Tenant-ID")) -> UUID:
    """Tenant of the request; 400 when X-Tenant-ID is absent or not a UUID."""
    if not x_tenant_id:
        raise _reject(status.HTTP_400_BAD_REQUEST, "X-Tenant-ID header is required.")
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise _reject(status.HTTP_400_BAD_REQUEST, "X-Tenant-ID header must be a valid UUID string.")


# PUBLIC_INTERFACE
async def get_tenant_session(
    tenant_id: UUID = Depends(get_tenant_id),
    sessions=Depends(get_async_session),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Session bound to the request's tenant.

    Every transaction it opens starts by setting `app.tenant_id`, so RLS policies
    only expose that tenant's rows, including after a commit inside the handler.
    """
    async for session in sessions:
        async with tenant_context(session, tenant_id):
            yield session


def _access_claims(token: str, tenant_id: UUID) -> UUID:
    """User id carried by an access token issued for `tenant_id`."""
    try:
        claims = decode_token(token)
        subject = UUID(str(claims.get("sub")))
    except (JWTError, ValueError):
        raise _reject(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    if claims.get("type") != "access":
        raise _reject(status.HTTP_401_UNAUTHORIZED, "Invalid token type")
    if str(claims.get("tenant_id")) != str(tenant_id):
        raise _reject(status.HTTP_403_FORBIDDEN, "Tenant mismatch")
    return subject


# PUBLIC_INTERFACE
async def get_current_user(
    tenant_id: UUID = Depends(get_tenant_id),
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_tenant_session),
):
    """The user named by the bearer token, loaded through the tenant-scoped session."""
    user = await SecurityRepository(session).get_user_by_id(_access_claims(token, tenant_id))
    if user is None:
        raise _reject(status.HTTP_401_UNAUTHORIZED, "User not found")
    actor_id_var.set(str(user.id))
    return user


# PUBLIC_INTERFACE
async def get_current_active_user(user=Depends(get_current_user)):
    """Ensure user is active."""
    if not user.is_active:
        raise _reject(status.HTTP_403_FORBIDDEN, "Inactive user")
    return user


# PUBLIC_INTERFACE
async def effective_permissions(repo: SecurityRepository, user) -> FrozenSet[str]:
    """
    Permission codes held by `user`.

    Superadmins and holders of an admin role get the wildcard permission;
    everyone else gets the codes granted through their roles.
    """
    if user.is_superadmin:
        return frozenset({WILDCARD_PERMISSION})
    roles = await repo.list_roles_for_user(user.id)
    if any(r.name in ADMIN_ROLES for r in roles):
        return frozenset({WILDCARD_PERMISSION})
    return frozenset().union(*(r.permission_codes() for r in roles))


# PUBLIC_INTERFACE
async def get_current_permissions(
    user=Depends(get_current_active_user),
    session: AsyncSession = Depends(get_tenant_session),
) -> FrozenSet[str]:
    """Effective permission codes of the current user."""
    return await effective_permissions(SecurityRepository(session), user)


# PUBLIC_INTERFACE
def require_permission(*codes: str):
    """
    Create a dependency that passes when the current user holds any of `codes`.
    """

    async def _dep(permissions: FrozenSet[str] = Depends(get_current_permissions)) -> bool:
        if not has_permission(permissions, *codes):
            logger.info("Permission denied; required any of %s", ", ".join(codes))
            raise _reject(status.HTTP_403_FORBIDDEN, "Insufficient permissions")
        return True

    return _dep


# PUBLIC_INTERFACE
async def get_view_mode(
    x_view_mode: str | None = Header(default=None, alias="X-View-Mode"),
    permissions: FrozenSet[str] = Depends(get_current_permissions),
) -> ViewMode:
    """
    Resolve the request's view mode from the X-View-Mode header.

    Extended mode requires the `view_mode.extended` permission.
    """
    mode = parse_view_mode(x_view_mode, default=get_app_settings().DEFAULT_VIEW_MODE)
    if mode == ViewMode.EXTENDED and not has_permission(permissions, EXTENDED_VIEW_PERMISSION):
        raise _reject(status.HTTP_403_FORBIDDEN, "Extended view mode is not permitted for this user")
    return mode


# PUBLIC_INTERFACE
async def get_actor(
    tenant_id: UUID = Depends(get_tenant_id),
    user=Depends(get_current_active_user),
    permissions: FrozenSet[str] = Depends(get_current_permissions),
    view_mode: ViewMode = Depends(get_view_mode),
) -> Actor:
    """Bundle the authenticated user, tenant, permissions and view mode for services."""
    return Actor(user_id=user.id, tenant_id=tenant_id, permissions=permissions, view_mode=view_mode)
