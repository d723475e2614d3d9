from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import ADMIN_ROLES, effective_permissions, get_current_active_user, get_tenant_id, get_tenant_session
from src.core.errors import ConflictError
from src.core.security import create_access_token, create_refresh_token, decode_token, get_password_hash, verify_password
from src.lifecycle.gateway import granted_actions
from src.repositories.security import SecurityRepository
from src.schemas.auth import ActorProfile, Message, RefreshRequest, RegisterRequest, TokenPair, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


# PUBLIC_INTERFACE
async def build_user_read(repo: SecurityRepository, user) -> UserRead:
    """Serialize `user` with role names and the permission codes the gateway will check."""
    roles = await repo.list_roles_for_user(user.id)
    return UserRead(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        is_active=user.is_active,
        is_superadmin=user.is_superadmin,
        created_at=user.created_at,
        updated_at=user.updated_at,
        roles=sorted(r.name for r in roles),
        permissions=sorted(await effective_permissions(repo, user)),
    )


async def _token_pair(repo: SecurityRepository, user, tenant_id: UUID) -> TokenPair:
    profile = await build_user_read(repo, user)
    return TokenPair(
        access_token=create_access_token(
            subject=str(user.id), tenant_id=str(tenant_id), roles=profile.roles, permissions=profile.permissions
        ),
        refresh_token=create_refresh_token(subject=str(user.id), tenant_id=str(tenant_id)),
    )


# PUBLIC_INTERFACE
@router.post(
    "/register",
    response_model=UserRead,
    status_code=201,
    summary="Register user",
    description="Create a user in the tenant. The tenant's first user is made administrator.",
)
async def register_user(
    payload: RegisterRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_tenant_session),
) -> UserRead:
    repo = SecurityRepository(session)
    if await repo.get_user_by_email(payload.email):
        raise ConflictError("User with this email already exists", details={"email": payload.email})
    user = await repo.create_user(
        email=payload.email, full_name=payload.full_name, hashed_password=get_password_hash(payload.password)
    )
    if await repo.count_users() == 1:
        admin = await repo.ensure_role(sorted(ADMIN_ROLES)[0], "Administrator", [])
        await repo.assign_role_to_user(user.id, admin.id)
        logger.info("First user %s of tenant %s made administrator", user.email, tenant_id)
    return await build_user_read(repo, user)


# PUBLIC_INTERFACE
@router.post(
    "/login",
    response_model=TokenPair,
    summary="Login",
    description="OAuth2 password form (username = email). The access token embeds roles and permission codes.",
)
async def login_for_tokens(
    form_data: OAuth2PasswordRequestForm = Depends(),
    tenant_id: UUID = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_tenant_session),
) -> TokenPair:
    repo = SecurityRepository(session)
    user = await repo.get_user_by_email(form_data.username)
    if user is None or not verify_password(form_data.password, user.hashed_password):
        logger.info("Rejected login for %s", form_data.username)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return await _token_pair(repo, user, tenant_id)


# PUBLIC_INTERFACE
@router.post(
    "/refresh",
    response_model=TokenPair,
    summary="Refresh tokens",
    description="Exchange a refresh token for a new pair; permission claims are recomputed from current roles.",
)
async def refresh_token(
    payload: RefreshRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    session: AsyncSession = Depends(get_tenant_session),
) -> TokenPair:
    try:
        claims = decode_token(payload.refresh_token)
        user_id = UUID(str(claims.get("sub")))
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")
    if claims.get("type") != "refresh":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    if str(claims.get("tenant_id")) != str(tenant_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant mismatch")

    repo = SecurityRepository(session)
    user = await repo.get_user_by_id(user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")
    return await _token_pair(repo, user, tenant_id)


# PUBLIC_INTERFACE
@router.post("/logout", response_model=Message, summary="Logout", description="Tokens are stateless; clients drop them.")
async def logout() -> Message:
    return Message(message="Logged out")


# PUBLIC_INTERFACE
@router.get(
    "/me",
    response_model=ActorProfile,
    summary="Current actor",
    description="The caller's roles, permission codes and, per document family, the actions they may perform.",
)
async def read_current_user(
    user=Depends(get_current_active_user),
    session: AsyncSession = Depends(get_tenant_session),
) -> ActorProfile:
    profile = await build_user_read(SecurityRepository(session), user)
    return ActorProfile(
        **profile.model_dump(),
        document_actions=granted_actions(frozenset(profile.permissions)),
    )
