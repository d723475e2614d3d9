from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.routes.auth import build_user_read
from src.core.deps import get_tenant_session, require_permission
from src.core.errors import ConflictError, NotFoundError
from src.core.security import get_password_hash
from src.repositories.security import SecurityRepository
from src.schemas.auth import UserCreate, UserRead, UserUpdate

router = APIRouter(
    prefix="/admin/users",
    tags=["Users"],
    dependencies=[Depends(require_permission("users.manage"))],
)


def _repo(session: AsyncSession = Depends(get_tenant_session)) -> SecurityRepository:
    return SecurityRepository(session)


async def _user_or_404(repo: SecurityRepository, user_id: UUID):
    user = await repo.get_user_by_id(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": str(user_id)})
    return user


# PUBLIC_INTERFACE
@router.get("", response_model=List[UserRead], summary="List users")
async def list_users(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    repo: SecurityRepository = Depends(_repo),
) -> List[UserRead]:
    """Users of the tenant with the permission codes the transition gateway will see for them."""
    return [await build_user_read(repo, u) for u in await repo.list_users(limit=limit, offset=offset)]


# PUBLIC_INTERFACE
@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED, summary="Create user")
async def create_user(payload: UserCreate, repo: SecurityRepository = Depends(_repo)) -> UserRead:
    if await repo.get_user_by_email(payload.email):
        raise ConflictError("User with this email already exists", details={"email": payload.email})
    user = await repo.create_user(
        email=payload.email,
        full_name=payload.full_name,
        hashed_password=get_password_hash(payload.password),
        is_active=payload.is_active,
        is_superadmin=payload.is_superadmin,
    )
    return await build_user_read(repo, user)


# PUBLIC_INTERFACE
@router.get("/{user_id}", response_model=UserRead, summary="Get user")
async def get_user(user_id: UUID, repo: SecurityRepository = Depends(_repo)) -> UserRead:
    return await build_user_read(repo, await _user_or_404(repo, user_id))


# PUBLIC_INTERFACE
@router.patch("/{user_id}", response_model=UserRead, summary="Update user")
async def update_user(user_id: UUID, payload: UserUpdate, repo: SecurityRepository = Depends(_repo)) -> UserRead:
    """Partial update; a new password is re-hashed, an email already in use is a conflict."""
    if payload.email:
        owner = await repo.get_user_by_email(payload.email)
        if owner is not None and owner.id != user_id:
            raise ConflictError("User with this email already exists", details={"email": payload.email})
    changes = payload.model_dump(exclude={"password"}, exclude_unset=True)
    if payload.password:
        changes["hashed_password"] = get_password_hash(payload.password)
    user = await repo.update_user(user_id, changes)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": str(user_id)})
    return await build_user_read(repo, user)


# PUBLIC_INTERFACE
@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete user")
async def delete_user(user_id: UUID, repo: SecurityRepository = Depends(_repo)) -> None:
    """Remove the account. Its entries in the transition log keep the user id."""
    await repo.delete_user(user_id)


# PUBLIC_INTERFACE
@router.post("/{user_id}/roles/{role_id}", response_model=UserRead, summary="Assign role")
async def assign_role(user_id: UUID, role_id: UUID, repo: SecurityRepository = Depends(_repo)) -> UserRead:
    user = await _user_or_404(repo, user_id)
    if await repo.get_role_by_id(role_id) is None:
        raise NotFoundError(f"Role {role_id} not found", details={"role_id": str(role_id)})
    if role_id not in {r.id for r in await repo.list_roles_for_user(user_id)}:
        await repo.assign_role_to_user(user_id, role_id)
    return await build_user_read(repo, user)


# PUBLIC_INTERFACE
@router.delete("/{user_id}/roles/{role_id}", response_model=UserRead, summary="Revoke role")
async def remove_role(user_id: UUID, role_id: UUID, repo: SecurityRepository = Depends(_repo)) -> UserRead:
    user = await _user_or_404(repo, user_id)
    await repo.remove_role_from_user(user_id, role_id)
    return await build_user_read(repo, user)
