from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_tenant_session, require_permission
from src.core.errors import ConflictError, NotFoundError
from src.repositories.security import SecurityRepository
from src.schemas.auth import PermissionRead, RoleCreate, RoleDetailRead, RoleRead

router = APIRouter(
    prefix="/admin/roles",
    tags=["Roles"],
    dependencies=[Depends(require_permission("users.manage"))],
)


def _repo(session: AsyncSession = Depends(get_tenant_session)) -> SecurityRepository:
    return SecurityRepository(session)


async def _role_or_404(repo: SecurityRepository, role_id: UUID):
    role = await repo.get_role_by_id(role_id)
    if role is None:
        raise NotFoundError(f"Role {role_id} not found", details={"role_id": str(role_id)})
    return role


async def _permission_or_404(repo: SecurityRepository, code: str):
    permission = await repo.get_permission_by_code(code)
    if permission is None:
        raise NotFoundError(f"Unknown permission {code}", details={"code": code})
    return permission


async def _detail(repo: SecurityRepository, role) -> RoleDetailRead:
    granted = await repo.list_permissions_for_role(role.id)
    role_fields = RoleRead.model_validate(role).model_dump()
    return RoleDetailRead(**role_fields, permissions=[p.code for p in granted])


# PUBLIC_INTERFACE
@router.get("", response_model=List[RoleRead], summary="List roles")
async def list_roles(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    repo: SecurityRepository = Depends(_repo),
) -> List[RoleRead]:
    return [RoleRead.model_validate(r) for r in await repo.list_roles(limit=limit, offset=offset)]


# PUBLIC_INTERFACE
@router.get(
    "/permissions",
    response_model=List[PermissionRead],
    summary="Permission catalogue",
    description="Permission codes known to the tenant, seeded from the document state machines.",
)
async def list_permissions(repo: SecurityRepository = Depends(_repo)) -> List[PermissionRead]:
    return [PermissionRead.model_validate(p) for p in await repo.list_permissions()]


# PUBLIC_INTERFACE
@router.post("", response_model=RoleDetailRead, status_code=status.HTTP_201_CREATED, summary="Create role")
async def create_role(payload: RoleCreate, repo: SecurityRepository = Depends(_repo)) -> RoleDetailRead:
    if await repo.get_role_by_name(payload.name):
        raise ConflictError(f"Role {payload.name} already exists", details={"name": payload.name})
    return await _detail(repo, await repo.create_role(payload.name, payload.description))


# PUBLIC_INTERFACE
@router.get("/{role_id}", response_model=RoleDetailRead, summary="Get role")
async def get_role(role_id: UUID, repo: SecurityRepository = Depends(_repo)) -> RoleDetailRead:
    return await _detail(repo, await _role_or_404(repo, role_id))


# PUBLIC_INTERFACE
@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete role")
async def delete_role(role_id: UUID, repo: SecurityRepository = Depends(_repo)) -> None:
    await repo.delete_role(role_id)


# PUBLIC_INTERFACE
@router.post(
    "/{role_id}/permissions/{code}",
    response_model=RoleDetailRead,
    summary="Grant permission to role",
    description="Grant a catalogue code such as `compras.ordenes.approve`. Granting twice is a no-op.",
)
async def grant_permission(role_id: UUID, code: str, repo: SecurityRepository = Depends(_repo)) -> RoleDetailRead:
    role = await _role_or_404(repo, role_id)
    permission = await _permission_or_404(repo, code)
    if code not in {p.code for p in await repo.list_permissions_for_role(role.id)}:
        await repo.add_permission_to_role(role.id, permission.id)
    return await _detail(repo, role)


# PUBLIC_INTERFACE
@router.delete("/{role_id}/permissions/{code}", response_model=RoleDetailRead, summary="Revoke permission from role")
async def revoke_permission(role_id: UUID, code: str, repo: SecurityRepository = Depends(_repo)) -> RoleDetailRead:
    role = await _role_or_404(repo, role_id)
    permission = await _permission_or_404(repo, code)
    await repo.remove_permission_from_role(role.id, permission.id)
    return await _detail(repo, role)
