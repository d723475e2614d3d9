from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import delete, func, select

from src.db.models.security import Permission, Role, RolePermission, User, UserRole
from .base import BaseRepository


class SecurityRepository(BaseRepository):
    """Users, roles and the permission codes the lifecycle gateway checks."""

    # users

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self.scalar_one_or_none(select(User).where(func.lower(User.email) == email.lower()))

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        return await self.get_by_id(User, user_id)

    async def count_users(self) -> int:
        return int((await self.execute(select(func.count(User.id)))).scalar_one())

    async def list_users(self, limit: int = 100, offset: int = 0) -> List[User]:
        return await self.page(select(User).order_by(User.created_at.desc()), limit, offset)

    async def create_user(self, *, email: str, hashed_password: str, full_name: Optional[str] = None, **flags: bool) -> User:
        """Insert a user; `flags` may set is_active / is_superadmin."""
        return await self.save(User(email=email, full_name=full_name, hashed_password=hashed_password, **flags))

    async def update_user(self, user_id: UUID, changes: Mapping[str, Any]) -> Optional[User]:
        """Apply the non-None entries of `changes`; returns None for an unknown user."""
        user = await self.get_user_by_id(user_id)
        if user is None:
            return None
        for column, value in changes.items():
            if value is not None:
                setattr(user, column, value)
        return await self.save(user)

    async def delete_user(self, user_id: UUID) -> None:
        await self.execute(delete(User).where(User.id == user_id))
        await self.commit()

    async def list_roles_for_user(self, user_id: UUID) -> List[Role]:
        stmt = select(Role).join(UserRole, Role.id == UserRole.role_id).where(UserRole.user_id == user_id)
        return list(await self.scalars(stmt))

    async def assign_role_to_user(self, user_id: UUID, role_id: UUID) -> None:
        await self.add(UserRole(user_id=user_id, role_id=role_id))
        await self.commit()

    async def remove_role_from_user(self, user_id: UUID, role_id: UUID) -> None:
        await self.execute(delete(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id))
        await self.commit()

    # roles

    async def list_roles(self, limit: int = 100, offset: int = 0) -> List[Role]:
        return await self.page(select(Role).order_by(Role.name), limit, offset)

    async def get_role_by_id(self, role_id: UUID) -> Optional[Role]:
        return await self.get_by_id(Role, role_id)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        return await self.scalar_one_or_none(select(Role).where(Role.name == name))

    async def create_role(self, name: str, description: Optional[str] = None) -> Role:
        return await self.save(Role(name=name, description=description))

    async def delete_role(self, role_id: UUID) -> None:
        await self.execute(delete(Role).where(Role.id == role_id))
        await self.commit()

    async def ensure_role(self, name: str, description: str, permissions: Iterable[Permission]) -> Role:
        """Create `name` if missing and grant it every permission in `permissions`. Flushes only."""
        role = await self.get_role_by_name(name)
        if role is None:
            role = Role(name=name, description=description, permissions=[])
            await self.add(role)
        held = {p.code for p in role.permissions}
        role.permissions.extend(p for p in permissions if p.code not in held)
        await self.flush()
        return role

    # permission catalogue

    async def list_permissions(self) -> List[Permission]:
        return list(await self.scalars(select(Permission).order_by(Permission.code)))

    async def get_permission_by_code(self, code: str) -> Optional[Permission]:
        return await self.scalar_one_or_none(select(Permission).where(Permission.code == code))

    async def list_permissions_for_role(self, role_id: UUID) -> List[Permission]:
        stmt = (
            select(Permission)
            .join(RolePermission, Permission.id == RolePermission.permission_id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.code)
        )
        return list(await self.scalars(stmt))

    async def sync_permission_catalog(self, catalog: Mapping[str, str]) -> List[Permission]:
        """
        Insert the codes of `catalog` (code -> description) the tenant lacks.

        Existing rows keep their description. Flushes only.
        """
        existing = {p.code: p for p in await self.list_permissions()}
        for code, description in catalog.items():
            if code not in existing:
                existing[code] = Permission(code=code, description=description)
                await self.add(existing[code])
        await self.flush()
        return [existing[code] for code in sorted(existing)]

    async def add_permission_to_role(self, role_id: UUID, permission_id: UUID) -> None:
        await self.add(RolePermission(role_id=role_id, permission_id=permission_id))
        await self.commit()

    async def remove_permission_from_role(self, role_id: UUID, permission_id: UUID) -> None:
        stmt = delete(RolePermission).where(
            RolePermission.role_id == role_id, RolePermission.permission_id == permission_id
        )
        await self.execute(stmt)
        await self.commit()
