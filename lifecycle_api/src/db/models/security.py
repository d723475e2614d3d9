from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, TenantMixin, TimestampMixin, UUIDPkMixin


def _cascade_fk(target: str) -> Mapped[UUID]:
    return mapped_column(UUID(as_uuid=True), ForeignKey(f"{target}.id", ondelete="CASCADE"), nullable=False)


class Tenant(UUIDPkMixin, TimestampMixin, Base):
    """
    Isolation boundary for every document, log entry and security row.

    Tenant rows are not tenant-scoped themselves; RLS on this table only exposes
    the row whose id matches the session's `app.tenant_id`.
    """
    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class User(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Actor that creates and transitions documents."""
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    email: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hashed_password: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    # superadmins resolve to the wildcard permission
    is_superadmin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    roles: Mapped[list["Role"]] = relationship(
        "Role", secondary="user_roles", back_populates="users", lazy="selectin"
    )


class Role(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Named bundle of lifecycle permission codes such as `compras.ordenes.approve`."""
    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_roles_tenant_name"),)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    users: Mapped[list["User"]] = relationship(
        "User", secondary="user_roles", back_populates="roles", lazy="selectin"
    )
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission", secondary="role_permissions", back_populates="roles", lazy="selectin"
    )

    def permission_codes(self) -> set[str]:
        return {p.code for p in self.permissions}


class Permission(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """
    Permission code checked by the transition gateway.

    Codes follow `<prefix>.<action>`; the seed step inserts one row per code
    found in the registered state machines.
    """
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_permissions_tenant_code"),)

    code: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    roles: Mapped[list["Role"]] = relationship(
        "Role", secondary="role_permissions", back_populates="permissions", lazy="selectin"
    )


class UserRole(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "role_id", name="uq_user_roles_tenant_user_role"),
    )

    user_id: Mapped[UUID] = _cascade_fk("users")
    role_id: Mapped[UUID] = _cascade_fk("roles")


class RolePermission(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "role_id", "permission_id", name="uq_role_permissions_tenant_role_permission"),
    )

    role_id: Mapped[UUID] = _cascade_fk("roles")
    permission_id: Mapped[UUID] = _cascade_fk("permissions")
