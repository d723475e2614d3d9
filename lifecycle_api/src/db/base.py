from __future__ import annotations

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, MetaData, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from src.lifecycle.definitions import REGISTRY


# Standardized naming convention for alembic-friendly constraints/indexes.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base class with metadata naming conventions."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class UUIDPkMixin:
    """UUID primary key generated by uuid-ossp."""
    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("uuid_generate_v4()"),
    )


class CreatedAtMixin:
    """Insert timestamp only; used by append-only tables such as the transition log."""
    created_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )


class TimestampMixin(CreatedAtMixin):
    """created_at plus an updated_at refreshed on every ORM update."""
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), onupdate=func.now(), nullable=False
    )


class TenantMixin:
    """
    Tenant scoping column.

    The server default reads the `app.tenant_id` GUC set by
    src.db.session.tenant_context, so inserts inside a tenant session never
    need to pass tenant_id explicitly; RLS policies compare against the same GUC.
    """
    tenant_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        server_default=text("current_setting('app.tenant_id', true)::uuid"),
    )


class LifecycleDocumentMixin:
    """
    Status column of a document driven by a state machine.

    Subclasses set `__entity_type__` to the machine's entity type; the status
    column defaults to that machine's initial state.
    """
    __entity_type__: str = ""

    @declared_attr
    def status(cls) -> Mapped[str]:
        return mapped_column(Text, nullable=False, default=REGISTRY.get(cls.__entity_type__).initial_state)


class DocTypeMixin:
    """T1/T2 classification filtered by the request view mode."""

    @declared_attr
    def doc_type(cls) -> Mapped[str]:
        return mapped_column(
            Text,
            CheckConstraint("doc_type IN ('T1', 'T2')", name="doc_type_valid"),
            nullable=False,
            default="T1",
            server_default="T1",
        )
