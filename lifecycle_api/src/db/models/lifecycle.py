from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, DocTypeMixin, UUIDPkMixin, TimestampMixin, TenantMixin


class StateTransitionLog(UUIDPkMixin, TenantMixin, DocTypeMixin, Base):
    """Append-only record of every document transition, hash-chained per document."""
    __tablename__ = "state_transition_logs"
    __table_args__ = (
        Index("ix_state_transition_logs_entity", "tenant_id", "entity_type", "entity_id", "created_at"),
        Index("ix_state_transition_logs_user_action", "tenant_id", "user_id", "entity_type", "action"),
    )

    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    from_state: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    to_state: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    reason_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    sod_check: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    eligibility: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    prev_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    integrity_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class IdempotencyKey(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Client-supplied key guarding a transition against duplicate execution."""
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_idempotency_keys_tenant_key"),
    )

    key: Mapped[str] = mapped_column(Text, nullable=False)
    operation: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SoDRuleConfig(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Tenant-configured segregation-of-duties rule."""
    __tablename__ = "sod_rules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_sod_rules_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    first_actions: Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False)
    second_action: Mapped[str] = mapped_column(Text, nullable=False)
    scope: Mapped[str] = mapped_column(Text, nullable=False, default="SAME_DOCUMENT")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="true")


class AuditLog(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Non-transition mutations (creations, line edits, approvals of master data)."""
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_entity", "tenant_id", "entity_type", "entity_id"),
    )

    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    changes: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
