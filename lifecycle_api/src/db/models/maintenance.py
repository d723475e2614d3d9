from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.db.base import Base, LifecycleDocumentMixin, TenantMixin, TimestampMixin, UUIDPkMixin


class Asset(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Maintained asset (machine, tool, etc.)."""
    __tablename__ = "assets"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_assets_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MaintenanceWorkOrder(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, Base):
    """Maintenance work order; `status` is driven by the MaintenanceWorkOrder machine."""
    __tablename__ = "maintenance_work_orders"
    __entity_type__ = "MaintenanceWorkOrder"
    __table_args__ = (
        UniqueConstraint("tenant_id", "wo_number", name="uq_maintenance_work_orders_tenant_number"),
    )

    asset_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("assets.id", ondelete="SET NULL"), nullable=True
    )
    wo_number: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requires_ptw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)


class LOTOProcedure(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Lockout/tagout procedure for an asset: energy sources and isolation steps."""
    __tablename__ = "loto_procedures"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_loto_procedures_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    asset_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("assets.id", ondelete="SET NULL"), nullable=True
    )
    energy_sources: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    isolation_points: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    lockout_steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    required_ppe: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    approved_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)


class LOTOExecution(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, Base):
    """Applied lockout: one lock per isolation point, released partially or all at once."""
    __tablename__ = "loto_executions"
    __entity_type__ = "LOTOExecution"

    procedure_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loto_procedures.id", ondelete="RESTRICT"), nullable=False
    )
    work_order_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("maintenance_work_orders.id", ondelete="SET NULL"), nullable=True
    )
    locks: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    zero_energy_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)


class PermitToWork(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, Base):
    """Permit authorizing hazardous work for a limited time window."""
    __tablename__ = "permits_to_work"
    __entity_type__ = "PermitToWork"
    __table_args__ = (
        UniqueConstraint("tenant_id", "permit_number", name="uq_permits_to_work_tenant_number"),
    )

    permit_number: Mapped[str] = mapped_column(Text, nullable=False)
    permit_type: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    work_location: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hazards_identified: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    control_measures: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    required_ppe: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    emergency_procedures: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contacts: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requires_loto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    loto_execution_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("loto_executions.id", ondelete="SET NULL"), nullable=True
    )
    work_order_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("maintenance_work_orders.id", ondelete="SET NULL"), nullable=True
    )
    requested_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
