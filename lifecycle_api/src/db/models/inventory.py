from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, DocTypeMixin, LifecycleDocumentMixin, TenantMixin, TimestampMixin, UUIDPkMixin


class Location(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Inventory storage location (e.g., warehouse, shelf, bin)."""
    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_locations_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parent_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )


class StockLevel(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """On-hand quantity of an item at a location."""
    __tablename__ = "stock_levels"
    __table_args__ = (
        UniqueConstraint("tenant_id", "location_id", "item_sku", name="uq_stock_levels_tenant_location_sku"),
    )

    location_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0, server_default="0")
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class InventoryTransaction(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Signed stock movement at a location, referencing the document that caused it."""
    __tablename__ = "inventory_transactions"

    location_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    movement_type: Mapped[str] = mapped_column(Text, nullable=False)  # RECEIPT/ADJUSTMENT/RETURN_OUT/...
    ref_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ref_id: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)


class StockAdjustment(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, DocTypeMixin, Base):
    """Stock adjustment header (count differences, breakage, expiry...)."""
    __tablename__ = "stock_adjustments"
    __entity_type__ = "StockAdjustment"
    __table_args__ = (
        UniqueConstraint("tenant_id", "adjustment_number", name="uq_stock_adjustments_tenant_number"),
    )

    adjustment_number: Mapped[str] = mapped_column(Text, nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    adjustment_type: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    lines: Mapped[list["StockAdjustmentLine"]] = relationship(
        "StockAdjustmentLine",
        order_by="StockAdjustmentLine.item_sku",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockAdjustmentLine(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Signed quantity delta for one item."""
    __tablename__ = "stock_adjustment_lines"

    stock_adjustment_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("stock_adjustments.id", ondelete="CASCADE"), nullable=False
    )
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity_delta: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
