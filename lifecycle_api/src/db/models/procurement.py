from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, DocTypeMixin, LifecycleDocumentMixin, TenantMixin, TimestampMixin, UUIDPkMixin


class Supplier(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Supplier/vendor master."""
    __tablename__ = "suppliers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_suppliers_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    tax_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)


class PurchaseOrder(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, DocTypeMixin, Base):
    """Purchase order header; `status` is driven by the PurchaseOrder state machine."""
    __tablename__ = "purchase_orders"
    __entity_type__ = "PurchaseOrder"
    __table_args__ = (
        UniqueConstraint("tenant_id", "po_number", name="uq_purchase_orders_tenant_number"),
    )

    po_number: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False
    )
    order_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expected_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_location_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        "PurchaseOrderLine",
        order_by="PurchaseOrderLine.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PurchaseOrderLine(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Purchase order line item."""
    __tablename__ = "purchase_order_lines"

    purchase_order_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    qty_ordered: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    qty_received: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0, server_default="0")
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)


class PurchaseReturn(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, DocTypeMixin, Base):
    """Return of goods to a supplier (devolucion)."""
    __tablename__ = "purchase_returns"
    __entity_type__ = "PurchaseReturn"
    __table_args__ = (
        UniqueConstraint("tenant_id", "return_number", name="uq_purchase_returns_tenant_number"),
    )

    return_number: Mapped[str] = mapped_column(Text, nullable=False)
    supplier_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False
    )
    purchase_order_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchase_orders.id", ondelete="SET NULL"), nullable=True
    )
    location_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    return_type: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    shipped_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    lines: Mapped[list["PurchaseReturnLine"]] = relationship(
        "PurchaseReturnLine",
        order_by="PurchaseReturnLine.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PurchaseReturnLine(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Item returned to the supplier."""
    __tablename__ = "purchase_return_lines"

    purchase_return_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("purchase_returns.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    uom: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
