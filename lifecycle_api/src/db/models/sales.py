from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.db.base import Base, DocTypeMixin, LifecycleDocumentMixin, TenantMixin, TimestampMixin, UUIDPkMixin


class Customer(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Customer master with running account balance."""
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_customers_tenant_code"),
    )

    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    billing_address: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0, server_default="0")
    credit_limit: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)


class SalesInvoice(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, DocTypeMixin, Base):
    """Sales invoice header; `status` is driven by the SalesInvoice state machine."""
    __tablename__ = "sales_invoices"
    __entity_type__ = "SalesInvoice"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_sales_invoices_tenant_number"),
    )

    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False
    )
    issue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    balance_due: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    lines: Mapped[list["SalesInvoiceLine"]] = relationship(
        "SalesInvoiceLine",
        order_by="SalesInvoiceLine.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SalesInvoiceLine(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Sales invoice line item."""
    __tablename__ = "sales_invoice_lines"

    sales_invoice_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sales_invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(9, 6), nullable=False, default=0)
    line_total: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)


class CustomerPayment(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Collection applied to a sales invoice."""
    __tablename__ = "customer_payments"

    customer_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False
    )
    sales_invoice_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sales_invoices.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)


class CustomerLedgerEntry(UUIDPkMixin, TenantMixin, TimestampMixin, DocTypeMixin, Base):
    """Customer account movement; debit raises the balance, credit lowers it."""
    __tablename__ = "customer_ledger_entries"

    customer_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    entry_type: Mapped[str] = mapped_column(Text, nullable=False)  # INVOICE/PAYMENT/VOID/RETURN
    debit: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    credit: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    ref_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ref_id: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class SalesReturn(UUIDPkMixin, TenantMixin, TimestampMixin, LifecycleDocumentMixin, DocTypeMixin, Base):
    """Goods returned by a customer (devolucion de cliente)."""
    __tablename__ = "sales_returns"
    __entity_type__ = "SalesReturn"
    __table_args__ = (
        UniqueConstraint("tenant_id", "return_number", name="uq_sales_returns_tenant_number"),
    )

    return_number: Mapped[str] = mapped_column(Text, nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False
    )
    sales_invoice_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sales_invoices.id", ondelete="SET NULL"), nullable=True
    )
    location_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    lines: Mapped[list["SalesReturnLine"]] = relationship(
        "SalesReturnLine",
        order_by="SalesReturnLine.line_no",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SalesReturnLine(UUIDPkMixin, TenantMixin, TimestampMixin, Base):
    """Item returned by the customer."""
    __tablename__ = "sales_return_lines"

    sales_return_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("sales_returns.id", ondelete="CASCADE"), nullable=False
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    item_sku: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
