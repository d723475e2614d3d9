from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from src.schemas.lifecycle import TransitionBody


class CustomerCreate(BaseModel):
    """Create customer payload."""
    code: str = Field(..., min_length=1, description="Unique customer code")
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = Field(None)
    phone: Optional[str] = Field(None)
    billing_address: dict = Field(default_factory=dict)
    credit_limit: Optional[Decimal] = Field(None, ge=0)


class CustomerRead(BaseModel):
    """Customer with running account balance."""
    id: UUID
    code: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    billing_address: dict = Field(default_factory=dict)
    balance: float = Field(0, description="Outstanding receivable visible in the request view mode")
    credit_limit: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LedgerEntryRead(BaseModel):
    """Customer account movement."""
    id: UUID
    customer_id: UUID
    entry_type: str
    doc_type: str = "T1"
    debit: float
    credit: float
    balance_after: float
    ref_type: Optional[str] = None
    ref_id: Optional[UUID] = None
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SalesInvoiceLineCreate(BaseModel):
    item_sku: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=1, description="Fraction, e.g. 0.21")


class SalesInvoiceLineRead(BaseModel):
    id: UUID
    line_no: int
    item_sku: str
    description: Optional[str] = None
    quantity: float
    unit_price: float
    tax_rate: float
    line_total: float

    class Config:
        from_attributes = True


class SalesInvoiceCreate(BaseModel):
    """Create a sales invoice in BORRADOR; totals are computed from the lines."""
    customer_id: UUID
    doc_type: Literal["T1", "T2"] = Field("T1")
    due_date: Optional[date] = Field(None)
    currency: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)
    lines: List[SalesInvoiceLineCreate] = Field(default_factory=list)


class SalesInvoiceRead(BaseModel):
    id: UUID
    invoice_number: str
    customer_id: UUID
    status: str
    doc_type: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    currency: Optional[str] = None
    subtotal: float
    tax_amount: float
    total: float
    balance_due: float
    notes: Optional[str] = None
    created_by: Optional[UUID] = None
    lines: List[SalesInvoiceLineRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaymentBody(TransitionBody):
    """Register a collection against an invoice."""
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[date] = Field(None, description="Defaults to today")
    method: Optional[str] = Field(None, description="TRANSFER, CASH, CHECK...")
    reference: Optional[str] = Field(None)


class PaymentRead(BaseModel):
    id: UUID
    customer_id: UUID
    sales_invoice_id: UUID
    amount: float
    payment_date: date
    method: Optional[str] = None
    reference: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SalesReturnLineCreate(BaseModel):
    item_sku: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class SalesReturnLineRead(BaseModel):
    id: UUID
    line_no: int
    item_sku: str
    quantity: float
    unit_price: float

    class Config:
        from_attributes = True


class SalesReturnCreate(BaseModel):
    """Register goods returned by a customer; starts in PENDIENTE_REVISION."""
    customer_id: UUID
    location_id: UUID = Field(..., description="Location receiving the goods")
    sales_invoice_id: Optional[UUID] = Field(None)
    reason: Optional[str] = Field(None)
    doc_type: Literal["T1", "T2"] = Field("T1")
    lines: List[SalesReturnLineCreate] = Field(..., min_length=1)


class SalesReturnRead(BaseModel):
    id: UUID
    return_number: str
    customer_id: UUID
    sales_invoice_id: Optional[UUID] = None
    location_id: UUID
    status: str
    doc_type: str
    reason: Optional[str] = None
    credit_amount: float
    created_by: Optional[UUID] = None
    lines: List[SalesReturnLineRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
