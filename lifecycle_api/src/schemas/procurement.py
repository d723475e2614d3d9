from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.schemas.lifecycle import TransitionBody

DocTypeField = Literal["T1", "T2"]
PurchaseReturnType = Literal["DEFECTO", "EXCESO", "ERROR_PEDIDO", "GARANTIA", "OTRO"]


class SupplierRead(BaseModel):
    """Supplier read model."""
    id: UUID = Field(..., description="Supplier ID")
    code: str = Field(..., description="Supplier code")
    name: str = Field(..., description="Supplier name")
    tax_id: Optional[str] = Field(None)
    email: Optional[str] = Field(None)
    phone: Optional[str] = Field(None)
    address: dict = Field(default_factory=dict)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class SupplierCreate(BaseModel):
    """Create supplier payload."""
    code: str = Field(..., min_length=1, description="Unique code")
    name: str = Field(..., min_length=1, description="Supplier name")
    tax_id: Optional[str] = Field(None)
    email: Optional[str] = Field(None)
    phone: Optional[str] = Field(None)
    address: dict = Field(default_factory=dict)


class PurchaseOrderLineCreate(BaseModel):
    """PO line payload."""
    item_sku: str = Field(..., min_length=1, description="Item SKU")
    description: Optional[str] = Field(None)
    qty_ordered: Decimal = Field(..., gt=0, description="Ordered quantity")
    uom: Optional[str] = Field(None)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class PurchaseOrderLineRead(BaseModel):
    """PO line read model."""
    id: UUID = Field(..., description="Line ID")
    purchase_order_id: UUID = Field(..., description="PO id")
    line_no: int = Field(..., description="Line number")
    item_sku: str = Field(..., description="Item SKU")
    description: Optional[str] = Field(None)
    qty_ordered: float = Field(..., description="Ordered qty")
    qty_received: float = Field(0, description="Received qty")
    uom: Optional[str] = Field(None)
    unit_price: float = Field(0)

    class Config:
        from_attributes = True


class PurchaseOrderCreate(BaseModel):
    """Create PO payload; the order starts in BORRADOR."""
    supplier_id: UUID = Field(..., description="Supplier id")
    doc_type: DocTypeField = Field("T1", description="T1 (standard) or T2 (extended books)")
    order_date: Optional[date] = Field(None)
    expected_date: Optional[date] = Field(None)
    currency: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)
    delivery_location_id: Optional[UUID] = Field(None, description="Default location for goods receipts")
    lines: List[PurchaseOrderLineCreate] = Field(default_factory=list)


class PurchaseOrderRead(BaseModel):
    """PO read model including lines."""
    id: UUID = Field(..., description="PO ID")
    po_number: str = Field(..., description="PO number")
    supplier_id: UUID = Field(..., description="Supplier")
    status: str
    doc_type: str
    order_date: Optional[date] = Field(None)
    expected_date: Optional[date] = Field(None)
    total_amount: float = Field(0)
    currency: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)
    delivery_location_id: Optional[UUID] = Field(None)
    created_by: Optional[UUID] = Field(None)
    approved_by: Optional[UUID] = Field(None)
    lines: List[PurchaseOrderLineRead] = Field(default_factory=list)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    class Config:
        from_attributes = True


class ReceiptLine(BaseModel):
    line_no: int = Field(..., ge=1)
    quantity: Decimal = Field(..., gt=0)


class GoodsReceiptBody(TransitionBody):
    """Receive goods against a confirmed purchase order."""
    location_id: Optional[UUID] = Field(None, description="Defaults to the order's delivery location")
    lines: List[ReceiptLine] = Field(..., min_length=1)


class PurchaseReturnLineCreate(BaseModel):
    item_sku: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., gt=0)
    uom: Optional[str] = Field(None)
    description: Optional[str] = Field(None)


class PurchaseReturnLineRead(BaseModel):
    id: UUID
    line_no: int
    item_sku: str
    quantity: float
    uom: Optional[str] = None
    description: Optional[str] = None

    class Config:
        from_attributes = True


class PurchaseReturnCreate(BaseModel):
    """Create a return to supplier; starts in BORRADOR."""
    supplier_id: UUID
    location_id: UUID = Field(..., description="Location the goods leave from")
    purchase_order_id: Optional[UUID] = Field(None)
    return_type: PurchaseReturnType
    reason: Optional[str] = Field(None)
    doc_type: DocTypeField = Field("T1")
    lines: List[PurchaseReturnLineCreate] = Field(default_factory=list)


class PurchaseReturnRead(BaseModel):
    id: UUID
    return_number: str
    supplier_id: UUID
    location_id: UUID
    purchase_order_id: Optional[UUID] = None
    return_type: str
    status: str
    doc_type: str
    reason: Optional[str] = None
    resolution: Optional[str] = None
    shipped_at: Optional[date] = None
    created_by: Optional[UUID] = None
    lines: List[PurchaseReturnLineRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReturnResolutionBody(TransitionBody):
    """Resolve a return (credit note, replacement, repair...)."""
    resolution: str = Field(..., min_length=1)
