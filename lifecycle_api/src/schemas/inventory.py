from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

AdjustmentType = Literal["CONTEO", "MERMA", "ROTURA", "VENCIMIENTO", "CORRECCION", "OTRO"]


class LocationRead(BaseModel):
    """Read model for inventory Location."""
    id: UUID = Field(..., description="Location ID")
    code: str = Field(..., description="Location code")
    name: Optional[str] = Field(None, description="Location name")
    type: Optional[str] = Field(None, description="Location type")
    parent_id: Optional[UUID] = Field(None, description="Parent location ID")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Last update timestamp (UTC)")

    class Config:
        from_attributes = True


class LocationCreate(BaseModel):
    """Create location payload."""
    code: str = Field(..., min_length=1, description="Unique location code")
    name: Optional[str] = Field(None)
    type: Optional[str] = Field(None, description="WAREHOUSE, SHELF, BIN...")
    parent_id: Optional[UUID] = Field(None)


class StockLevelRead(BaseModel):
    """On-hand quantity of an item at a location."""
    id: UUID
    location_id: UUID
    item_sku: str
    quantity: float
    uom: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True


class InventoryTransactionRead(BaseModel):
    """Read model for inventory transaction."""
    id: UUID = Field(..., description="Transaction ID")
    location_id: UUID = Field(..., description="Location ID")
    item_sku: str = Field(..., description="Item SKU")
    quantity: float = Field(..., description="Signed quantity moved")
    uom: Optional[str] = Field(None, description="Unit of measure")
    movement_type: str = Field(..., description="RECEIPT, ADJUSTMENT, RETURN_OUT, RETURN_IN...")
    ref_type: Optional[str] = Field(None, description="Reference document type")
    ref_id: Optional[UUID] = Field(None, description="Reference document ID")
    created_by: Optional[UUID] = Field(None)
    details: dict = Field(default_factory=dict, description="Additional details")
    created_at: datetime = Field(..., description="Created timestamp")

    class Config:
        from_attributes = True


class StockAdjustmentLineCreate(BaseModel):
    item_sku: str = Field(..., min_length=1)
    quantity_delta: Decimal = Field(..., description="Signed change; negative removes stock")
    uom: Optional[str] = Field(None)
    notes: Optional[str] = Field(None)


class StockAdjustmentLineRead(BaseModel):
    id: UUID
    item_sku: str
    quantity_delta: float
    uom: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class StockAdjustmentCreate(BaseModel):
    """Create a stock adjustment in BORRADOR."""
    location_id: UUID
    adjustment_type: AdjustmentType
    reason: Optional[str] = Field(None)
    doc_type: Literal["T1", "T2"] = Field("T1")
    lines: List[StockAdjustmentLineCreate] = Field(default_factory=list)


class StockAdjustmentRead(BaseModel):
    id: UUID
    adjustment_number: str
    location_id: UUID
    adjustment_type: str
    status: str
    doc_type: str
    reason: Optional[str] = None
    created_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    lines: List[StockAdjustmentLineRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
