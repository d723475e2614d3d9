from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AssetCreate(BaseModel):
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: Optional[str] = Field(None)
    location_id: Optional[UUID] = Field(None)
    status: Optional[str] = Field("OPERATIONAL")


class AssetRead(BaseModel):
    """Maintained asset."""
    id: UUID
    code: str
    name: str
    type: Optional[str] = None
    location_id: Optional[UUID] = None
    status: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkOrderCreate(BaseModel):
    """Create a maintenance work order in PENDING."""
    asset_id: Optional[UUID] = Field(None)
    priority: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = Field("MEDIUM")
    description: Optional[str] = Field(None)
    requires_ptw: bool = Field(False, description="START needs an ACTIVE permit linked to the order")
    due_date: Optional[date] = Field(None)


class WorkOrderRead(BaseModel):
    id: UUID
    wo_number: str
    asset_id: Optional[UUID] = None
    status: str
    priority: Optional[str] = None
    description: Optional[str] = None
    requires_ptw: bool
    due_date: Optional[date] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
