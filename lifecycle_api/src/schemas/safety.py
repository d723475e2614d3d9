from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from src.schemas.lifecycle import TransitionBody


class PermitCreate(BaseModel):
    """Create a permit to work in DRAFT."""
    permit_type: str = Field(..., min_length=1, description="HOT_WORK, CONFINED_SPACE, ELECTRICAL, HEIGHT...")
    title: str = Field(..., min_length=1)
    description: Optional[str] = Field(None)
    work_location: Optional[str] = Field(None)
    hazards_identified: List[str] = Field(default_factory=list)
    control_measures: List[str] = Field(default_factory=list)
    required_ppe: List[str] = Field(default_factory=list)
    emergency_procedures: Optional[str] = Field(None)
    emergency_contacts: List[dict] = Field(default_factory=list)
    valid_from: datetime
    valid_to: datetime
    requires_loto: bool = Field(False, description="Activation needs a LOCKED LOTO execution")
    loto_execution_id: Optional[UUID] = Field(None)
    work_order_id: Optional[UUID] = Field(None)


class PermitUpdate(BaseModel):
    """Editable fields while the permit is DRAFT or REJECTED."""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    work_location: Optional[str] = None
    hazards_identified: Optional[List[str]] = None
    control_measures: Optional[List[str]] = None
    required_ppe: Optional[List[str]] = None
    emergency_procedures: Optional[str] = None
    emergency_contacts: Optional[List[dict]] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    requires_loto: Optional[bool] = None
    loto_execution_id: Optional[UUID] = None
    work_order_id: Optional[UUID] = None


class PermitRead(BaseModel):
    id: UUID
    permit_number: str
    permit_type: str
    status: str
    title: str
    description: Optional[str] = None
    work_location: Optional[str] = None
    hazards_identified: List[Any] = Field(default_factory=list)
    control_measures: List[Any] = Field(default_factory=list)
    required_ppe: List[Any] = Field(default_factory=list)
    emergency_procedures: Optional[str] = None
    emergency_contacts: List[Any] = Field(default_factory=list)
    valid_from: datetime
    valid_to: datetime
    requires_loto: bool
    loto_execution_id: Optional[UUID] = None
    work_order_id: Optional[UUID] = None
    requested_by: Optional[UUID] = None
    approved_by: Optional[UUID] = None
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closing_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PermitTransitionBody(TransitionBody):
    closing_notes: Optional[str] = Field(None, description="Stored on CLOSE")


class LOTOProcedureCreate(BaseModel):
    """Create a LOTO procedure; it must be approved before it can be executed."""
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    asset_id: Optional[UUID] = Field(None)
    energy_sources: List[str] = Field(default_factory=list)
    isolation_points: List[str] = Field(..., min_length=1, description="One lock is applied per point")
    lockout_steps: List[str] = Field(default_factory=list)
    required_ppe: List[str] = Field(default_factory=list)


class LOTOProcedureRead(BaseModel):
    id: UUID
    code: str
    name: str
    asset_id: Optional[UUID] = None
    energy_sources: List[Any] = Field(default_factory=list)
    isolation_points: List[Any] = Field(default_factory=list)
    lockout_steps: List[Any] = Field(default_factory=list)
    required_ppe: List[Any] = Field(default_factory=list)
    is_approved: bool
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LOTOExecuteBody(BaseModel):
    """Apply the procedure's locks."""
    work_order_id: Optional[UUID] = Field(None)
    zero_energy_verified: bool = Field(..., description="Zero-energy state verified after isolation")

    @model_validator(mode="after")
    def _verified(self) -> "LOTOExecuteBody":
        if not self.zero_energy_verified:
            raise ValueError("zero_energy_verified must be true to apply a lockout")
        return self


class LockRead(BaseModel):
    id: str
    point: str
    released: bool = False


class LOTOExecutionRead(BaseModel):
    id: UUID
    procedure_id: UUID
    work_order_id: Optional[UUID] = None
    status: str
    locks: List[LockRead] = Field(default_factory=list)
    zero_energy_verified: bool
    locked_at: Optional[datetime] = None
    unlocked_at: Optional[datetime] = None
    executed_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LockReleaseBody(TransitionBody):
    """Release some or all locks; omit lock_ids to release every remaining lock."""
    lock_ids: Optional[List[str]] = Field(None)
