from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Type
from uuid import UUID

from pydantic import BaseModel, Field

from src.lifecycle.definitions import REGISTRY
from src.services.base import TransitionRequest


def action_enum(name: str, entity_type: str, exclude: Iterable[str] = ()) -> Type[Enum]:
    """Path-parameter enum of the machine's actions, e.g. RECEIVE_PARTIAL -> "receive-partial"."""
    actions = sorted(REGISTRY.get(entity_type).actions - set(exclude))
    return Enum(name, {a: a.lower().replace("_", "-") for a in actions}, type=str)  # type: ignore[return-value]


class TransitionBody(BaseModel):
    """Common body of every transition endpoint."""
    reason_code: Optional[str] = Field(None, description="Reason code; required for rejections, voids and cancellations")
    reason_text: Optional[str] = Field(None, description="Free text; required when reason_code is OTHER")
    skip_sod: bool = Field(False, description="Bypass segregation-of-duties checks (needs lifecycle.sod.override)")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extra data stored on the log entry")

    def to_request(self, idempotency_key: Optional[str] = None) -> TransitionRequest:
        return TransitionRequest(
            reason_code=self.reason_code,
            reason_text=self.reason_text,
            idempotency_key=idempotency_key,
            skip_sod=self.skip_sod,
            metadata=dict(self.metadata),
        )


class TransitionResultRead(BaseModel):
    """Outcome of an accepted transition."""
    entity_type: str
    entity_id: UUID
    action: str
    from_state: Optional[str] = None
    to_state: str
    transition_id: Optional[UUID] = None
    integrity_hash: Optional[str] = None
    sod_check: Dict[str, Any] = Field(default_factory=dict)
    eligibility: Optional[Dict[str, Any]] = None
    replayed: bool = Field(False, description="True when served from a completed idempotency key")

    class Config:
        from_attributes = True


class ActionCheckRead(BaseModel):
    """Dry-run result for one action available from the current state."""
    action: str
    allowed: bool
    to_state: Optional[str] = None
    reason: Optional[str] = None
    code: Optional[str] = None


class TransitionLogRead(BaseModel):
    """Transition log entry."""
    id: Optional[UUID] = None
    entity_type: str
    entity_id: UUID
    action: str
    from_state: Optional[str] = None
    to_state: str
    user_id: UUID
    reason_code: Optional[str] = None
    reason_text: Optional[str] = None
    doc_type: str = "T1"
    details: Dict[str, Any] = Field(default_factory=dict)
    sod_check: Dict[str, Any] = Field(default_factory=dict)
    eligibility: Optional[Dict[str, Any]] = None
    prev_hash: Optional[str] = None
    integrity_hash: str
    created_at: datetime

    class Config:
        from_attributes = True


class IntegrityReport(BaseModel):
    """Result of re-computing a document's hash chain."""
    entity_type: str
    entity_id: UUID
    entries: int
    valid: bool
    broken_at: Optional[int] = Field(None, description="Index of the first broken entry")
    broken_entry_id: Optional[UUID] = None


class MachineTransitionRead(BaseModel):
    source: str = Field(..., alias="from")
    action: str
    target: str = Field(..., alias="to")

    model_config = {"populate_by_name": True}


class SoDRuleRead(BaseModel):
    code: str
    first_actions: List[str]
    second_action: str
    scope: str


class MachineRead(BaseModel):
    """Definition of a document state machine."""
    entity_type: str
    label: str
    initial_state: str
    states: List[str]
    final_states: List[str]
    transitions: List[MachineTransitionRead]
    permissions: Dict[str, str]
    reason_required: List[str]
    eligibility_actions: List[str]
    sod_rules: List[SoDRuleRead]
    reason_codes: Dict[str, str] = Field(default_factory=dict)


class SoDRuleConfigRead(BaseModel):
    """Tenant-configured SoD rule."""
    id: UUID
    code: str
    entity_type: str
    first_actions: List[str]
    second_action: str
    scope: str
    description: Optional[str] = None
    is_enabled: bool

    class Config:
        from_attributes = True


class SoDRuleConfigUpsert(BaseModel):
    """Create or update a tenant SoD rule."""
    code: str = Field(..., description="Unique rule code")
    entity_type: str
    first_actions: List[str] = Field(..., min_length=1)
    second_action: str
    scope: str = Field("SAME_DOCUMENT", pattern="^(SAME_DOCUMENT|ANY_DOCUMENT)$")
    description: Optional[str] = None
    is_enabled: bool = True
