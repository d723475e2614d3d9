from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class WsEnvelope(BaseModel):
    """Envelope for WebSocket messages."""
    type: str = Field(..., description="Message type (e.g., 'document.transitioned').")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Message payload.")
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp (UTC).")
    user_id: Optional[UUID] = Field(default=None, description="Acting user id, if applicable.")
    channel: Optional[str] = Field(default=None, description="Optional sub-channel (entity type).")


class TransitionEvent(BaseModel):
    """A document moved from one state to another."""
    entity_type: str = Field(..., description="Document family, e.g. PurchaseOrder.")
    entity_id: UUID = Field(..., description="Document id.")
    action: str = Field(..., description="Action performed.")
    from_state: Optional[str] = Field(default=None, description="State before the action (None on creation).")
    to_state: str = Field(..., description="State after the action.")
    transition_id: Optional[UUID] = Field(default=None, description="Id of the transition log entry.")
    doc_type: str = Field(default="T1", description="T1 or T2; T2 events reach extended-mode subscribers only.")
    user_id: Optional[UUID] = Field(default=None, description="Acting user id.")
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Event timestamp (UTC).")
