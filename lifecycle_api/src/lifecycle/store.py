"""
Persistence port used by the transition gateway.

The SQL implementation lives in src.repositories.lifecycle; tests use an
in-memory implementation of the same protocol.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

from src.lifecycle.machine import SoDRule

PROCESSING = "PROCESSING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"


@dataclass
class IdempotencyRecord:
    key: str
    status: str
    expires_at: datetime
    response: Optional[Dict[str, Any]] = None
    operation: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None


@dataclass
class TransitionLogEntry:
    tenant_id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    from_state: Optional[str]
    to_state: str
    user_id: UUID
    created_at: datetime
    reason_code: Optional[str] = None
    reason_text: Optional[str] = None
    doc_type: str = "T1"
    details: Dict[str, Any] = field(default_factory=dict)
    sod_check: Dict[str, Any] = field(default_factory=dict)
    eligibility: Optional[Dict[str, Any]] = None
    prev_hash: Optional[str] = None
    integrity_hash: str = ""
    id: Optional[UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TransitionStore(Protocol):
    def transaction(self) -> AsyncContextManager[None]:
        """Unit of work; commits on success and rolls back on error."""
        ...

    async def get_idempotency(self, key: str) -> Optional[IdempotencyRecord]:
        ...

    async def mark_processing(
        self, key: str, *, operation: str, entity_type: str, entity_id: UUID, expires_at: datetime
    ) -> None:
        ...

    async def mark_completed(self, key: str, response: Dict[str, Any]) -> None:
        ...

    async def mark_failed(self, key: str) -> None:
        ...

    async def list_sod_rules(self, entity_type: str, action: str) -> Sequence[SoDRule]:
        """Tenant-configured rules in addition to those declared on the machine."""
        ...

    async def has_performed(
        self,
        *,
        user_id: UUID,
        entity_type: str,
        actions: Sequence[str],
        entity_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
    ) -> bool:
        ...

    async def last_hash(self, entity_type: str, entity_id: UUID) -> Optional[str]:
        ...

    async def append(self, entry: TransitionLogEntry) -> TransitionLogEntry:
        ...

    async def history(self, entity_type: str, entity_id: UUID) -> List[TransitionLogEntry]:
        ...
