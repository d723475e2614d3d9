from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.view_mode import ViewMode


@dataclass(frozen=True)
class Actor:
    """The authenticated user a service call runs on behalf of."""

    user_id: UUID
    tenant_id: UUID
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    view_mode: ViewMode = ViewMode.STANDARD


@dataclass
class TransitionRequest:
    """Caller-supplied inputs for a single document transition."""

    reason_code: Optional[str] = None
    reason_text: Optional[str] = None
    idempotency_key: Optional[str] = None
    skip_sod: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services should keep business logic and orchestration, delegating data access
    to repositories.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
