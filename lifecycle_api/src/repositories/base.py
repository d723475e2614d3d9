from __future__ import annotations

from typing import Any, Iterable, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import Executable, Select, select
from sqlalchemy.ext.asyncio import AsyncSession

M = TypeVar("M")


class BaseRepository:
    """
    Shared helpers for tenant-scoped repositories.

    Tenant filtering is not applied here: Postgres RLS compares every row with the
    `app.tenant_id` GUC, so the session must come from a tenant dependency
    (src.core.deps.get_tenant_session) or be wrapped in tenant_context.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    async def get_by_id(self, model: Type[M], row_id: UUID, *, lock: bool = False) -> Optional[M]:
        """
        Fetch one row by primary key.

        With `lock=True` the row is read `FOR UPDATE`, which serializes concurrent
        transitions of the same document until the surrounding transaction ends.
        """
        stmt = select(model).where(model.id == row_id)  # type: ignore[attr-defined]
        if lock:
            stmt = stmt.with_for_update()
        return await self.scalar_one_or_none(stmt)

    async def page(self, stmt: Select, limit: int, offset: int) -> List[Any]:
        """Apply offset/limit to an already ordered select and return the rows."""
        return list(await self.scalars(stmt.offset(offset).limit(limit)))

    async def commit(self) -> None:
        await self.session.commit()

    async def flush(self) -> None:
        await self.session.flush()

    async def add_all(self, entities: Iterable[Any]) -> None:
        self.session.add_all(list(entities))

    async def add(self, entity: Any) -> None:
        self.session.add(entity)

    async def save(self, entity: M) -> M:
        """Add, commit and reload `entity` so server-generated columns are readable."""
        self.session.add(entity)
        await self.session.commit()
        await self.session.refresh(entity)
        return entity
