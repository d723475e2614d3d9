from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from src.db.models.maintenance import LOTOExecution, LOTOProcedure, PermitToWork
from .base import BaseRepository


class PermitRepository(BaseRepository):
    """Permits to work."""

    async def list_permits(
        self,
        *,
        status: Optional[str],
        work_order_id: Optional[UUID],
        limit: int,
        offset: int,
    ) -> List[PermitToWork]:
        stmt = select(PermitToWork)
        if status:
            stmt = stmt.where(PermitToWork.status == status)
        if work_order_id:
            stmt = stmt.where(PermitToWork.work_order_id == work_order_id)
        return await self.page(stmt.order_by(PermitToWork.created_at.desc()), limit, offset)

    async def get_permit(self, permit_id: UUID) -> Optional[PermitToWork]:
        return await self.get_by_id(PermitToWork, permit_id)

    async def states_for(
        self, *, loto_execution_id: Optional[UUID] = None, work_order_id: Optional[UUID] = None
    ) -> List[str]:
        """Statuses of the permits linked to a LOTO execution or a work order."""
        stmt = select(PermitToWork.status)
        if loto_execution_id is not None:
            stmt = stmt.where(PermitToWork.loto_execution_id == loto_execution_id)
        if work_order_id is not None:
            stmt = stmt.where(PermitToWork.work_order_id == work_order_id)
        return list(await self.scalars(stmt))


class LOTORepository(BaseRepository):
    """LOTO procedures and their executions."""

    async def list_procedures(self, *, asset_id: Optional[UUID], limit: int, offset: int) -> List[LOTOProcedure]:
        stmt = select(LOTOProcedure)
        if asset_id:
            stmt = stmt.where(LOTOProcedure.asset_id == asset_id)
        return await self.page(stmt.order_by(LOTOProcedure.code), limit, offset)

    async def get_procedure(self, procedure_id: UUID) -> Optional[LOTOProcedure]:
        return await self.get_by_id(LOTOProcedure, procedure_id)

    async def get_procedure_by_code(self, code: str) -> Optional[LOTOProcedure]:
        return await self.scalar_one_or_none(select(LOTOProcedure).where(LOTOProcedure.code == code))

    async def list_executions(
        self, *, status: Optional[str], work_order_id: Optional[UUID], limit: int, offset: int
    ) -> List[LOTOExecution]:
        stmt = select(LOTOExecution)
        if status:
            stmt = stmt.where(LOTOExecution.status == status)
        if work_order_id:
            stmt = stmt.where(LOTOExecution.work_order_id == work_order_id)
        return await self.page(stmt.order_by(LOTOExecution.created_at.desc()), limit, offset)

    async def get_execution(self, execution_id: UUID, *, lock: bool = False) -> Optional[LOTOExecution]:
        return await self.get_by_id(LOTOExecution, execution_id, lock=lock)

    async def execution_states_for_work_order(self, work_order_id: UUID) -> List[str]:
        stmt = select(LOTOExecution.status).where(LOTOExecution.work_order_id == work_order_id)
        return list(await self.scalars(stmt))
