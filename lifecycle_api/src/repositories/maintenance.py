from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select

from src.db.models.maintenance import Asset, MaintenanceWorkOrder
from .base import BaseRepository


class AssetRepository(BaseRepository):
    """Maintained assets."""

    async def list_assets(self, *, search: Optional[str], limit: int, offset: int) -> List[Asset]:
        stmt = select(Asset)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Asset.code.ilike(like), Asset.name.ilike(like)))
        return await self.page(stmt.order_by(Asset.code), limit, offset)

    async def get_asset(self, asset_id: UUID) -> Optional[Asset]:
        return await self.get_by_id(Asset, asset_id)

    async def get_by_code(self, code: str) -> Optional[Asset]:
        return await self.scalar_one_or_none(select(Asset).where(Asset.code == code))


class WorkOrderRepository(BaseRepository):
    """Maintenance work orders."""

    async def list_work_orders(
        self,
        *,
        status: Optional[str],
        asset_id: Optional[UUID],
        limit: int,
        offset: int,
    ) -> List[MaintenanceWorkOrder]:
        stmt = select(MaintenanceWorkOrder)
        if status:
            stmt = stmt.where(MaintenanceWorkOrder.status == status)
        if asset_id:
            stmt = stmt.where(MaintenanceWorkOrder.asset_id == asset_id)
        return await self.page(stmt.order_by(MaintenanceWorkOrder.created_at.desc()), limit, offset)

    async def get_work_order(self, work_order_id: UUID) -> Optional[MaintenanceWorkOrder]:
        return await self.scalar_one_or_none(
            select(MaintenanceWorkOrder).where(MaintenanceWorkOrder.id == work_order_id)
        )
