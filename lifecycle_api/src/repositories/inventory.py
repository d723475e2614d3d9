from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.view_mode import ViewMode, apply_view_mode
from src.db.models.inventory import (
    InventoryTransaction,
    Location,
    StockAdjustment,
    StockLevel,
)
from .base import BaseRepository


class LocationRepository(BaseRepository):
    """
    Repository for Locations.

    All queries are automatically tenant-scoped by Postgres RLS.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def list_locations(self, limit: int = 100, offset: int = 0) -> List[Location]:
        return await self.page(select(Location).order_by(Location.code), limit, offset)

    async def get_location(self, location_id: UUID) -> Optional[Location]:
        return await self.get_by_id(Location, location_id)

    async def get_by_code(self, code: str) -> Optional[Location]:
        return await self.scalar_one_or_none(select(Location).where(Location.code == code))


class StockRepository(BaseRepository):
    """On-hand quantities and the movements that change them."""

    async def list_levels(
        self, *, location_id: Optional[UUID], item_sku: Optional[str], limit: int, offset: int
    ) -> List[StockLevel]:
        stmt = select(StockLevel)
        if location_id:
            stmt = stmt.where(StockLevel.location_id == location_id)
        if item_sku:
            stmt = stmt.where(StockLevel.item_sku == item_sku)
        return await self.page(stmt.order_by(StockLevel.item_sku), limit, offset)

    async def on_hand(self, location_id: UUID, skus: Iterable[str], *, lock: bool = False) -> Dict[str, Decimal]:
        """Quantities of `skus` at the location; missing rows count as zero."""
        skus = list(set(skus))
        stmt = select(StockLevel).where(StockLevel.location_id == location_id, StockLevel.item_sku.in_(skus))
        if lock:
            stmt = stmt.with_for_update()
        levels = {lv.item_sku: Decimal(lv.quantity) for lv in await self.scalars(stmt)}
        return {sku: levels.get(sku, Decimal("0")) for sku in skus}

    async def move(
        self,
        *,
        location_id: UUID,
        item_sku: str,
        quantity: Decimal,
        movement_type: str,
        ref_type: Optional[str] = None,
        ref_id: Optional[UUID] = None,
        uom: Optional[str] = None,
        user_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> InventoryTransaction:
        """Apply a signed quantity to the stock level and record the movement."""
        stmt = (
            select(StockLevel)
            .where(StockLevel.location_id == location_id, StockLevel.item_sku == item_sku)
            .with_for_update()
        )
        level = await self.scalar_one_or_none(stmt)
        if level is None:
            level = StockLevel(location_id=location_id, item_sku=item_sku, quantity=Decimal("0"), uom=uom)
            await self.add(level)
        level.quantity = Decimal(level.quantity) + Decimal(quantity)

        row = InventoryTransaction(
            location_id=location_id,
            item_sku=item_sku,
            quantity=quantity,
            uom=uom,
            movement_type=movement_type,
            ref_type=ref_type,
            ref_id=ref_id,
            created_by=user_id,
            details=details or {},
        )
        await self.add(row)
        return row

    async def list_transactions(
        self,
        *,
        location_id: Optional[UUID],
        item_sku: Optional[str],
        ref_id: Optional[UUID],
        limit: int,
        offset: int,
    ) -> List[InventoryTransaction]:
        stmt = select(InventoryTransaction)
        if location_id:
            stmt = stmt.where(InventoryTransaction.location_id == location_id)
        if item_sku:
            stmt = stmt.where(InventoryTransaction.item_sku == item_sku)
        if ref_id:
            stmt = stmt.where(InventoryTransaction.ref_id == ref_id)
        return await self.page(stmt.order_by(InventoryTransaction.created_at.desc()), limit, offset)


class StockAdjustmentRepository(BaseRepository):
    """Repository for stock adjustments."""

    async def list_adjustments(
        self,
        *,
        mode: ViewMode,
        status: Optional[str],
        location_id: Optional[UUID],
        limit: int,
        offset: int,
    ) -> List[StockAdjustment]:
        stmt = apply_view_mode(select(StockAdjustment), StockAdjustment, mode)
        if status:
            stmt = stmt.where(StockAdjustment.status == status)
        if location_id:
            stmt = stmt.where(StockAdjustment.location_id == location_id)
        return await self.page(stmt.order_by(StockAdjustment.created_at.desc()), limit, offset)

    async def get_adjustment(self, adjustment_id: UUID) -> Optional[StockAdjustment]:
        return await self.get_by_id(StockAdjustment, adjustment_id)
