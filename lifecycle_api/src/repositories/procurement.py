from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.view_mode import ViewMode, apply_view_mode
from src.db.models.procurement import PurchaseOrder, PurchaseReturn, Supplier
from src.schemas.procurement import SupplierCreate
from .base import BaseRepository


class SupplierRepository(BaseRepository):
    """Repository for suppliers."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def list_suppliers(
        self, *, search: Optional[str], limit: int, offset: int
    ) -> List[Supplier]:
        stmt = select(Supplier)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Supplier.code.ilike(like), Supplier.name.ilike(like)))
        return await self.page(stmt.order_by(Supplier.code), limit, offset)

    async def get_supplier(self, supplier_id: UUID) -> Optional[Supplier]:
        return await self.get_by_id(Supplier, supplier_id)

    async def get_by_code(self, code: str) -> Optional[Supplier]:
        return await self.scalar_one_or_none(select(Supplier).where(Supplier.code == code))

    async def create_supplier(self, payload: SupplierCreate) -> Supplier:
        row = Supplier(
            code=payload.code,
            name=payload.name,
            tax_id=payload.tax_id,
            email=payload.email,
            phone=payload.phone,
            address=payload.address or {},
        )
        await self.add(row)
        await self.flush()
        return row


class PurchaseOrderRepository(BaseRepository):
    """Repository for purchase orders."""

    async def list_purchase_orders(
        self,
        *,
        mode: ViewMode,
        supplier_id: Optional[UUID],
        status: Optional[str],
        limit: int,
        offset: int,
    ) -> List[PurchaseOrder]:
        stmt = apply_view_mode(select(PurchaseOrder), PurchaseOrder, mode)
        if supplier_id:
            stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
        if status:
            stmt = stmt.where(PurchaseOrder.status == status)
        stmt = stmt.order_by(PurchaseOrder.order_date.desc().nullslast(), PurchaseOrder.po_number)
        return await self.page(stmt, limit, offset)

    async def get_purchase_order(self, po_id: UUID) -> Optional[PurchaseOrder]:
        return await self.get_by_id(PurchaseOrder, po_id)


class PurchaseReturnRepository(BaseRepository):
    """Repository for returns to suppliers."""

    async def list_returns(
        self,
        *,
        mode: ViewMode,
        supplier_id: Optional[UUID],
        status: Optional[str],
        limit: int,
        offset: int,
    ) -> List[PurchaseReturn]:
        stmt = apply_view_mode(select(PurchaseReturn), PurchaseReturn, mode)
        if supplier_id:
            stmt = stmt.where(PurchaseReturn.supplier_id == supplier_id)
        if status:
            stmt = stmt.where(PurchaseReturn.status == status)
        return await self.page(stmt.order_by(PurchaseReturn.created_at.desc()), limit, offset)

    async def get_return(self, return_id: UUID) -> Optional[PurchaseReturn]:
        return await self.get_by_id(PurchaseReturn, return_id)
