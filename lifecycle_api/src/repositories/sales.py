from __future__ import annotations

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select

from src.core.view_mode import DocType, ViewMode, apply_view_mode, doc_types_for
from src.db.models.sales import (
    Customer,
    CustomerLedgerEntry,
    CustomerPayment,
    SalesInvoice,
    SalesReturn,
)
from .base import BaseRepository


class CustomerRepository(BaseRepository):
    """Customers and their account ledger."""

    async def list_customers(self, *, search: Optional[str], limit: int, offset: int) -> List[Customer]:
        stmt = select(Customer)
        if search:
            like = f"%{search}%"
            stmt = stmt.where(or_(Customer.code.ilike(like), Customer.name.ilike(like)))
        return await self.page(stmt.order_by(Customer.code), limit, offset)

    async def get_customer(self, customer_id: UUID, *, lock: bool = False) -> Optional[Customer]:
        return await self.get_by_id(Customer, customer_id, lock=lock)

    async def get_by_code(self, code: str) -> Optional[Customer]:
        return await self.scalar_one_or_none(select(Customer).where(Customer.code == code))

    async def post_entry(
        self,
        customer: Customer,
        *,
        entry_type: str,
        debit: Decimal = Decimal("0"),
        credit: Decimal = Decimal("0"),
        ref_type: Optional[str] = None,
        ref_id: Optional[UUID] = None,
        description: Optional[str] = None,
        doc_type: str = DocType.T1.value,
    ) -> CustomerLedgerEntry:
        """
        Append a ledger entry and return it.

        `Customer.balance` tracks T1 entries only. A T2 entry's `balance_after`
        is the running balance of the customer's T2 entries.
        """
        movement = Decimal(debit) - Decimal(credit)
        if doc_type == DocType.T1.value:
            customer.balance = Decimal(customer.balance or 0) + movement
            balance_after = customer.balance
        else:
            await self.flush()
            balance_after = await self._sum(customer.id, [doc_type]) + movement
        row = CustomerLedgerEntry(
            customer_id=customer.id,
            entry_type=entry_type,
            debit=debit,
            credit=credit,
            balance_after=balance_after,
            ref_type=ref_type,
            ref_id=ref_id,
            description=description,
            doc_type=doc_type,
        )
        await self.add(row)
        return row

    async def _sum(self, customer_id: UUID, doc_types: List[str]) -> Decimal:
        stmt = select(func.coalesce(func.sum(CustomerLedgerEntry.debit - CustomerLedgerEntry.credit), 0)).where(
            CustomerLedgerEntry.customer_id == customer_id,
            CustomerLedgerEntry.doc_type.in_(doc_types),
        )
        return Decimal((await self.execute(stmt)).scalar_one())

    async def balance(self, customer: Customer, mode: ViewMode) -> Decimal:
        """Receivable visible in `mode`: the stored T1 balance, plus T2 entries when extended."""
        if mode == ViewMode.STANDARD:
            return Decimal(customer.balance or 0)
        return await self._sum(customer.id, doc_types_for(mode))

    async def ledger(
        self, customer_id: UUID, *, mode: ViewMode, limit: int, offset: int
    ) -> List[CustomerLedgerEntry]:
        stmt = (
            select(CustomerLedgerEntry)
            .where(CustomerLedgerEntry.customer_id == customer_id)
            .order_by(CustomerLedgerEntry.created_at.asc())
        )
        stmt = apply_view_mode(stmt, CustomerLedgerEntry, mode)
        return await self.page(stmt, limit, offset)


class SalesInvoiceRepository(BaseRepository):
    """Sales invoices and the payments applied to them."""

    async def list_invoices(
        self,
        *,
        mode: ViewMode,
        customer_id: Optional[UUID],
        status: Optional[str],
        limit: int,
        offset: int,
    ) -> List[SalesInvoice]:
        stmt = apply_view_mode(select(SalesInvoice), SalesInvoice, mode)
        if customer_id:
            stmt = stmt.where(SalesInvoice.customer_id == customer_id)
        if status:
            stmt = stmt.where(SalesInvoice.status == status)
        return await self.page(stmt.order_by(SalesInvoice.created_at.desc()), limit, offset)

    async def get_invoice(self, invoice_id: UUID) -> Optional[SalesInvoice]:
        return await self.get_by_id(SalesInvoice, invoice_id)

    async def list_payments(self, invoice_id: UUID) -> List[CustomerPayment]:
        stmt = (
            select(CustomerPayment)
            .where(CustomerPayment.sales_invoice_id == invoice_id)
            .order_by(CustomerPayment.created_at.asc())
        )
        return list(await self.scalars(stmt))


class SalesReturnRepository(BaseRepository):
    """Customer returns."""

    async def list_returns(
        self,
        *,
        mode: ViewMode,
        customer_id: Optional[UUID],
        status: Optional[str],
        limit: int,
        offset: int,
    ) -> List[SalesReturn]:
        stmt = apply_view_mode(select(SalesReturn), SalesReturn, mode)
        if customer_id:
            stmt = stmt.where(SalesReturn.customer_id == customer_id)
        if status:
            stmt = stmt.where(SalesReturn.status == status)
        return await self.page(stmt.order_by(SalesReturn.created_at.desc()), limit, offset)

    async def get_return(self, return_id: UUID) -> Optional[SalesReturn]:
        return await self.get_by_id(SalesReturn, return_id)
