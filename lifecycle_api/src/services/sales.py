from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional
from uuid import UUID

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.sales import (
    Customer,
    CustomerLedgerEntry,
    CustomerPayment,
    SalesInvoice,
    SalesInvoiceLine,
    SalesReturn,
    SalesReturnLine,
)
from src.lifecycle.definitions import SALES_INVOICE, SALES_RETURN
from src.lifecycle.gateway import Eligibility, TransitionResult
from src.repositories.inventory import LocationRepository, StockRepository
from src.repositories.sales import CustomerRepository, SalesInvoiceRepository, SalesReturnRepository
from src.schemas.sales import CustomerCreate, PaymentBody, SalesInvoiceCreate, SalesReturnCreate
from src.services import guards
from src.services.base import TransitionRequest
from src.services.lifecycle import DocumentService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

_PAYMENT_ACTIONS = {"COLLECT_PARTIAL", "COLLECT_ALL"}


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class SalesService(DocumentService):
    """Customers and their ledger, sales invoices with collections, and customer returns."""

    def __init__(self, session, actor, gateway=None) -> None:
        super().__init__(session, actor, gateway)
        self.customers = CustomerRepository(session)
        self.invoices = SalesInvoiceRepository(session)
        self.returns = SalesReturnRepository(session)
        self.locations = LocationRepository(session)
        self.stock = StockRepository(session)

    # Customers

    async def list_customers(self, *, search: Optional[str], limit: int, offset: int) -> List[Customer]:
        return await self.customers.list_customers(search=search, limit=limit, offset=offset)

    # PUBLIC_INTERFACE
    async def create_customer(self, payload: CustomerCreate) -> Customer:
        """Create a customer with a zero balance."""
        if await self.customers.get_by_code(payload.code):
            raise ConflictError(f"Customer with code {payload.code} already exists")
        row = Customer(
            code=payload.code,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            billing_address=payload.billing_address or {},
            credit_limit=payload.credit_limit,
            balance=Decimal("0"),
        )
        self.session.add(row)
        await self.session.flush()
        await self.audit.record(
            entity_type="Customer", entity_id=row.id, action="CREATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json"),
        )
        await self.session.commit()
        return row

    async def get_customer(self, customer_id: UUID) -> Customer:
        customer = await self.customers.get_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": str(customer_id)})
        return customer

    async def customer_ledger(self, customer_id: UUID, *, limit: int, offset: int) -> List[CustomerLedgerEntry]:
        await self.get_customer(customer_id)
        return await self.customers.ledger(customer_id, mode=self.actor.view_mode, limit=limit, offset=offset)

    async def customer_balance(self, customer: Customer) -> Decimal:
        return await self.customers.balance(customer, self.actor.view_mode)

    async def _locked_customer(self, customer_id: UUID) -> Customer:
        customer = await self.customers.get_customer(customer_id, lock=True)
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": str(customer_id)})
        return customer

    # Invoices

    # PUBLIC_INTERFACE
    async def create_invoice(self, payload: SalesInvoiceCreate) -> SalesInvoice:
        """Create an invoice in BORRADOR; line totals, tax and total are computed here."""
        self._ensure_can_create(SALES_INVOICE, payload.doc_type)
        await self.get_customer(payload.customer_id)

        lines: List[SalesInvoiceLine] = []
        subtotal = tax = Decimal("0")
        for i, ln in enumerate(payload.lines, start=1):
            net = _money(ln.quantity * ln.unit_price)
            line_tax = _money(net * ln.tax_rate)
            subtotal += net
            tax += line_tax
            lines.append(
                SalesInvoiceLine(
                    line_no=i,
                    item_sku=ln.item_sku,
                    description=ln.description,
                    quantity=ln.quantity,
                    unit_price=ln.unit_price,
                    tax_rate=ln.tax_rate,
                    line_total=net + line_tax,
                )
            )
        invoice = SalesInvoice(
            invoice_number=await self._next_number(SalesInvoice, "FV"),
            customer_id=payload.customer_id,
            status="BORRADOR",
            doc_type=payload.doc_type,
            due_date=payload.due_date,
            currency=payload.currency,
            notes=payload.notes,
            subtotal=subtotal,
            tax_amount=tax,
            total=subtotal + tax,
            balance_due=Decimal("0"),
            created_by=self.actor.user_id,
            lines=lines,
        )
        self.session.add(invoice)
        await self._record_creation(
            SALES_INVOICE, invoice, {"invoice_number": invoice.invoice_number, "total": str(invoice.total)}
        )
        return invoice

    async def list_invoices(
        self, *, customer_id: Optional[UUID], status: Optional[str], limit: int, offset: int
    ) -> List[SalesInvoice]:
        return await self.invoices.list_invoices(
            mode=self.actor.view_mode, customer_id=customer_id, status=status, limit=limit, offset=offset
        )

    async def get_invoice(self, invoice_id: UUID) -> SalesInvoice:
        return self._ensure_visible(await self.invoices.get_invoice(invoice_id), "Sales invoice")

    async def list_payments(self, invoice_id: UUID) -> List[CustomerPayment]:
        await self.get_invoice(invoice_id)
        return await self.invoices.list_payments(invoice_id)

    def _invoice_checks(self, invoice: SalesInvoice):
        async def issuable() -> Eligibility:
            return guards.invoice_issuable(invoice)

        async def voidable() -> Eligibility:
            return guards.invoice_voidable(invoice)

        async def overdue() -> Eligibility:
            return guards.invoice_overdue(invoice, self.gateway.now().date())

        return {"ISSUE": issuable, "VOID": voidable, "MARK_OVERDUE": overdue}

    async def invoice_actions(self, invoice_id: UUID) -> List[dict]:
        invoice = await self.get_invoice(invoice_id)
        return await self._action_checks(invoice, SALES_INVOICE, self._invoice_checks(invoice))

    # PUBLIC_INTERFACE
    async def transition_invoice(self, invoice_id: UUID, action: str, req: TransitionRequest) -> TransitionResult:
        """
        Run a lifecycle action on an invoice.

        ISSUE posts the total to the customer's account; VOID of an issued
        invoice posts a reversing credit for the outstanding balance.
        """
        if action in _PAYMENT_ACTIONS:
            raise ValidationFailedError(f"Use the payments endpoint for {action}")
        invoice = await self.get_invoice(invoice_id)
        checks = self._invoice_checks(invoice)

        async def check() -> Eligibility:
            fn = checks.get(action)
            return await fn() if fn else Eligibility.ok()

        async def apply(target: str) -> None:
            if action == "ISSUE":
                customer = await self._locked_customer(invoice.customer_id)
                invoice.issue_date = self.gateway.now().date()
                invoice.balance_due = invoice.total
                await self.customers.post_entry(
                    customer,
                    entry_type="INVOICE",
                    debit=Decimal(invoice.total),
                    ref_type=SALES_INVOICE,
                    ref_id=invoice.id,
                    description=f"Invoice {invoice.invoice_number}",
                    doc_type=invoice.doc_type,
                )
            elif action == "VOID":
                customer = await self._locked_customer(invoice.customer_id)
                outstanding = Decimal(invoice.balance_due)
                invoice.balance_due = Decimal("0")
                if outstanding > 0:
                    await self.customers.post_entry(
                        customer,
                        entry_type="VOID",
                        credit=outstanding,
                        ref_type=SALES_INVOICE,
                        ref_id=invoice.id,
                        description=f"Void of invoice {invoice.invoice_number}",
                        doc_type=invoice.doc_type,
                    )

        return await self._transition(invoice, SALES_INVOICE, action, req, apply=apply, check=check)

    # PUBLIC_INTERFACE
    async def register_payment(self, invoice_id: UUID, payload: PaymentBody, req: TransitionRequest) -> TransitionResult:
        """
        Apply a collection to an invoice.

        The action is COLLECT_ALL when the payment settles the balance and
        COLLECT_PARTIAL otherwise; overpayments are refused.
        """
        invoice = await self.get_invoice(invoice_id)
        amount = Decimal(payload.amount)
        action, precheck = guards.payment_action(invoice, amount)
        if not precheck.eligible and precheck.code == "INVALID_AMOUNT":
            raise ValidationFailedError(precheck.reason or "Invalid amount")

        async def check() -> Eligibility:
            current_action, result = guards.payment_action(invoice, amount)
            if result.eligible and current_action != action:
                return Eligibility.refuse("Invoice balance changed while collecting; retry", code="INVOICE_CHANGED")
            return result

        async def apply(target: str) -> None:
            customer = await self._locked_customer(invoice.customer_id)
            payment = CustomerPayment(
                customer_id=invoice.customer_id,
                sales_invoice_id=invoice.id,
                amount=amount,
                payment_date=payload.payment_date or self.gateway.now().date(),
                method=payload.method,
                reference=payload.reference,
                created_by=self.actor.user_id,
            )
            self.session.add(payment)
            await self.session.flush()
            invoice.balance_due = Decimal(invoice.balance_due) - amount
            await self.customers.post_entry(
                customer,
                entry_type="PAYMENT",
                credit=amount,
                ref_type="CustomerPayment",
                ref_id=payment.id,
                description=f"Collection on invoice {invoice.invoice_number}",
                doc_type=invoice.doc_type,
            )

        req.metadata.setdefault("amount", str(amount))
        if payload.reference:
            req.metadata.setdefault("reference", payload.reference)
        return await self._transition(invoice, SALES_INVOICE, action, req, apply=apply, check=check)

    # Customer returns

    # PUBLIC_INTERFACE
    async def create_sales_return(self, payload: SalesReturnCreate) -> SalesReturn:
        """Register a customer return in PENDIENTE_REVISION."""
        self._ensure_can_create(SALES_RETURN, payload.doc_type)
        await self.get_customer(payload.customer_id)
        if await self.locations.get_location(payload.location_id) is None:
            raise NotFoundError("Location not found", details={"location_id": str(payload.location_id)})
        if payload.sales_invoice_id:
            invoice = await self.get_invoice(payload.sales_invoice_id)
            if invoice.customer_id != payload.customer_id:
                raise ValidationFailedError("Invoice belongs to a different customer")

        doc = SalesReturn(
            return_number=await self._next_number(SalesReturn, "DC"),
            customer_id=payload.customer_id,
            sales_invoice_id=payload.sales_invoice_id,
            location_id=payload.location_id,
            status="PENDIENTE_REVISION",
            doc_type=payload.doc_type,
            reason=payload.reason,
            credit_amount=sum((_money(ln.quantity * ln.unit_price) for ln in payload.lines), Decimal("0")),
            created_by=self.actor.user_id,
            lines=[
                SalesReturnLine(line_no=i, item_sku=ln.item_sku, quantity=ln.quantity, unit_price=ln.unit_price)
                for i, ln in enumerate(payload.lines, start=1)
            ],
        )
        self.session.add(doc)
        await self._record_creation(SALES_RETURN, doc, {"return_number": doc.return_number})
        return doc

    async def list_sales_returns(
        self, *, customer_id: Optional[UUID], status: Optional[str], limit: int, offset: int
    ) -> List[SalesReturn]:
        return await self.returns.list_returns(
            mode=self.actor.view_mode, customer_id=customer_id, status=status, limit=limit, offset=offset
        )

    async def get_sales_return(self, return_id: UUID) -> SalesReturn:
        return self._ensure_visible(await self.returns.get_return(return_id), "Sales return")

    async def sales_return_actions(self, return_id: UUID) -> List[dict]:
        doc = await self.get_sales_return(return_id)
        return await self._action_checks(doc, SALES_RETURN)

    # PUBLIC_INTERFACE
    async def transition_sales_return(self, return_id: UUID, action: str, req: TransitionRequest) -> TransitionResult:
        """PROCESS puts the goods back in stock and credits the customer's account."""
        doc = await self.get_sales_return(return_id)

        async def apply(target: str) -> None:
            if action != "PROCESS":
                return
            for ln in doc.lines:
                await self.stock.move(
                    location_id=doc.location_id,
                    item_sku=ln.item_sku,
                    quantity=Decimal(ln.quantity),
                    movement_type="RETURN_IN",
                    ref_type=SALES_RETURN,
                    ref_id=doc.id,
                    user_id=self.actor.user_id,
                )
            credit = Decimal(doc.credit_amount or 0)
            if credit > 0:
                customer = await self._locked_customer(doc.customer_id)
                await self.customers.post_entry(
                    customer,
                    entry_type="RETURN",
                    credit=credit,
                    ref_type=SALES_RETURN,
                    ref_id=doc.id,
                    description=f"Customer return {doc.return_number}",
                    doc_type=doc.doc_type,
                )

        return await self._transition(doc, SALES_RETURN, action, req, apply=apply)