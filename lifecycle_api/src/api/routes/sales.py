from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_actor, get_tenant_session, require_permission
from src.lifecycle.definitions import SALES_INVOICE, SALES_RETURN
from src.schemas.lifecycle import (
    ActionCheckRead,
    TransitionBody,
    TransitionLogRead,
    TransitionResultRead,
    action_enum,
)
from src.schemas.sales import (
    CustomerCreate,
    CustomerRead,
    LedgerEntryRead,
    PaymentBody,
    PaymentRead,
    SalesInvoiceCreate,
    SalesInvoiceRead,
    SalesReturnCreate,
    SalesReturnRead,
)
from src.services.base import Actor
from src.services.sales import SalesService

router = APIRouter(prefix="/sales", tags=["Sales"])

SalesInvoiceAction = action_enum("SalesInvoiceAction", SALES_INVOICE, exclude={"COLLECT_PARTIAL", "COLLECT_ALL"})
SalesReturnAction = action_enum("SalesReturnAction", SALES_RETURN)

_VIEW_INVOICES = Depends(require_permission("ventas.facturas.view"))
_VIEW_RETURNS = Depends(require_permission("ventas.devoluciones.view"))


# PUBLIC_INTERFACE
async def get_sales_service(
    session: AsyncSession = Depends(get_tenant_session),
    actor: Actor = Depends(get_actor),
) -> SalesService:
    """Request-scoped SalesService."""
    return SalesService(session, actor)


async def _customer_read(svc: SalesService, customer) -> CustomerRead:
    read = CustomerRead.model_validate(customer)
    return read.model_copy(update={"balance": float(await svc.customer_balance(customer))})


# PUBLIC_INTERFACE
@router.get(
    "/customers",
    response_model=List[CustomerRead],
    summary="List customers",
    dependencies=[Depends(require_permission("ventas.facturas.view", "ventas.clientes.manage"))],
)
async def list_customers(
    svc: SalesService = Depends(get_sales_service),
    search: Optional[str] = Query(None, description="Filter by code or name (substring)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[CustomerRead]:
    rows = await svc.list_customers(search=search, limit=limit, offset=offset)
    return [await _customer_read(svc, x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/customers",
    response_model=CustomerRead,
    status_code=201,
    summary="Create customer",
    dependencies=[Depends(require_permission("ventas.clientes.manage"))],
)
async def create_customer(
    payload: CustomerCreate,
    svc: SalesService = Depends(get_sales_service),
) -> CustomerRead:
    return CustomerRead.model_validate(await svc.create_customer(payload))


# PUBLIC_INTERFACE
@router.get(
    "/customers/{customer_id}",
    response_model=CustomerRead,
    summary="Get customer",
    dependencies=[Depends(require_permission("ventas.facturas.view", "ventas.clientes.manage"))],
)
async def get_customer(
    customer_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> CustomerRead:
    return await _customer_read(svc, await svc.get_customer(customer_id))


# PUBLIC_INTERFACE
@router.get(
    "/customers/{customer_id}/ledger",
    response_model=List[LedgerEntryRead],
    summary="Customer ledger",
    description="Account movements (invoices, collections, voids, returns) oldest first.",
    dependencies=[_VIEW_INVOICES],
)
async def customer_ledger(
    customer_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[LedgerEntryRead]:
    rows = await svc.customer_ledger(customer_id, limit=limit, offset=offset)
    return [LedgerEntryRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.get(
    "/invoices",
    response_model=List[SalesInvoiceRead],
    summary="List sales invoices",
    dependencies=[_VIEW_INVOICES],
)
async def list_invoices(
    svc: SalesService = Depends(get_sales_service),
    customer_id: Optional[UUID] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[SalesInvoiceRead]:
    rows = await svc.list_invoices(customer_id=customer_id, status=status, limit=limit, offset=offset)
    return [SalesInvoiceRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/invoices",
    response_model=SalesInvoiceRead,
    status_code=201,
    summary="Create sales invoice",
    description="Create an invoice in BORRADOR; totals are computed from the lines.",
)
async def create_invoice(
    payload: SalesInvoiceCreate,
    svc: SalesService = Depends(get_sales_service),
) -> SalesInvoiceRead:
    return SalesInvoiceRead.model_validate(await svc.create_invoice(payload))


# PUBLIC_INTERFACE
@router.get(
    "/invoices/{invoice_id}",
    response_model=SalesInvoiceRead,
    summary="Get sales invoice",
    dependencies=[_VIEW_INVOICES],
)
async def get_invoice(
    invoice_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> SalesInvoiceRead:
    return SalesInvoiceRead.model_validate(await svc.get_invoice(invoice_id))


# PUBLIC_INTERFACE
@router.get(
    "/invoices/{invoice_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available invoice actions",
    dependencies=[_VIEW_INVOICES],
)
async def invoice_actions(
    invoice_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.invoice_actions(invoice_id)]


# PUBLIC_INTERFACE
@router.get(
    "/invoices/{invoice_id}/history",
    response_model=List[TransitionLogRead],
    summary="Invoice history",
    dependencies=[_VIEW_INVOICES],
)
async def invoice_history(
    invoice_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> List[TransitionLogRead]:
    invoice = await svc.get_invoice(invoice_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(SALES_INVOICE, invoice)]


# PUBLIC_INTERFACE
@router.get(
    "/invoices/{invoice_id}/payments",
    response_model=List[PaymentRead],
    summary="Invoice payments",
    dependencies=[_VIEW_INVOICES],
)
async def list_payments(
    invoice_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> List[PaymentRead]:
    return [PaymentRead.model_validate(x) for x in await svc.list_payments(invoice_id)]


# PUBLIC_INTERFACE
@router.post(
    "/invoices/{invoice_id}/payments",
    response_model=TransitionResultRead,
    summary="Register payment",
    description=(
        "Collect an amount against the invoice. Settling the balance moves it to COBRADA, "
        "otherwise to PARCIALMENTE_COBRADA. Send an Idempotency-Key to make retries safe."
    ),
)
async def register_payment(
    payload: PaymentBody,
    invoice_id: UUID = Path(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: SalesService = Depends(get_sales_service),
) -> TransitionResultRead:
    result = await svc.register_payment(invoice_id, payload, payload.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.post(
    "/invoices/{invoice_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition sales invoice",
    description="Run a lifecycle action (issue, send, mark-overdue, void).",
)
async def transition_invoice(
    body: TransitionBody,
    invoice_id: UUID = Path(...),
    action: SalesInvoiceAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: SalesService = Depends(get_sales_service),
) -> TransitionResultRead:
    result = await svc.transition_invoice(invoice_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.get(
    "/returns",
    response_model=List[SalesReturnRead],
    summary="List customer returns",
    dependencies=[_VIEW_RETURNS],
)
async def list_sales_returns(
    svc: SalesService = Depends(get_sales_service),
    customer_id: Optional[UUID] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[SalesReturnRead]:
    rows = await svc.list_sales_returns(customer_id=customer_id, status=status, limit=limit, offset=offset)
    return [SalesReturnRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/returns",
    response_model=SalesReturnRead,
    status_code=201,
    summary="Register customer return",
)
async def create_sales_return(
    payload: SalesReturnCreate,
    svc: SalesService = Depends(get_sales_service),
) -> SalesReturnRead:
    return SalesReturnRead.model_validate(await svc.create_sales_return(payload))


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}",
    response_model=SalesReturnRead,
    summary="Get customer return",
    dependencies=[_VIEW_RETURNS],
)
async def get_sales_return(
    return_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> SalesReturnRead:
    return SalesReturnRead.model_validate(await svc.get_sales_return(return_id))


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available customer return actions",
    dependencies=[_VIEW_RETURNS],
)
async def sales_return_actions(
    return_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.sales_return_actions(return_id)]


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}/history",
    response_model=List[TransitionLogRead],
    summary="Customer return history",
    dependencies=[_VIEW_RETURNS],
)
async def sales_return_history(
    return_id: UUID = Path(...),
    svc: SalesService = Depends(get_sales_service),
) -> List[TransitionLogRead]:
    doc = await svc.get_sales_return(return_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(SALES_RETURN, doc)]


# PUBLIC_INTERFACE
@router.post(
    "/returns/{return_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition customer return",
    description="Accept, reject or process a customer return. Processing restocks the goods and credits the customer.",
)
async def transition_sales_return(
    body: TransitionBody,
    return_id: UUID = Path(...),
    action: SalesReturnAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: SalesService = Depends(get_sales_service),
) -> TransitionResultRead:
    result = await svc.transition_sales_return(return_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)
