from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_actor, get_tenant_session, require_permission
from src.lifecycle.definitions import PURCHASE_ORDER, PURCHASE_RETURN
from src.schemas.lifecycle import (
    ActionCheckRead,
    TransitionBody,
    TransitionLogRead,
    TransitionResultRead,
    action_enum,
)
from src.schemas.procurement import (
    GoodsReceiptBody,
    PurchaseOrderCreate,
    PurchaseOrderRead,
    PurchaseReturnCreate,
    PurchaseReturnRead,
    ReturnResolutionBody,
    SupplierCreate,
    SupplierRead,
)
from src.services.base import Actor
from src.services.procurement import ProcurementService

router = APIRouter(prefix="/procurement", tags=["Procurement"])

PurchaseOrderAction = action_enum("PurchaseOrderAction", PURCHASE_ORDER, exclude={"RECEIVE_PARTIAL", "RECEIVE_ALL"})
PurchaseReturnAction = action_enum("PurchaseReturnAction", PURCHASE_RETURN, exclude={"RESOLVE"})


# PUBLIC_INTERFACE
async def get_procurement_service(
    session: AsyncSession = Depends(get_tenant_session),
    actor: Actor = Depends(get_actor),
) -> ProcurementService:
    """Request-scoped ProcurementService bound to the tenant session and current actor."""
    return ProcurementService(session, actor)


# PUBLIC_INTERFACE
@router.get(
    "/suppliers",
    response_model=List[SupplierRead],
    summary="List suppliers",
    description="Return suppliers for the tenant ordered by code.",
    dependencies=[Depends(require_permission("compras.ordenes.view", "compras.proveedores.manage"))],
)
async def list_suppliers(
    svc: ProcurementService = Depends(get_procurement_service),
    search: Optional[str] = Query(None, description="Filter by code or name (substring)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[SupplierRead]:
    items = await svc.list_suppliers(search=search, limit=limit, offset=offset)
    return [SupplierRead.model_validate(x) for x in items]


# PUBLIC_INTERFACE
@router.post(
    "/suppliers",
    response_model=SupplierRead,
    status_code=201,
    summary="Create supplier",
    description="Create a new supplier within the tenant scope.",
    dependencies=[Depends(require_permission("compras.proveedores.manage"))],
)
async def create_supplier(
    payload: SupplierCreate,
    svc: ProcurementService = Depends(get_procurement_service),
) -> SupplierRead:
    created = await svc.create_supplier(payload)
    return SupplierRead.model_validate(created)


# PUBLIC_INTERFACE
@router.get(
    "/purchase-orders",
    response_model=List[PurchaseOrderRead],
    summary="List purchase orders",
    description="Return purchase orders visible in the current view mode, newest first.",
    dependencies=[Depends(require_permission("compras.ordenes.view"))],
)
async def list_purchase_orders(
    svc: ProcurementService = Depends(get_procurement_service),
    supplier_id: Optional[UUID] = Query(None, description="Filter by supplier id"),
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[PurchaseOrderRead]:
    rows = await svc.list_purchase_orders(supplier_id=supplier_id, status=status, limit=limit, offset=offset)
    return [PurchaseOrderRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/purchase-orders",
    response_model=PurchaseOrderRead,
    status_code=201,
    summary="Create purchase order",
    description="Create a purchase order in BORRADOR with its lines.",
)
async def create_purchase_order(
    payload: PurchaseOrderCreate,
    svc: ProcurementService = Depends(get_procurement_service),
) -> PurchaseOrderRead:
    created = await svc.create_purchase_order(payload)
    return PurchaseOrderRead.model_validate(created)


# PUBLIC_INTERFACE
@router.get(
    "/purchase-orders/{po_id}",
    response_model=PurchaseOrderRead,
    summary="Get purchase order",
    dependencies=[Depends(require_permission("compras.ordenes.view"))],
)
async def get_purchase_order(
    po_id: UUID = Path(..., description="Purchase order id"),
    svc: ProcurementService = Depends(get_procurement_service),
) -> PurchaseOrderRead:
    return PurchaseOrderRead.model_validate(await svc.get_purchase_order(po_id))


# PUBLIC_INTERFACE
@router.get(
    "/purchase-orders/{po_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available purchase order actions",
    description="Dry-run every action offered by the order's status for the current user.",
    dependencies=[Depends(require_permission("compras.ordenes.view"))],
)
async def purchase_order_actions(
    po_id: UUID = Path(...),
    svc: ProcurementService = Depends(get_procurement_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.purchase_order_actions(po_id)]


# PUBLIC_INTERFACE
@router.get(
    "/purchase-orders/{po_id}/history",
    response_model=List[TransitionLogRead],
    summary="Purchase order history",
    dependencies=[Depends(require_permission("compras.ordenes.view"))],
)
async def purchase_order_history(
    po_id: UUID = Path(...),
    svc: ProcurementService = Depends(get_procurement_service),
) -> List[TransitionLogRead]:
    order = await svc.get_purchase_order(po_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(PURCHASE_ORDER, order)]


# PUBLIC_INTERFACE
@router.post(
    "/purchase-orders/{po_id}/receive",
    response_model=TransitionResultRead,
    summary="Receive goods",
    description="Receive quantities per line; moves the order to PARCIALMENTE_RECIBIDA or COMPLETADA and adds stock.",
)
async def receive_goods(
    payload: GoodsReceiptBody,
    po_id: UUID = Path(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: ProcurementService = Depends(get_procurement_service),
) -> TransitionResultRead:
    quantities = {ln.line_no: ln.quantity for ln in payload.lines}
    result = await svc.receive_goods(po_id, quantities, payload.location_id, payload.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.post(
    "/purchase-orders/{po_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition purchase order",
    description="Run a lifecycle action (submit, approve, reject, revise, send, confirm, close, cancel, void).",
)
async def transition_purchase_order(
    body: TransitionBody,
    po_id: UUID = Path(...),
    action: PurchaseOrderAction = Path(..., description="Action to perform"),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: ProcurementService = Depends(get_procurement_service),
) -> TransitionResultRead:
    result = await svc.transition_purchase_order(po_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.get(
    "/returns",
    response_model=List[PurchaseReturnRead],
    summary="List returns to suppliers",
    dependencies=[Depends(require_permission("compras.devoluciones.view"))],
)
async def list_purchase_returns(
    svc: ProcurementService = Depends(get_procurement_service),
    supplier_id: Optional[UUID] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[PurchaseReturnRead]:
    rows = await svc.list_purchase_returns(supplier_id=supplier_id, status=status, limit=limit, offset=offset)
    return [PurchaseReturnRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/returns",
    response_model=PurchaseReturnRead,
    status_code=201,
    summary="Create return to supplier",
)
async def create_purchase_return(
    payload: PurchaseReturnCreate,
    svc: ProcurementService = Depends(get_procurement_service),
) -> PurchaseReturnRead:
    return PurchaseReturnRead.model_validate(await svc.create_purchase_return(payload))


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}",
    response_model=PurchaseReturnRead,
    summary="Get return to supplier",
    dependencies=[Depends(require_permission("compras.devoluciones.view"))],
)
async def get_purchase_return(
    return_id: UUID = Path(...),
    svc: ProcurementService = Depends(get_procurement_service),
) -> PurchaseReturnRead:
    return PurchaseReturnRead.model_validate(await svc.get_purchase_return(return_id))


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available return actions",
    dependencies=[Depends(require_permission("compras.devoluciones.view"))],
)
async def purchase_return_actions(
    return_id: UUID = Path(...),
    svc: ProcurementService = Depends(get_procurement_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.purchase_return_actions(return_id)]


# PUBLIC_INTERFACE
@router.get(
    "/returns/{return_id}/history",
    response_model=List[TransitionLogRead],
    summary="Return history",
    dependencies=[Depends(require_permission("compras.devoluciones.view"))],
)
async def purchase_return_history(
    return_id: UUID = Path(...),
    svc: ProcurementService = Depends(get_procurement_service),
) -> List[TransitionLogRead]:
    doc = await svc.get_purchase_return(return_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(PURCHASE_RETURN, doc)]


# PUBLIC_INTERFACE
@router.post(
    "/returns/{return_id}/resolve",
    response_model=TransitionResultRead,
    summary="Resolve return",
    description="Close the return with a resolution (credit note, replacement, repair...).",
)
async def resolve_purchase_return(
    payload: ReturnResolutionBody,
    return_id: UUID = Path(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: ProcurementService = Depends(get_procurement_service),
) -> TransitionResultRead:
    result = await svc.transition_purchase_return(
        return_id, "RESOLVE", payload.to_request(idempotency_key), resolution=payload.resolution
    )
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.post(
    "/returns/{return_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition return to supplier",
    description="Run a lifecycle action (request, supplier-approve, ship, supplier-receive, evaluate, reject, cancel).",
)
async def transition_purchase_return(
    body: TransitionBody,
    return_id: UUID = Path(...),
    action: PurchaseReturnAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: ProcurementService = Depends(get_procurement_service),
) -> TransitionResultRead:
    result = await svc.transition_purchase_return(return_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)
