from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_actor, get_tenant_session, require_permission
from src.lifecycle.definitions import STOCK_ADJUSTMENT
from src.schemas.inventory import (
    InventoryTransactionRead,
    LocationCreate,
    LocationRead,
    StockAdjustmentCreate,
    StockAdjustmentRead,
    StockLevelRead,
)
from src.schemas.lifecycle import (
    ActionCheckRead,
    TransitionBody,
    TransitionLogRead,
    TransitionResultRead,
    action_enum,
)
from src.services.base import Actor
from src.services.inventory import InventoryService

router = APIRouter(prefix="/inventory", tags=["Inventory"])

StockAdjustmentAction = action_enum("StockAdjustmentAction", STOCK_ADJUSTMENT)

_VIEW = Depends(require_permission("compras.stock.view"))


# PUBLIC_INTERFACE
async def get_inventory_service(
    session: AsyncSession = Depends(get_tenant_session),
    actor: Actor = Depends(get_actor),
) -> InventoryService:
    """Request-scoped InventoryService."""
    return InventoryService(session, actor)


# PUBLIC_INTERFACE
@router.get(
    "/locations",
    response_model=List[LocationRead],
    summary="List inventory locations",
    description="List inventory locations for the current tenant ordered by code.",
    dependencies=[_VIEW],
)
async def list_locations(
    svc: InventoryService = Depends(get_inventory_service),
    limit: int = Query(100, ge=1, le=1000, description="Max records"),
    offset: int = Query(0, ge=0, description="Records to skip"),
) -> List[LocationRead]:
    """
    Return tenant-scoped inventory locations.

    Returns:
        List[LocationRead]: Locations ordered by code.
    """
    records = await svc.list_locations(limit=limit, offset=offset)
    return [LocationRead.model_validate(r) for r in records]


# PUBLIC_INTERFACE
@router.post(
    "/locations",
    response_model=LocationRead,
    status_code=201,
    summary="Create location",
    dependencies=[Depends(require_permission("compras.stock.manage"))],
)
async def create_location(
    payload: LocationCreate,
    svc: InventoryService = Depends(get_inventory_service),
) -> LocationRead:
    return LocationRead.model_validate(await svc.create_location(payload))


# PUBLIC_INTERFACE
@router.get(
    "/stock",
    response_model=List[StockLevelRead],
    summary="List stock levels",
    description="On-hand quantities per location and item.",
    dependencies=[_VIEW],
)
async def list_stock(
    svc: InventoryService = Depends(get_inventory_service),
    location_id: Optional[UUID] = Query(None, description="Filter by location"),
    item_sku: Optional[str] = Query(None, description="Filter by item SKU"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[StockLevelRead]:
    rows = await svc.list_stock(location_id=location_id, item_sku=item_sku, limit=limit, offset=offset)
    return [StockLevelRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.get(
    "/transactions",
    response_model=List[InventoryTransactionRead],
    summary="List inventory transactions",
    description="List recent inventory movements for the tenant ordered by created_at desc.",
    dependencies=[_VIEW],
)
async def list_transactions(
    svc: InventoryService = Depends(get_inventory_service),
    location_id: Optional[UUID] = Query(None),
    item_sku: Optional[str] = Query(None),
    ref_id: Optional[UUID] = Query(None, description="Filter by the document that caused the movement"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[InventoryTransactionRead]:
    rows = await svc.list_movements(
        location_id=location_id, item_sku=item_sku, ref_id=ref_id, limit=limit, offset=offset
    )
    return [InventoryTransactionRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.get(
    "/adjustments",
    response_model=List[StockAdjustmentRead],
    summary="List stock adjustments",
    dependencies=[_VIEW],
)
async def list_adjustments(
    svc: InventoryService = Depends(get_inventory_service),
    status: Optional[str] = Query(None),
    location_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[StockAdjustmentRead]:
    rows = await svc.list_adjustments(status=status, location_id=location_id, limit=limit, offset=offset)
    return [StockAdjustmentRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/adjustments",
    response_model=StockAdjustmentRead,
    status_code=201,
    summary="Create stock adjustment",
    description="Create an adjustment in BORRADOR; stock is only changed when it is approved.",
)
async def create_adjustment(
    payload: StockAdjustmentCreate,
    svc: InventoryService = Depends(get_inventory_service),
) -> StockAdjustmentRead:
    return StockAdjustmentRead.model_validate(await svc.create_adjustment(payload))


# PUBLIC_INTERFACE
@router.get(
    "/adjustments/{adjustment_id}",
    response_model=StockAdjustmentRead,
    summary="Get stock adjustment",
    dependencies=[_VIEW],
)
async def get_adjustment(
    adjustment_id: UUID = Path(...),
    svc: InventoryService = Depends(get_inventory_service),
) -> StockAdjustmentRead:
    return StockAdjustmentRead.model_validate(await svc.get_adjustment(adjustment_id))


# PUBLIC_INTERFACE
@router.get(
    "/adjustments/{adjustment_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available adjustment actions",
    dependencies=[_VIEW],
)
async def adjustment_actions(
    adjustment_id: UUID = Path(...),
    svc: InventoryService = Depends(get_inventory_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.adjustment_actions(adjustment_id)]


# PUBLIC_INTERFACE
@router.get(
    "/adjustments/{adjustment_id}/history",
    response_model=List[TransitionLogRead],
    summary="Adjustment history",
    dependencies=[_VIEW],
)
async def adjustment_history(
    adjustment_id: UUID = Path(...),
    svc: InventoryService = Depends(get_inventory_service),
) -> List[TransitionLogRead]:
    doc = await svc.get_adjustment(adjustment_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(STOCK_ADJUSTMENT, doc)]


# PUBLIC_INTERFACE
@router.post(
    "/adjustments/{adjustment_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition stock adjustment",
    description="Run a lifecycle action (submit, approve, reject, void). Approve applies the deltas to stock.",
)
async def transition_adjustment(
    body: TransitionBody,
    adjustment_id: UUID = Path(...),
    action: StockAdjustmentAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: InventoryService = Depends(get_inventory_service),
) -> TransitionResultRead:
    result = await svc.transition_adjustment(adjustment_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)
