from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_actor, get_tenant_session, require_permission
from src.lifecycle.definitions import WORK_ORDER
from src.schemas.lifecycle import (
    ActionCheckRead,
    TransitionBody,
    TransitionLogRead,
    TransitionResultRead,
    action_enum,
)
from src.schemas.maintenance import AssetCreate, AssetRead, WorkOrderCreate, WorkOrderRead
from src.services.base import Actor
from src.services.maintenance import MaintenanceService

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])

WorkOrderAction = action_enum("WorkOrderAction", WORK_ORDER)

_VIEW = Depends(require_permission("work_orders.view"))


# PUBLIC_INTERFACE
async def get_maintenance_service(
    session: AsyncSession = Depends(get_tenant_session),
    actor: Actor = Depends(get_actor),
) -> MaintenanceService:
    """Request-scoped MaintenanceService."""
    return MaintenanceService(session, actor)


# PUBLIC_INTERFACE
@router.get("/assets", response_model=List[AssetRead], summary="List assets", dependencies=[_VIEW])
async def list_assets(
    svc: MaintenanceService = Depends(get_maintenance_service),
    search: Optional[str] = Query(None, description="Filter by code or name (substring)"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[AssetRead]:
    return [AssetRead.model_validate(x) for x in await svc.list_assets(search=search, limit=limit, offset=offset)]


# PUBLIC_INTERFACE
@router.post(
    "/assets",
    response_model=AssetRead,
    status_code=201,
    summary="Create asset",
    dependencies=[Depends(require_permission("assets.manage"))],
)
async def create_asset(
    payload: AssetCreate,
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> AssetRead:
    return AssetRead.model_validate(await svc.create_asset(payload))


# PUBLIC_INTERFACE
@router.get("/work-orders", response_model=List[WorkOrderRead], summary="List work orders", dependencies=[_VIEW])
async def list_work_orders(
    svc: MaintenanceService = Depends(get_maintenance_service),
    status: Optional[str] = Query(None),
    asset_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[WorkOrderRead]:
    rows = await svc.list_work_orders(status=status, asset_id=asset_id, limit=limit, offset=offset)
    return [WorkOrderRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/work-orders",
    response_model=WorkOrderRead,
    status_code=201,
    summary="Create work order",
)
async def create_work_order(
    payload: WorkOrderCreate,
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> WorkOrderRead:
    return WorkOrderRead.model_validate(await svc.create_work_order(payload))


# PUBLIC_INTERFACE
@router.get("/work-orders/{work_order_id}", response_model=WorkOrderRead, summary="Get work order", dependencies=[_VIEW])
async def get_work_order(
    work_order_id: UUID = Path(...),
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> WorkOrderRead:
    return WorkOrderRead.model_validate(await svc.get_work_order(work_order_id))


# PUBLIC_INTERFACE
@router.get(
    "/work-orders/{work_order_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available work order actions",
    dependencies=[_VIEW],
)
async def work_order_actions(
    work_order_id: UUID = Path(...),
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.work_order_actions(work_order_id)]


# PUBLIC_INTERFACE
@router.get(
    "/work-orders/{work_order_id}/history",
    response_model=List[TransitionLogRead],
    summary="Work order history",
    dependencies=[_VIEW],
)
async def work_order_history(
    work_order_id: UUID = Path(...),
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> List[TransitionLogRead]:
    work_order = await svc.get_work_order(work_order_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(WORK_ORDER, work_order)]


# PUBLIC_INTERFACE
@router.post(
    "/work-orders/{work_order_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition work order",
    description="Run a lifecycle action (start, hold, resume, complete, cancel).",
)
async def transition_work_order(
    body: TransitionBody,
    work_order_id: UUID = Path(...),
    action: WorkOrderAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: MaintenanceService = Depends(get_maintenance_service),
) -> TransitionResultRead:
    result = await svc.transition_work_order(work_order_id, action.name, body.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)
