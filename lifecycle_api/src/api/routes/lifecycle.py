from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_current_active_user, get_tenant_id, get_tenant_session, get_view_mode, require_permission
from src.core.security import WILDCARD_PERMISSION
from src.core.view_mode import ViewMode
from src.schemas.lifecycle import (
    IntegrityReport,
    MachineRead,
    SoDRuleConfigRead,
    SoDRuleConfigUpsert,
    TransitionLogRead,
)
from src.services.lifecycle import LifecycleService

router = APIRouter(prefix="/lifecycle", tags=["Lifecycle"])

_VIEW = Depends(require_permission("lifecycle.view"))


# PUBLIC_INTERFACE
async def get_lifecycle_service(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    view_mode: ViewMode = Depends(get_view_mode),
) -> LifecycleService:
    """Request-scoped LifecycleService bound to the caller's view mode."""
    return LifecycleService(session, tenant_id, view_mode)


# PUBLIC_INTERFACE
@router.get(
    "/machines",
    response_model=List[MachineRead],
    summary="State machine catalogue",
    description="Every document family with its states, transitions, permissions, reason codes and SoD rules.",
    dependencies=[_VIEW],
)
async def list_machines(svc: LifecycleService = Depends(get_lifecycle_service)) -> List[MachineRead]:
    return [MachineRead(**m) for m in svc.machines()]


# PUBLIC_INTERFACE
@router.get(
    "/machines/{entity_type}",
    response_model=MachineRead,
    summary="State machine detail",
    dependencies=[_VIEW],
)
async def get_machine(
    entity_type: str = Path(..., description="e.g. PurchaseOrder, PermitToWork"),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> MachineRead:
    return MachineRead(**svc.machine(entity_type))


# PUBLIC_INTERFACE
@router.get(
    "/history/{entity_type}/{entity_id}",
    response_model=List[TransitionLogRead],
    summary="Transition history",
    description="Every logged transition of a document, oldest first.",
    dependencies=[_VIEW],
)
async def document_history(
    entity_type: str = Path(...),
    entity_id: UUID = Path(...),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> List[TransitionLogRead]:
    return [TransitionLogRead.model_validate(e) for e in await svc.history(entity_type, entity_id)]


# PUBLIC_INTERFACE
@router.get(
    "/verify/{entity_type}/{entity_id}",
    response_model=IntegrityReport,
    summary="Verify integrity chain",
    description="Re-compute the hash chain of a document's transition log and report the first broken entry.",
    dependencies=[_VIEW],
)
async def verify_document(
    entity_type: str = Path(...),
    entity_id: UUID = Path(...),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> IntegrityReport:
    return IntegrityReport(**await svc.verify(entity_type, entity_id))


# PUBLIC_INTERFACE
@router.get(
    "/sod-rules",
    response_model=List[SoDRuleConfigRead],
    summary="Tenant SoD rules",
    description="Segregation-of-duties rules configured for the tenant, on top of the built-in ones.",
    dependencies=[_VIEW],
)
async def list_sod_rules(
    entity_type: Optional[str] = Query(None),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> List[SoDRuleConfigRead]:
    return [SoDRuleConfigRead.model_validate(r) for r in await svc.list_sod_rules(entity_type)]


# PUBLIC_INTERFACE
@router.put(
    "/sod-rules",
    response_model=SoDRuleConfigRead,
    summary="Create or update a tenant SoD rule",
    dependencies=[Depends(require_permission(WILDCARD_PERMISSION))],
)
async def upsert_sod_rule(
    payload: SoDRuleConfigUpsert,
    svc: LifecycleService = Depends(get_lifecycle_service),
    user=Depends(get_current_active_user),
) -> SoDRuleConfigRead:
    rule = await svc.upsert_sod_rule(**payload.model_dump(), user_id=user.id)
    return SoDRuleConfigRead.model_validate(rule)
