from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_actor, get_tenant_session, require_permission
from src.lifecycle.definitions import LOTO_EXECUTION, PERMIT_TO_WORK
from src.schemas.lifecycle import ActionCheckRead, TransitionLogRead, TransitionResultRead, action_enum
from src.schemas.safety import (
    LockReleaseBody,
    LOTOExecuteBody,
    LOTOExecutionRead,
    LOTOProcedureCreate,
    LOTOProcedureRead,
    PermitCreate,
    PermitRead,
    PermitTransitionBody,
    PermitUpdate,
)
from src.services.base import Actor
from src.services.safety import SafetyService

router = APIRouter(prefix="/safety", tags=["Safety"])

PermitAction = action_enum("PermitAction", PERMIT_TO_WORK)

_VIEW_PTW = Depends(require_permission("ptw.view"))
_VIEW_LOTO = Depends(require_permission("loto.view"))


# PUBLIC_INTERFACE
async def get_safety_service(
    session: AsyncSession = Depends(get_tenant_session),
    actor: Actor = Depends(get_actor),
) -> SafetyService:
    """Request-scoped SafetyService."""
    return SafetyService(session, actor)


# PUBLIC_INTERFACE
@router.get(
    "/permits",
    response_model=List[PermitRead],
    summary="List permits to work",
    dependencies=[_VIEW_PTW],
)
async def list_permits(
    svc: SafetyService = Depends(get_safety_service),
    status: Optional[str] = Query(None),
    work_order_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[PermitRead]:
    rows = await svc.list_permits(status=status, work_order_id=work_order_id, limit=limit, offset=offset)
    return [PermitRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/permits",
    response_model=PermitRead,
    status_code=201,
    summary="Create permit to work",
    description="Create a permit in DRAFT. Hazards, control measures and PPE must be listed before submission.",
)
async def create_permit(
    payload: PermitCreate,
    svc: SafetyService = Depends(get_safety_service),
) -> PermitRead:
    return PermitRead.model_validate(await svc.create_permit(payload))


# PUBLIC_INTERFACE
@router.get("/permits/{permit_id}", response_model=PermitRead, summary="Get permit to work", dependencies=[_VIEW_PTW])
async def get_permit(
    permit_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> PermitRead:
    return PermitRead.model_validate(await svc.get_permit(permit_id))


# PUBLIC_INTERFACE
@router.patch(
    "/permits/{permit_id}",
    response_model=PermitRead,
    summary="Edit permit to work",
    description="Only DRAFT and REJECTED permits can be edited.",
)
async def update_permit(
    payload: PermitUpdate,
    permit_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> PermitRead:
    return PermitRead.model_validate(await svc.update_permit(permit_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/permits/{permit_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available permit actions",
    dependencies=[_VIEW_PTW],
)
async def permit_actions(
    permit_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.permit_actions(permit_id)]


# PUBLIC_INTERFACE
@router.get(
    "/permits/{permit_id}/history",
    response_model=List[TransitionLogRead],
    summary="Permit history",
    dependencies=[_VIEW_PTW],
)
async def permit_history(
    permit_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> List[TransitionLogRead]:
    permit = await svc.get_permit(permit_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(PERMIT_TO_WORK, permit)]


# PUBLIC_INTERFACE
@router.post(
    "/permits/{permit_id}/{action}",
    response_model=TransitionResultRead,
    summary="Transition permit to work",
    description=(
        "Run a lifecycle action (submit, approve, reject, revise, activate, suspend, resume, close, expire, cancel). "
        "Activation checks the validity window and, when required, the linked LOTO."
    ),
)
async def transition_permit(
    body: PermitTransitionBody,
    permit_id: UUID = Path(...),
    action: PermitAction = Path(...),  # type: ignore[valid-type]
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: SafetyService = Depends(get_safety_service),
) -> TransitionResultRead:
    result = await svc.transition_permit(
        permit_id, action.name, body.to_request(idempotency_key), closing_notes=body.closing_notes
    )
    return TransitionResultRead.model_validate(result)


# PUBLIC_INTERFACE
@router.get(
    "/loto/procedures",
    response_model=List[LOTOProcedureRead],
    summary="List LOTO procedures",
    dependencies=[_VIEW_LOTO],
)
async def list_procedures(
    svc: SafetyService = Depends(get_safety_service),
    asset_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[LOTOProcedureRead]:
    rows = await svc.list_procedures(asset_id=asset_id, limit=limit, offset=offset)
    return [LOTOProcedureRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.post(
    "/loto/procedures",
    response_model=LOTOProcedureRead,
    status_code=201,
    summary="Create LOTO procedure",
    dependencies=[Depends(require_permission("loto.procedures.create"))],
)
async def create_procedure(
    payload: LOTOProcedureCreate,
    svc: SafetyService = Depends(get_safety_service),
) -> LOTOProcedureRead:
    return LOTOProcedureRead.model_validate(await svc.create_procedure(payload))


# PUBLIC_INTERFACE
@router.get(
    "/loto/procedures/{procedure_id}",
    response_model=LOTOProcedureRead,
    summary="Get LOTO procedure",
    dependencies=[_VIEW_LOTO],
)
async def get_procedure(
    procedure_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> LOTOProcedureRead:
    return LOTOProcedureRead.model_validate(await svc.get_procedure(procedure_id))


# PUBLIC_INTERFACE
@router.post(
    "/loto/procedures/{procedure_id}/approve",
    response_model=LOTOProcedureRead,
    summary="Approve LOTO procedure",
    dependencies=[Depends(require_permission("loto.procedures.approve"))],
)
async def approve_procedure(
    procedure_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> LOTOProcedureRead:
    return LOTOProcedureRead.model_validate(await svc.approve_procedure(procedure_id))


# PUBLIC_INTERFACE
@router.post(
    "/loto/procedures/{procedure_id}/execute",
    response_model=LOTOExecutionRead,
    status_code=201,
    summary="Execute LOTO procedure",
    description="Apply one lock per isolation point; the execution starts LOCKED.",
)
async def execute_procedure(
    payload: LOTOExecuteBody,
    procedure_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> LOTOExecutionRead:
    return LOTOExecutionRead.model_validate(await svc.execute_procedure(procedure_id, payload))


# PUBLIC_INTERFACE
@router.get(
    "/loto/executions",
    response_model=List[LOTOExecutionRead],
    summary="List LOTO executions",
    dependencies=[_VIEW_LOTO],
)
async def list_executions(
    svc: SafetyService = Depends(get_safety_service),
    status: Optional[str] = Query(None),
    work_order_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> List[LOTOExecutionRead]:
    rows = await svc.list_executions(status=status, work_order_id=work_order_id, limit=limit, offset=offset)
    return [LOTOExecutionRead.model_validate(x) for x in rows]


# PUBLIC_INTERFACE
@router.get(
    "/loto/executions/{execution_id}",
    response_model=LOTOExecutionRead,
    summary="Get LOTO execution",
    dependencies=[_VIEW_LOTO],
)
async def get_execution(
    execution_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> LOTOExecutionRead:
    return LOTOExecutionRead.model_validate(await svc.get_execution(execution_id))


# PUBLIC_INTERFACE
@router.get(
    "/loto/executions/{execution_id}/actions",
    response_model=List[ActionCheckRead],
    summary="Available LOTO execution actions",
    dependencies=[_VIEW_LOTO],
)
async def execution_actions(
    execution_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> List[ActionCheckRead]:
    return [ActionCheckRead(**x) for x in await svc.execution_actions(execution_id)]


# PUBLIC_INTERFACE
@router.get(
    "/loto/executions/{execution_id}/history",
    response_model=List[TransitionLogRead],
    summary="LOTO execution history",
    dependencies=[_VIEW_LOTO],
)
async def execution_history(
    execution_id: UUID = Path(...),
    svc: SafetyService = Depends(get_safety_service),
) -> List[TransitionLogRead]:
    execution = await svc.get_execution(execution_id)
    return [TransitionLogRead.model_validate(e) for e in await svc.history(LOTO_EXECUTION, execution)]


# PUBLIC_INTERFACE
@router.post(
    "/loto/executions/{execution_id}/release",
    response_model=TransitionResultRead,
    summary="Release locks",
    description="Release the listed locks (or all remaining ones). Refused while a linked permit is ACTIVE or SUSPENDED.",
)
async def release_locks(
    payload: LockReleaseBody,
    execution_id: UUID = Path(...),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    svc: SafetyService = Depends(get_safety_service),
) -> TransitionResultRead:
    result = await svc.release_locks(execution_id, payload.lock_ids, payload.to_request(idempotency_key))
    return TransitionResultRead.model_validate(result)
