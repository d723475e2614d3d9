from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID, uuid4

from src.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from src.core.security import has_permission
from src.db.models.maintenance import LOTOExecution, LOTOProcedure, PermitToWork
from src.lifecycle.definitions import LOTO_EXECUTION, PERMIT_TO_WORK
from src.lifecycle.gateway import Eligibility, TransitionResult
from src.repositories.maintenance import WorkOrderRepository
from src.repositories.safety import LOTORepository, PermitRepository
from src.schemas.safety import LOTOExecuteBody, LOTOProcedureCreate, PermitCreate, PermitUpdate
from src.services import guards
from src.services.base import TransitionRequest
from src.services.lifecycle import DocumentService

logger = logging.getLogger(__name__)

EDITABLE_PERMIT_STATES = ("DRAFT", "REJECTED")


class SafetyService(DocumentService):
    """
    Permits to work and lockout/tagout.

    A permit that requires LOTO can only be activated while its linked
    execution is LOCKED, and locks cannot be released while a linked permit
    is still ACTIVE or SUSPENDED.
    """

    def __init__(self, session, actor, gateway=None) -> None:
        super().__init__(session, actor, gateway)
        self.permits = PermitRepository(session)
        self.loto = LOTORepository(session)
        self.work_orders = WorkOrderRepository(session)

    async def _check_links(self, loto_execution_id: Optional[UUID], work_order_id: Optional[UUID]) -> None:
        if loto_execution_id and await self.loto.get_execution(loto_execution_id) is None:
            raise NotFoundError("LOTO execution not found", details={"loto_execution_id": str(loto_execution_id)})
        if work_order_id and await self.work_orders.get_work_order(work_order_id) is None:
            raise NotFoundError("Work order not found", details={"work_order_id": str(work_order_id)})

    # Permits to work

    # PUBLIC_INTERFACE
    async def create_permit(self, payload: PermitCreate) -> PermitToWork:
        """Create a permit in DRAFT; the caller becomes the requester."""
        self._ensure_can_create(PERMIT_TO_WORK, "T1")
        await self._check_links(payload.loto_execution_id, payload.work_order_id)
        permit = PermitToWork(
            permit_number=await self._next_number(PermitToWork, "PTW"),
            status="DRAFT",
            requested_by=self.actor.user_id,
            **payload.model_dump(),
        )
        self.session.add(permit)
        await self._record_creation(PERMIT_TO_WORK, permit, {"permit_number": permit.permit_number})
        logger.info("Created permit to work %s", permit.permit_number)
        return permit

    # PUBLIC_INTERFACE
    async def update_permit(self, permit_id: UUID, payload: PermitUpdate) -> PermitToWork:
        """Edit a permit that has not been submitted yet (or was rejected)."""
        if not has_permission(self.actor.permissions, "ptw.edit"):
            raise PermissionDeniedError("Missing permission ptw.edit", details={"required": "ptw.edit"})
        permit = await self.get_permit(permit_id)
        if permit.status not in EDITABLE_PERMIT_STATES:
            raise ConflictError(
                f"Permit in status {permit.status} cannot be edited",
                code="PTW_NOT_EDITABLE",
                details={"status": permit.status, "editable": list(EDITABLE_PERMIT_STATES)},
            )
        changes = payload.model_dump(exclude_unset=True)
        await self._check_links(changes.get("loto_execution_id"), changes.get("work_order_id"))
        for field, value in changes.items():
            setattr(permit, field, value)
        await self.audit.record(
            entity_type=PERMIT_TO_WORK, entity_id=permit.id, action="UPDATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json", exclude_unset=True),
        )
        await self.session.commit()
        return permit

    async def list_permits(
        self, *, status: Optional[str], work_order_id: Optional[UUID], limit: int, offset: int
    ) -> List[PermitToWork]:
        return await self.permits.list_permits(status=status, work_order_id=work_order_id, limit=limit, offset=offset)

    async def get_permit(self, permit_id: UUID) -> PermitToWork:
        return self._ensure_visible(await self.permits.get_permit(permit_id), "Permit to work")

    async def _loto_status(self, permit: PermitToWork, lock: bool = True) -> Optional[str]:
        if permit.loto_execution_id is None:
            return None
        execution = await self.loto.get_execution(permit.loto_execution_id, lock=lock)
        return execution.status if execution else None

    def _permit_checks(self, permit: PermitToWork, *, lock: bool = True):
        async def submittable() -> Eligibility:
            return guards.permit_submittable(permit)

        async def activatable() -> Eligibility:
            return guards.permit_activatable(permit, self.gateway.now(), await self._loto_status(permit, lock))

        async def expirable() -> Eligibility:
            return guards.permit_expirable(permit, self.gateway.now())

        return {"SUBMIT": submittable, "ACTIVATE": activatable, "RESUME": activatable, "EXPIRE": expirable}

    async def permit_actions(self, permit_id: UUID) -> List[dict]:
        permit = await self.get_permit(permit_id)
        return await self._action_checks(permit, PERMIT_TO_WORK, self._permit_checks(permit, lock=False))

    # PUBLIC_INTERFACE
    async def transition_permit(
        self, permit_id: UUID, action: str, req: TransitionRequest, *, closing_notes: Optional[str] = None
    ) -> TransitionResult:
        """Run a lifecycle action on a permit to work."""
        permit = await self.get_permit(permit_id)
        checks = self._permit_checks(permit)

        async def check() -> Eligibility:
            fn = checks.get(action)
            return await fn() if fn else Eligibility.ok()

        async def apply(target: str) -> None:
            now = self.gateway.now()
            if action == "APPROVE":
                permit.approved_by = self.actor.user_id
            elif action == "REVISE":
                permit.approved_by = None
            elif action == "ACTIVATE":
                permit.activated_at = now
            elif action in ("CLOSE", "EXPIRE"):
                permit.closed_at = now
                if closing_notes:
                    permit.closing_notes = closing_notes

        return await self._transition(permit, PERMIT_TO_WORK, action, req, apply=apply, check=check)

    # LOTO procedures

    async def list_procedures(self, *, asset_id: Optional[UUID], limit: int, offset: int) -> List[LOTOProcedure]:
        return await self.loto.list_procedures(asset_id=asset_id, limit=limit, offset=offset)

    async def get_procedure(self, procedure_id: UUID) -> LOTOProcedure:
        procedure = await self.loto.get_procedure(procedure_id)
        if procedure is None:
            raise NotFoundError("LOTO procedure not found")
        return procedure

    # PUBLIC_INTERFACE
    async def create_procedure(self, payload: LOTOProcedureCreate) -> LOTOProcedure:
        if await self.loto.get_procedure_by_code(payload.code):
            raise ConflictError(f"LOTO procedure with code {payload.code} already exists")
        procedure = LOTOProcedure(created_by=self.actor.user_id, is_approved=False, **payload.model_dump())
        self.session.add(procedure)
        await self.session.flush()
        await self.audit.record(
            entity_type="LOTOProcedure", entity_id=procedure.id, action="CREATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json"),
        )
        await self.session.commit()
        return procedure

    # PUBLIC_INTERFACE
    async def approve_procedure(self, procedure_id: UUID) -> LOTOProcedure:
        """Approve a procedure so it can be executed; approving twice is a conflict."""
        procedure = await self.get_procedure(procedure_id)
        if procedure.is_approved:
            raise ConflictError("LOTO procedure is already approved", code="LOTO_ALREADY_APPROVED")
        procedure.is_approved = True
        procedure.approved_by = self.actor.user_id
        procedure.approved_at = self.gateway.now()
        await self.audit.record(
            entity_type="LOTOProcedure", entity_id=procedure.id, action="APPROVE", user_id=self.actor.user_id,
        )
        await self.session.commit()
        logger.info("Approved LOTO procedure %s", procedure.code)
        return procedure

    # LOTO executions

    # PUBLIC_INTERFACE
    async def execute_procedure(self, procedure_id: UUID, payload: LOTOExecuteBody) -> LOTOExecution:
        """Apply an approved procedure: one lock per isolation point, created LOCKED."""
        self._ensure_can_create(LOTO_EXECUTION, "T1")
        procedure = await self.get_procedure(procedure_id)
        if not procedure.is_approved:
            raise ValidationFailedError(
                "LOTO procedure must be approved before execution", code="LOTO_PROCEDURE_NOT_APPROVED"
            )
        await self._check_links(None, payload.work_order_id)
        locks = [
            {"id": str(uuid4()), "point": p.get("name", str(p)) if isinstance(p, dict) else str(p), "released": False}
            for p in procedure.isolation_points or []
        ]
        if not locks:
            raise ValidationFailedError("LOTO procedure has no isolation points", code="LOTO_NO_POINTS")
        execution = LOTOExecution(
            procedure_id=procedure.id,
            work_order_id=payload.work_order_id,
            status="LOCKED",
            locks=locks,
            zero_energy_verified=payload.zero_energy_verified,
            locked_at=self.gateway.now(),
            executed_by=self.actor.user_id,
        )
        self.session.add(execution)
        await self._record_creation(LOTO_EXECUTION, execution, {"procedure": procedure.code, "locks": len(locks)})
        return execution

    async def list_executions(
        self, *, status: Optional[str], work_order_id: Optional[UUID], limit: int, offset: int
    ) -> List[LOTOExecution]:
        return await self.loto.list_executions(status=status, work_order_id=work_order_id, limit=limit, offset=offset)

    async def get_execution(self, execution_id: UUID) -> LOTOExecution:
        execution = await self.loto.get_execution(execution_id)
        if execution is None:
            raise NotFoundError("LOTO execution not found")
        return execution

    async def execution_actions(self, execution_id: UUID) -> List[dict]:
        execution = await self.get_execution(execution_id)

        async def releasable() -> Eligibility:
            return guards.loto_releasable(await self.permits.states_for(loto_execution_id=execution.id))

        return await self._action_checks(
            execution, LOTO_EXECUTION, {"RELEASE_PARTIAL": releasable, "RELEASE_ALL": releasable}
        )

    # PUBLIC_INTERFACE
    async def release_locks(
        self, execution_id: UUID, lock_ids: Optional[List[str]], req: TransitionRequest
    ) -> TransitionResult:
        """
        Release locks of an execution.

        RELEASE_ALL when no lock remains applied afterwards, otherwise
        RELEASE_PARTIAL.
        """
        execution = await self.get_execution(execution_id)
        action, _, precheck = guards.release_action(list(execution.locks or []), lock_ids)
        if not precheck.eligible:
            raise ValidationFailedError(
                precheck.reason or "Invalid lock selection", code=precheck.code, details=precheck.details
            )

        async def check() -> Eligibility:
            current_action, _, result = guards.release_action(list(execution.locks or []), lock_ids)
            if not result.eligible:
                return result
            if current_action != action:
                return Eligibility.refuse("Locks changed while releasing; retry", code="LOTO_CHANGED")
            return guards.loto_releasable(await self.permits.states_for(loto_execution_id=execution.id))

        async def apply(target: str) -> None:
            _, updated, _ = guards.release_action(list(execution.locks or []), lock_ids)
            execution.locks = updated
            if target == "UNLOCKED":
                execution.unlocked_at = self.gateway.now()

        req.metadata.setdefault("lock_ids", list(lock_ids) if lock_ids is not None else "ALL")
        return await self._transition(execution, LOTO_EXECUTION, action, req, apply=apply, check=check)
