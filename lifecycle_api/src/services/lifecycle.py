from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.core.settings import get_app_settings
from src.core.view_mode import DocType, ViewMode, ensure_can_write, is_visible
from src.db.models.inventory import StockAdjustment
from src.db.models.maintenance import LOTOExecution, MaintenanceWorkOrder, PermitToWork
from src.db.models.procurement import PurchaseOrder, PurchaseReturn
from src.db.models.sales import SalesInvoice, SalesReturn
from src.lifecycle import definitions as d
from src.lifecycle.definitions import REGISTRY
from src.lifecycle.gateway import (
    CheckEligibility,
    TransitionCheck,
    TransitionContext,
    TransitionGateway,
    TransitionResult,
)
from src.lifecycle.integrity import verify_chain
from src.lifecycle.machine import CREATE_ACTION
from src.lifecycle.reasons import reason_catalog
from src.lifecycle.store import TransitionLogEntry
from src.repositories.lifecycle import AuditLogRepository, SoDRuleRepository, TransitionLogRepository
from src.schemas.realtime import TransitionEvent
from src.services.base import Actor, BaseService, TransitionRequest
from src.services.realtime import broadcast_manager

logger = logging.getLogger(__name__)

ApplyHook = Callable[[str], Awaitable[None]]

DOCUMENT_MODELS: Dict[str, Type[Any]] = {
    d.PURCHASE_ORDER: PurchaseOrder,
    d.PURCHASE_RETURN: PurchaseReturn,
    d.SALES_RETURN: SalesReturn,
    d.STOCK_ADJUSTMENT: StockAdjustment,
    d.SALES_INVOICE: SalesInvoice,
    d.PERMIT_TO_WORK: PermitToWork,
    d.LOTO_EXECUTION: LOTOExecution,
    d.WORK_ORDER: MaintenanceWorkOrder,
}


def _doc_type(doc: Any) -> str:
    return getattr(doc, "doc_type", None) or DocType.T1.value


# PUBLIC_INTERFACE
def build_gateway(session: AsyncSession, tenant_id: UUID) -> TransitionGateway:
    """Gateway over the SQL transition store using the configured TTL and SoD window."""
    settings = get_app_settings()
    return TransitionGateway(
        TransitionLogRepository(session, tenant_id),
        REGISTRY,
        idempotency_ttl=timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS),
        sod_lookback=timedelta(days=settings.SOD_LOOKBACK_DAYS),
    )


class DocumentService(BaseService):
    """
    Base for services owning lifecycle-managed documents.

    Every status change goes through `_transition`, which row-locks the
    document, delegates the guards to the TransitionGateway and publishes the
    result to WebSocket subscribers once committed.
    """

    def __init__(self, session: AsyncSession, actor: Actor, gateway: Optional[TransitionGateway] = None) -> None:
        super().__init__(session)
        self.actor = actor
        self.gateway = gateway or build_gateway(session, actor.tenant_id)
        self.audit = AuditLogRepository(session)

    def _context(
        self, entity_type: str, doc: Any, action: str, req: Optional[TransitionRequest] = None
    ) -> TransitionContext:
        req = req or TransitionRequest()
        return TransitionContext(
            tenant_id=self.actor.tenant_id,
            user_id=self.actor.user_id,
            entity_type=entity_type,
            entity_id=doc.id,
            action=action,
            permissions=self.actor.permissions,
            reason_code=req.reason_code,
            reason_text=req.reason_text,
            metadata=dict(req.metadata),
            idempotency_key=req.idempotency_key,
            skip_sod=req.skip_sod,
            doc_type=_doc_type(doc),
        )

    def _ensure_visible(self, doc: Any, label: str) -> Any:
        """404 for missing documents and for T2 documents outside extended mode."""
        if doc is None or not is_visible(_doc_type(doc), self.actor.view_mode):
            raise NotFoundError(f"{label} not found")
        return doc

    def _ensure_can_create(self, entity_type: str, doc_type: str) -> None:
        self.gateway.ensure_permitted(entity_type, CREATE_ACTION, self.actor.permissions)
        ensure_can_write(doc_type, self.actor.view_mode)

    async def _next_number(self, model: Type[Any], prefix: str) -> str:
        count = (await self.session.execute(select(func.count()).select_from(model))).scalar_one()
        return f"{prefix}-{int(count) + 1:06d}"

    async def _record_creation(self, entity_type: str, doc: Any, changes: Optional[Dict[str, Any]] = None) -> TransitionResult:
        """Log CREATE for a freshly added document and commit it together with the document."""
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning("Creating %s collided with a concurrent insert: %s", entity_type, exc.orig)
            raise ConflictError(
                f"{entity_type} conflicts with a record created concurrently; retry",
                code="CREATE_CONFLICT",
            ) from exc
        ctx = self._context(entity_type, doc, CREATE_ACTION)
        result = await self.gateway.record_creation(ctx, doc.status)
        await self.audit.record(
            entity_type=entity_type, entity_id=doc.id, action=CREATE_ACTION, user_id=self.actor.user_id, changes=changes
        )
        await self.session.commit()
        await self._publish(result, ctx.doc_type)
        return result

    async def _transition(
        self,
        doc: Any,
        entity_type: str,
        action: str,
        req: Optional[TransitionRequest] = None,
        *,
        apply: Optional[ApplyHook] = None,
        check: Optional[CheckEligibility] = None,
    ) -> TransitionResult:
        """
        Run `action` on `doc` through the gateway.

        `apply` performs side effects (stock movements, ledger entries) after
        the status is set; `check` is the eligibility guard, evaluated on the
        locked row.
        """
        ensure_can_write(_doc_type(doc), self.actor.view_mode)

        async def load_state() -> Optional[str]:
            await self.session.refresh(doc, with_for_update=True)
            return doc.status

        async def apply_target(target: str) -> None:
            doc.status = target
            if apply is not None:
                await apply(target)
            await self.session.flush()

        ctx = self._context(entity_type, doc, action, req)
        result = await self.gateway.execute(
            ctx,
            load_state=load_state,
            apply=apply_target,
            check_eligibility=check,
        )
        if not result.replayed:
            await self._publish(result, ctx.doc_type)
        return result

    async def _publish(self, result: TransitionResult, doc_type: str) -> None:
        event = TransitionEvent(
            entity_type=result.entity_type,
            entity_id=result.entity_id,
            action=result.action,
            from_state=result.from_state,
            to_state=result.to_state,
            transition_id=result.transition_id,
            user_id=self.actor.user_id,
            doc_type=doc_type,
        )
        try:
            await broadcast_manager.publish_transition(self.actor.tenant_id, event)
        except Exception:
            logger.exception("Failed to publish transition event for %s %s", result.entity_type, result.entity_id)

    async def history(self, entity_type: str, doc: Any) -> List[TransitionLogEntry]:
        """Transition log of a document the caller can see, oldest first."""
        return await self.gateway.store.history(entity_type, doc.id)

    async def _action_checks(
        self, doc: Any, entity_type: str, checks: Optional[Dict[str, CheckEligibility]] = None
    ) -> List[Dict[str, Any]]:
        """Dry-run every action offered by the document's status for the current user."""
        checks = checks or {}

        async def load_state() -> Optional[str]:
            return doc.status

        out: List[Dict[str, Any]] = []
        for action in self.gateway.registry.get(entity_type).available_actions(doc.status):
            res: TransitionCheck = await self.gateway.can_transition(
                self._context(entity_type, doc, action),
                load_state=load_state,
                check_eligibility=checks.get(action),
            )
            out.append(
                {"action": action, "allowed": res.allowed, "to_state": res.to_state, "reason": res.reason, "code": res.code}
            )
        return out


class LifecycleService(BaseService):
    """Read side of the lifecycle engine: catalogue, history and chain verification."""

    def __init__(self, session: AsyncSession, tenant_id: UUID, view_mode: ViewMode = ViewMode.STANDARD) -> None:
        super().__init__(session)
        self.view_mode = view_mode
        self.logs = TransitionLogRepository(session, tenant_id)
        self.sod_rules = SoDRuleRepository(session)
        self.audit = AuditLogRepository(session)

    # PUBLIC_INTERFACE
    def machines(self) -> List[dict]:
        return [self._describe(m.entity_type) for m in REGISTRY]

    # PUBLIC_INTERFACE
    def machine(self, entity_type: str) -> dict:
        return self._describe(entity_type)

    def _describe(self, entity_type: str) -> dict:
        data = REGISTRY.get(entity_type).describe()
        data["reason_codes"] = reason_catalog(entity_type)
        return data

    async def _ensure_document_visible(self, entity_type: str, entity_id: UUID) -> None:
        REGISTRY.get(entity_type)
        doc = await self.session.get(DOCUMENT_MODELS[entity_type], entity_id)
        if doc is None or not is_visible(_doc_type(doc), self.view_mode):
            raise NotFoundError(
                f"{entity_type} {entity_id} not found",
                details={"entity_type": entity_type, "entity_id": str(entity_id)},
            )

    # PUBLIC_INTERFACE
    async def history(self, entity_type: str, entity_id: UUID) -> List[TransitionLogEntry]:
        """Log entries of a document visible in the current view mode, oldest first."""
        await self._ensure_document_visible(entity_type, entity_id)
        return await self.logs.history(entity_type, entity_id)

    # PUBLIC_INTERFACE
    async def verify(self, entity_type: str, entity_id: UUID) -> Dict[str, Any]:
        """Re-compute the document's hash chain; reports the first broken entry."""
        entries = await self.history(entity_type, entity_id)
        if not entries:
            raise NotFoundError(f"No transitions recorded for {entity_type} {entity_id}")
        broken = verify_chain(entries)
        if broken is not None:
            logger.warning("Integrity chain broken for %s %s at entry %d", entity_type, entity_id, broken)
        return {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "entries": len(entries),
            "valid": broken is None,
            "broken_at": broken,
            "broken_entry_id": str(entries[broken].id) if broken is not None else None,
        }

    async def list_sod_rules(self, entity_type: Optional[str] = None) -> List[Any]:
        return await self.sod_rules.list_rules(entity_type)

    # PUBLIC_INTERFACE
    async def upsert_sod_rule(
        self,
        *,
        code: str,
        entity_type: str,
        first_actions: List[str],
        second_action: str,
        scope: str,
        description: Optional[str] = None,
        is_enabled: bool = True,
        user_id: Optional[UUID] = None,
    ) -> Any:
        """Create or replace a tenant SoD rule; actions must exist on the entity's machine."""
        machine = REGISTRY.get(entity_type)
        known = set(machine.actions) | {CREATE_ACTION}
        unknown = sorted((set(first_actions) | {second_action}) - known)
        if unknown:
            raise ValidationFailedError(
                f"Unknown actions for {entity_type}: {', '.join(unknown)}",
                details={"unknown": unknown, "allowed": sorted(known)},
            )
        rule = await self.sod_rules.upsert(
            code=code,
            entity_type=entity_type,
            first_actions=first_actions,
            second_action=second_action,
            scope=scope,
            description=description,
            is_enabled=is_enabled,
        )
        await self.audit.record(
            entity_type="SoDRule", entity_id=rule.id, action="UPSERT", user_id=user_id,
            changes={"code": code, "first_actions": first_actions, "second_action": second_action, "scope": scope},
        )
        await self.session.commit()
        logger.info("SoD rule %s saved for %s", code, entity_type)
        return rule
