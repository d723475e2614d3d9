from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import exists, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.view_mode import ViewMode, apply_view_mode
from src.db.models.lifecycle import AuditLog, IdempotencyKey, SoDRuleConfig, StateTransitionLog
from src.lifecycle.machine import SoDRule
from src.lifecycle.store import FAILED, PROCESSING, IdempotencyRecord, TransitionLogEntry
from .base import BaseRepository


def _to_entry(row: StateTransitionLog) -> TransitionLogEntry:
    return TransitionLogEntry(
        id=row.id,
        tenant_id=row.tenant_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        action=row.action,
        from_state=row.from_state,
        to_state=row.to_state,
        user_id=row.user_id,
        created_at=row.created_at,
        reason_code=row.reason_code,
        reason_text=row.reason_text,
        doc_type=row.doc_type or "T1",
        details=row.details or {},
        sod_check=row.sod_check or {},
        eligibility=row.eligibility,
        prev_hash=row.prev_hash,
        integrity_hash=row.integrity_hash,
    )


class TransitionLogRepository(BaseRepository):
    """
    SQL implementation of the TransitionStore protocol.

    One instance is bound to the request session. Each transaction started
    after a rollback is re-scoped to the tenant by the session listener.
    """

    def __init__(self, session: AsyncSession, tenant_id: UUID) -> None:
        super().__init__(session)
        self.tenant_id = tenant_id

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        try:
            yield
        except Exception:
            await self.session.rollback()
            raise
        else:
            await self.commit()

    # Idempotency
    async def get_idempotency(self, key: str) -> Optional[IdempotencyRecord]:
        stmt = select(IdempotencyKey).where(IdempotencyKey.key == key)
        row = await self.scalar_one_or_none(stmt)
        if row is None:
            return None
        return IdempotencyRecord(
            key=row.key,
            status=row.status,
            expires_at=row.expires_at,
            response=row.response,
            operation=row.operation,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
        )

    async def mark_processing(
        self, key: str, *, operation: str, entity_type: str, entity_id: UUID, expires_at: datetime
    ) -> None:
        values = {
            "tenant_id": self.tenant_id,
            "key": key,
            "operation": operation,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "status": PROCESSING,
            "response": None,
            "expires_at": expires_at,
        }
        stmt = insert(IdempotencyKey).values(**values)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_idempotency_keys_tenant_key",
            set_={k: stmt.excluded[k] for k in ("operation", "entity_type", "entity_id", "status", "response", "expires_at")},
        )
        await self.execute(stmt)
        await self.commit()

    async def _set_key_status(self, key: str, status: str, response: Optional[Dict[str, Any]] = None) -> None:
        stmt = (
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key)
            .values(status=status, response=response, updated_at=func.now())
        )
        await self.execute(stmt)
        await self.commit()

    async def mark_completed(self, key: str, response: Dict[str, Any]) -> None:
        await self._set_key_status(key, "COMPLETED", response)

    async def mark_failed(self, key: str) -> None:
        await self._set_key_status(key, FAILED)

    # Segregation of duties
    async def list_sod_rules(self, entity_type: str, action: str) -> Sequence[SoDRule]:
        stmt = select(SoDRuleConfig).where(
            SoDRuleConfig.entity_type == entity_type,
            SoDRuleConfig.second_action == action,
            SoDRuleConfig.is_enabled.is_(True),
        )
        rows = await self.scalars(stmt)
        return [
            SoDRule(code=r.code, first_actions=tuple(r.first_actions), second_action=r.second_action, scope=r.scope)
            for r in rows
        ]

    async def has_performed(
        self,
        *,
        user_id: UUID,
        entity_type: str,
        actions: Sequence[str],
        entity_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
    ) -> bool:
        cond = [
            StateTransitionLog.user_id == user_id,
            StateTransitionLog.entity_type == entity_type,
            StateTransitionLog.action.in_(list(actions)),
        ]
        if entity_id is not None:
            cond.append(StateTransitionLog.entity_id == entity_id)
        if since is not None:
            cond.append(StateTransitionLog.created_at >= since)
        result = await self.execute(select(exists().where(*cond)))
        return bool(result.scalar())

    # Log
    async def last_hash(self, entity_type: str, entity_id: UUID) -> Optional[str]:
        stmt = (
            select(StateTransitionLog.integrity_hash)
            .where(StateTransitionLog.entity_type == entity_type, StateTransitionLog.entity_id == entity_id)
            .order_by(StateTransitionLog.created_at.desc())
            .limit(1)
        )
        return await self.scalar_one_or_none(stmt)

    async def append(self, entry: TransitionLogEntry) -> TransitionLogEntry:
        row = StateTransitionLog(
            tenant_id=entry.tenant_id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            from_state=entry.from_state,
            to_state=entry.to_state,
            user_id=entry.user_id,
            reason_code=entry.reason_code,
            reason_text=entry.reason_text,
            doc_type=entry.doc_type,
            details=entry.details,
            sod_check=entry.sod_check,
            eligibility=entry.eligibility,
            prev_hash=entry.prev_hash,
            integrity_hash=entry.integrity_hash,
            created_at=entry.created_at,
        )
        await self.add(row)
        await self.flush()
        entry.id = row.id
        return entry

    async def history(self, entity_type: str, entity_id: UUID) -> List[TransitionLogEntry]:
        stmt = (
            select(StateTransitionLog)
            .where(StateTransitionLog.entity_type == entity_type, StateTransitionLog.entity_id == entity_id)
            .order_by(StateTransitionLog.created_at.asc())
        )
        return [_to_entry(r) for r in await self.scalars(stmt)]

    async def list_entries(
        self,
        *,
        mode: ViewMode = ViewMode.STANDARD,
        entity_type: Optional[str] = None,
        user_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[TransitionLogEntry]:
        stmt = apply_view_mode(select(StateTransitionLog), StateTransitionLog, mode)
        if entity_type:
            stmt = stmt.where(StateTransitionLog.entity_type == entity_type)
        if user_id:
            stmt = stmt.where(StateTransitionLog.user_id == user_id)
        if since:
            stmt = stmt.where(StateTransitionLog.created_at >= since)
        if until:
            stmt = stmt.where(StateTransitionLog.created_at < until)
        stmt = stmt.order_by(StateTransitionLog.created_at.desc()).offset(offset).limit(limit)
        return [_to_entry(r) for r in await self.scalars(stmt)]


class AuditLogRepository(BaseRepository):
    """Append-only audit trail for mutations that are not state transitions."""

    async def record(
        self,
        *,
        entity_type: str,
        entity_id: Optional[UUID],
        action: str,
        user_id: Optional[UUID],
        changes: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        row = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            user_id=user_id,
            changes=changes or {},
        )
        await self.add(row)
        return row

    async def list_for(self, entity_type: str, entity_id: UUID, limit: int = 100, offset: int = 0) -> List[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.asc())
        )
        return await self.page(stmt, limit, offset)


class SoDRuleRepository(BaseRepository):
    """Tenant SoD rule configuration."""

    async def list_rules(self, entity_type: Optional[str] = None) -> List[SoDRuleConfig]:
        stmt = select(SoDRuleConfig).order_by(SoDRuleConfig.entity_type, SoDRuleConfig.code)
        if entity_type:
            stmt = stmt.where(SoDRuleConfig.entity_type == entity_type)
        return list(await self.scalars(stmt))

    async def get_by_code(self, code: str) -> Optional[SoDRuleConfig]:
        return await self.scalar_one_or_none(select(SoDRuleConfig).where(SoDRuleConfig.code == code))

    async def upsert(
        self,
        *,
        code: str,
        entity_type: str,
        first_actions: Sequence[str],
        second_action: str,
        scope: str,
        description: Optional[str] = None,
        is_enabled: bool = True,
    ) -> SoDRuleConfig:
        rule = await self.get_by_code(code)
        if rule is None:
            rule = SoDRuleConfig(code=code)
            await self.add(rule)
        rule.entity_type = entity_type
        rule.first_actions = list(first_actions)
        rule.second_action = second_action
        rule.scope = scope
        rule.description = description
        rule.is_enabled = is_enabled
        await self.flush()
        return rule
