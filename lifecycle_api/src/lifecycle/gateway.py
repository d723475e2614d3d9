"""
Transition gateway: the single entry point for changing a document's status.

Every transition runs the same pipeline:

  permission -> idempotency replay -> state machine -> reason code
  -> segregation of duties -> eligibility -> apply -> hash-chained log entry

Steps from "state machine" on run inside one store transaction together with
the caller's `apply` callback, so the status change and its log entry commit
or roll back together.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional
from uuid import UUID

from src.core.errors import ConflictError, DomainError, PermissionDeniedError
from src.core.security import has_permission
from src.lifecycle.definitions import REGISTRY
from src.lifecycle.errors import ConcurrentOperationError, NotEligibleError, SoDViolationError
from src.lifecycle.integrity import compute_integrity_hash
from src.lifecycle.machine import CREATE_ACTION, SAME_DOCUMENT, MachineRegistry, StateMachine
from src.lifecycle.reasons import validate_reason
from src.lifecycle.store import COMPLETED, PROCESSING, IdempotencyRecord, TransitionLogEntry, TransitionStore

logger = logging.getLogger(__name__)

SOD_OVERRIDE_PERMISSION = "lifecycle.sod.override"


@dataclass
class TransitionContext:
    tenant_id: UUID
    user_id: UUID
    entity_type: str
    entity_id: UUID
    action: str
    permissions: FrozenSet[str] = frozenset()
    reason_code: Optional[str] = None
    reason_text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    idempotency_key: Optional[str] = None
    skip_sod: bool = False
    doc_type: str = "T1"


@dataclass
class Eligibility:
    eligible: bool
    reason: Optional[str] = None
    code: str = "NOT_ELIGIBLE"
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls) -> "Eligibility":
        return cls(eligible=True)

    @classmethod
    def refuse(cls, reason: str, code: str = "NOT_ELIGIBLE", **details: Any) -> "Eligibility":
        return cls(eligible=False, reason=reason, code=code, details=details)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TransitionResult:
    entity_type: str
    entity_id: UUID
    action: str
    from_state: Optional[str]
    to_state: str
    transition_id: Optional[UUID] = None
    integrity_hash: Optional[str] = None
    sod_check: Dict[str, Any] = field(default_factory=dict)
    eligibility: Optional[Dict[str, Any]] = None
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["entity_id"] = str(self.entity_id)
        data["transition_id"] = str(self.transition_id) if self.transition_id else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionResult":
        return cls(
            entity_type=data["entity_type"],
            entity_id=UUID(str(data["entity_id"])),
            action=data["action"],
            from_state=data.get("from_state"),
            to_state=data["to_state"],
            transition_id=UUID(str(data["transition_id"])) if data.get("transition_id") else None,
            integrity_hash=data.get("integrity_hash"),
            sod_check=data.get("sod_check") or {},
            eligibility=data.get("eligibility"),
            replayed=bool(data.get("replayed", False)),
        )


@dataclass
class TransitionCheck:
    allowed: bool
    to_state: Optional[str] = None
    reason: Optional[str] = None
    code: Optional[str] = None


LoadState = Callable[[], Awaitable[Optional[str]]]
ApplyTransition = Callable[[str], Awaitable[None]]
CheckEligibility = Callable[[], Awaitable[Eligibility]]


# PUBLIC_INTERFACE
def granted_actions(permissions: FrozenSet[str], registry: Optional[MachineRegistry] = None) -> Dict[str, List[str]]:
    """
    Actions each document family lets a holder of `permissions` perform in some state.

    CREATE is listed only for families that gate creation behind a permission.
    Families with no granted action are omitted.
    """
    granted: Dict[str, List[str]] = {}
    for machine in registry or REGISTRY:
        candidates = set(machine.actions)
        if machine.permission_for(CREATE_ACTION):
            candidates.add(CREATE_ACTION)
        actions = sorted(
            a for a in candidates if has_permission(permissions, *filter(None, [machine.permission_for(a)]))
        )
        if actions:
            granted[machine.entity_type] = actions
    return granted


class TransitionGateway:
    """
    Execute guarded document transitions against a TransitionStore.

    Parameters:
        store: persistence port (SQL repository or in-memory fake)
        registry: state machines by entity type
        idempotency_ttl: how long a completed key replays its stored result
        sod_lookback: window searched by ANY_DOCUMENT segregation rules
        clock: returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        store: TransitionStore,
        registry: Optional[MachineRegistry] = None,
        *,
        idempotency_ttl: timedelta = timedelta(hours=24),
        sod_lookback: timedelta = timedelta(days=30),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.registry = registry or REGISTRY
        self.idempotency_ttl = idempotency_ttl
        self.sod_lookback = sod_lookback
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    # PUBLIC_INTERFACE
    def ensure_permitted(self, entity_type: str, action: str, permissions: FrozenSet[str]) -> StateMachine:
        """Raise PermissionDeniedError unless `permissions` grant `action` on `entity_type`."""
        machine = self.registry.get(entity_type)
        required = machine.permission_for(action)
        if required and not has_permission(permissions, required):
            raise PermissionDeniedError(
                f"Missing permission {required} for {action} on {entity_type}",
                details={"required": required, "entity_type": entity_type, "action": action},
            )
        return machine

    # PUBLIC_INTERFACE
    def available_actions(
        self, entity_type: str, state: Optional[str], permissions: FrozenSet[str]
    ) -> List[str]:
        """Actions allowed from `state` that the caller also holds permission for."""
        machine = self.registry.get(entity_type)
        return [
            a
            for a in machine.available_actions(state)
            if has_permission(permissions, *filter(None, [machine.permission_for(a)]))
        ]

    # PUBLIC_INTERFACE
    async def execute(
        self,
        ctx: TransitionContext,
        *,
        load_state: LoadState,
        apply: ApplyTransition,
        check_eligibility: Optional[CheckEligibility] = None,
    ) -> TransitionResult:
        """
        Run one transition.

        Parameters:
            ctx: who does what to which document
            load_state: returns the document's current status, locking the row
            apply: persists the new status plus any side effects
            check_eligibility: document-specific guard, consulted when the
                machine lists the action as eligibility-checked
        Returns:
            TransitionResult; `replayed=True` when served from a completed
            idempotency key.
        """
        machine = self.ensure_permitted(ctx.entity_type, ctx.action, ctx.permissions)

        if ctx.idempotency_key:
            replay = await self._replay_or_reserve(ctx)
            if replay is not None:
                return replay

        try:
            async with self.store.transaction():
                result = await self._run(machine, ctx, load_state, apply, check_eligibility)
        except Exception as exc:
            if ctx.idempotency_key:
                await self._release_key(ctx.idempotency_key)
            if isinstance(exc, DomainError):
                logger.warning(
                    "Transition refused %s %s %s: %s (%s)",
                    ctx.entity_type, ctx.entity_id, ctx.action, exc.message, exc.code,
                )
            raise

        if ctx.idempotency_key:
            await self.store.mark_completed(ctx.idempotency_key, result.to_dict())

        logger.info(
            "Transition %s %s %s: %s -> %s",
            ctx.entity_type, ctx.entity_id, ctx.action, result.from_state, result.to_state,
        )
        return result

    # PUBLIC_INTERFACE
    async def record_creation(self, ctx: TransitionContext, initial_state: Optional[str] = None) -> TransitionResult:
        """
        Log the CREATE pseudo-transition of a new document.

        Runs inside the caller's unit of work: the caller inserts the document,
        calls this, then commits both together.
        """
        machine = self.ensure_permitted(ctx.entity_type, CREATE_ACTION, ctx.permissions)
        state = initial_state or machine.initial_state
        entry = await self._append(ctx, None, state, {"allowed": True}, None)
        return TransitionResult(
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
            action=ctx.action,
            from_state=None,
            to_state=state,
            transition_id=entry.id,
            integrity_hash=entry.integrity_hash,
            sod_check={"allowed": True},
        )

    # PUBLIC_INTERFACE
    async def can_transition(
        self,
        ctx: TransitionContext,
        *,
        load_state: LoadState,
        check_eligibility: Optional[CheckEligibility] = None,
    ) -> TransitionCheck:
        """Dry-run the guards without applying or logging anything."""
        try:
            machine = self.ensure_permitted(ctx.entity_type, ctx.action, ctx.permissions)
            current = await load_state()
            target = machine.target_for(current, ctx.action)
            await self._check_sod(machine, ctx)
            await self._check_eligibility(machine, ctx, check_eligibility)
        except DomainError as exc:
            return TransitionCheck(allowed=False, reason=exc.message, code=exc.code)
        return TransitionCheck(allowed=True, to_state=target)

    async def _run(
        self,
        machine: StateMachine,
        ctx: TransitionContext,
        load_state: LoadState,
        apply: ApplyTransition,
        check_eligibility: Optional[CheckEligibility],
    ) -> TransitionResult:
        current = await load_state()
        target = machine.target_for(current, ctx.action)
        validate_reason(machine, ctx.action, ctx.reason_code, ctx.reason_text)
        sod = await self._check_sod(machine, ctx)
        eligibility = await self._check_eligibility(machine, ctx, check_eligibility)

        await apply(target)
        entry = await self._append(ctx, current, target, sod, eligibility)
        return TransitionResult(
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
            action=ctx.action,
            from_state=current,
            to_state=target,
            transition_id=entry.id,
            integrity_hash=entry.integrity_hash,
            sod_check=sod,
            eligibility=eligibility.to_dict() if eligibility else None,
        )

    async def _replay_or_reserve(self, ctx: TransitionContext) -> Optional[TransitionResult]:
        key = ctx.idempotency_key
        assert key is not None
        existing = await self.store.get_idempotency(key)
        if existing is not None and existing.expires_at > self.now():
            self._ensure_same_request(existing, ctx)
            if existing.status == COMPLETED and existing.response:
                logger.info("Replaying idempotent transition for key %s", key)
                result = TransitionResult.from_dict(existing.response)
                result.replayed = True
                return result
            if existing.status == PROCESSING:
                raise ConcurrentOperationError(
                    "Operation already in progress; retry later",
                    details={"idempotency_key": key},
                )
        await self.store.mark_processing(
            key,
            operation=ctx.action,
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
            expires_at=self.now() + self.idempotency_ttl,
        )
        return None

    @staticmethod
    def _ensure_same_request(existing: IdempotencyRecord, ctx: TransitionContext) -> None:
        response = existing.response or {}
        bound = (
            existing.entity_type or response.get("entity_type"),
            str(existing.entity_id or response.get("entity_id") or ""),
            existing.operation or response.get("action"),
        )
        wanted = (ctx.entity_type, str(ctx.entity_id), ctx.action)
        if any(have and have != want for have, want in zip(bound, wanted)):
            raise ConflictError(
                "Idempotency key was already used for a different operation",
                details={
                    "idempotency_key": existing.key,
                    "entity_type": bound[0],
                    "entity_id": bound[1],
                    "action": bound[2],
                },
            )

    async def _release_key(self, key: str) -> None:
        try:
            await self.store.mark_failed(key)
        except Exception:
            logger.exception("Failed to mark idempotency key %s as FAILED", key)

    async def _check_sod(self, machine: StateMachine, ctx: TransitionContext) -> Dict[str, Any]:
        rules = machine.sod_rules_for(ctx.action)
        rules += [r for r in await self.store.list_sod_rules(ctx.entity_type, ctx.action) if r not in rules]
        if not rules:
            return {"allowed": True}

        if ctx.skip_sod:
            if not has_permission(ctx.permissions, SOD_OVERRIDE_PERMISSION):
                raise PermissionDeniedError(
                    "Skipping segregation of duties requires an explicit override permission",
                    details={"required": SOD_OVERRIDE_PERMISSION},
                )
            logger.warning("SoD checks skipped for %s %s %s", ctx.entity_type, ctx.entity_id, ctx.action)
            return {"allowed": True, "skipped": True, "rules": [r.code for r in rules]}

        for rule in rules:
            same_doc = rule.scope == SAME_DOCUMENT
            conflict = await self.store.has_performed(
                user_id=ctx.user_id,
                entity_type=ctx.entity_type,
                actions=rule.first_actions,
                entity_id=ctx.entity_id if same_doc else None,
                since=None if same_doc else self.now() - self.sod_lookback,
            )
            if conflict:
                raise SoDViolationError(
                    f"Segregation of duties: a user who performed {'/'.join(rule.first_actions)} "
                    f"cannot perform {rule.second_action}",
                    details={
                        "rule_code": rule.code,
                        "conflicting_actions": list(rule.first_actions),
                        "scope": rule.scope,
                        "user_id": str(ctx.user_id),
                    },
                )
        return {"allowed": True, "rules": [r.code for r in rules]}

    async def _check_eligibility(
        self,
        machine: StateMachine,
        ctx: TransitionContext,
        check_eligibility: Optional[CheckEligibility],
    ) -> Optional[Eligibility]:
        if check_eligibility is None or not machine.requires_eligibility(ctx.action):
            return None
        result = await check_eligibility()
        if not result.eligible:
            raise NotEligibleError(
                result.reason or f"{ctx.entity_type} is not eligible for {ctx.action}",
                code=result.code,
                details=result.to_dict(),
            )
        return result

    async def _append(
        self,
        ctx: TransitionContext,
        from_state: Optional[str],
        to_state: str,
        sod: Dict[str, Any],
        eligibility: Optional[Eligibility],
    ) -> TransitionLogEntry:
        prev_hash = await self.store.last_hash(ctx.entity_type, ctx.entity_id)
        entry = TransitionLogEntry(
            tenant_id=ctx.tenant_id,
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
            action=ctx.action,
            from_state=from_state,
            to_state=to_state,
            user_id=ctx.user_id,
            created_at=self.now(),
            reason_code=ctx.reason_code,
            reason_text=ctx.reason_text,
            doc_type=ctx.doc_type,
            details=dict(ctx.metadata),
            sod_check=sod,
            eligibility=eligibility.to_dict() if eligibility else None,
            prev_hash=prev_hash,
        )
        entry.integrity_hash = compute_integrity_hash(prev_hash, entry.to_dict())
        return await self.store.append(entry)
