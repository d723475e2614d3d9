"""
Tests for TransitionGateway.

Covers the full pipeline (permission, idempotency, state machine, reason
code, segregation of duties, eligibility, hash-chained log) against the
in-memory store.
"""
import uuid
from datetime import timedelta

import pytest

from src.core.errors import ConflictError, PermissionDeniedError
from src.lifecycle import definitions as d
from src.lifecycle.errors import (
    ConcurrentOperationError,
    InvalidTransitionError,
    NotEligibleError,
    ReasonRequiredError,
    SoDViolationError,
)
from src.lifecycle.gateway import Eligibility, TransitionContext, granted_actions
from src.lifecycle.integrity import verify_chain
from src.lifecycle.machine import ANY_DOCUMENT, SoDRule
from src.lifecycle.store import COMPLETED, FAILED

PO_PERMS = frozenset(
    {
        "compras.ordenes.create",
        "compras.ordenes.edit",
        "compras.ordenes.approve",
        "compras.ordenes.send",
        "compras.ordenes.cancel",
    }
)


def ctx(tenant_id, user_id, doc, action, entity_type=d.PURCHASE_ORDER, **kwargs):
    kwargs.setdefault("permissions", PO_PERMS)
    return TransitionContext(
        tenant_id=tenant_id,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=doc.id,
        action=action,
        **kwargs,
    )


async def run(gateway, context, doc, check=None):
    return await gateway.execute(context, load_state=doc.load_state, apply=doc.apply, check_eligibility=check)


class TestExecute:
    async def test_happy_path_builds_hash_chain(self, gateway, store, tenant_id, creator_id, approver_id, make_document):
        doc = make_document("BORRADOR")
        await gateway.record_creation(ctx(tenant_id, creator_id, doc, "CREATE"))
        await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT"), doc)
        result = await run(gateway, ctx(tenant_id, approver_id, doc, "APPROVE"), doc)

        assert result.from_state == "EN_APROBACION"
        assert result.to_state == "APROBADA"
        assert result.sod_check == {"allowed": True, "rules": ["PO_CREATOR_APPROVES"]}
        assert doc.status == "APROBADA"

        history = await store.history(d.PURCHASE_ORDER, doc.id)
        assert [e.action for e in history] == ["CREATE", "SUBMIT", "APPROVE"]
        assert history[0].prev_hash is None
        assert history[1].prev_hash == history[0].integrity_hash
        assert result.integrity_hash == history[-1].integrity_hash
        assert verify_chain(history) is None

    async def test_invalid_transition_leaves_document_untouched(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        with pytest.raises(InvalidTransitionError):
            await run(gateway, ctx(tenant_id, creator_id, doc, "SEND"), doc)
        assert doc.status == "BORRADOR"
        assert store.entries == []
        assert store.rollbacks == 1

    async def test_reason_required(self, gateway, tenant_id, approver_id, make_document):
        doc = make_document("EN_APROBACION")
        with pytest.raises(ReasonRequiredError):
            await run(gateway, ctx(tenant_id, approver_id, doc, "REJECT"), doc)
        result = await run(
            gateway,
            ctx(tenant_id, approver_id, doc, "REJECT", reason_code="BUDGET_EXCEEDED"),
            doc,
        )
        assert result.to_state == "RECHAZADA"

    async def test_reason_is_logged(self, gateway, store, tenant_id, approver_id, make_document):
        doc = make_document("EN_APROBACION")
        await run(
            gateway,
            ctx(tenant_id, approver_id, doc, "REJECT", reason_code="OTHER", reason_text="Quotation expired last week"),
            doc,
        )
        entry = store.entries[-1]
        assert entry.reason_code == "OTHER"
        assert entry.reason_text == "Quotation expired last week"

    async def test_doc_type_is_logged_and_chained(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", doc_type="T2"), doc)
        entry = store.entries[-1]
        assert entry.doc_type == "T2"

        entry.doc_type = "T1"
        assert verify_chain(store.entries) == 0


class TestPermissions:
    async def test_missing_permission(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("EN_APROBACION")
        context = ctx(tenant_id, creator_id, doc, "APPROVE", permissions=frozenset({"compras.ordenes.edit"}))
        with pytest.raises(PermissionDeniedError) as exc:
            await run(gateway, context, doc)
        assert exc.value.code == "FORBIDDEN"
        assert exc.value.details["required"] == "compras.ordenes.approve"

    async def test_permission_checked_before_idempotency(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("EN_APROBACION")
        context = ctx(
            tenant_id, creator_id, doc, "APPROVE", permissions=frozenset(), idempotency_key="k-denied"
        )
        with pytest.raises(PermissionDeniedError):
            await run(gateway, context, doc)
        assert "k-denied" not in store.keys

    async def test_wildcard_grants_everything(self, gateway, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        result = await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", permissions=frozenset({"admin:all"})), doc)
        assert result.to_state == "EN_APROBACION"

    def test_available_actions_filtered_by_permission(self, gateway):
        perms = frozenset({"compras.ordenes.approve"})
        assert gateway.available_actions(d.PURCHASE_ORDER, "EN_APROBACION", perms) == ["APPROVE", "REJECT"]
        assert gateway.available_actions(d.PURCHASE_ORDER, "BORRADOR", perms) == []
        assert gateway.available_actions(d.PURCHASE_ORDER, "COMPLETADA", frozenset({"admin:all"})) == []

    def test_granted_actions_per_family(self):
        granted = granted_actions(frozenset({"compras.ordenes.approve"}))
        assert set(granted) == {d.PURCHASE_ORDER}
        assert "APPROVE" in granted[d.PURCHASE_ORDER]
        assert "REJECT" in granted[d.PURCHASE_ORDER]
        assert "CREATE" not in granted[d.PURCHASE_ORDER]

    def test_granted_actions_wildcard_covers_creation(self):
        granted = granted_actions(frozenset({"admin:all"}))
        assert set(granted) == set(d.REGISTRY.entity_types())
        assert "CREATE" in granted[d.PURCHASE_ORDER]

    def test_granted_actions_empty(self):
        assert granted_actions(frozenset()) == {}


class TestIdempotency:
    async def test_replay_returns_stored_result(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        first = await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", idempotency_key="k-1"), doc)
        second = await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", idempotency_key="k-1"), doc)

        assert store.keys["k-1"].status == COMPLETED
        assert not first.replayed
        assert second.replayed
        assert second.to_state == first.to_state
        assert second.transition_id == first.transition_id
        assert doc.applied == ["EN_APROBACION"]
        assert len(store.entries) == 1

    async def test_processing_key_conflicts(self, gateway, store, clock, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await store.mark_processing(
            "k-busy", operation="SUBMIT", entity_type=d.PURCHASE_ORDER, entity_id=doc.id,
            expires_at=clock() + timedelta(hours=1),
        )
        with pytest.raises(ConcurrentOperationError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", idempotency_key="k-busy"), doc)
        assert exc.value.status_code == 409

    async def test_failure_releases_key_for_retry(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("EN_APROBACION")
        context = ctx(tenant_id, creator_id, doc, "REJECT", idempotency_key="k-retry")
        with pytest.raises(ReasonRequiredError):
            await run(gateway, context, doc)
        assert store.keys["k-retry"].status == FAILED

        context.reason_code = "DUPLICATE"
        result = await run(gateway, context, doc)
        assert result.to_state == "RECHAZADA"
        assert store.keys["k-retry"].status == COMPLETED

    async def test_expired_key_runs_again(self, gateway, store, clock, tenant_id, creator_id, make_document):
        doc = make_document("RECHAZADA")
        await run(gateway, ctx(tenant_id, creator_id, doc, "REVISE", idempotency_key="k-old"), doc)
        clock.advance(hours=25)
        with pytest.raises(InvalidTransitionError):
            await run(gateway, ctx(tenant_id, creator_id, doc, "REVISE", idempotency_key="k-old"), doc)

    async def test_key_reused_for_other_document_conflicts(self, gateway, store, tenant_id, creator_id, make_document):
        first, other = make_document("BORRADOR"), make_document("BORRADOR")
        await run(gateway, ctx(tenant_id, creator_id, first, "SUBMIT", idempotency_key="k-shared"), first)

        with pytest.raises(ConflictError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, other, "SUBMIT", idempotency_key="k-shared"), other)
        assert exc.value.details["entity_id"] == str(first.id)
        assert other.applied == []
        assert store.keys["k-shared"].status == COMPLETED

    async def test_key_reused_for_other_action_conflicts(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", idempotency_key="k-act"), doc)

        with pytest.raises(ConflictError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, doc, "CANCEL", idempotency_key="k-act"), doc)
        assert exc.value.details["action"] == "SUBMIT"
        assert doc.applied == ["EN_APROBACION"]


class TestSegregationOfDuties:
    async def test_creator_cannot_approve(self, gateway, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await gateway.record_creation(ctx(tenant_id, creator_id, doc, "CREATE"))
        await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT"), doc)
        with pytest.raises(SoDViolationError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, doc, "APPROVE"), doc)
        assert exc.value.code == "SOD_VIOLATION"
        assert exc.value.status_code == 403
        assert exc.value.details["rule_code"] == "PO_CREATOR_APPROVES"
        assert doc.status == "EN_APROBACION"

    async def test_rule_is_scoped_to_the_document(self, gateway, tenant_id, creator_id, make_document):
        other = make_document("BORRADOR")
        await gateway.record_creation(ctx(tenant_id, creator_id, other, "CREATE"))
        doc = make_document("EN_APROBACION")
        result = await run(gateway, ctx(tenant_id, creator_id, doc, "APPROVE"), doc)
        assert result.to_state == "APROBADA"

    async def test_override_requires_permission(self, gateway, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await gateway.record_creation(ctx(tenant_id, creator_id, doc, "CREATE"))
        await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT"), doc)

        with pytest.raises(PermissionDeniedError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, doc, "APPROVE", skip_sod=True), doc)
        assert exc.value.details["required"] == "lifecycle.sod.override"

        result = await run(
            gateway,
            ctx(tenant_id, creator_id, doc, "APPROVE", skip_sod=True, permissions=PO_PERMS | {"lifecycle.sod.override"}),
            doc,
        )
        assert result.sod_check["skipped"] is True

    async def test_tenant_rule_across_documents(self, gateway, store, clock, tenant_id, creator_id, make_document):
        store.sod_rules.append(
            (d.PURCHASE_ORDER, SoDRule("PO_SENDER_CONFIRMS", ("SEND",), "CONFIRM", scope=ANY_DOCUMENT))
        )
        sent = make_document("APROBADA")
        await run(gateway, ctx(tenant_id, creator_id, sent, "SEND"), sent)

        doc = make_document("ENVIADA_PROVEEDOR")
        with pytest.raises(SoDViolationError):
            await run(gateway, ctx(tenant_id, creator_id, doc, "CONFIRM"), doc)

        clock.advance(days=31)
        result = await run(gateway, ctx(tenant_id, creator_id, doc, "CONFIRM"), doc)
        assert result.sod_check["rules"] == ["PO_SENDER_CONFIRMS"]


class TestEligibility:
    async def test_refusal_carries_guard_code(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")

        async def empty():
            return Eligibility.refuse("Purchase order has no lines", code="PO_EMPTY")

        with pytest.raises(NotEligibleError) as exc:
            await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT", idempotency_key="k-el"), doc, empty)
        assert exc.value.code == "PO_EMPTY"
        assert exc.value.status_code == 409
        assert doc.status == "BORRADOR"
        assert store.keys["k-el"].status == FAILED

    async def test_success_is_recorded(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")

        async def fine():
            return Eligibility.ok()

        result = await run(gateway, ctx(tenant_id, creator_id, doc, "SUBMIT"), doc, fine)
        assert result.eligibility["eligible"] is True
        assert store.entries[-1].eligibility["eligible"] is True

    async def test_only_listed_actions_are_checked(self, gateway, tenant_id, creator_id, approver_id, make_document):
        doc = make_document("APROBADA")
        calls = []

        async def never():
            calls.append(1)
            return Eligibility.refuse("nope")

        result = await run(gateway, ctx(tenant_id, approver_id, doc, "SEND"), doc, never)
        assert result.to_state == "ENVIADA_PROVEEDOR"
        assert calls == []


class TestCreationAndDryRun:
    async def test_record_creation(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        result = await gateway.record_creation(ctx(tenant_id, creator_id, doc, "CREATE", metadata={"po_number": "OC-000001"}))
        assert result.from_state is None
        assert result.to_state == "BORRADOR"
        assert store.entries[0].details == {"po_number": "OC-000001"}

    async def test_record_creation_needs_create_permission(self, gateway, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        with pytest.raises(PermissionDeniedError):
            await gateway.record_creation(
                ctx(tenant_id, creator_id, doc, "CREATE", permissions=frozenset({"compras.ordenes.edit"}))
            )

    async def test_can_transition_does_not_apply(self, gateway, store, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        check = await gateway.can_transition(ctx(tenant_id, creator_id, doc, "SUBMIT"), load_state=doc.load_state)
        assert check.allowed
        assert check.to_state == "EN_APROBACION"
        assert doc.status == "BORRADOR"
        assert store.entries == []

    async def test_can_transition_reports_refusal(self, gateway, tenant_id, creator_id, make_document):
        doc = make_document("BORRADOR")
        await gateway.record_creation(ctx(tenant_id, creator_id, doc, "CREATE"))
        doc.status = "EN_APROBACION"
        check = await gateway.can_transition(ctx(tenant_id, creator_id, doc, "APPROVE"), load_state=doc.load_state)
        assert not check.allowed
        assert check.code == "SOD_VIOLATION"

        check = await gateway.can_transition(
            ctx(tenant_id, uuid.uuid4(), doc, "SEND"), load_state=doc.load_state
        )
        assert check.code == "INVALID_TRANSITION"
