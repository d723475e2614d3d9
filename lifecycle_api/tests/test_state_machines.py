"""
Tests for the state machine definitions and registry.
"""
import pytest

from src.lifecycle import definitions as d
from src.lifecycle.errors import InvalidTransitionError, UnknownEntityError
from src.lifecycle.machine import CREATE_ACTION, MachineRegistry, SoDRule, StateMachine, Transition


class TestRegistry:
    def test_all_document_families_registered(self):
        assert d.REGISTRY.entity_types() == sorted(
            [
                "LOTOExecution",
                "MaintenanceWorkOrder",
                "PermitToWork",
                "PurchaseOrder",
                "PurchaseReturn",
                "SalesInvoice",
                "SalesReturn",
                "StockAdjustment",
            ]
        )

    def test_unknown_entity_type(self):
        with pytest.raises(UnknownEntityError) as exc:
            d.REGISTRY.get("Quotation")
        assert exc.value.code == "UNKNOWN_ENTITY_TYPE"
        assert exc.value.status_code == 404
        assert "PurchaseOrder" in exc.value.details["known"]

    def test_contains_and_iteration_order(self):
        assert d.PURCHASE_ORDER in d.REGISTRY
        assert "Quotation" not in d.REGISTRY
        assert [m.entity_type for m in d.REGISTRY] == d.REGISTRY.entity_types()

    def test_duplicate_registration_rejected(self):
        registry = MachineRegistry((d.LOTO_EXECUTION_MACHINE,))
        with pytest.raises(ValueError):
            registry.register(d.LOTO_EXECUTION_MACHINE)


class TestMachineDefinition:
    def test_final_state_cannot_have_transitions(self):
        with pytest.raises(ValueError):
            StateMachine(
                entity_type="Broken",
                initial_state="A",
                transitions=(Transition("A", "GO", "B"), Transition("B", "BACK", "A")),
                final_states=frozenset({"B"}),
            )

    def test_duplicate_action_from_same_state_rejected(self):
        with pytest.raises(ValueError):
            StateMachine(
                entity_type="Broken",
                initial_state="A",
                transitions=(Transition("A", "GO", "B"), Transition("A", "GO", "C")),
            )

    @pytest.mark.parametrize("machine", list(d.REGISTRY), ids=lambda m: m.entity_type)
    def test_every_action_has_a_permission(self, machine):
        for action in machine.actions | {CREATE_ACTION}:
            assert machine.permission_for(action), f"{machine.entity_type}.{action}"

    @pytest.mark.parametrize("machine", list(d.REGISTRY), ids=lambda m: m.entity_type)
    def test_final_states_offer_no_actions(self, machine):
        assert machine.final_states
        for state in machine.final_states:
            assert machine.available_actions(state) == []

    @pytest.mark.parametrize("machine", list(d.REGISTRY), ids=lambda m: m.entity_type)
    def test_guarded_actions_exist(self, machine):
        assert machine.reason_required <= machine.actions
        assert machine.eligibility_actions <= machine.actions
        for rule in machine.sod_rules:
            assert rule.second_action in machine.actions


class TestPurchaseOrderMachine:
    machine = d.PURCHASE_ORDER_MACHINE

    def test_happy_path(self):
        state = self.machine.initial_state
        for action in ("SUBMIT", "APPROVE", "SEND", "CONFIRM", "RECEIVE_PARTIAL", "RECEIVE_ALL"):
            state = self.machine.target_for(state, action)
        assert state == "COMPLETADA"
        assert self.machine.is_final(state)

    def test_rejection_and_revision(self):
        assert self.machine.target_for("EN_APROBACION", "REJECT") == "RECHAZADA"
        assert self.machine.target_for("RECHAZADA", "REVISE") == "BORRADOR"

    def test_disallowed_action_lists_allowed(self):
        with pytest.raises(InvalidTransitionError) as exc:
            self.machine.target_for("BORRADOR", "APPROVE")
        assert exc.value.code == "INVALID_TRANSITION"
        assert exc.value.details["allowed"] == ["SUBMIT", "VOID"]

    def test_final_state_refuses(self):
        with pytest.raises(InvalidTransitionError, match="final"):
            self.machine.target_for("ANULADA", "SUBMIT")

    def test_unknown_and_missing_state(self):
        with pytest.raises(InvalidTransitionError):
            self.machine.target_for("PERDIDA", "SUBMIT")
        with pytest.raises(InvalidTransitionError):
            self.machine.target_for(None, "SUBMIT")

    def test_guards(self):
        assert self.machine.requires_reason("REJECT")
        assert not self.machine.requires_reason("APPROVE")
        assert self.machine.requires_eligibility("RECEIVE_ALL")
        assert [r.code for r in self.machine.sod_rules_for("APPROVE")] == ["PO_CREATOR_APPROVES"]
        assert self.machine.sod_rules_for("SEND") == []


class TestOtherMachines:
    def test_invoice_collections(self):
        m = d.SALES_INVOICE_MACHINE
        assert m.target_for("EMITIDA", "COLLECT_PARTIAL") == "PARCIALMENTE_COBRADA"
        assert m.target_for("PARCIALMENTE_COBRADA", "COLLECT_ALL") == "COBRADA"
        assert m.target_for("VENCIDA", "COLLECT_ALL") == "COBRADA"
        with pytest.raises(InvalidTransitionError):
            m.target_for("PARCIALMENTE_COBRADA", "VOID")

    def test_permit_suspend_resume(self):
        m = d.PERMIT_TO_WORK_MACHINE
        assert m.target_for("ACTIVE", "SUSPEND") == "SUSPENDED"
        assert m.target_for("SUSPENDED", "RESUME") == "ACTIVE"
        assert m.requires_reason("SUSPEND")

    def test_loto_release(self):
        m = d.LOTO_EXECUTION_MACHINE
        assert m.target_for("LOCKED", "RELEASE_PARTIAL") == "PARTIAL"
        assert m.target_for("PARTIAL", "RELEASE_ALL") == "UNLOCKED"
        assert m.available_actions("UNLOCKED") == []

    def test_work_order_hold_needs_reason(self):
        m = d.WORK_ORDER_MACHINE
        assert m.target_for("IN_PROGRESS", "HOLD") == "ON_HOLD"
        assert m.requires_reason("HOLD")
        assert m.requires_eligibility("COMPLETE")

    def test_adjustment_sod(self):
        rules = d.STOCK_ADJUSTMENT_MACHINE.sod_rules_for("APPROVE")
        assert rules == [SoDRule("ADJUSTMENT_CREATOR_APPROVES", (CREATE_ACTION,), "APPROVE")]


class TestDescribeAndCatalog:
    def test_describe(self):
        data = d.PURCHASE_ORDER_MACHINE.describe()
        assert data["entity_type"] == "PurchaseOrder"
        assert data["label"] == "Purchase order"
        assert data["initial_state"] == "BORRADOR"
        assert data["states"][0] == "BORRADOR"
        assert {"from": "BORRADOR", "action": "SUBMIT", "to": "EN_APROBACION"} in data["transitions"]
        assert data["sod_rules"][0]["scope"] == "SAME_DOCUMENT"

    def test_permission_catalog(self):
        catalog = d.permission_catalog()
        assert catalog == sorted(set(catalog))
        assert "admin:all" in catalog
        assert "compras.ordenes.approve" in catalog
        assert "ptw.activate" in catalog
        assert "loto.release" in catalog
