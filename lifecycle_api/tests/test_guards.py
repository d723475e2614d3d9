"""
Tests for document eligibility guards.

Guards take already-loaded documents, so plain SimpleNamespace objects stand
in for ORM rows.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace as NS

import pytest

from src.services import guards

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def po_line(no, ordered, received="0"):
    return NS(line_no=no, qty_ordered=Decimal(ordered), qty_received=Decimal(received))


@pytest.fixture
def purchase_order():
    return NS(lines=[po_line(1, "10"), po_line(2, "5", "2")])


class TestProcurement:
    def test_submittable(self, purchase_order):
        assert guards.purchase_order_submittable(purchase_order).eligible

    def test_empty_order(self):
        result = guards.purchase_order_submittable(NS(lines=[]))
        assert not result.eligible
        assert result.code == "PO_EMPTY"

    def test_zero_quantity_line(self):
        result = guards.purchase_order_submittable(NS(lines=[po_line(1, "3"), po_line(2, "0")]))
        assert result.code == "PO_INVALID_QTY"
        assert result.details["lines"] == [2]

    def test_partial_receipt(self, purchase_order):
        action, result = guards.receipt_action(purchase_order, {1: Decimal("4")})
        assert result.eligible
        assert action == "RECEIVE_PARTIAL"

    def test_full_receipt(self, purchase_order):
        action, result = guards.receipt_action(purchase_order, {1: Decimal("10"), 2: Decimal("3")})
        assert result.eligible
        assert action == "RECEIVE_ALL"

    def test_over_receipt(self, purchase_order):
        _, result = guards.receipt_action(purchase_order, {2: Decimal("4")})
        assert result.code == "PO_OVER_RECEIPT"
        assert result.details["lines"] == [2]

    def test_unknown_line(self, purchase_order):
        _, result = guards.receipt_action(purchase_order, {9: Decimal("1")})
        assert result.code == "PO_UNKNOWN_LINE"

    @pytest.mark.parametrize("received", [{}, {1: Decimal("0")}, {1: Decimal("-2")}])
    def test_invalid_quantities(self, purchase_order, received):
        _, result = guards.receipt_action(purchase_order, received)
        assert result.code == "PO_INVALID_QTY"


class TestReturns:
    def test_requestable(self):
        doc = NS(lines=[NS(item_sku="A", quantity=Decimal("1"))])
        assert guards.return_requestable(doc).eligible
        assert guards.return_requestable(NS(lines=[])).code == "RETURN_EMPTY"
        bad = NS(lines=[NS(item_sku="A", quantity=Decimal("0"))])
        assert guards.return_requestable(bad).code == "RETURN_INVALID_QTY"

    def test_shippable_sums_lines_per_item(self):
        doc = NS(lines=[NS(item_sku="A", quantity=Decimal("3")), NS(item_sku="A", quantity=Decimal("2"))])
        assert guards.return_shippable(doc, {"A": Decimal("5")}).eligible
        result = guards.return_shippable(doc, {"A": Decimal("4")})
        assert result.code == "INSUFFICIENT_STOCK"
        assert result.details["shortage"] == {"A": "1"}

    def test_missing_item_counts_as_zero(self):
        doc = NS(lines=[NS(item_sku="B", quantity=Decimal("1"))])
        assert guards.return_shippable(doc, {}).code == "INSUFFICIENT_STOCK"


class TestInventory:
    def test_adjustment_needs_non_zero_lines(self):
        assert guards.adjustment_submittable(NS(lines=[])).code == "ADJUSTMENT_EMPTY"
        zero = NS(lines=[NS(item_sku="A", quantity_delta=Decimal("0"))])
        assert guards.adjustment_submittable(zero).code == "ADJUSTMENT_EMPTY"
        ok = NS(lines=[NS(item_sku="A", quantity_delta=Decimal("-1"))])
        assert guards.adjustment_submittable(ok).eligible

    def test_negative_stock_refused(self):
        adj = NS(lines=[NS(item_sku="A", quantity_delta=Decimal("-3")), NS(item_sku="A", quantity_delta=Decimal("-3"))])
        assert guards.adjustment_applicable(adj, {"A": Decimal("6")}).eligible
        result = guards.adjustment_applicable(adj, {"A": Decimal("5")})
        assert result.code == "NEGATIVE_STOCK"
        assert result.details["resulting"] == {"A": "-1"}


def invoice(status="EMITIDA", total="100", balance="100", lines=1, due=None):
    return NS(
        status=status,
        total=Decimal(total),
        balance_due=Decimal(balance),
        lines=[NS()] * lines,
        due_date=due,
    )


class TestSales:
    def test_issuable(self):
        assert guards.invoice_issuable(invoice(status="BORRADOR")).eligible
        assert guards.invoice_issuable(invoice(lines=0)).code == "INVOICE_EMPTY"
        assert guards.invoice_issuable(invoice(total="0")).code == "INVOICE_ZERO_TOTAL"

    def test_voidable(self):
        assert guards.invoice_voidable(invoice()).eligible
        assert guards.invoice_voidable(invoice(status="BORRADOR", balance="0")).eligible
        assert guards.invoice_voidable(invoice(balance="40")).code == "INVOICE_HAS_PAYMENTS"

    def test_overdue(self):
        today = date(2026, 3, 2)
        assert guards.invoice_overdue(invoice(due=today - timedelta(days=1)), today).eligible
        assert guards.invoice_overdue(invoice(due=today), today).code == "INVOICE_NOT_DUE"
        assert guards.invoice_overdue(invoice(due=None), today).code == "INVOICE_NOT_DUE"

    def test_payment_action(self):
        inv = invoice(balance="60")
        assert guards.payment_action(inv, Decimal("20"))[0] == "COLLECT_PARTIAL"
        action, result = guards.payment_action(inv, Decimal("60"))
        assert action == "COLLECT_ALL"
        assert result.eligible
        assert guards.payment_action(inv, Decimal("60.01"))[1].code == "OVERPAYMENT"
        assert guards.payment_action(inv, Decimal("0"))[1].code == "INVALID_AMOUNT"


def permit(**overrides):
    data = dict(
        hazards_identified=["H2S"],
        control_measures=["gas test"],
        required_ppe=["SCBA"],
        valid_from=NOW - timedelta(hours=1),
        valid_to=NOW + timedelta(hours=7),
        requires_loto=False,
    )
    data.update(overrides)
    return NS(**data)


class TestSafety:
    def test_submittable(self):
        assert guards.permit_submittable(permit()).eligible
        result = guards.permit_submittable(permit(required_ppe=[], control_measures=None))
        assert result.code == "PTW_INCOMPLETE"
        assert result.details["missing"] == ["control_measures", "required_ppe"]
        assert guards.permit_submittable(permit(valid_to=NOW - timedelta(hours=1))).code == "PTW_INVALID_WINDOW"

    def test_activatable_window(self):
        assert guards.permit_activatable(permit(), NOW, None).eligible
        late = NOW + timedelta(hours=8)
        assert guards.permit_activatable(permit(), late, None).code == "PTW_OUTSIDE_WINDOW"

    def test_naive_datetimes_treated_as_utc(self):
        naive = permit(valid_from=datetime(2026, 3, 2, 8, 0), valid_to=datetime(2026, 3, 2, 18, 0))
        assert guards.permit_activatable(naive, NOW, None).eligible

    def test_activation_needs_locked_loto(self):
        p = permit(requires_loto=True)
        assert guards.permit_activatable(p, NOW, "LOCKED").eligible
        assert guards.permit_activatable(p, NOW, "PARTIAL").code == "LOTO_NOT_LOCKED"
        assert guards.permit_activatable(p, NOW, None).code == "LOTO_NOT_LOCKED"

    def test_expirable(self):
        assert guards.permit_expirable(permit(), NOW).code == "PTW_NOT_EXPIRED"
        assert guards.permit_expirable(permit(), NOW + timedelta(hours=7)).eligible

    def test_loto_releasable(self):
        assert guards.loto_releasable(["CLOSED", "DRAFT"]).eligible
        result = guards.loto_releasable(["SUSPENDED", "CLOSED"])
        assert result.code == "PTW_STILL_ACTIVE"
        assert result.details["permits"] == ["SUSPENDED"]


class TestReleaseAction:
    locks = [{"id": "L1", "released": False}, {"id": "L2", "released": False}, {"id": "L3", "released": True}]

    def test_partial_release(self):
        action, updated, result = guards.release_action(self.locks, ["L1"])
        assert result.eligible
        assert action == "RELEASE_PARTIAL"
        assert [lk["released"] for lk in updated] == [True, False, True]
        assert self.locks[0]["released"] is False

    def test_release_all_remaining(self):
        action, updated, result = guards.release_action(self.locks, None)
        assert action == "RELEASE_ALL"
        assert all(lk["released"] for lk in updated)

    def test_explicit_ids_covering_remaining(self):
        action, _, _ = guards.release_action(self.locks, ["L1", "L2"])
        assert action == "RELEASE_ALL"

    def test_unknown_or_released_lock(self):
        _, updated, result = guards.release_action(self.locks, ["L3"])
        assert result.code == "LOTO_UNKNOWN_LOCK"
        assert result.details["locks"] == ["L3"]
        assert updated is self.locks


class TestMaintenance:
    def test_startable(self):
        assert guards.work_order_startable(NS(requires_ptw=False), []).eligible
        assert guards.work_order_startable(NS(requires_ptw=True), ["APPROVED"]).code == "PTW_REQUIRED"
        assert guards.work_order_startable(NS(requires_ptw=True), ["ACTIVE"]).eligible

    def test_completable(self):
        assert guards.work_order_completable(["CLOSED"], ["UNLOCKED"]).eligible
        assert guards.work_order_completable(["ACTIVE"], []).code == "PTW_STILL_ACTIVE"
        assert guards.work_order_completable(["CLOSED"], ["PARTIAL"]).code == "LOTO_STILL_APPLIED"
