"""
Document-specific eligibility guards.

Each guard inspects already-loaded documents (any object exposing the named
attributes) and returns an Eligibility. They never touch the database, so
services gather the related rows first and tests can pass plain objects.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.lifecycle.gateway import Eligibility

ZERO = Decimal("0")

LIVE_PERMIT_STATES = ("ACTIVE", "SUSPENDED")
APPLIED_LOTO_STATES = ("LOCKED", "PARTIAL")


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# Procurement

def purchase_order_submittable(order) -> Eligibility:
    lines = list(order.lines or [])
    if not lines:
        return Eligibility.refuse("Purchase order has no lines", code="PO_EMPTY")
    bad = [ln.line_no for ln in lines if _dec(ln.qty_ordered) <= ZERO]
    if bad:
        return Eligibility.refuse("All lines must have a positive quantity", code="PO_INVALID_QTY", lines=bad)
    return Eligibility.ok()


def receipt_action(order, received: Dict[int, Decimal]) -> Tuple[str, Eligibility]:
    """
    Decide RECEIVE_PARTIAL vs RECEIVE_ALL for quantities keyed by line number.

    Receiving more than is pending on any line is refused.
    """
    by_no = {ln.line_no: ln for ln in order.lines or []}
    unknown = sorted(set(received) - set(by_no))
    if unknown:
        return "RECEIVE_PARTIAL", Eligibility.refuse(
            "Unknown purchase order lines", code="PO_UNKNOWN_LINE", lines=unknown
        )
    if not received or any(_dec(q) <= ZERO for q in received.values()):
        return "RECEIVE_PARTIAL", Eligibility.refuse(
            "Received quantities must be positive", code="PO_INVALID_QTY"
        )

    over: List[int] = []
    complete = True
    for no, ln in by_no.items():
        pending = _dec(ln.qty_ordered) - _dec(ln.qty_received)
        qty = _dec(received.get(no, ZERO))
        if qty > pending:
            over.append(no)
        if qty < pending:
            complete = False
    if over:
        return "RECEIVE_PARTIAL", Eligibility.refuse(
            "Received quantity exceeds the pending quantity", code="PO_OVER_RECEIPT", lines=over
        )
    return ("RECEIVE_ALL" if complete else "RECEIVE_PARTIAL"), Eligibility.ok()


def return_requestable(doc) -> Eligibility:
    lines = list(doc.lines or [])
    if not lines:
        return Eligibility.refuse("Return has no lines", code="RETURN_EMPTY")
    if any(_dec(ln.quantity) <= ZERO for ln in lines):
        return Eligibility.refuse("Returned quantities must be positive", code="RETURN_INVALID_QTY")
    return Eligibility.ok()


def return_shippable(doc, on_hand: Dict[str, Decimal]) -> Eligibility:
    """All returned items must be available at the return's location."""
    needed: Dict[str, Decimal] = {}
    for ln in doc.lines or []:
        needed[ln.item_sku] = needed.get(ln.item_sku, ZERO) + _dec(ln.quantity)
    short = {sku: str(qty - _dec(on_hand.get(sku))) for sku, qty in needed.items() if _dec(on_hand.get(sku)) < qty}
    if short:
        return Eligibility.refuse("Insufficient stock to ship the return", code="INSUFFICIENT_STOCK", shortage=short)
    return Eligibility.ok()


# Inventory

def adjustment_submittable(adjustment) -> Eligibility:
    lines = list(adjustment.lines or [])
    if not lines or all(_dec(ln.quantity_delta) == ZERO for ln in lines):
        return Eligibility.refuse("Adjustment has no non-zero lines", code="ADJUSTMENT_EMPTY")
    return Eligibility.ok()


def adjustment_applicable(adjustment, on_hand: Dict[str, Decimal]) -> Eligibility:
    """Applying the deltas must not leave negative stock."""
    result: Dict[str, Decimal] = {}
    for ln in adjustment.lines or []:
        base = result.get(ln.item_sku, _dec(on_hand.get(ln.item_sku)))
        result[ln.item_sku] = base + _dec(ln.quantity_delta)
    negative = {sku: str(q) for sku, q in result.items() if q < ZERO}
    if negative:
        return Eligibility.refuse(
            "Adjustment would leave negative stock", code="NEGATIVE_STOCK", resulting=negative
        )
    return Eligibility.ok()


# Sales

def invoice_issuable(invoice) -> Eligibility:
    if not list(invoice.lines or []):
        return Eligibility.refuse("Invoice has no lines", code="INVOICE_EMPTY")
    if _dec(invoice.total) <= ZERO:
        return Eligibility.refuse("Invoice total must be positive", code="INVOICE_ZERO_TOTAL")
    return Eligibility.ok()


def invoice_voidable(invoice) -> Eligibility:
    if invoice.status != "BORRADOR" and _dec(invoice.balance_due) < _dec(invoice.total):
        return Eligibility.refuse("Invoice has collections and cannot be voided", code="INVOICE_HAS_PAYMENTS")
    return Eligibility.ok()


def invoice_overdue(invoice, today: date) -> Eligibility:
    if invoice.due_date is None or invoice.due_date >= today:
        return Eligibility.refuse("Invoice is not past its due date", code="INVOICE_NOT_DUE")
    return Eligibility.ok()


def payment_action(invoice, amount: Decimal) -> Tuple[str, Eligibility]:
    """COLLECT_ALL when the payment settles the balance, otherwise COLLECT_PARTIAL."""
    amount = _dec(amount)
    balance = _dec(invoice.balance_due)
    if amount <= ZERO:
        return "COLLECT_PARTIAL", Eligibility.refuse("Payment amount must be positive", code="INVALID_AMOUNT")
    if amount > balance:
        return "COLLECT_PARTIAL", Eligibility.refuse(
            "Payment exceeds the invoice balance", code="OVERPAYMENT", balance_due=str(balance)
        )
    return ("COLLECT_ALL" if balance - amount <= ZERO else "COLLECT_PARTIAL"), Eligibility.ok()


# Safety

def permit_submittable(permit) -> Eligibility:
    missing = [
        name
        for name, value in (
            ("hazards_identified", permit.hazards_identified),
            ("control_measures", permit.control_measures),
            ("required_ppe", permit.required_ppe),
        )
        if not value
    ]
    if missing:
        return Eligibility.refuse("Permit is incomplete", code="PTW_INCOMPLETE", missing=missing)
    if _utc(permit.valid_to) <= _utc(permit.valid_from):
        return Eligibility.refuse("Permit validity window is empty", code="PTW_INVALID_WINDOW")
    return Eligibility.ok()


def permit_activatable(permit, now: datetime, loto_status: Optional[str]) -> Eligibility:
    if not (_utc(permit.valid_from) <= _utc(now) < _utc(permit.valid_to)):
        return Eligibility.refuse(
            "Permit is outside its validity window",
            code="PTW_OUTSIDE_WINDOW",
            valid_from=_utc(permit.valid_from).isoformat(),
            valid_to=_utc(permit.valid_to).isoformat(),
        )
    if permit.requires_loto and loto_status != "LOCKED":
        return Eligibility.refuse(
            "Permit requires an applied LOTO before activation", code="LOTO_NOT_LOCKED", loto_status=loto_status
        )
    return Eligibility.ok()


def permit_expirable(permit, now: datetime) -> Eligibility:
    if _utc(now) < _utc(permit.valid_to):
        return Eligibility.refuse("Permit has not reached its end of validity", code="PTW_NOT_EXPIRED")
    return Eligibility.ok()


def loto_releasable(permit_states: Iterable[str]) -> Eligibility:
    live = sorted({s for s in permit_states if s in LIVE_PERMIT_STATES})
    if live:
        return Eligibility.refuse(
            "Locks cannot be released while a linked permit is live", code="PTW_STILL_ACTIVE", permits=live
        )
    return Eligibility.ok()


def release_action(locks: List[dict], lock_ids: Optional[Iterable[str]]) -> Tuple[str, List[dict], Eligibility]:
    """
    Mark the requested locks as released and choose RELEASE_PARTIAL or RELEASE_ALL.

    `lock_ids=None` releases every remaining lock.
    """
    remaining = {str(lk["id"]) for lk in locks if not lk.get("released")}
    wanted = remaining if lock_ids is None else {str(i) for i in lock_ids}
    unknown = sorted(wanted - remaining)
    if unknown or not wanted:
        return "RELEASE_PARTIAL", locks, Eligibility.refuse(
            "Unknown or already released locks", code="LOTO_UNKNOWN_LOCK", locks=unknown
        )
    updated = [dict(lk, released=True) if str(lk["id"]) in wanted else dict(lk) for lk in locks]
    action = "RELEASE_ALL" if wanted == remaining else "RELEASE_PARTIAL"
    return action, updated, Eligibility.ok()


# Maintenance

def work_order_startable(work_order, permit_states: Iterable[str]) -> Eligibility:
    if work_order.requires_ptw and "ACTIVE" not in set(permit_states):
        return Eligibility.refuse("Work order requires an active permit to work", code="PTW_REQUIRED")
    return Eligibility.ok()


def work_order_completable(permit_states: Iterable[str], loto_states: Iterable[str]) -> Eligibility:
    live = sorted({s for s in permit_states if s in LIVE_PERMIT_STATES})
    if live:
        return Eligibility.refuse("Close linked permits before completing", code="PTW_STILL_ACTIVE", permits=live)
    locked = sorted({s for s in loto_states if s in APPLIED_LOTO_STATES})
    if locked:
        return Eligibility.refuse("Release linked LOTO locks before completing", code="LOTO_STILL_APPLIED", loto=locked)
    return Eligibility.ok()
