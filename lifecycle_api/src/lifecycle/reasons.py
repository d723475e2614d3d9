"""
Reason-code catalogue for transitions that must be justified
(rejections, voids, cancellations, suspensions, holds).
"""
from __future__ import annotations

from typing import Dict, Optional

from src.lifecycle.errors import ReasonRequiredError
from src.lifecycle.machine import StateMachine

OTHER = "OTHER"
MIN_OTHER_TEXT_LENGTH = 10

_COMMON: Dict[str, str] = {
    "DUPLICATE": "Duplicated document",
    "DATA_ENTRY_ERROR": "Data entry error",
    OTHER: "Other (explain in reason text)",
}

REASON_CODES: Dict[str, Dict[str, str]] = {
    "PurchaseOrder": {
        "PRICE_MISMATCH": "Price does not match quotation",
        "SUPPLIER_UNAVAILABLE": "Supplier cannot deliver",
        "BUDGET_EXCEEDED": "Budget exceeded",
        "NO_LONGER_NEEDED": "Requirement withdrawn",
        **_COMMON,
    },
    "PurchaseReturn": {
        "SUPPLIER_REFUSED": "Supplier refused the return",
        "GOODS_REPAIRED": "Goods repaired in house",
        "AGREEMENT_REACHED": "Commercial agreement reached",
        **_COMMON,
    },
    "SalesReturn": {
        "OUT_OF_WARRANTY": "Out of warranty",
        "CUSTOMER_DAMAGE": "Damage caused by customer",
        "NOT_OUR_PRODUCT": "Item was not supplied by us",
        **_COMMON,
    },
    "StockAdjustment": {
        "COUNT_DISPUTED": "Physical count disputed",
        "MISSING_EVIDENCE": "Missing supporting evidence",
        **_COMMON,
    },
    "SalesInvoice": {
        "WRONG_CUSTOMER": "Issued to the wrong customer",
        "WRONG_AMOUNT": "Wrong amounts or taxes",
        "ORDER_CANCELLED": "Underlying order cancelled",
        **_COMMON,
    },
    "PermitToWork": {
        "HAZARD_NOT_CONTROLLED": "Hazard not adequately controlled",
        "INCOMPLETE_PPE": "Required PPE missing",
        "UNSAFE_CONDITION": "Unsafe condition detected on site",
        "WEATHER": "Weather conditions",
        "WORK_NOT_REQUIRED": "Work no longer required",
        **_COMMON,
    },
    "MaintenanceWorkOrder": {
        "WAITING_PARTS": "Waiting for spare parts",
        "WAITING_PERMIT": "Waiting for permit to work",
        "PRODUCTION_PRIORITY": "Production priority",
        "WORK_NOT_REQUIRED": "Work no longer required",
        **_COMMON,
    },
}


def reason_catalog(entity_type: str) -> Dict[str, str]:
    return dict(REASON_CODES.get(entity_type, _COMMON))


# PUBLIC_INTERFACE
def validate_reason(
    machine: StateMachine,
    action: str,
    reason_code: Optional[str],
    reason_text: Optional[str],
) -> None:
    """
    Ensure `action` carries an acceptable reason when the machine requires one.

    Raises:
        ReasonRequiredError: code missing, unknown for the entity type, or
            OTHER without a sufficiently descriptive text.
    """
    if not machine.requires_reason(action):
        return

    catalog = reason_catalog(machine.entity_type)
    details = {"entity_type": machine.entity_type, "action": action, "allowed": sorted(catalog)}
    if not reason_code:
        raise ReasonRequiredError(f"Action {action} requires a reason code", details=details)
    if reason_code not in catalog:
        raise ReasonRequiredError(
            f"Reason code {reason_code} is not valid for {machine.entity_type}", details=details
        )
    if reason_code == OTHER and len((reason_text or "").strip()) < MIN_OTHER_TEXT_LENGTH:
        raise ReasonRequiredError(
            f"Reason code {OTHER} requires a reason text of at least {MIN_OTHER_TEXT_LENGTH} characters",
            details=details,
        )
