"""
Lifecycle definitions for every document family handled by the API.

States keep the business status codes stored on the documents; actions are
the verbs exposed by the transition endpoints.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from src.lifecycle.machine import (
    CREATE_ACTION,
    MachineRegistry,
    SoDRule,
    StateMachine,
    Transition,
)

PURCHASE_ORDER = "PurchaseOrder"
PURCHASE_RETURN = "PurchaseReturn"
SALES_RETURN = "SalesReturn"
STOCK_ADJUSTMENT = "StockAdjustment"
SALES_INVOICE = "SalesInvoice"
PERMIT_TO_WORK = "PermitToWork"
LOTO_EXECUTION = "LOTOExecution"
WORK_ORDER = "MaintenanceWorkOrder"


def _table(rows: Iterable[Tuple[str, Iterable[Tuple[str, str]]]]) -> Tuple[Transition, ...]:
    return tuple(Transition(src, action, dst) for src, pairs in rows for action, dst in pairs)


PURCHASE_ORDER_MACHINE = StateMachine(
    entity_type=PURCHASE_ORDER,
    label="Purchase order",
    initial_state="BORRADOR",
    transitions=_table(
        [
            ("BORRADOR", [("SUBMIT", "EN_APROBACION"), ("VOID", "ANULADA")]),
            ("EN_APROBACION", [("APPROVE", "APROBADA"), ("REJECT", "RECHAZADA")]),
            ("RECHAZADA", [("REVISE", "BORRADOR"), ("VOID", "ANULADA")]),
            ("APROBADA", [("SEND", "ENVIADA_PROVEEDOR"), ("VOID", "ANULADA")]),
            ("ENVIADA_PROVEEDOR", [("CONFIRM", "CONFIRMADA"), ("CANCEL", "CANCELADA")]),
            (
                "CONFIRMADA",
                [
                    ("RECEIVE_PARTIAL", "PARCIALMENTE_RECIBIDA"),
                    ("RECEIVE_ALL", "COMPLETADA"),
                    ("CLOSE", "COMPLETADA"),
                ],
            ),
            (
                "PARCIALMENTE_RECIBIDA",
                [
                    ("RECEIVE_PARTIAL", "PARCIALMENTE_RECIBIDA"),
                    ("RECEIVE_ALL", "COMPLETADA"),
                    ("CLOSE", "COMPLETADA"),
                ],
            ),
        ]
    ),
    final_states=frozenset({"COMPLETADA", "CANCELADA", "ANULADA"}),
    permissions={
        CREATE_ACTION: "compras.ordenes.create",
        "SUBMIT": "compras.ordenes.edit",
        "REVISE": "compras.ordenes.edit",
        "APPROVE": "compras.ordenes.approve",
        "REJECT": "compras.ordenes.approve",
        "SEND": "compras.ordenes.send",
        "CONFIRM": "compras.ordenes.send",
        "RECEIVE_PARTIAL": "compras.recepciones.create",
        "RECEIVE_ALL": "compras.recepciones.create",
        "CLOSE": "compras.ordenes.close",
        "CANCEL": "compras.ordenes.cancel",
        "VOID": "compras.ordenes.cancel",
    },
    reason_required=frozenset({"REJECT", "VOID", "CANCEL"}),
    sod_rules=(SoDRule("PO_CREATOR_APPROVES", (CREATE_ACTION, "SUBMIT"), "APPROVE"),),
    eligibility_actions=frozenset({"SUBMIT", "RECEIVE_PARTIAL", "RECEIVE_ALL"}),
)

PURCHASE_RETURN_MACHINE = StateMachine(
    entity_type=PURCHASE_RETURN,
    label="Return to supplier",
    initial_state="BORRADOR",
    transitions=_table(
        [
            ("BORRADOR", [("REQUEST", "SOLICITADA"), ("CANCEL", "CANCELADA")]),
            ("SOLICITADA", [("SUPPLIER_APPROVE", "APROBADA_PROVEEDOR"), ("REJECT", "RECHAZADA")]),
            ("APROBADA_PROVEEDOR", [("SHIP", "ENVIADA"), ("CANCEL", "CANCELADA")]),
            ("ENVIADA", [("SUPPLIER_RECEIVE", "RECIBIDA_PROVEEDOR"), ("CANCEL", "CANCELADA")]),
            (
                "RECIBIDA_PROVEEDOR",
                [("EVALUATE", "EN_EVALUACION"), ("RESOLVE", "RESUELTA"), ("CANCEL", "CANCELADA")],
            ),
            ("EN_EVALUACION", [("RESOLVE", "RESUELTA"), ("REJECT", "RECHAZADA")]),
        ]
    ),
    final_states=frozenset({"RESUELTA", "RECHAZADA", "CANCELADA"}),
    permissions={
        CREATE_ACTION: "compras.devoluciones.create",
        "REQUEST": "compras.devoluciones.edit",
        "SHIP": "compras.devoluciones.edit",
        "SUPPLIER_RECEIVE": "compras.devoluciones.edit",
        "SUPPLIER_APPROVE": "compras.devoluciones.approve",
        "EVALUATE": "compras.devoluciones.approve",
        "RESOLVE": "compras.devoluciones.approve",
        "REJECT": "compras.devoluciones.approve",
        "CANCEL": "compras.devoluciones.delete",
    },
    reason_required=frozenset({"REJECT", "CANCEL"}),
    eligibility_actions=frozenset({"REQUEST", "SHIP"}),
)

SALES_RETURN_MACHINE = StateMachine(
    entity_type=SALES_RETURN,
    label="Customer return",
    initial_state="PENDIENTE_REVISION",
    transitions=_table(
        [
            ("PENDIENTE_REVISION", [("ACCEPT", "ACEPTADA"), ("REJECT", "RECHAZADA")]),
            ("ACEPTADA", [("PROCESS", "PROCESADA")]),
        ]
    ),
    final_states=frozenset({"RECHAZADA", "PROCESADA"}),
    permissions={
        CREATE_ACTION: "ventas.devoluciones.create",
        "ACCEPT": "ventas.devoluciones.approve",
        "REJECT": "ventas.devoluciones.approve",
        "PROCESS": "ventas.devoluciones.process",
    },
    reason_required=frozenset({"REJECT"}),
)

STOCK_ADJUSTMENT_MACHINE = StateMachine(
    entity_type=STOCK_ADJUSTMENT,
    label="Stock adjustment",
    initial_state="BORRADOR",
    transitions=_table(
        [
            ("BORRADOR", [("SUBMIT", "PENDIENTE_APROBACION"), ("VOID", "ANULADO")]),
            ("PENDIENTE_APROBACION", [("APPROVE", "CONFIRMADO"), ("REJECT", "RECHAZADO")]),
        ]
    ),
    final_states=frozenset({"CONFIRMADO", "RECHAZADO", "ANULADO"}),
    permissions={
        CREATE_ACTION: "compras.stock.ajustes",
        "SUBMIT": "compras.stock.ajustes",
        "VOID": "compras.stock.ajustes",
        "APPROVE": "compras.stock.ajustes.approve",
        "REJECT": "compras.stock.ajustes.approve",
    },
    reason_required=frozenset({"REJECT", "VOID"}),
    sod_rules=(SoDRule("ADJUSTMENT_CREATOR_APPROVES", (CREATE_ACTION,), "APPROVE"),),
    eligibility_actions=frozenset({"SUBMIT", "APPROVE"}),
)

_COLLECTABLE = [("COLLECT_PARTIAL", "PARCIALMENTE_COBRADA"), ("COLLECT_ALL", "COBRADA")]

SALES_INVOICE_MACHINE = StateMachine(
    entity_type=SALES_INVOICE,
    label="Sales invoice",
    initial_state="BORRADOR",
    transitions=_table(
        [
            ("BORRADOR", [("ISSUE", "EMITIDA"), ("VOID", "ANULADA")]),
            (
                "EMITIDA",
                [("SEND", "ENVIADA"), *_COLLECTABLE, ("MARK_OVERDUE", "VENCIDA"), ("VOID", "ANULADA")],
            ),
            ("ENVIADA", [*_COLLECTABLE, ("MARK_OVERDUE", "VENCIDA"), ("VOID", "ANULADA")]),
            ("VENCIDA", [*_COLLECTABLE, ("VOID", "ANULADA")]),
            ("PARCIALMENTE_COBRADA", [*_COLLECTABLE, ("MARK_OVERDUE", "VENCIDA")]),
        ]
    ),
    final_states=frozenset({"COBRADA", "ANULADA"}),
    permissions={
        CREATE_ACTION: "ventas.facturas.create",
        "ISSUE": "ventas.facturas.issue",
        "SEND": "ventas.facturas.issue",
        "MARK_OVERDUE": "ventas.facturas.issue",
        "COLLECT_PARTIAL": "ventas.pagos.create",
        "COLLECT_ALL": "ventas.pagos.create",
        "VOID": "ventas.facturas.void",
    },
    reason_required=frozenset({"VOID"}),
    eligibility_actions=frozenset({"ISSUE", "VOID", "MARK_OVERDUE", "COLLECT_PARTIAL", "COLLECT_ALL"}),
)

PERMIT_TO_WORK_MACHINE = StateMachine(
    entity_type=PERMIT_TO_WORK,
    label="Permit to work",
    initial_state="DRAFT",
    transitions=_table(
        [
            ("DRAFT", [("SUBMIT", "PENDING_APPROVAL"), ("CANCEL", "CANCELLED")]),
            ("PENDING_APPROVAL", [("APPROVE", "APPROVED"), ("REJECT", "REJECTED")]),
            ("REJECTED", [("REVISE", "DRAFT"), ("CANCEL", "CANCELLED")]),
            ("APPROVED", [("ACTIVATE", "ACTIVE"), ("CANCEL", "CANCELLED"), ("EXPIRE", "EXPIRED")]),
            ("ACTIVE", [("SUSPEND", "SUSPENDED"), ("CLOSE", "CLOSED"), ("EXPIRE", "EXPIRED")]),
            ("SUSPENDED", [("RESUME", "ACTIVE"), ("CLOSE", "CLOSED"), ("EXPIRE", "EXPIRED")]),
        ]
    ),
    final_states=frozenset({"CLOSED", "CANCELLED", "EXPIRED"}),
    permissions={
        CREATE_ACTION: "ptw.create",
        "SUBMIT": "ptw.edit",
        "REVISE": "ptw.edit",
        "APPROVE": "ptw.approve",
        "REJECT": "ptw.reject",
        "ACTIVATE": "ptw.activate",
        "RESUME": "ptw.activate",
        "SUSPEND": "ptw.suspend",
        "CLOSE": "ptw.close",
        "EXPIRE": "ptw.close",
        "CANCEL": "ptw.delete",
    },
    reason_required=frozenset({"REJECT", "SUSPEND", "CANCEL"}),
    sod_rules=(SoDRule("PTW_REQUESTER_APPROVES", (CREATE_ACTION, "SUBMIT"), "APPROVE"),),
    eligibility_actions=frozenset({"SUBMIT", "ACTIVATE", "RESUME", "EXPIRE"}),
)

LOTO_EXECUTION_MACHINE = StateMachine(
    entity_type=LOTO_EXECUTION,
    label="LOTO execution",
    initial_state="LOCKED",
    transitions=_table(
        [
            ("LOCKED", [("RELEASE_PARTIAL", "PARTIAL"), ("RELEASE_ALL", "UNLOCKED")]),
            ("PARTIAL", [("RELEASE_PARTIAL", "PARTIAL"), ("RELEASE_ALL", "UNLOCKED")]),
        ]
    ),
    final_states=frozenset({"UNLOCKED"}),
    permissions={
        CREATE_ACTION: "loto.execute",
        "RELEASE_PARTIAL": "loto.release",
        "RELEASE_ALL": "loto.release",
    },
    eligibility_actions=frozenset({"RELEASE_PARTIAL", "RELEASE_ALL"}),
)

WORK_ORDER_MACHINE = StateMachine(
    entity_type=WORK_ORDER,
    label="Maintenance work order",
    initial_state="PENDING",
    transitions=_table(
        [
            ("PENDING", [("START", "IN_PROGRESS"), ("HOLD", "ON_HOLD"), ("CANCEL", "CANCELLED")]),
            ("IN_PROGRESS", [("HOLD", "ON_HOLD"), ("COMPLETE", "COMPLETED"), ("CANCEL", "CANCELLED")]),
            ("ON_HOLD", [("RESUME", "IN_PROGRESS"), ("CANCEL", "CANCELLED")]),
        ]
    ),
    final_states=frozenset({"COMPLETED", "CANCELLED"}),
    permissions={
        CREATE_ACTION: "work_orders.create",
        "START": "work_orders.execute",
        "HOLD": "work_orders.execute",
        "RESUME": "work_orders.execute",
        "COMPLETE": "work_orders.complete",
        "CANCEL": "work_orders.delete",
    },
    reason_required=frozenset({"HOLD", "CANCEL"}),
    eligibility_actions=frozenset({"START", "COMPLETE"}),
)

REGISTRY = MachineRegistry(
    (
        PURCHASE_ORDER_MACHINE,
        PURCHASE_RETURN_MACHINE,
        SALES_RETURN_MACHINE,
        STOCK_ADJUSTMENT_MACHINE,
        SALES_INVOICE_MACHINE,
        PERMIT_TO_WORK_MACHINE,
        LOTO_EXECUTION_MACHINE,
        WORK_ORDER_MACHINE,
    )
)

# Permissions not tied to a single transition.
STATIC_PERMISSIONS: Dict[str, str] = {
    "admin:all": "Full access",
    "users.manage": "Manage users and roles",
    "view_mode.extended": "See T2 documents (extended view mode)",
    "lifecycle.sod.override": "Skip segregation-of-duties checks",
    "lifecycle.view": "Read transition history and machine catalogue",
    "lifecycle.subscribe": "Receive live transition events over WebSocket",
    "reports.view": "Export reports",
    "compras.ordenes.view": "View purchase orders",
    "compras.proveedores.manage": "Manage suppliers",
    "compras.devoluciones.view": "View returns to suppliers",
    "compras.stock.view": "View stock, locations and movements",
    "compras.stock.manage": "Manage locations",
    "ventas.facturas.view": "View sales invoices",
    "ventas.clientes.manage": "Manage customers",
    "ventas.devoluciones.view": "View customer returns",
    "ptw.view": "View permits to work",
    "loto.view": "View LOTO procedures and executions",
    "loto.procedures.create": "Create LOTO procedures",
    "loto.procedures.edit": "Edit LOTO procedures",
    "loto.procedures.delete": "Delete LOTO procedures",
    "loto.procedures.approve": "Approve LOTO procedures",
    "work_orders.view": "View maintenance work orders",
    "assets.manage": "Manage assets",
}


# Read permission of each document family.
VIEW_PERMISSIONS: Dict[str, str] = {
    PURCHASE_ORDER: "compras.ordenes.view",
    PURCHASE_RETURN: "compras.devoluciones.view",
    STOCK_ADJUSTMENT: "compras.stock.view",
    SALES_INVOICE: "ventas.facturas.view",
    SALES_RETURN: "ventas.devoluciones.view",
    PERMIT_TO_WORK: "ptw.view",
    LOTO_EXECUTION: "loto.view",
    WORK_ORDER: "work_orders.view",
}


# PUBLIC_INTERFACE
def permission_catalog() -> List[str]:
    """Every permission code known to the API, sorted."""
    codes = set(STATIC_PERMISSIONS)
    for machine in REGISTRY:
        codes.update(machine.permissions.values())
    return sorted(codes)
