from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from src.core.errors import ConflictError, NotFoundError, ValidationFailedError
from src.db.models.procurement import (
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseReturn,
    PurchaseReturnLine,
    Supplier,
)
from src.lifecycle.definitions import PURCHASE_ORDER, PURCHASE_RETURN
from src.lifecycle.gateway import Eligibility, TransitionResult
from src.repositories.inventory import LocationRepository, StockRepository
from src.repositories.procurement import PurchaseOrderRepository, PurchaseReturnRepository, SupplierRepository
from src.schemas.procurement import PurchaseOrderCreate, PurchaseReturnCreate, SupplierCreate
from src.services import guards
from src.services.base import TransitionRequest
from src.services.lifecycle import DocumentService

logger = logging.getLogger(__name__)

# Actions with their own endpoint because they carry extra payload.
_DEDICATED_PO_ACTIONS = {"RECEIVE_PARTIAL", "RECEIVE_ALL"}
_DEDICATED_RETURN_ACTIONS = {"RESOLVE"}


class ProcurementService(DocumentService):
    """Suppliers, purchase orders (approval and goods receipt) and returns to suppliers."""

    def __init__(self, session, actor, gateway=None) -> None:
        super().__init__(session, actor, gateway)
        self.suppliers = SupplierRepository(session)
        self.orders = PurchaseOrderRepository(session)
        self.returns = PurchaseReturnRepository(session)
        self.locations = LocationRepository(session)
        self.stock = StockRepository(session)

    # Suppliers

    async def list_suppliers(self, *, search: Optional[str], limit: int, offset: int) -> List[Supplier]:
        return await self.suppliers.list_suppliers(search=search, limit=limit, offset=offset)

    # PUBLIC_INTERFACE
    async def create_supplier(self, payload: SupplierCreate) -> Supplier:
        """Create a supplier; codes are unique per tenant."""
        if await self.suppliers.get_by_code(payload.code):
            raise ConflictError(f"Supplier with code {payload.code} already exists")
        row = await self.suppliers.create_supplier(payload)
        await self.audit.record(
            entity_type="Supplier", entity_id=row.id, action="CREATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json"),
        )
        await self.session.commit()
        return row

    async def _require_supplier(self, supplier_id: UUID) -> Supplier:
        supplier = await self.suppliers.get_supplier(supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier not found", details={"supplier_id": str(supplier_id)})
        return supplier

    async def _require_location(self, location_id: UUID) -> None:
        if await self.locations.get_location(location_id) is None:
            raise NotFoundError("Location not found", details={"location_id": str(location_id)})

    # Purchase orders

    # PUBLIC_INTERFACE
    async def create_purchase_order(self, payload: PurchaseOrderCreate) -> PurchaseOrder:
        """Create a purchase order in BORRADOR with its lines and log the creation."""
        self._ensure_can_create(PURCHASE_ORDER, payload.doc_type)
        await self._require_supplier(payload.supplier_id)
        if payload.delivery_location_id:
            await self._require_location(payload.delivery_location_id)

        order = PurchaseOrder(
            po_number=await self._next_number(PurchaseOrder, "OC"),
            supplier_id=payload.supplier_id,
            status="BORRADOR",
            doc_type=payload.doc_type,
            order_date=payload.order_date or date.today(),
            expected_date=payload.expected_date,
            currency=payload.currency,
            notes=payload.notes,
            delivery_location_id=payload.delivery_location_id,
            created_by=self.actor.user_id,
            lines=[
                PurchaseOrderLine(
                    line_no=i,
                    item_sku=ln.item_sku,
                    description=ln.description,
                    qty_ordered=ln.qty_ordered,
                    qty_received=Decimal("0"),
                    uom=ln.uom,
                    unit_price=ln.unit_price,
                )
                for i, ln in enumerate(payload.lines, start=1)
            ],
        )
        order.total_amount = sum((ln.qty_ordered * ln.unit_price for ln in payload.lines), Decimal("0"))
        self.session.add(order)
        await self._record_creation(PURCHASE_ORDER, order, {"po_number": order.po_number, "lines": len(order.lines)})
        logger.info("Created purchase order %s", order.po_number)
        return order

    async def list_purchase_orders(
        self, *, supplier_id: Optional[UUID], status: Optional[str], limit: int, offset: int
    ) -> List[PurchaseOrder]:
        return await self.orders.list_purchase_orders(
            mode=self.actor.view_mode, supplier_id=supplier_id, status=status, limit=limit, offset=offset
        )

    async def get_purchase_order(self, po_id: UUID) -> PurchaseOrder:
        return self._ensure_visible(await self.orders.get_purchase_order(po_id), "Purchase order")

    async def purchase_order_actions(self, po_id: UUID) -> List[dict]:
        order = await self.get_purchase_order(po_id)

        async def submittable() -> Eligibility:
            return guards.purchase_order_submittable(order)

        return await self._action_checks(order, PURCHASE_ORDER, {"SUBMIT": submittable})

    # PUBLIC_INTERFACE
    async def transition_purchase_order(self, po_id: UUID, action: str, req: TransitionRequest) -> TransitionResult:
        """Run a lifecycle action without extra payload (SUBMIT, APPROVE, REJECT, SEND, CANCEL...)."""
        if action in _DEDICATED_PO_ACTIONS:
            raise ValidationFailedError(f"Use the goods receipt endpoint for {action}")
        order = await self.get_purchase_order(po_id)

        async def submittable() -> Eligibility:
            return guards.purchase_order_submittable(order)

        async def apply(target: str) -> None:
            if action == "APPROVE":
                order.approved_by = self.actor.user_id
            elif action == "REVISE":
                order.approved_by = None

        return await self._transition(order, PURCHASE_ORDER, action, req, apply=apply, check=submittable)

    # PUBLIC_INTERFACE
    async def receive_goods(
        self,
        po_id: UUID,
        quantities: Dict[int, Decimal],
        location_id: Optional[UUID],
        req: TransitionRequest,
    ) -> TransitionResult:
        """
        Receive goods against the order.

        Chooses RECEIVE_ALL when every line is fully received afterwards,
        otherwise RECEIVE_PARTIAL. Stock is increased at the receiving
        location in the same transaction as the status change.
        """
        order = await self.get_purchase_order(po_id)
        location_id = location_id or order.delivery_location_id
        if location_id is None:
            raise ValidationFailedError("A receiving location is required")
        await self._require_location(location_id)

        action, precheck = guards.receipt_action(order, quantities)
        if not precheck.eligible and precheck.code != "PO_OVER_RECEIPT":
            raise ValidationFailedError(precheck.reason or "Invalid receipt", details=precheck.details)

        async def check() -> Eligibility:
            current_action, result = guards.receipt_action(order, quantities)
            if result.eligible and current_action != action:
                return Eligibility.refuse("Order changed while receiving; retry", code="PO_CHANGED")
            return result

        async def apply(target: str) -> None:
            for ln in order.lines:
                qty = quantities.get(ln.line_no)
                if not qty:
                    continue
                ln.qty_received = Decimal(ln.qty_received or 0) + Decimal(qty)
                await self.stock.move(
                    location_id=location_id,
                    item_sku=ln.item_sku,
                    quantity=Decimal(qty),
                    movement_type="RECEIPT",
                    ref_type=PURCHASE_ORDER,
                    ref_id=order.id,
                    uom=ln.uom,
                    user_id=self.actor.user_id,
                    details={"line_no": ln.line_no},
                )

        req.metadata.setdefault("received", {str(k): str(v) for k, v in quantities.items()})
        return await self._transition(order, PURCHASE_ORDER, action, req, apply=apply, check=check)

    # Returns to suppliers

    # PUBLIC_INTERFACE
    async def create_purchase_return(self, payload: PurchaseReturnCreate) -> PurchaseReturn:
        """Create a return to supplier in BORRADOR."""
        self._ensure_can_create(PURCHASE_RETURN, payload.doc_type)
        await self._require_supplier(payload.supplier_id)
        await self._require_location(payload.location_id)
        if payload.purchase_order_id:
            await self.get_purchase_order(payload.purchase_order_id)

        doc = PurchaseReturn(
            return_number=await self._next_number(PurchaseReturn, "DEV"),
            supplier_id=payload.supplier_id,
            purchase_order_id=payload.purchase_order_id,
            location_id=payload.location_id,
            return_type=payload.return_type,
            status="BORRADOR",
            doc_type=payload.doc_type,
            reason=payload.reason,
            created_by=self.actor.user_id,
            lines=[
                PurchaseReturnLine(
                    line_no=i, item_sku=ln.item_sku, quantity=ln.quantity, uom=ln.uom, description=ln.description
                )
                for i, ln in enumerate(payload.lines, start=1)
            ],
        )
        self.session.add(doc)
        await self._record_creation(PURCHASE_RETURN, doc, {"return_number": doc.return_number})
        return doc

    async def list_purchase_returns(
        self, *, supplier_id: Optional[UUID], status: Optional[str], limit: int, offset: int
    ) -> List[PurchaseReturn]:
        return await self.returns.list_returns(
            mode=self.actor.view_mode, supplier_id=supplier_id, status=status, limit=limit, offset=offset
        )

    async def get_purchase_return(self, return_id: UUID) -> PurchaseReturn:
        return self._ensure_visible(await self.returns.get_return(return_id), "Purchase return")

    def _return_checks(self, doc: PurchaseReturn, *, lock: bool = True):
        async def requestable() -> Eligibility:
            return guards.return_requestable(doc)

        async def shippable() -> Eligibility:
            on_hand = await self.stock.on_hand(doc.location_id, [ln.item_sku for ln in doc.lines], lock=lock)
            return guards.return_shippable(doc, on_hand)

        return {"REQUEST": requestable, "SHIP": shippable}

    async def purchase_return_actions(self, return_id: UUID) -> List[dict]:
        doc = await self.get_purchase_return(return_id)
        return await self._action_checks(doc, PURCHASE_RETURN, self._return_checks(doc, lock=False))

    # PUBLIC_INTERFACE
    async def transition_purchase_return(
        self, return_id: UUID, action: str, req: TransitionRequest, *, resolution: Optional[str] = None
    ) -> TransitionResult:
        """
        Run a lifecycle action on a return.

        SHIP takes the goods out of stock; CANCEL after shipping puts them back.
        """
        if action in _DEDICATED_RETURN_ACTIONS and not resolution:
            raise ValidationFailedError(f"{action} requires a resolution")
        doc = await self.get_purchase_return(return_id)
        checks = self._return_checks(doc)

        async def check() -> Eligibility:
            fn = checks.get(action)
            return await fn() if fn else Eligibility.ok()

        async def apply(target: str) -> None:
            if action == "SHIP":
                doc.shipped_at = date.today()
                await self._move_return_stock(doc, sign=Decimal("-1"), movement_type="RETURN_OUT")
            elif action == "CANCEL" and doc.shipped_at is not None:
                await self._move_return_stock(doc, sign=Decimal("1"), movement_type="RETURN_REVERSAL")
            elif action == "RESOLVE":
                doc.resolution = resolution

        return await self._transition(doc, PURCHASE_RETURN, action, req, apply=apply, check=check)

    async def _move_return_stock(self, doc: PurchaseReturn, *, sign: Decimal, movement_type: str) -> None:
        for ln in doc.lines:
            await self.stock.move(
                location_id=doc.location_id,
                item_sku=ln.item_sku,
                quantity=sign * Decimal(ln.quantity),
                movement_type=movement_type,
                ref_type=PURCHASE_RETURN,
                ref_id=doc.id,
                uom=ln.uom,
                user_id=self.actor.user_id,
            )
