from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from src.core.errors import ConflictError, NotFoundError
from src.db.models.inventory import (
    InventoryTransaction,
    Location,
    StockAdjustment,
    StockAdjustmentLine,
    StockLevel,
)
from src.lifecycle.definitions import STOCK_ADJUSTMENT
from src.lifecycle.gateway import Eligibility, TransitionResult
from src.repositories.inventory import LocationRepository, StockAdjustmentRepository, StockRepository
from src.schemas.inventory import LocationCreate, StockAdjustmentCreate
from src.services import guards
from src.services.base import TransitionRequest
from src.services.lifecycle import DocumentService

logger = logging.getLogger(__name__)


class InventoryService(DocumentService):
    """Locations, stock levels, movements and stock adjustments."""

    def __init__(self, session, actor, gateway=None) -> None:
        super().__init__(session, actor, gateway)
        self.locations = LocationRepository(session)
        self.stock = StockRepository(session)
        self.adjustments = StockAdjustmentRepository(session)

    async def list_locations(self, *, limit: int, offset: int) -> List[Location]:
        return await self.locations.list_locations(limit=limit, offset=offset)

    # PUBLIC_INTERFACE
    async def create_location(self, payload: LocationCreate) -> Location:
        """Create a location; codes are unique per tenant."""
        if await self.locations.get_by_code(payload.code):
            raise ConflictError(f"Location with code {payload.code} already exists")
        if payload.parent_id and await self.locations.get_location(payload.parent_id) is None:
            raise NotFoundError("Parent location not found")
        row = Location(code=payload.code, name=payload.name, type=payload.type, parent_id=payload.parent_id)
        self.session.add(row)
        await self.session.flush()
        await self.audit.record(
            entity_type="Location", entity_id=row.id, action="CREATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json"),
        )
        await self.session.commit()
        return row

    async def list_stock(
        self, *, location_id: Optional[UUID], item_sku: Optional[str], limit: int, offset: int
    ) -> List[StockLevel]:
        return await self.stock.list_levels(location_id=location_id, item_sku=item_sku, limit=limit, offset=offset)

    async def list_movements(
        self,
        *,
        location_id: Optional[UUID],
        item_sku: Optional[str],
        ref_id: Optional[UUID],
        limit: int,
        offset: int,
    ) -> List[InventoryTransaction]:
        return await self.stock.list_transactions(
            location_id=location_id, item_sku=item_sku, ref_id=ref_id, limit=limit, offset=offset
        )

    # Stock adjustments

    # PUBLIC_INTERFACE
    async def create_adjustment(self, payload: StockAdjustmentCreate) -> StockAdjustment:
        """Create a stock adjustment in BORRADOR; stock changes only on APPROVE."""
        self._ensure_can_create(STOCK_ADJUSTMENT, payload.doc_type)
        if await self.locations.get_location(payload.location_id) is None:
            raise NotFoundError("Location not found", details={"location_id": str(payload.location_id)})
        doc = StockAdjustment(
            adjustment_number=await self._next_number(StockAdjustment, "AJ"),
            location_id=payload.location_id,
            adjustment_type=payload.adjustment_type,
            status="BORRADOR",
            doc_type=payload.doc_type,
            reason=payload.reason,
            created_by=self.actor.user_id,
            lines=[
                StockAdjustmentLine(
                    item_sku=ln.item_sku, quantity_delta=ln.quantity_delta, uom=ln.uom, notes=ln.notes
                )
                for ln in payload.lines
            ],
        )
        self.session.add(doc)
        await self._record_creation(STOCK_ADJUSTMENT, doc, {"adjustment_number": doc.adjustment_number})
        logger.info("Created stock adjustment %s", doc.adjustment_number)
        return doc

    async def list_adjustments(
        self, *, status: Optional[str], location_id: Optional[UUID], limit: int, offset: int
    ) -> List[StockAdjustment]:
        return await self.adjustments.list_adjustments(
            mode=self.actor.view_mode, status=status, location_id=location_id, limit=limit, offset=offset
        )

    async def get_adjustment(self, adjustment_id: UUID) -> StockAdjustment:
        return self._ensure_visible(await self.adjustments.get_adjustment(adjustment_id), "Stock adjustment")

    def _adjustment_checks(self, doc: StockAdjustment, *, lock: bool = True):
        async def submittable() -> Eligibility:
            return guards.adjustment_submittable(doc)

        async def applicable() -> Eligibility:
            on_hand = await self.stock.on_hand(doc.location_id, [ln.item_sku for ln in doc.lines], lock=lock)
            return guards.adjustment_applicable(doc, on_hand)

        return {"SUBMIT": submittable, "APPROVE": applicable}

    async def adjustment_actions(self, adjustment_id: UUID) -> List[dict]:
        doc = await self.get_adjustment(adjustment_id)
        return await self._action_checks(doc, STOCK_ADJUSTMENT, self._adjustment_checks(doc, lock=False))

    # PUBLIC_INTERFACE
    async def transition_adjustment(self, adjustment_id: UUID, action: str, req: TransitionRequest) -> TransitionResult:
        """
        Run a lifecycle action on a stock adjustment.

        APPROVE applies every line delta to the location's stock in the same
        transaction; it is refused when any item would go negative.
        """
        doc = await self.get_adjustment(adjustment_id)
        checks = self._adjustment_checks(doc)

        async def check() -> Eligibility:
            fn = checks.get(action)
            return await fn() if fn else Eligibility.ok()

        async def apply(target: str) -> None:
            if action != "APPROVE":
                return
            doc.approved_by = self.actor.user_id
            for ln in doc.lines:
                if Decimal(ln.quantity_delta) == 0:
                    continue
                await self.stock.move(
                    location_id=doc.location_id,
                    item_sku=ln.item_sku,
                    quantity=Decimal(ln.quantity_delta),
                    movement_type="ADJUSTMENT",
                    ref_type=STOCK_ADJUSTMENT,
                    ref_id=doc.id,
                    uom=ln.uom,
                    user_id=self.actor.user_id,
                    details={"adjustment_type": doc.adjustment_type},
                )

        return await self._transition(doc, STOCK_ADJUSTMENT, action, req, apply=apply, check=check)
