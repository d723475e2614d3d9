from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from src.core.errors import ConflictError, NotFoundError
from src.db.models.maintenance import Asset, MaintenanceWorkOrder
from src.lifecycle.definitions import WORK_ORDER
from src.lifecycle.gateway import Eligibility, TransitionResult
from src.repositories.inventory import LocationRepository
from src.repositories.maintenance import AssetRepository, WorkOrderRepository
from src.repositories.safety import LOTORepository, PermitRepository
from src.schemas.maintenance import AssetCreate, WorkOrderCreate
from src.services import guards
from src.services.base import TransitionRequest
from src.services.lifecycle import DocumentService

logger = logging.getLogger(__name__)


class MaintenanceService(DocumentService):
    """Assets and maintenance work orders."""

    def __init__(self, session, actor, gateway=None) -> None:
        super().__init__(session, actor, gateway)
        self.assets = AssetRepository(session)
        self.work_orders = WorkOrderRepository(session)
        self.permits = PermitRepository(session)
        self.loto = LOTORepository(session)
        self.locations = LocationRepository(session)

    async def list_assets(self, *, search: Optional[str], limit: int, offset: int) -> List[Asset]:
        return await self.assets.list_assets(search=search, limit=limit, offset=offset)

    # PUBLIC_INTERFACE
    async def create_asset(self, payload: AssetCreate) -> Asset:
        if await self.assets.get_by_code(payload.code):
            raise ConflictError(f"Asset with code {payload.code} already exists")
        if payload.location_id and await self.locations.get_location(payload.location_id) is None:
            raise NotFoundError("Location not found")
        asset = Asset(**payload.model_dump())
        self.session.add(asset)
        await self.session.flush()
        await self.audit.record(
            entity_type="Asset", entity_id=asset.id, action="CREATE", user_id=self.actor.user_id,
            changes=payload.model_dump(mode="json"),
        )
        await self.session.commit()
        return asset

    # PUBLIC_INTERFACE
    async def create_work_order(self, payload: WorkOrderCreate) -> MaintenanceWorkOrder:
        """Create a work order in PENDING."""
        self._ensure_can_create(WORK_ORDER, "T1")
        if payload.asset_id and await self.assets.get_asset(payload.asset_id) is None:
            raise NotFoundError("Asset not found", details={"asset_id": str(payload.asset_id)})
        work_order = MaintenanceWorkOrder(
            wo_number=await self._next_number(MaintenanceWorkOrder, "OT"),
            status="PENDING",
            created_by=self.actor.user_id,
            **payload.model_dump(),
        )
        self.session.add(work_order)
        await self._record_creation(WORK_ORDER, work_order, {"wo_number": work_order.wo_number})
        logger.info("Created work order %s", work_order.wo_number)
        return work_order

    async def list_work_orders(
        self, *, status: Optional[str], asset_id: Optional[UUID], limit: int, offset: int
    ) -> List[MaintenanceWorkOrder]:
        return await self.work_orders.list_work_orders(status=status, asset_id=asset_id, limit=limit, offset=offset)

    async def get_work_order(self, work_order_id: UUID) -> MaintenanceWorkOrder:
        return self._ensure_visible(await self.work_orders.get_work_order(work_order_id), "Work order")

    def _work_order_checks(self, work_order: MaintenanceWorkOrder):
        async def startable() -> Eligibility:
            states = await self.permits.states_for(work_order_id=work_order.id)
            return guards.work_order_startable(work_order, states)

        async def completable() -> Eligibility:
            permit_states = await self.permits.states_for(work_order_id=work_order.id)
            loto_states = await self.loto.execution_states_for_work_order(work_order.id)
            return guards.work_order_completable(permit_states, loto_states)

        return {"START": startable, "COMPLETE": completable}

    async def work_order_actions(self, work_order_id: UUID) -> List[dict]:
        work_order = await self.get_work_order(work_order_id)
        return await self._action_checks(work_order, WORK_ORDER, self._work_order_checks(work_order))

    # PUBLIC_INTERFACE
    async def transition_work_order(self, work_order_id: UUID, action: str, req: TransitionRequest) -> TransitionResult:
        """START needs an active permit when the order requires one; COMPLETE needs permits closed and locks released."""
        work_order = await self.get_work_order(work_order_id)
        checks = self._work_order_checks(work_order)

        async def check() -> Eligibility:
            fn = checks.get(action)
            return await fn() if fn else Eligibility.ok()

        async def apply(target: str) -> None:
            if action == "START" and work_order.started_at is None:
                work_order.started_at = self.gateway.now()
            elif action == "COMPLETE":
                work_order.completed_at = self.gateway.now()

        return await self._transition(work_order, WORK_ORDER, action, req, apply=apply, check=check)
