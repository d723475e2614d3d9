"""
Tests for the document services on top of the transition gateway.

Services run against the in-memory transition store and a FakeSession that
records what would be written; repository reads are replaced per test with
AsyncMock so the side effects of each transition (stock movements, customer
ledger, audit log) can be checked without PostgreSQL.
"""
import uuid
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace as NS
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.core.errors import ConflictError, NotFoundError
from src.core.view_mode import ViewMode
from src.db.models.lifecycle import AuditLog
from src.db.models.sales import CustomerLedgerEntry, CustomerPayment
from src.lifecycle import definitions as d
from src.lifecycle.errors import InvalidTransitionError, NotEligibleError
from src.repositories.lifecycle import TransitionLogRepository
from src.schemas.inventory import StockAdjustmentCreate
from src.schemas.sales import CustomerCreate, PaymentBody
from src.services.base import Actor, TransitionRequest
from src.services.inventory import InventoryService
from src.services.lifecycle import LifecycleService
from src.services.procurement import ProcurementService
from src.services.safety import SafetyService
from src.services.sales import SalesService

from .conftest import FIXED_NOW


class FakeSession:
    """AsyncSession stand-in recording added rows and unit-of-work calls."""

    def __init__(self, count=0, flush_error=None):
        self.info = {}
        self.added = []
        self.refreshed = []
        self.documents = {}
        self.statements = []
        self.count = count
        self.flush_error = flush_error
        self.flushes = 0
        self.commits = 0
        self.rollbacks = 0

    def add(self, obj):
        if getattr(obj, "id", None) is None:
            obj.id = uuid.uuid4()
        self.added.append(obj)

    def add_all(self, objs):
        for obj in objs:
            self.add(obj)

    async def flush(self):
        self.flushes += 1
        if self.flush_error is not None:
            raise self.flush_error

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1

    async def refresh(self, obj, with_for_update=False):
        self.refreshed.append((obj, with_for_update))

    async def execute(self, statement, params=None):
        self.statements.append(statement)
        result = MagicMock()
        result.scalar_one.return_value = self.count
        return result

    async def get(self, model, ident):
        return self.documents.get(ident)

    def rows(self, kind):
        return [o for o in self.added if isinstance(o, kind)]


class FakeStock:
    """Stock levels by SKU at a single location."""

    def __init__(self, **levels):
        self.levels = {sku: Decimal(q) for sku, q in levels.items()}
        self.moves = []
        self.locks = []

    async def on_hand(self, location_id, skus, *, lock=False):
        self.locks.append(lock)
        return {sku: self.levels.get(sku, Decimal("0")) for sku in set(skus)}

    async def move(self, *, location_id, item_sku, quantity, movement_type, **kwargs):
        self.levels[item_sku] = self.levels.get(item_sku, Decimal("0")) + Decimal(quantity)
        self.moves.append((item_sku, Decimal(quantity), movement_type))


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def actor(tenant_id):
    return Actor(user_id=uuid.uuid4(), tenant_id=tenant_id, permissions=frozenset({"admin:all"}))


@pytest.fixture
def extended_actor(actor):
    return Actor(
        user_id=actor.user_id, tenant_id=actor.tenant_id, permissions=actor.permissions, view_mode=ViewMode.EXTENDED
    )


def _line(sku, **fields):
    return NS(id=uuid.uuid4(), item_sku=sku, uom="UN", **fields)


def _customer(balance="0"):
    return NS(id=uuid.uuid4(), balance=Decimal(balance))


def _invoice(customer, status="BORRADOR", total="121.00", balance_due="0", doc_type="T1"):
    return NS(
        id=uuid.uuid4(),
        invoice_number="FV-000001",
        customer_id=customer.id,
        status=status,
        doc_type=doc_type,
        total=Decimal(total),
        balance_due=Decimal(balance_due),
        lines=[_line("SKU-1", quantity=Decimal("1"))],
        issue_date=None,
        due_date=None,
    )


def _sales(session, actor, gateway, invoice=None, customer=None):
    svc = SalesService(session, actor, gateway)
    svc.invoices.get_invoice = AsyncMock(return_value=invoice)
    svc.customers.get_customer = AsyncMock(return_value=customer)
    return svc


class TestSalesInvoices:
    async def test_issue_debits_customer_account(self, session, actor, gateway, store):
        customer = _customer()
        invoice = _invoice(customer)
        svc = _sales(session, actor, gateway, invoice, customer)

        result = await svc.transition_invoice(invoice.id, "ISSUE", TransitionRequest())

        assert result.to_state == "EMITIDA"
        assert invoice.balance_due == Decimal("121.00")
        assert invoice.issue_date == FIXED_NOW.date()
        assert customer.balance == Decimal("121.00")
        [entry] = session.rows(CustomerLedgerEntry)
        assert entry.entry_type == "INVOICE"
        assert entry.debit == Decimal("121.00")
        assert entry.balance_after == Decimal("121.00")
        assert entry.doc_type == "T1"
        assert store.entries[-1].action == "ISSUE"

    async def test_partial_payment_credits_account(self, session, actor, gateway, store):
        customer = _customer("121.00")
        invoice = _invoice(customer, status="EMITIDA", balance_due="121.00")
        svc = _sales(session, actor, gateway, invoice, customer)

        result = await svc.register_payment(
            invoice.id, PaymentBody(amount=Decimal("21.00"), reference="TR-77"), TransitionRequest()
        )

        assert result.action == "COLLECT_PARTIAL"
        assert invoice.status == "PARCIALMENTE_COBRADA"
        assert invoice.balance_due == Decimal("100.00")
        assert customer.balance == Decimal("100.00")
        [payment] = session.rows(CustomerPayment)
        assert payment.payment_date == FIXED_NOW.date()
        [entry] = session.rows(CustomerLedgerEntry)
        assert (entry.entry_type, entry.credit, entry.ref_id) == ("PAYMENT", Decimal("21.00"), payment.id)
        assert store.entries[-1].details == {"amount": "21.00", "reference": "TR-77"}

    async def test_settling_payment_collects_all(self, session, actor, gateway):
        customer = _customer("121.00")
        invoice = _invoice(customer, status="ENVIADA", balance_due="121.00")
        svc = _sales(session, actor, gateway, invoice, customer)

        result = await svc.register_payment(invoice.id, PaymentBody(amount=Decimal("121.00")), TransitionRequest())

        assert result.action == "COLLECT_ALL"
        assert invoice.status == "COBRADA"
        assert invoice.balance_due == Decimal("0")
        assert customer.balance == Decimal("0")

    async def test_void_reverses_outstanding_balance(self, session, actor, gateway):
        customer = _customer("121.00")
        invoice = _invoice(customer, status="EMITIDA", balance_due="121.00")
        svc = _sales(session, actor, gateway, invoice, customer)

        await svc.transition_invoice(invoice.id, "VOID", TransitionRequest(reason_code="DUPLICATE"))

        assert invoice.status == "ANULADA"
        assert invoice.balance_due == Decimal("0")
        assert customer.balance == Decimal("0")
        [entry] = session.rows(CustomerLedgerEntry)
        assert (entry.entry_type, entry.credit) == ("VOID", Decimal("121.00"))

    async def test_t2_invoice_stays_out_of_standard_balance(self, session, extended_actor, gateway, store):
        customer = _customer("50.00")
        invoice = _invoice(customer, doc_type="T2")
        svc = _sales(session, extended_actor, gateway, invoice, customer)

        await svc.transition_invoice(invoice.id, "ISSUE", TransitionRequest())

        assert customer.balance == Decimal("50.00")
        [entry] = session.rows(CustomerLedgerEntry)
        assert entry.doc_type == "T2"
        assert entry.balance_after == Decimal("121.00")
        assert store.entries[-1].doc_type == "T2"

    async def test_t2_invoice_hidden_in_standard_mode(self, session, actor, gateway):
        customer = _customer()
        invoice = _invoice(customer, doc_type="T2")
        svc = _sales(session, actor, gateway, invoice, customer)

        with pytest.raises(NotFoundError) as exc:
            await svc.get_invoice(invoice.id)
        assert exc.value.status_code == 404
        with pytest.raises(NotFoundError):
            await svc.transition_invoice(invoice.id, "ISSUE", TransitionRequest())
        assert invoice.status == "BORRADOR"


class TestSalesReturns:
    async def test_process_restocks_and_credits(self, session, actor, gateway):
        customer = _customer("100.00")
        doc = NS(
            id=uuid.uuid4(),
            return_number="DC-000001",
            customer_id=customer.id,
            location_id=uuid.uuid4(),
            status="ACEPTADA",
            doc_type="T1",
            credit_amount=Decimal("40.00"),
            lines=[_line("SKU-1", quantity=Decimal("2"), unit_price=Decimal("20.00"))],
        )
        svc = SalesService(session, actor, gateway)
        svc.returns.get_return = AsyncMock(return_value=doc)
        svc.customers.get_customer = AsyncMock(return_value=customer)
        svc.stock = FakeStock(**{"SKU-1": "1"})

        await svc.transition_sales_return(doc.id, "PROCESS", TransitionRequest())

        assert doc.status == "PROCESADA"
        assert svc.stock.moves == [("SKU-1", Decimal("2"), "RETURN_IN")]
        assert svc.stock.levels["SKU-1"] == Decimal("3")
        assert customer.balance == Decimal("60.00")
        [entry] = session.rows(CustomerLedgerEntry)
        assert (entry.entry_type, entry.credit) == ("RETURN", Decimal("40.00"))


def _doc_type_filter(statement):
    return [sorted(v) for v in statement.compile().params.values() if isinstance(v, (list, tuple))]


class TestCustomerViews:
    async def test_standard_balance_is_stored_receivable(self, session, actor, gateway):
        svc = _sales(session, actor, gateway)
        assert await svc.customer_balance(_customer("50.00")) == Decimal("50.00")
        assert session.statements == []

    async def test_extended_balance_sums_ledger(self, extended_actor, gateway):
        session = FakeSession(count=Decimal("170.00"))
        svc = _sales(session, extended_actor, gateway)

        assert await svc.customer_balance(_customer("50.00")) == Decimal("170.00")
        assert _doc_type_filter(session.statements[0]) == [["T1", "T2"]]

    async def test_standard_ledger_hides_t2_rows(self, session, actor, gateway):
        customer = _customer()
        svc = _sales(session, actor, gateway, customer=customer)

        assert await svc.customer_ledger(customer.id, limit=50, offset=0) == []
        assert _doc_type_filter(session.statements[0]) == [["T1"]]


def _purchase_return(status, shipped_at=None):
    return NS(
        id=uuid.uuid4(),
        return_number="DEV-000001",
        location_id=uuid.uuid4(),
        status=status,
        doc_type="T1",
        shipped_at=shipped_at,
        resolution=None,
        lines=[_line("SKU-1", quantity=Decimal("3"))],
    )


class TestPurchaseReturns:
    async def test_ship_takes_stock_under_lock(self, session, actor, gateway):
        doc = _purchase_return("APROBADA_PROVEEDOR")
        svc = ProcurementService(session, actor, gateway)
        svc.returns.get_return = AsyncMock(return_value=doc)
        svc.stock = FakeStock(**{"SKU-1": "5"})

        await svc.transition_purchase_return(doc.id, "SHIP", TransitionRequest())

        assert doc.status == "ENVIADA"
        assert doc.shipped_at is not None
        assert svc.stock.levels["SKU-1"] == Decimal("2")
        assert svc.stock.locks == [True]

    async def test_cancel_after_shipping_puts_stock_back(self, session, actor, gateway):
        doc = _purchase_return("ENVIADA", shipped_at=date(2026, 3, 1))
        svc = ProcurementService(session, actor, gateway)
        svc.returns.get_return = AsyncMock(return_value=doc)
        svc.stock = FakeStock(**{"SKU-1": "2"})

        await svc.transition_purchase_return(doc.id, "CANCEL", TransitionRequest(reason_code="DUPLICATE"))

        assert doc.status == "CANCELADA"
        assert svc.stock.moves == [("SKU-1", Decimal("3"), "RETURN_REVERSAL")]
        assert svc.stock.levels["SKU-1"] == Decimal("5")

    async def test_available_actions_read_stock_without_locking(self, session, actor, gateway, store):
        doc = _purchase_return("APROBADA_PROVEEDOR")
        svc = ProcurementService(session, actor, gateway)
        svc.returns.get_return = AsyncMock(return_value=doc)
        svc.stock = FakeStock()

        actions = {a["action"]: a for a in await svc.purchase_return_actions(doc.id)}

        assert actions["SHIP"]["allowed"] is False
        assert actions["SHIP"]["code"] == "INSUFFICIENT_STOCK"
        assert svc.stock.locks == [False]
        assert store.entries == []


class TestGoodsReceipt:
    @pytest.fixture
    def order(self):
        return NS(
            id=uuid.uuid4(),
            status="CONFIRMADA",
            doc_type="T1",
            delivery_location_id=uuid.uuid4(),
            lines=[
                _line("SKU-1", line_no=1, qty_ordered=Decimal("10"), qty_received=Decimal("0")),
                _line("SKU-2", line_no=2, qty_ordered=Decimal("5"), qty_received=Decimal("0")),
            ],
        )

    @pytest.fixture
    def svc(self, session, actor, gateway, order):
        svc = ProcurementService(session, actor, gateway)
        svc.orders.get_purchase_order = AsyncMock(return_value=order)
        svc.locations.get_location = AsyncMock(return_value=NS(id=order.delivery_location_id))
        svc.stock = FakeStock()
        return svc

    async def test_partial_receipt(self, svc, order, store):
        result = await svc.receive_goods(order.id, {1: Decimal("4")}, None, TransitionRequest())

        assert result.action == "RECEIVE_PARTIAL"
        assert order.status == "PARCIALMENTE_RECIBIDA"
        assert order.lines[0].qty_received == Decimal("4")
        assert svc.stock.moves == [("SKU-1", Decimal("4"), "RECEIPT")]
        assert store.entries[-1].details == {"received": {"1": "4"}}

    async def test_full_receipt_completes_order(self, svc, order):
        result = await svc.receive_goods(order.id, {1: Decimal("10"), 2: Decimal("5")}, None, TransitionRequest())

        assert result.action == "RECEIVE_ALL"
        assert order.status == "COMPLETADA"
        assert svc.stock.levels == {"SKU-1": Decimal("10"), "SKU-2": Decimal("5")}


class TestStockAdjustments:
    def _doc(self, status="PENDIENTE_APROBACION"):
        return NS(
            id=uuid.uuid4(),
            status=status,
            doc_type="T1",
            location_id=uuid.uuid4(),
            adjustment_type="CONTEO",
            approved_by=None,
            lines=[
                _line("SKU-1", quantity_delta=Decimal("2")),
                _line("SKU-2", quantity_delta=Decimal("-1")),
                _line("SKU-3", quantity_delta=Decimal("0")),
            ],
        )

    async def test_approve_applies_deltas(self, session, actor, gateway):
        doc = self._doc()
        svc = InventoryService(session, actor, gateway)
        svc.adjustments.get_adjustment = AsyncMock(return_value=doc)
        svc.stock = FakeStock(**{"SKU-2": "3"})

        await svc.transition_adjustment(doc.id, "APPROVE", TransitionRequest())

        assert doc.status == "CONFIRMADO"
        assert doc.approved_by == actor.user_id
        assert svc.stock.moves == [("SKU-1", Decimal("2"), "ADJUSTMENT"), ("SKU-2", Decimal("-1"), "ADJUSTMENT")]
        assert svc.stock.locks == [True]

    async def test_approve_refused_on_negative_stock(self, session, actor, gateway, store):
        doc = self._doc()
        svc = InventoryService(session, actor, gateway)
        svc.adjustments.get_adjustment = AsyncMock(return_value=doc)
        svc.stock = FakeStock()

        with pytest.raises(NotEligibleError) as exc:
            await svc.transition_adjustment(doc.id, "APPROVE", TransitionRequest())
        assert exc.value.code == "NEGATIVE_STOCK"
        assert svc.stock.moves == []
        assert store.entries == []

    async def test_available_actions_read_stock_without_locking(self, session, actor, gateway):
        doc = self._doc()
        svc = InventoryService(session, actor, gateway)
        svc.adjustments.get_adjustment = AsyncMock(return_value=doc)
        svc.stock = FakeStock(**{"SKU-2": "3"})

        actions = {a["action"]: a for a in await svc.adjustment_actions(doc.id)}

        assert actions["APPROVE"]["allowed"] is True
        assert svc.stock.locks == [False]
        assert svc.stock.moves == []

    async def test_create_logs_audits_and_numbers(self, actor, gateway, store):
        session = FakeSession(count=4)
        svc = InventoryService(session, actor, gateway)
        svc.locations.get_location = AsyncMock(return_value=NS(id=uuid.uuid4()))
        payload = StockAdjustmentCreate(
            location_id=uuid.uuid4(),
            adjustment_type="CONTEO",
            lines=[{"item_sku": "SKU-1", "quantity_delta": "2"}],
        )

        doc = await svc.create_adjustment(payload)

        assert doc.adjustment_number == "AJ-000005"
        assert store.entries[-1].action == "CREATE"
        assert store.entries[-1].entity_id == doc.id
        [audit] = session.rows(AuditLog)
        assert (audit.entity_type, audit.action, audit.entity_id) == (d.STOCK_ADJUSTMENT, "CREATE", doc.id)
        assert audit.changes == {"adjustment_number": "AJ-000005"}
        assert session.commits == 1

    async def test_concurrent_number_collision_is_a_conflict(self, actor, gateway, store):
        clash = IntegrityError("INSERT INTO stock_adjustments", {}, Exception("duplicate key value"))
        session = FakeSession(flush_error=clash)
        svc = InventoryService(session, actor, gateway)
        svc.locations.get_location = AsyncMock(return_value=NS(id=uuid.uuid4()))
        payload = StockAdjustmentCreate(location_id=uuid.uuid4(), adjustment_type="MERMA")

        with pytest.raises(ConflictError) as exc:
            await svc.create_adjustment(payload)
        assert exc.value.status_code == 409
        assert session.rollbacks == 1
        assert session.commits == 0
        assert store.entries == []


class TestAuditLog:
    async def test_customer_creation_is_audited(self, session, actor, gateway):
        svc = SalesService(session, actor, gateway)
        svc.customers.get_by_code = AsyncMock(return_value=None)

        customer = await svc.create_customer(CustomerCreate(code="C-001", name="Acme Metals"))

        assert customer.balance == Decimal("0")
        [audit] = session.rows(AuditLog)
        assert (audit.entity_type, audit.action, audit.user_id) == ("Customer", "CREATE", actor.user_id)
        assert audit.changes["code"] == "C-001"
        assert session.commits == 1

    async def test_duplicate_customer_code(self, session, actor, gateway):
        svc = SalesService(session, actor, gateway)
        svc.customers.get_by_code = AsyncMock(return_value=NS(id=uuid.uuid4()))
        with pytest.raises(ConflictError):
            await svc.create_customer(CustomerCreate(code="C-001", name="Acme Metals"))
        assert session.rows(AuditLog) == []


class TestSafety:
    def _permit(self):
        return NS(
            id=uuid.uuid4(),
            status="DRAFT",
            doc_type=None,
            hazards_identified="Hot work near solvent storage",
            control_measures="Remove solvents, fire watch",
            required_ppe=["gloves", "face shield"],
            valid_from=FIXED_NOW - timedelta(hours=1),
            valid_to=FIXED_NOW + timedelta(hours=8),
            requires_loto=False,
            loto_execution_id=None,
            approved_by=None,
        )

    async def test_submitting_twice_is_refused(self, session, actor, gateway, store):
        permit = self._permit()
        svc = SafetyService(session, actor, gateway)
        svc.permits.get_permit = AsyncMock(return_value=permit)

        await svc.transition_permit(permit.id, "SUBMIT", TransitionRequest())
        assert permit.status == "PENDING_APPROVAL"

        with pytest.raises(InvalidTransitionError) as exc:
            await svc.transition_permit(permit.id, "SUBMIT", TransitionRequest())
        assert exc.value.status_code == 400
        assert permit.status == "PENDING_APPROVAL"
        assert [e.action for e in store.entries] == ["SUBMIT"]

    def _execution(self):
        return NS(
            id=uuid.uuid4(),
            status="LOCKED",
            doc_type=None,
            unlocked_at=None,
            locks=[
                {"id": "a", "point": "Main breaker", "released": False},
                {"id": "b", "point": "Steam valve", "released": False},
            ],
        )

    async def test_release_locks_partial_then_all(self, session, actor, gateway, store):
        execution = self._execution()
        svc = SafetyService(session, actor, gateway)
        svc.loto.get_execution = AsyncMock(return_value=execution)
        svc.permits.states_for = AsyncMock(return_value=["CLOSED"])

        first = await svc.release_locks(execution.id, ["a"], TransitionRequest())
        assert first.action == "RELEASE_PARTIAL"
        assert execution.status == "PARTIAL"
        assert [lk["released"] for lk in execution.locks] == [True, False]
        assert store.entries[-1].details == {"lock_ids": ["a"]}

        second = await svc.release_locks(execution.id, None, TransitionRequest())
        assert second.action == "RELEASE_ALL"
        assert execution.status == "UNLOCKED"
        assert execution.unlocked_at == FIXED_NOW
        assert store.entries[-1].details == {"lock_ids": "ALL"}

    async def test_release_blocked_by_live_permit(self, session, actor, gateway):
        execution = self._execution()
        svc = SafetyService(session, actor, gateway)
        svc.loto.get_execution = AsyncMock(return_value=execution)
        svc.permits.states_for = AsyncMock(return_value=["ACTIVE"])

        with pytest.raises(NotEligibleError) as exc:
            await svc.release_locks(execution.id, None, TransitionRequest())
        assert exc.value.code == "PTW_STILL_ACTIVE"
        assert execution.status == "LOCKED"
        assert all(not lk["released"] for lk in execution.locks)


class TestLifecycleReads:
    async def _history(self, gateway, actor, doc_type):
        doc = NS(id=uuid.uuid4(), status="BORRADOR", doc_type=doc_type)
        svc = SalesService(FakeSession(), actor, gateway)
        await gateway.record_creation(svc._context(d.SALES_INVOICE, doc, "CREATE"), "BORRADOR")
        return doc

    async def test_t2_history_hidden_in_standard_mode(self, gateway, store, extended_actor, tenant_id):
        doc = await self._history(gateway, extended_actor, "T2")
        session = FakeSession()
        session.documents[doc.id] = doc
        svc = LifecycleService(session, tenant_id, ViewMode.STANDARD)
        svc.logs = store

        with pytest.raises(NotFoundError):
            await svc.history(d.SALES_INVOICE, doc.id)
        with pytest.raises(NotFoundError):
            await svc.verify(d.SALES_INVOICE, doc.id)

    async def test_t2_history_visible_in_extended_mode(self, gateway, store, extended_actor, tenant_id):
        doc = await self._history(gateway, extended_actor, "T2")
        session = FakeSession()
        session.documents[doc.id] = doc
        svc = LifecycleService(session, tenant_id, ViewMode.EXTENDED)
        svc.logs = store

        [entry] = await svc.history(d.SALES_INVOICE, doc.id)
        assert entry.doc_type == "T2"
        report = await svc.verify(d.SALES_INVOICE, doc.id)
        assert report["valid"] is True

    @pytest.mark.parametrize("mode, visible", [(ViewMode.STANDARD, ["T1"]), (ViewMode.EXTENDED, ["T1", "T2"])])
    async def test_transition_log_listing_follows_view_mode(self, tenant_id, mode, visible):
        session = FakeSession()
        rows = await TransitionLogRepository(session, tenant_id).list_entries(mode=mode, entity_type=d.SALES_INVOICE)
        assert rows == []
        assert _doc_type_filter(session.statements[0]) == [visible]

    async def test_history_of_unknown_document(self, store, tenant_id):
        svc = LifecycleService(FakeSession(), tenant_id)
        svc.logs = store
        with pytest.raises(NotFoundError):
            await svc.history(d.PURCHASE_ORDER, uuid.uuid4())
