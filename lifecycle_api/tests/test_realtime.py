"""
Tests for the in-process WebSocket broadcast manager.
"""
import uuid

import pytest
from starlette.websockets import WebSocketState

from src.schemas.realtime import TransitionEvent
from src.services.realtime import BroadcastManager


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)


@pytest.fixture
def manager():
    return BroadcastManager()


@pytest.fixture
def event():
    return TransitionEvent(
        entity_type="PurchaseOrder",
        entity_id=uuid.uuid4(),
        action="APPROVE",
        from_state="EN_APROBACION",
        to_state="APROBADA",
        user_id=uuid.uuid4(),
    )


class TestBroadcastManager:
    def test_topics(self, manager):
        tenant = uuid.uuid4()
        assert manager.lifecycle_topic(tenant) == f"lifecycle:{tenant}"
        assert manager.lifecycle_topic(tenant, "SalesInvoice") == f"lifecycle:{tenant}:SalesInvoice"

    async def test_publish_reaches_tenant_and_family_topics(self, manager, event):
        tenant = uuid.uuid4()
        everything, orders, invoices = FakeSocket(), FakeSocket(), FakeSocket()
        await manager.connect(manager.lifecycle_topic(tenant), everything)
        await manager.connect(manager.lifecycle_topic(tenant, "PurchaseOrder"), orders)
        await manager.connect(manager.lifecycle_topic(tenant, "SalesInvoice"), invoices)

        await manager.publish_transition(tenant, event)

        assert len(everything.sent) == 1
        assert len(orders.sent) == 1
        assert invoices.sent == []
        message = orders.sent[0]
        assert message["type"] == "document.transitioned"
        assert message["channel"] == "PurchaseOrder"
        assert message["payload"]["to_state"] == "APROBADA"

    async def test_other_tenants_do_not_receive(self, manager, event):
        socket = FakeSocket()
        await manager.connect(manager.lifecycle_topic(uuid.uuid4()), socket)
        await manager.publish_transition(uuid.uuid4(), event)
        assert socket.sent == []

    async def test_dead_sockets_are_dropped(self, manager):
        topic = "lifecycle:t"
        broken, closed = FakeSocket(fail=True), FakeSocket()
        closed.client_state = WebSocketState.DISCONNECTED
        await manager.connect(topic, broken)
        await manager.connect(topic, closed)
        await manager.broadcast(topic, {"type": "x"})
        assert manager.subscriber_count(topic) == 0

    async def test_disconnect(self, manager):
        socket = FakeSocket()
        await manager.connect("lifecycle:t", socket)
        await manager.disconnect("lifecycle:t", socket)
        await manager.disconnect("lifecycle:unknown", socket)
        assert manager.subscriber_count("lifecycle:t") == 0

    async def test_t2_events_reach_extended_subscribers_only(self, manager, event):
        tenant = uuid.uuid4()
        standard, extended = FakeSocket(), FakeSocket()
        await manager.connect(manager.lifecycle_topic(tenant), standard)
        await manager.connect(manager.lifecycle_topic(tenant), extended, extended=True)

        await manager.publish_transition(tenant, event.model_copy(update={"doc_type": "T2"}))
        assert standard.sent == []
        assert extended.sent[0]["payload"]["doc_type"] == "T2"

        await manager.publish_transition(tenant, event)
        assert len(standard.sent) == 1
        assert len(extended.sent) == 2
