"""
Tests for the tenant binding carried by sessions.
"""
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.session import (
    TENANT_INFO_KEY,
    _apply_tenant_guc,
    current_tenant,
    set_current_tenant,
    tenant_context,
)


class RecordingConnection:
    def __init__(self):
        self.calls = []

    def execute(self, statement, params=None):
        self.calls.append((str(statement), params))


async def test_binding_survives_outside_transaction():
    session = AsyncSession()
    tenant = uuid.uuid4()
    await set_current_tenant(session, tenant)
    assert current_tenant(session) == str(tenant)
    await session.close()


async def test_tenant_context_drops_binding_on_exit():
    session = AsyncSession()
    tenant = uuid.uuid4()
    async with tenant_context(session, tenant) as scoped:
        assert scoped is session
        assert current_tenant(session) == str(tenant)
    assert current_tenant(session) is None
    await session.close()


async def test_tenant_context_drops_binding_on_error():
    session = AsyncSession()
    with pytest.raises(RuntimeError):
        async with tenant_context(session, uuid.uuid4()):
            raise RuntimeError("boom")
    assert current_tenant(session) is None
    await session.close()


def test_transaction_begin_sets_local_guc():
    tenant = str(uuid.uuid4())
    conn = RecordingConnection()
    _apply_tenant_guc(SimpleNamespace(info={TENANT_INFO_KEY: tenant}), None, conn)
    assert len(conn.calls) == 1
    sql, params = conn.calls[0]
    assert "set_config('app.tenant_id'" in sql
    assert "true" in sql
    assert params == {"tenant_id": tenant}


def test_transaction_begin_without_tenant_is_noop():
    conn = RecordingConnection()
    _apply_tenant_guc(SimpleNamespace(info={}), None, conn)
    assert conn.calls == []
