"""
Shared fixtures for the lifecycle API test suite.

The engine tests run against InMemoryTransitionStore, an implementation of
the TransitionStore protocol kept in plain lists and dicts. API tests replace
the database-backed dependencies through FastAPI dependency overrides, so no
PostgreSQL instance is needed.
"""
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("AUTO_SEED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

from src.lifecycle.gateway import TransitionGateway  # noqa: E402
from src.lifecycle.store import COMPLETED, FAILED, PROCESSING, IdempotencyRecord  # noqa: E402

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class InMemoryTransitionStore:
    """TransitionStore kept in memory; a failed transaction drops its log entries."""

    def __init__(self):
        self.entries = []
        self.keys = {}
        self.sod_rules = []
        self.commits = 0
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        mark = len(self.entries)
        try:
            yield
        except Exception:
            del self.entries[mark:]
            self.rollbacks += 1
            raise
        self.commits += 1

    async def get_idempotency(self, key):
        return self.keys.get(key)

    async def mark_processing(self, key, *, operation, entity_type, entity_id, expires_at):
        self.keys[key] = IdempotencyRecord(
            key=key,
            status=PROCESSING,
            expires_at=expires_at,
            operation=operation,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    async def mark_completed(self, key, response):
        record = self.keys[key]
        record.status = COMPLETED
        record.response = response

    async def mark_failed(self, key):
        self.keys[key].status = FAILED

    async def list_sod_rules(self, entity_type, action):
        return [rule for et, rule in self.sod_rules if et == entity_type and rule.second_action == action]

    async def has_performed(self, *, user_id, entity_type, actions, entity_id=None, since=None):
        for e in self.entries:
            if e.user_id != user_id or e.entity_type != entity_type or e.action not in actions:
                continue
            if entity_id is not None and e.entity_id != entity_id:
                continue
            if since is not None and e.created_at < since:
                continue
            return True
        return False

    async def last_hash(self, entity_type, entity_id):
        chain = await self.history(entity_type, entity_id)
        return chain[-1].integrity_hash if chain else None

    async def append(self, entry):
        entry.id = uuid.uuid4()
        self.entries.append(entry)
        return entry

    async def history(self, entity_type, entity_id):
        return [e for e in self.entries if e.entity_type == entity_type and e.entity_id == entity_id]


class FakeDocument:
    """Minimal document holding a status, for load_state/apply callbacks."""

    def __init__(self, status):
        self.id = uuid.uuid4()
        self.status = status
        self.applied = []

    async def load_state(self):
        return self.status

    async def apply(self, target):
        self.applied.append(target)
        self.status = target


class Clock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store():
    """Empty in-memory transition store."""
    return InMemoryTransitionStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def gateway(store, clock):
    """Gateway over the in-memory store with a fixed clock."""
    return TransitionGateway(store, clock=clock)


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def creator_id():
    return uuid.uuid4()


@pytest.fixture
def approver_id():
    return uuid.uuid4()


@pytest.fixture
def make_document():
    """Factory for FakeDocument instances in a given status."""
    return FakeDocument
