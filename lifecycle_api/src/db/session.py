"""
Async engine, sessions and the tenant binding that Row-Level Security relies on.

RLS policies compare `tenant_id` with `current_setting('app.tenant_id')`. The
tenant of a session is kept in `session.info` and written into that GUC with
`is_local = true` at the start of every transaction, so it follows the session
across commits and never outlives the transaction on a pooled connection.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Union
from uuid import UUID

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, SessionTransaction

from .config import get_settings

logger = logging.getLogger(__name__)

TENANT_INFO_KEY = "tenant_id"
_SET_TENANT = text("SELECT set_config('app.tenant_id', :tenant_id, true)")

_ENGINE: Optional[AsyncEngine] = None
_SESSION_MAKER: Optional[async_sessionmaker[AsyncSession]] = None


def _session_maker() -> async_sessionmaker[AsyncSession]:
    global _ENGINE, _SESSION_MAKER
    if _SESSION_MAKER is None:
        settings = get_settings()
        _ENGINE = create_async_engine(
            settings.async_database_url,
            echo=settings.SQL_ECHO,
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
        _SESSION_MAKER = async_sessionmaker(bind=_ENGINE, expire_on_commit=False, autoflush=False)
    return _SESSION_MAKER


@event.listens_for(Session, "after_begin")
def _apply_tenant_guc(session: Session, transaction: SessionTransaction, connection: Connection) -> None:
    tenant_id = session.info.get(TENANT_INFO_KEY)
    if tenant_id is not None:
        connection.execute(_SET_TENANT, {"tenant_id": str(tenant_id)})


# PUBLIC_INTERFACE
def get_engine() -> AsyncEngine:
    """The process-wide AsyncEngine, created on first use."""
    _session_maker()
    assert _ENGINE is not None
    return _ENGINE


# PUBLIC_INTERFACE
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session without tenant binding (FastAPI dependency)."""
    async with _session_maker()() as session:
        yield session


# PUBLIC_INTERFACE
async def set_current_tenant(session: AsyncSession, tenant_id: Union[str, UUID]) -> None:
    """
    Bind `session` to `tenant_id`.

    Applies to the running transaction immediately and to every later one.
    """
    session.info[TENANT_INFO_KEY] = str(tenant_id)
    logger.debug("Session bound to tenant %s", tenant_id)
    if session.in_transaction():
        await session.execute(_SET_TENANT, {"tenant_id": str(tenant_id)})


# PUBLIC_INTERFACE
def current_tenant(session: AsyncSession) -> Optional[str]:
    """Tenant id bound to `session`, if any."""
    return session.info.get(TENANT_INFO_KEY)


# PUBLIC_INTERFACE
@asynccontextmanager
async def tenant_context(session: AsyncSession, tenant_id: Union[str, UUID]) -> AsyncGenerator[AsyncSession, None]:
    """
    Scope `session` to one tenant for the duration of the block.

        async with tenant_context(session, tenant_id):
            ...  # queries only see rows of tenant_id

    On exit the binding is dropped; after a normal exit inside an open
    transaction the GUC is also cleared so RLS denies every tenant-scoped row.
    """
    await set_current_tenant(session, tenant_id)
    try:
        yield session
    finally:
        session.info.pop(TENANT_INFO_KEY, None)
    if session.in_transaction():
        await session.execute(_SET_TENANT, {"tenant_id": ""})
