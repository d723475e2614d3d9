"""
Reference data every tenant needs before documents can be transitioned.

Seeds, for the default tenant (settings.DEFAULT_TENANT_SLUG):
- the permission catalogue derived from the registered state machines
- an `admin` role holding the whole catalogue
- default SoD rules on top of the ones built into the machines
- a MAIN warehouse location for stock-moving documents

Usage:
  python -m src.db.run_migrations upgrade head
  python -m src.db.seed
"""

from __future__ import annotations

import asyncio
import logging
from typing import NamedTuple, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.logging import configure_logging
from src.core.settings import get_app_settings
from src.db.models import Location, Tenant
from src.db.session import get_async_session, set_current_tenant, tenant_context
from src.lifecycle import definitions as d
from src.lifecycle.machine import CREATE_ACTION, SAME_DOCUMENT
from src.repositories.inventory import LocationRepository
from src.repositories.lifecycle import SoDRuleRepository
from src.repositories.security import SecurityRepository

logger = logging.getLogger(__name__)


class DefaultSoDRule(NamedTuple):
    code: str
    entity_type: str
    first_actions: Tuple[str, ...]
    second_action: str
    description: str


DEFAULT_SOD_RULES: Tuple[DefaultSoDRule, ...] = (
    DefaultSoDRule(
        "RETURN_REQUESTER_RESOLVES",
        d.PURCHASE_RETURN,
        (CREATE_ACTION, "REQUEST"),
        "RESOLVE",
        "Whoever raised a supplier return may not resolve it",
    ),
    DefaultSoDRule(
        "SALES_RETURN_ACCEPTOR_PROCESSES",
        d.SALES_RETURN,
        ("ACCEPT",),
        "PROCESS",
        "Accepting and processing a customer return need two people",
    ),
    DefaultSoDRule(
        "INVOICE_ISSUER_VOIDS",
        d.SALES_INVOICE,
        ("ISSUE",),
        "VOID",
        "The issuer of an invoice may not void it",
    ),
)

ADMIN_ROLE = "admin"
MAIN_LOCATION = "MAIN"


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """
    Seed the default tenant.

    Every step only inserts what is missing, so seeding can run on each startup
    without overwriting rows an administrator changed (a disabled SoD rule stays disabled).
    """
    settings = get_app_settings()
    async for session in get_async_session():
        tenant = await ensure_tenant(session, slug=settings.DEFAULT_TENANT_SLUG)
        async with tenant_context(session, tenant.id):
            await seed_tenant(session)
            await session.commit()
        logger.info("Seeded tenant %s (%s)", tenant.slug, tenant.id)


# PUBLIC_INTERFACE
async def ensure_tenant(session: AsyncSession, slug: str) -> Tenant:
    """
    Load the tenant with `slug`, creating it when absent.

    The tenants RLS policy checks `id = app.tenant_id` on insert, so the GUC is
    pointed at the new id before the row is flushed.
    """
    tenant = (await session.execute(select(Tenant).where(Tenant.slug == slug))).scalar_one_or_none()
    if tenant is not None:
        return tenant
    tenant = Tenant(id=uuid4(), name=slug.replace("-", " ").title(), slug=slug)
    await set_current_tenant(session, tenant.id)
    session.add(tenant)
    await session.flush()
    logger.info("Created tenant %s", slug)
    return tenant


# PUBLIC_INTERFACE
async def seed_tenant(session: AsyncSession) -> None:
    """Insert the reference rows for the tenant bound to `session`."""
    security = SecurityRepository(session)
    catalog = {code: d.STATIC_PERMISSIONS.get(code, code) for code in d.permission_catalog()}
    permissions = await security.sync_permission_catalog(catalog)
    await security.ensure_role(ADMIN_ROLE, "Administrator", permissions)

    rules = SoDRuleRepository(session)
    for rule in DEFAULT_SOD_RULES:
        if await rules.get_by_code(rule.code) is None:
            await rules.upsert(
                code=rule.code,
                entity_type=rule.entity_type,
                first_actions=rule.first_actions,
                second_action=rule.second_action,
                scope=SAME_DOCUMENT,
                description=rule.description,
            )

    locations = LocationRepository(session)
    if await locations.get_by_code(MAIN_LOCATION) is None:
        await locations.add(Location(code=MAIN_LOCATION, name="Main warehouse", type="warehouse"))
        await locations.flush()


# PUBLIC_INTERFACE
def main() -> None:
    """Run seed_all on a fresh event loop."""
    configure_logging(get_app_settings().LOG_LEVEL)
    asyncio.run(seed_all())


if __name__ == "__main__":
    main()
