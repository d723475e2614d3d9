from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.api.errors import register_exception_handlers
from src.api.routes.auth import router as auth_router
from src.api.routes.health import router as health_router
from src.api.routes.inventory import router as inventory_router
from src.api.routes.lifecycle import router as lifecycle_router
from src.api.routes.maintenance import router as maintenance_router
from src.api.routes.procurement import router as procurement_router
from src.api.routes.reports import router as reports_router
from src.api.routes.roles import router as roles_router
from src.api.routes.safety import router as safety_router
from src.api.routes.sales import router as sales_router
from src.api.routes.users import router as users_router
from src.api.websocket import router as websocket_router
from src.core.logging import configure_logging, correlation_id_var, tenant_id_var
from src.core.settings import get_app_settings
from src.db.run_migrations import upgrade_to_head
from src.db.seed import seed_all

settings = get_app_settings()

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "Health", "description": "Liveness and tenant resolution checks."},
    {"name": "Auth", "description": "Login, refresh and the caller's effective permissions."},
    {"name": "Users", "description": "User administration."},
    {"name": "Roles", "description": "Roles and the lifecycle permission codes they grant."},
    {"name": "Procurement", "description": "Suppliers, purchase orders and purchase returns."},
    {"name": "Inventory", "description": "Locations, stock levels, movements and stock adjustments."},
    {"name": "Sales", "description": "Customers, sales invoices, payments and sales returns."},
    {"name": "Safety", "description": "Permits to work and lockout/tagout executions."},
    {"name": "Maintenance", "description": "Assets and maintenance work orders."},
    {"name": "Lifecycle", "description": "State machines, transition history, chain verification and SoD rules."},
    {"name": "Reports", "description": "Transition log exports (CSV/Excel/PDF)."},
    {"name": "WebSocket", "description": "Real-time document transition feed."},
]

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    openapi_tags=openapi_tags,
)

allow_credentials = settings.CORS_ALLOW_CREDENTIALS
if allow_credentials and settings.CORS_ORIGINS == ["*"]:
    logger.warning("Ignoring CORS_ALLOW_CREDENTIALS with wildcard origins")
    allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=allow_credentials,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)
register_exception_handlers(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Bind the correlation id and raw X-Tenant-ID header to the logging context.

    The correlation id is taken from X-Correlation-ID (or X-Request-ID), generated
    when absent, and echoed on the response.
    """
    corr = request.headers.get("X-Correlation-ID") or request.headers.get("X-Request-ID") or str(uuid4())
    request.state.correlation_id = corr
    request.state.tenant_id = request.headers.get("X-Tenant-ID")
    corr_token = correlation_id_var.set(corr)
    tenant_token = tenant_id_var.set(request.state.tenant_id)
    try:
        logger.debug("%s %s", request.method, request.url.path)
        response = await call_next(request)
    finally:
        correlation_id_var.reset(corr_token)
        tenant_id_var.reset(tenant_token)
    response.headers["X-Correlation-ID"] = corr
    return response


@app.on_event("startup")
async def on_startup() -> None:
    """
    Optionally migrate and seed the default tenant.

    Alembic runs its own event loop, so the upgrade is pushed to a worker thread.

    Failures are logged and startup continues, so the health endpoints stay
    reachable while the database is being fixed.
    """
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            await asyncio.to_thread(upgrade_to_head)
        except Exception:
            logger.exception("Schema upgrade failed")
    if settings.AUTO_SEED:
        try:
            await seed_all()
        except Exception:
            logger.exception("Seeding failed")


api_v1 = APIRouter(prefix="/api/v1")
for router in (
    health_router,
    auth_router,
    users_router,
    roles_router,
    procurement_router,
    inventory_router,
    sales_router,
    safety_router,
    maintenance_router,
    lifecycle_router,
    reports_router,
):
    api_v1.include_router(router)

app.include_router(api_v1)
app.include_router(websocket_router)
