"""
Persistence layer of the lifecycle API: declarative base and document mixins,
database settings, the async engine and the tenant binding used by RLS.
"""

from .base import Base, DocTypeMixin, LifecycleDocumentMixin, TenantMixin
from .config import Settings, get_settings
from .session import current_tenant, get_async_session, get_engine, set_current_tenant, tenant_context

# registers every mapped table on Base.metadata
from . import models as models  # noqa: F401

__all__ = [
    "Base",
    "DocTypeMixin",
    "LifecycleDocumentMixin",
    "TenantMixin",
    "Settings",
    "get_settings",
    "get_engine",
    "get_async_session",
    "current_tenant",
    "set_current_tenant",
    "tenant_context",
    "models",
]
