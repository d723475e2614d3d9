"""
Core application utilities for settings and FastAPI dependencies.

This package provides:
- Application-level settings (separate from DB settings)
- Dependency helpers (tenant extraction, tenant-scoped DB session)
"""
