"""
API route modules.

This package contains subrouters for:
- Auth: login, register, logout, refresh, and current user
- Users and roles: administration and permission grants
- Document families: procurement, inventory, sales, safety, maintenance
- Lifecycle: machine catalogue, history, integrity checks and SoD rules
- Reports: CSV/Excel/PDF exports

Routers are included from src.api.main (under the /api/v1 prefix).
"""
