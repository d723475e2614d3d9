from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from jose import jwt
from passlib.context import CryptContext

from src.core.settings import get_app_settings

_passwords = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Permission that satisfies every permission check.
WILDCARD_PERMISSION = "admin:all"


# PUBLIC_INTERFACE
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """bcrypt check of `plain_password` against a stored hash."""
    return _passwords.verify(plain_password, hashed_password)


# PUBLIC_INTERFACE
def get_password_hash(password: str) -> str:
    return _passwords.hash(password)


# PUBLIC_INTERFACE
def has_permission(granted: Iterable[str], *required: str) -> bool:
    """
    Return True when `granted` satisfies at least one of `required`.

    The wildcard permission grants everything; an empty `required` always passes.
    """
    granted_set = set(granted)
    if not required or WILDCARD_PERMISSION in granted_set:
        return True
    return not granted_set.isdisjoint(required)


def _sign(claims: Dict[str, Any], token_type: str, lifetime_minutes: int) -> str:
    settings = get_app_settings()
    issued = datetime.now(tz=timezone.utc)
    body = {**claims, "type": token_type, "iat": issued, "exp": issued + timedelta(minutes=lifetime_minutes)}
    return jwt.encode(body, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# PUBLIC_INTERFACE
def create_access_token(
    subject: str,
    tenant_id: str,
    roles: Optional[List[str]] = None,
    permissions: Optional[Iterable[str]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Access token for `subject` (a user id) in `tenant_id`.

    Role names and the sorted permission codes travel as claims so clients can
    render what the actor may do; the server recomputes permissions per request.
    """
    claims = {"sub": subject, "tenant_id": tenant_id, "roles": list(roles or []), "permissions": sorted(permissions or [])}
    lifetime = expires_minutes if expires_minutes is not None else get_app_settings().ACCESS_TOKEN_EXPIRE_MINUTES
    return _sign(claims, "access", lifetime)


# PUBLIC_INTERFACE
def create_refresh_token(subject: str, tenant_id: str, expires_minutes: Optional[int] = None) -> str:
    lifetime = expires_minutes if expires_minutes is not None else get_app_settings().REFRESH_TOKEN_EXPIRE_MINUTES
    return _sign({"sub": subject, "tenant_id": tenant_id}, "refresh", lifetime)


# PUBLIC_INTERFACE
def decode_token(token: str) -> Dict[str, Any]:
    """Verified claims of `token`; jose.JWTError when the signature or expiry is bad."""
    settings = get_app_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
