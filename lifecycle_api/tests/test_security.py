"""
Tests for permission matching, password hashing and JWT helpers.
"""
import uuid

import pytest
from jose import JWTError

from src.core.security import (
    WILDCARD_PERMISSION,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    has_permission,
    verify_password,
)


class TestHasPermission:
    def test_any_of_required(self):
        granted = {"ptw.view", "ptw.approve"}
        assert has_permission(granted, "ptw.approve")
        assert has_permission(granted, "ptw.close", "ptw.view")
        assert not has_permission(granted, "ptw.close")

    def test_wildcard(self):
        assert has_permission({WILDCARD_PERMISSION}, "anything.at.all")

    def test_nothing_required(self):
        assert has_permission(set())


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = get_password_hash("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)


class TestTokens:
    def test_access_token_claims(self):
        user_id, tenant_id = str(uuid.uuid4()), str(uuid.uuid4())
        token = create_access_token(user_id, tenant_id, roles=["buyer"], permissions=["b", "a"])
        payload = decode_token(token)
        assert payload["sub"] == user_id
        assert payload["tenant_id"] == tenant_id
        assert payload["type"] == "access"
        assert payload["roles"] == ["buyer"]
        assert payload["permissions"] == ["a", "b"]

    def test_refresh_token_type(self):
        payload = decode_token(create_refresh_token("u", "t"))
        assert payload["type"] == "refresh"

    def test_tampered_token_rejected(self):
        token = create_access_token("u", "t")
        with pytest.raises(JWTError):
            decode_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))

    def test_expired_token_rejected(self):
        token = create_access_token("u", "t", expires_minutes=-1)
        with pytest.raises(JWTError):
            decode_token(token)


class _RoleRepo:
    def __init__(self, roles):
        self.roles = roles

    async def list_roles_for_user(self, user_id):
        return self.roles


class TestEffectivePermissions:
    @staticmethod
    def _role(name, *codes):
        from src.db.models import Permission, Role

        return Role(name=name, permissions=[Permission(code=c) for c in codes])

    @staticmethod
    def _user(superadmin=False):
        from types import SimpleNamespace

        return SimpleNamespace(id=uuid.uuid4(), is_superadmin=superadmin)

    async def test_union_of_role_codes(self):
        from src.core.deps import effective_permissions

        repo = _RoleRepo([self._role("buyer", "po.create", "po.view"), self._role("viewer", "po.view", "ptw.view")])
        perms = await effective_permissions(repo, self._user())
        assert perms == {"po.create", "po.view", "ptw.view"}

    async def test_superadmin_gets_wildcard(self):
        from src.core.deps import effective_permissions

        perms = await effective_permissions(_RoleRepo([]), self._user(superadmin=True))
        assert perms == {WILDCARD_PERMISSION}

    async def test_admin_role_gets_wildcard(self):
        from src.core.deps import ADMIN_ROLES, effective_permissions

        repo = _RoleRepo([self._role(sorted(ADMIN_ROLES)[0])])
        assert await effective_permissions(repo, self._user()) == {WILDCARD_PERMISSION}

    async def test_no_roles_no_permissions(self):
        from src.core.deps import effective_permissions

        assert await effective_permissions(_RoleRepo([]), self._user()) == frozenset()
