"""
Tests for T1/T2 visibility rules.
"""
import pytest
from sqlalchemy import select

from src.core.errors import PermissionDeniedError, ValidationFailedError
from src.core.view_mode import (
    ViewMode,
    apply_view_mode,
    doc_types_for,
    ensure_can_write,
    is_visible,
    parse_view_mode,
)
from src.db.models.procurement import PurchaseOrder


class TestParse:
    @pytest.mark.parametrize("raw,expected", [("S", ViewMode.STANDARD), ("e", ViewMode.EXTENDED), (" E ", ViewMode.EXTENDED)])
    def test_valid(self, raw, expected):
        assert parse_view_mode(raw) == expected

    def test_default(self):
        assert parse_view_mode(None) == ViewMode.STANDARD
        assert parse_view_mode("", default="E") == ViewMode.EXTENDED

    def test_invalid(self):
        with pytest.raises(ValidationFailedError) as exc:
            parse_view_mode("X")
        assert exc.value.details["allowed"] == ["S", "E"]


class TestVisibility:
    def test_doc_types(self):
        assert doc_types_for(ViewMode.STANDARD) == ["T1"]
        assert doc_types_for(ViewMode.EXTENDED) == ["T1", "T2"]

    def test_is_visible(self):
        assert is_visible("T1", ViewMode.STANDARD)
        assert is_visible(None, ViewMode.STANDARD)
        assert not is_visible("T2", ViewMode.STANDARD)
        assert is_visible("T2", ViewMode.EXTENDED)

    def test_write_t2_requires_extended(self):
        ensure_can_write("T2", ViewMode.EXTENDED)
        with pytest.raises(PermissionDeniedError):
            ensure_can_write("T2", ViewMode.STANDARD)

    def test_apply_view_mode_filters_query(self):
        stmt = apply_view_mode(select(PurchaseOrder), PurchaseOrder, ViewMode.STANDARD)
        sql = str(stmt.compile(compile_kwargs={"literal_binds": True}))
        assert "doc_type IN ('T1')" in sql
