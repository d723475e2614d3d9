"""
Tests for reason-code validation on justified transitions.
"""
import pytest

from src.lifecycle import definitions as d
from src.lifecycle.errors import ReasonRequiredError
from src.lifecycle.reasons import MIN_OTHER_TEXT_LENGTH, OTHER, reason_catalog, validate_reason


class TestValidateReason:
    def test_not_required_passes_without_code(self):
        validate_reason(d.PURCHASE_ORDER_MACHINE, "APPROVE", None, None)

    def test_missing_code(self):
        with pytest.raises(ReasonRequiredError) as exc:
            validate_reason(d.PURCHASE_ORDER_MACHINE, "REJECT", None, None)
        assert exc.value.code == "REASON_CODE_REQUIRED"
        assert exc.value.status_code == 400
        assert "PRICE_MISMATCH" in exc.value.details["allowed"]

    def test_code_from_another_family(self):
        with pytest.raises(ReasonRequiredError, match="not valid"):
            validate_reason(d.PURCHASE_ORDER_MACHINE, "REJECT", "WEATHER", None)

    def test_known_code_passes(self):
        validate_reason(d.PURCHASE_ORDER_MACHINE, "REJECT", "PRICE_MISMATCH", None)
        validate_reason(d.PERMIT_TO_WORK_MACHINE, "SUSPEND", "WEATHER", None)

    def test_other_needs_descriptive_text(self):
        with pytest.raises(ReasonRequiredError, match="at least"):
            validate_reason(d.SALES_INVOICE_MACHINE, "VOID", OTHER, "   short   ")
        validate_reason(d.SALES_INVOICE_MACHINE, "VOID", OTHER, "x" * MIN_OTHER_TEXT_LENGTH)


class TestCatalog:
    def test_common_codes_everywhere(self):
        for machine in d.REGISTRY:
            catalog = reason_catalog(machine.entity_type)
            assert {"DUPLICATE", "DATA_ENTRY_ERROR", OTHER} <= set(catalog)

    def test_returns_a_copy(self):
        catalog = reason_catalog(d.PURCHASE_ORDER)
        catalog.clear()
        assert reason_catalog(d.PURCHASE_ORDER)
