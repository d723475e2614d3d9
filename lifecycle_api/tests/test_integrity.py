"""
Tests for the hash-chained transition log.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.lifecycle.integrity import GENESIS, compute_integrity_hash, verify_chain


def _chain(n=3):
    tenant, entity, user = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    start = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
    states = ["BORRADOR", "EN_APROBACION", "APROBADA", "ENVIADA_PROVEEDOR"]
    actions = ["CREATE", "SUBMIT", "APPROVE", "SEND"]
    entries = []
    prev = None
    for i in range(n):
        entry = {
            "tenant_id": tenant,
            "entity_type": "PurchaseOrder",
            "entity_id": entity,
            "action": actions[i],
            "from_state": states[i - 1] if i else None,
            "to_state": states[i],
            "user_id": user,
            "reason_code": None,
            "created_at": start + timedelta(minutes=i),
            "prev_hash": prev,
        }
        entry["integrity_hash"] = compute_integrity_hash(prev, entry)
        prev = entry["integrity_hash"]
        entries.append(entry)
    return entries


class TestComputeHash:
    def test_deterministic_hex_digest(self):
        entry = _chain(1)[0]
        first = compute_integrity_hash(None, entry)
        assert first == compute_integrity_hash(None, dict(entry))
        assert len(first) == 64

    def test_genesis_equals_missing_prev(self):
        entry = _chain(1)[0]
        assert compute_integrity_hash(None, entry) == compute_integrity_hash(GENESIS, entry)

    def test_json_records_are_hashed(self):
        entry = dict(_chain(1)[0], details={"received": {"line-1": "4"}})
        assert compute_integrity_hash(None, entry) != compute_integrity_hash(
            None, dict(entry, details={"received": {"line-1": "5"}})
        )

    def test_missing_json_record_hashes_like_empty(self):
        entry = _chain(1)[0]
        assert compute_integrity_hash(None, dict(entry, sod_check=None)) == compute_integrity_hash(
            None, dict(entry, sod_check={})
        )

    def test_nested_key_order_is_irrelevant(self):
        entry = _chain(1)[0]
        first = dict(entry, details={"a": 1, "b": [uuid.UUID(int=7), "x"]})
        second = dict(entry, details={"b": [uuid.UUID(int=7), "x"], "a": 1})
        assert compute_integrity_hash(None, first) == compute_integrity_hash(None, second)

    def test_any_hashed_field_changes_digest(self):
        entry = _chain(1)[0]
        base = compute_integrity_hash(None, entry)
        assert compute_integrity_hash(None, dict(entry, to_state="APROBADA")) != base
        assert compute_integrity_hash(None, dict(entry, user_id=uuid.uuid4())) != base
        assert compute_integrity_hash("f" * 64, entry) != base


class TestVerifyChain:
    def test_intact_chain(self):
        assert verify_chain(_chain(4)) is None

    def test_empty_chain(self):
        assert verify_chain([]) is None

    def test_tampered_entry_detected(self):
        entries = _chain(4)
        entries[2]["to_state"] = "RECHAZADA"
        assert verify_chain(entries) == 2

    def test_deleted_entry_detected(self):
        entries = _chain(4)
        del entries[1]
        assert verify_chain(entries) == 1

    def test_objects_are_accepted(self):
        class Row:
            def __init__(self, data):
                self.__dict__.update(data)

        assert verify_chain([Row(e) for e in _chain(3)]) is None

    @pytest.mark.parametrize(
        "field, value",
        [
            ("reason_text", "edited after the fact"),
            ("details", {"lock_ids": "ALL"}),
            ("sod_check", {"allowed": True, "skipped": True}),
            ("eligibility", {"eligible": True, "details": {"forced": True}}),
            ("doc_type", "T2"),
        ],
    )
    def test_tampered_record_detected(self, field, value):
        entries = _chain(4)
        entries[1][field] = value
        assert verify_chain(entries) == 1
