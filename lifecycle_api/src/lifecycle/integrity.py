"""
Hash chaining for the transition log.

Each entry's hash covers the previous entry's hash of the same document plus
the entry's own canonical content, including reason text and the JSON
details, SoD and eligibility records, so editing or deleting a stored entry
breaks every later link. Missing JSON records hash like empty ones.
"""
from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

GENESIS = "0" * 64

HASHED_FIELDS = (
    "tenant_id",
    "entity_type",
    "entity_id",
    "action",
    "from_state",
    "to_state",
    "user_id",
    "reason_code",
    "reason_text",
    "doc_type",
    "details",
    "sod_check",
    "eligibility",
    "created_at",
)
JSON_FIELDS = ("details", "sod_check", "eligibility")


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _field(payload: Mapping[str, Any], key: str) -> Any:
    value = payload.get(key)
    if key in JSON_FIELDS and value is None:
        return {}
    return value


def _canonical(payload: Mapping[str, Any]) -> str:
    return json.dumps(
        {k: _normalize(_field(payload, k)) for k in HASHED_FIELDS},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


# PUBLIC_INTERFACE
def compute_integrity_hash(prev_hash: Optional[str], payload: Mapping[str, Any]) -> str:
    """Return the SHA-256 hex digest linking `payload` to `prev_hash`."""
    digest = hashlib.sha256()
    digest.update((prev_hash or GENESIS).encode("ascii"))
    digest.update(_canonical(payload).encode("utf-8"))
    return digest.hexdigest()


# PUBLIC_INTERFACE
def verify_chain(entries: Sequence[Any]) -> Optional[int]:
    """
    Check a document's log entries in chronological order.

    Entries may be mappings or objects exposing the hashed fields plus
    `prev_hash` and `integrity_hash`. Returns the index of the first broken
    entry, or None when the chain is intact.
    """
    prev = None
    for i, entry in enumerate(entries):
        data = entry if isinstance(entry, Mapping) else {
            k: getattr(entry, k, None) for k in HASHED_FIELDS + ("prev_hash", "integrity_hash")
        }
        if (data.get("prev_hash") or None) != prev:
            return i
        if compute_integrity_hash(prev, data) != data.get("integrity_hash"):
            return i
        prev = data.get("integrity_hash")
    return None
