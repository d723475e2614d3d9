"""
T1/T2 document visibility.

Documents carry a `doc_type` of T1 (standard books) or T2 (extended set).
Requests run in a ViewMode: STANDARD sees T1 only, EXTENDED sees both.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from sqlalchemy import Select

from src.core.errors import PermissionDeniedError, ValidationFailedError

EXTENDED_VIEW_PERMISSION = "view_mode.extended"


class ViewMode(str, Enum):
    STANDARD = "S"
    EXTENDED = "E"


class DocType(str, Enum):
    T1 = "T1"
    T2 = "T2"


# PUBLIC_INTERFACE
def parse_view_mode(value: Optional[str], default: str = "S") -> ViewMode:
    """Parse a header/query value into a ViewMode, falling back to `default`."""
    raw = (value or default).strip().upper()
    try:
        return ViewMode(raw)
    except ValueError:
        raise ValidationFailedError(
            f"Invalid view mode '{value}'. Use 'S' or 'E'.",
            details={"allowed": [m.value for m in ViewMode]},
        )


# PUBLIC_INTERFACE
def doc_types_for(mode: ViewMode) -> List[str]:
    """Return the doc types visible under `mode`."""
    if mode == ViewMode.EXTENDED:
        return [DocType.T1.value, DocType.T2.value]
    return [DocType.T1.value]


# PUBLIC_INTERFACE
def apply_view_mode(stmt: Select, model, mode: ViewMode) -> Select:
    """Restrict a select over `model` to the doc types visible under `mode`."""
    return stmt.where(model.doc_type.in_(doc_types_for(mode)))


def is_visible(doc_type: Optional[str], mode: ViewMode) -> bool:
    return (doc_type or DocType.T1.value) in doc_types_for(mode)


# PUBLIC_INTERFACE
def ensure_can_write(doc_type: str, mode: ViewMode) -> None:
    """T2 documents may only be created or touched from extended mode."""
    if not is_visible(doc_type, mode):
        raise PermissionDeniedError(
            f"Documents of type {doc_type} require extended view mode.",
            details={"doc_type": doc_type, "view_mode": mode.value},
        )
