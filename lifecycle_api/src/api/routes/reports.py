from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_tenant_id, get_tenant_session, get_view_mode, require_permission
from src.core.errors import ValidationFailedError
from src.core.view_mode import ViewMode, apply_view_mode
from src.lifecycle import definitions as d
from src.repositories.lifecycle import TransitionLogRepository
from src.services.lifecycle import DOCUMENT_MODELS

router = APIRouter(prefix="/reports", tags=["Reports"])

# Tables holding the status of each lifecycle-managed document family.
TRANSITION_LOG_COLUMNS = [
    "created_at",
    "entity_type",
    "entity_id",
    "action",
    "from_state",
    "to_state",
    "user_id",
    "reason_code",
    "reason_text",
    "doc_type",
    "integrity_hash",
]

OPEN_DOCUMENT_COLUMNS = ["entity_type", "status", "documents", "oldest", "newest"]


def _cell(value):
    """Excel cannot store tz-aware datetimes; render them as ISO strings."""
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat() if value.tzinfo else value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _csv(df: pd.DataFrame, title: str) -> bytes:
    return df.to_csv(index=False).encode("utf-8")


def _xlsx(df: pd.DataFrame, title: str) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Report")
    return buffer.getvalue()


def _pdf(df: pd.DataFrame, title: str) -> bytes:
    """Landscape table whose bold header row repeats on every page."""
    from reportlab.lib import colors
    from reportlab.lib.pagesizes import landscape, letter
    from reportlab.lib.styles import getSampleStyleSheet
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Table, TableStyle

    buffer = io.BytesIO()
    stamp = datetime.now(tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    heading = Paragraph(f"{title.replace('_', ' ').title()} ({stamp})", getSampleStyleSheet()["Title"])
    grid = Table([list(df.columns), *df.astype(str).values.tolist()], repeatRows=1)
    grid.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                ("FONTSIZE", (0, 0), (-1, -1), 7),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ]
        )
    )
    margin = 18
    SimpleDocTemplate(
        buffer, pagesize=landscape(letter), leftMargin=margin, rightMargin=margin, topMargin=margin, bottomMargin=margin
    ).build([heading, grid])
    return buffer.getvalue()


# format -> (file extension, media type, renderer)
EXPORT_FORMATS: Dict[str, Tuple[str, str, Callable[[pd.DataFrame, str], bytes]]] = {
    "csv": ("csv", "text/csv", _csv),
    "xlsx": ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", _xlsx),
    "excel": ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", _xlsx),
    "pdf": ("pdf", "application/pdf", _pdf),
}


def _export_dataframe(df: pd.DataFrame, name: str, export_format: Optional[str]) -> StreamingResponse:
    """Render `df` as an attachment named `name`; CSV when no format is given."""
    key = (export_format or "csv").lower()
    if key not in EXPORT_FORMATS:
        raise ValidationFailedError(
            f"Unsupported export format '{export_format}'", details={"allowed": sorted(EXPORT_FORMATS)}
        )
    extension, media_type, render = EXPORT_FORMATS[key]
    return StreamingResponse(
        io.BytesIO(render(df, name)),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{name}.{extension}"'},
    )


async def _rows(session: AsyncSession, stmt: Select) -> List:
    return list((await session.execute(stmt)).all())


# PUBLIC_INTERFACE
@router.get(
    "/transition-log",
    summary="Transition log report",
    description="Exports logged transitions (newest first) filtered by document type, user and period.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_permission("reports.view"))],
)
async def transition_log_report(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    view_mode: ViewMode = Depends(get_view_mode),
    entity_type: Optional[str] = Query(None, description="Filter by document type, e.g. PurchaseOrder"),
    user_id: Optional[UUID] = Query(None, description="Filter by acting user"),
    since: Optional[datetime] = Query(None, description="Inclusive lower bound"),
    until: Optional[datetime] = Query(None, description="Exclusive upper bound"),
    limit: int = Query(5000, ge=1, le=50000),
    format: str = Query("csv", description="Export format: csv | xlsx | pdf"),
):
    """
    Generate the transition log report.

    One row per logged transition visible in the request view mode,
    including the CREATE entries and the integrity hash of each entry.
    """
    if entity_type:
        d.REGISTRY.get(entity_type)
    repo = TransitionLogRepository(session, tenant_id)
    entries = await repo.list_entries(
        mode=view_mode, entity_type=entity_type, user_id=user_id, since=since, until=until, limit=limit, offset=0
    )
    data = [{col: _cell(getattr(e, col)) for col in TRANSITION_LOG_COLUMNS} for e in entries]
    df = pd.DataFrame(data, columns=TRANSITION_LOG_COLUMNS)
    return _export_dataframe(df, "transition_log", format)


# PUBLIC_INTERFACE
@router.get(
    "/open-documents",
    summary="Open documents by state",
    description="Counts documents in every non-final state, per document type, within the caller's view mode.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_permission("reports.view"))],
)
async def open_documents_report(
    session: AsyncSession = Depends(get_tenant_session),
    mode: ViewMode = Depends(get_view_mode),
    entity_type: Optional[str] = Query(None, description="Restrict to one document type"),
    format: str = Query("csv", description="Export format: csv | xlsx | pdf"),
):
    """
    Generate the open-documents report.

    Final states (e.g. COMPLETADA, CLOSED, UNLOCKED) are excluded; the oldest
    and newest creation timestamps show how long documents have been waiting.
    """
    families = [entity_type] if entity_type else sorted(DOCUMENT_MODELS)
    data = []
    for family in families:
        machine = d.REGISTRY.get(family)
        model = DOCUMENT_MODELS[family]
        stmt = (
            select(model.status, func.count(model.id), func.min(model.created_at), func.max(model.created_at))
            .where(model.status.notin_(sorted(machine.final_states)))
            .group_by(model.status)
            .order_by(model.status)
        )
        if hasattr(model, "doc_type"):
            stmt = apply_view_mode(stmt, model, mode)
        for status, count, oldest, newest in await _rows(session, stmt):
            data.append(
                {
                    "entity_type": family,
                    "status": status,
                    "documents": int(count or 0),
                    "oldest": _cell(oldest),
                    "newest": _cell(newest),
                }
            )
    df = pd.DataFrame(data, columns=OPEN_DOCUMENT_COLUMNS)
    return _export_dataframe(df, "open_documents", format)
