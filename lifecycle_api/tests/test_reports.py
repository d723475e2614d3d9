"""
Tests for report export rendering (CSV, Excel, PDF).
"""
import io
import uuid
from datetime import datetime, timezone

import pandas as pd
import pytest

from src.api.routes.reports import OPEN_DOCUMENT_COLUMNS, _cell, _export_dataframe
from src.core.errors import ValidationFailedError


async def _body(response):
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk.encode() if isinstance(chunk, str) else chunk)
    return b"".join(chunks)


@pytest.fixture
def frame():
    return pd.DataFrame(
        [
            {"entity_type": "PurchaseOrder", "status": "EN_APROBACION", "documents": 3, "oldest": "2026-01-02", "newest": "2026-02-01"},
            {"entity_type": "PermitToWork", "status": "ACTIVE", "documents": 1, "oldest": "2026-02-27", "newest": "2026-02-27"},
        ],
        columns=OPEN_DOCUMENT_COLUMNS,
    )


class TestCell:
    def test_values(self):
        ident = uuid.uuid4()
        assert _cell(ident) == str(ident)
        assert _cell(datetime(2026, 1, 1, 12, tzinfo=timezone.utc)) == "2026-01-01T12:00:00+00:00"
        assert _cell(datetime(2026, 1, 1, 12)) == "2026-01-01T12:00:00"
        assert _cell(7) == 7


class TestExport:
    async def test_csv_default(self, frame):
        response = _export_dataframe(frame, "open_documents", None)
        assert response.media_type == "text/csv"
        assert 'filename="open_documents.csv"' in response.headers["content-disposition"]
        text = (await _body(response)).decode()
        assert text.splitlines()[0] == ",".join(OPEN_DOCUMENT_COLUMNS)
        assert "PermitToWork,ACTIVE,1" in text

    async def test_excel(self, frame):
        response = _export_dataframe(frame, "open_documents", "XLSX")
        assert response.media_type.endswith("spreadsheetml.sheet")
        loaded = pd.read_excel(io.BytesIO(await _body(response)), engine="openpyxl")
        assert list(loaded.columns) == OPEN_DOCUMENT_COLUMNS
        assert loaded["documents"].sum() == 4

    async def test_pdf(self, frame):
        response = _export_dataframe(frame, "open_documents", "pdf")
        assert response.media_type == "application/pdf"
        assert (await _body(response)).startswith(b"%PDF")

    def test_unknown_format_rejected(self, frame):
        with pytest.raises(ValidationFailedError) as excinfo:
            _export_dataframe(frame, "open_documents", "docx")
        assert "csv" in excinfo.value.details["allowed"]
