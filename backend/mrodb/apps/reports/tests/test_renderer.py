from __future__ import annotations

import io
from datetime import datetime, timezone

import pytest
from openpyxl import load_workbook

from mrodb.apps.reports.renderer import ReportData, ReportSection, render
from mrodb.errors import UnsupportedFormatError


def _report() -> ReportData:
    return ReportData(
        template="audit_summary",
        title="Audit Summary",
        summary={"total_audits": 2, "completion_rate": 50.0},
        sections=[
            ReportSection(
                "Audits",
                [
                    {"audit_number": "AUD-2025-0001", "title": "Hangar <B> safety", "planned": datetime(
                        2025, 3, 1, 12, tzinfo=timezone.utc)},
                    {"audit_number": "AUD-2025-0002", "title": "Stores", "team": ["Ana", "Luis"]},
                ],
            ),
            ReportSection("Findings", []),
        ],
        generated_at=datetime(2025, 3, 19, 15, tzinfo=timezone.utc),
    )


def test_excel_has_summary_and_one_sheet_per_section():
    rendered = render(_report(), "excel")

    assert rendered.filename == "audit_summary-report-2025-03-19.xlsx"
    assert rendered.mime_type.startswith("application/vnd.openxmlformats")
    wb = load_workbook(io.BytesIO(rendered.content))
    assert wb.sheetnames == ["Summary", "Audits", "Findings"]
    audits = list(wb["Audits"].iter_rows(values_only=True))
    assert audits[0] == ("audit_number", "title", "planned", "team")
    assert audits[1][2] == "2025-03-01T12:00+00:00"
    assert audits[2][3] == "Ana, Luis"


def test_html_escapes_cell_values():
    body = render(_report(), "html").content.decode("utf-8")

    assert "Hangar &lt;B&gt; safety" in body
    assert "<B>" not in body
    assert "No records." in body


def test_text_aligns_columns():
    lines = render(_report(), "TEXT").content.decode("utf-8").splitlines()

    header = next(line for line in lines if line.startswith("audit_number"))
    row = next(line for line in lines if line.startswith("AUD-2025-0002"))
    assert header.index("title") == row.index("Stores")


def test_unknown_format_is_rejected():
    with pytest.raises(UnsupportedFormatError):
        render(_report(), "pdf")
