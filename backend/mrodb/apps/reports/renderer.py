"""
Turn already-aggregated report data into a downloadable artifact.

`render` is a pure function: no database or storage access happens here.
Supported formats are `excel` (one worksheet per section plus a summary
sheet), `html` (escaped tables) and `text` (aligned columns).
"""

from __future__ import annotations

import enum
import html
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from openpyxl import Workbook

from ...errors import UnsupportedFormatError
from ...utils.dates import as_utc, utcnow

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_SHEET_TITLE_UNSAFE = re.compile(r"[\[\]:*?/\\]")


@dataclass
class ReportSection:
    title: str
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def columns(self) -> List[str]:
        seen: Dict[str, None] = {}
        for row in self.rows:
            for key in row:
                seen.setdefault(key, None)
        return list(seen)


@dataclass
class ReportData:
    template: str
    title: str
    summary: Dict[str, Any] = field(default_factory=dict)
    sections: List[ReportSection] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RenderedReport:
    content: bytes
    mime_type: str
    filename: str


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat(timespec="minutes")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, (list, tuple)):
        return ", ".join(cell_text(v) for v in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {cell_text(v)}" for k, v in value.items())
    return str(value)


def _excel_value(value: Any) -> Any:
    # openpyxl refuses tz-aware datetimes and containers.
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return cell_text(value)


def _sheet_title(title: str, used: set) -> str:
    base = _SHEET_TITLE_UNSAFE.sub(" ", title).strip()[:31] or "Sheet"
    candidate, n = base, 2
    while candidate in used:
        suffix = f" ({n})"
        candidate = base[: 31 - len(suffix)] + suffix
        n += 1
    used.add(candidate)
    return candidate


def render_excel(report: ReportData) -> bytes:
    wb = Workbook()
    used: set = set()

    summary = wb.active
    summary.title = _sheet_title("Summary", used)
    summary.append([report.title])
    summary.append(["Generated at", cell_text(report.generated_at)])
    summary.append([])
    for key, value in report.summary.items():
        summary.append([key, _excel_value(value)])

    for section in report.sections:
        ws = wb.create_sheet(_sheet_title(section.title, used))
        columns = section.columns
        ws.append(columns)
        for row in section.rows:
            ws.append([_excel_value(row.get(c)) for c in columns])

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _html_table(columns: List[str], rows: List[List[str]]) -> str:
    head = "".join(f"<th>{html.escape(c)}</th>" for c in columns)
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>"
        for row in rows
    )
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def render_html(report: ReportData) -> bytes:
    parts = [
        "<!DOCTYPE html>",
        "<html><head><meta charset=\"utf-8\">",
        f"<title>{html.escape(report.title)}</title>",
        "<style>body{font-family:sans-serif}table{border-collapse:collapse;margin-bottom:1.5em}"
        "th,td{border:1px solid #ccc;padding:4px 8px;text-align:left}</style>",
        "</head><body>",
        f"<h1>{html.escape(report.title)}</h1>",
        f"<p>Generated at {html.escape(cell_text(report.generated_at))}</p>",
    ]
    if report.summary:
        parts.append("<h2>Summary</h2>")
        parts.append(
            _html_table(["Metric", "Value"], [[k, cell_text(v)] for k, v in report.summary.items()])
        )
    for section in report.sections:
        parts.append(f"<h2>{html.escape(section.title)}</h2>")
        if not section.rows:
            parts.append("<p>No records.</p>")
            continue
        columns = section.columns
        parts.append(_html_table(columns, [[cell_text(r.get(c)) for c in columns] for r in section.rows]))
    parts.append("</body></html>")
    return "\n".join(parts).encode("utf-8")


def _text_table(columns: List[str], rows: List[List[str]]) -> List[str]:
    widths = [len(c) for c in columns]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    def line(cells: List[str]) -> str:
        return "  ".join(cell.ljust(w) for cell, w in zip(cells, widths)).rstrip()

    return [line(columns), line(["-" * w for w in widths])] + [line(r) for r in rows]


def render_text(report: ReportData) -> bytes:
    lines = [report.title, "=" * len(report.title), f"Generated at {cell_text(report.generated_at)}", ""]
    if report.summary:
        lines += ["Summary", "-------"]
        width = max(len(k) for k in report.summary)
        lines += [f"{k.ljust(width)}  {cell_text(v)}" for k, v in report.summary.items()]
        lines.append("")
    for section in report.sections:
        lines += [section.title, "-" * len(section.title)]
        if section.rows:
            columns = section.columns
            lines += _text_table(columns, [[cell_text(r.get(c)) for c in columns] for r in section.rows])
        else:
            lines.append("No records.")
        lines.append("")
    return "\n".join(lines).encode("utf-8")


FORMATS: Dict[str, tuple] = {
    "excel": (render_excel, XLSX_MIME, "xlsx"),
    "html": (render_html, "text/html; charset=utf-8", "html"),
    "text": (render_text, "text/plain; charset=utf-8", "txt"),
}


def render(report: ReportData, fmt: Optional[str]) -> RenderedReport:
    try:
        renderer, mime_type, extension = FORMATS[(fmt or "").lower()]
    except KeyError:
        raise UnsupportedFormatError(f"Unsupported report format: {fmt}", field="format")
    stamp = as_utc(report.generated_at).date().isoformat()
    return RenderedReport(
        content=renderer(report),
        mime_type=mime_type,
        filename=f"{report.template}-report-{stamp}.{extension}",
    )
