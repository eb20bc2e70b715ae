"""Tabular file writers (XLSX, CSV, PDF) and the audit trail export."""
from __future__ import annotations

import csv
import io
import json
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .constants import CSV_MEDIA_TYPE, PDF_MEDIA_TYPE, XLSX_MEDIA_TYPE
from .errors import ExportError
from .formatters import format_date
from .models import AuditRecord

logger = logging.getLogger("enervisio.exports")

ZIP_MEDIA_TYPE = "application/zip"

_HEADER_FILL = PatternFill(start_color="1E386D", end_color="1E386D", fill_type="solid")
_HEADER_RGB = (30, 56, 109)


@dataclass
class Table:
    """A titled grid of rows ready to be written to any export format."""

    title: str
    columns: List[str]
    rows: List[List[object]] = field(default_factory=list)
    widths: Optional[List[int]] = None


@dataclass(frozen=True)
class ExportFile:
    filename: str
    media_type: str
    content: bytes


def write_xlsx(tables: Sequence[Table], properties: Optional[Mapping[str, str]] = None) -> bytes:
    """Write each table to its own worksheet and return the workbook bytes."""

    if not tables:
        raise ExportError("Nothing to export.")
    workbook = Workbook()
    workbook.remove(workbook.active)
    for table in tables:
        # Excel caps sheet titles at 31 characters.
        sheet = workbook.create_sheet(title=table.title[:31])
        sheet.append(list(table.columns))
        for cell in sheet[1]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = _HEADER_FILL
        for row in table.rows:
            sheet.append(list(row))
        for index, width in enumerate(table.widths or [], start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width

    if properties:
        workbook.properties.title = properties.get("title")
        workbook.properties.subject = properties.get("subject")
        workbook.properties.creator = properties.get("author")
        workbook.properties.description = properties.get("company")

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def write_csv(
    columns: Sequence[str],
    rows: Iterable[Sequence[object]],
    preamble: Sequence[Sequence[object]] = (),
) -> bytes:
    """Render rows as CSV, optionally preceded by branding lines and a blank row."""

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    if preamble:
        width = len(columns)
        for line in preamble:
            writer.writerow(list(line) + [""] * (width - len(line)))
        writer.writerow([""] * width)
    writer.writerow(list(columns))
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return buffer.getvalue().encode("utf-8")


def write_zip(files: Mapping[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, payload in files.items():
            archive.writestr(name, payload)
    return buffer.getvalue()


def pdf_sanitize(text: object) -> str:
    """Coerce text to something the built-in latin-1 PDF fonts can draw."""

    return str(text).replace("₱", "PHP ").encode("latin-1", "replace").decode("latin-1")


class ReportPDF(FPDF):
    """PDF document with a page counter in the footer."""

    def footer(self) -> None:
        self.set_y(-12)
        self.set_font("Helvetica", "", 9)
        self.set_text_color(100, 100, 100)
        self.cell(0, 8, f"Page {self.page_no()} of {{nb}}", align="C")


def write_pdf(
    title: str,
    tables: Sequence[Table],
    *,
    subtitle: Optional[str] = None,
    branding: Optional[str] = None,
    landscape: bool = False,
    section_titles: bool = False,
) -> bytes:
    """Lay out one or more tables under a title block and return the PDF bytes."""

    pdf = ReportPDF(orientation="L" if landscape else "P", unit="mm", format="A4")
    pdf.alias_nb_pages()
    pdf.set_auto_page_break(auto=True, margin=16)
    pdf.add_page()

    align = "C" if branding else "L"
    pdf.set_font("Helvetica", "B", 16)
    pdf.set_text_color(*_HEADER_RGB)
    pdf.cell(0, 10, pdf_sanitize(title), align=align, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_text_color(0, 0, 0)
    if subtitle:
        pdf.set_font("Helvetica", "", 11)
        pdf.cell(0, 7, pdf_sanitize(subtitle), align=align, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    if branding:
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(0, 7, pdf_sanitize(branding), align=align, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)

    for table in tables:
        if section_titles:
            pdf.set_font("Helvetica", "B", 12)
            pdf.set_text_color(*_HEADER_RGB)
            pdf.cell(0, 8, pdf_sanitize(table.title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            pdf.set_text_color(0, 0, 0)
        _draw_table(pdf, table)
        pdf.ln(6)

    return bytes(pdf.output())


def _draw_table(pdf: FPDF, table: Table) -> None:
    usable = pdf.w - pdf.l_margin - pdf.r_margin
    weights = table.widths or [1] * len(table.columns)
    total = float(sum(weights)) or 1.0
    widths = [usable * weight / total for weight in weights]

    pdf.set_font("Helvetica", "B", 9)
    pdf.set_fill_color(*_HEADER_RGB)
    pdf.set_text_color(255, 255, 255)
    for width, column in zip(widths, table.columns):
        pdf.cell(width, 7, pdf_sanitize(column), border=1, align="L", fill=True)
    pdf.ln(7)

    pdf.set_font("Helvetica", "", 8)
    pdf.set_text_color(0, 0, 0)
    for row in table.rows:
        # Wrapped cells would need row-height bookkeeping; truncate instead.
        for width, value in zip(widths, row):
            text = pdf_sanitize("" if value is None else value)
            while text and pdf.get_string_width(text) > width - 2:
                text = text[:-1]
            pdf.cell(width, 6, text, border=1, align="L")
        pdf.ln(6)


# ----------------------------------------------------------------------
# Audit trail export
# ----------------------------------------------------------------------

AUDIT_COLUMNS = ["Action", "Timestamp", "User ID", "Details"]


def audit_export_filename(scope_filtered: bool, descending: bool, today: datetime) -> str:
    scope = "filtered" if scope_filtered else "all"
    order = "newest_first" if descending else "oldest_first"
    return f"audit_export_{scope}_{order}_{today:%Y-%m-%d}"


def build_audit_export(
    records: Sequence[AuditRecord],
    *,
    fmt: str,
    scope_filtered: bool,
    descending: bool,
    include_headers: bool,
    branding: str,
    now: datetime,
    timezone_name: Optional[str] = None,
) -> ExportFile:
    """Render audit records in the requested format."""

    if not records:
        scope = "filtered" if scope_filtered else "all"
        raise ExportError(f"No records found matching the selected criteria ({scope}).")

    rows: List[List[object]] = [
        [
            record.action,
            format_date(record.timestamp, "MM/dd/yyyy hh:mm:ss a", tz=timezone_name),
            record.uid if record.uid is not None else "",
            json.dumps(record.details, ensure_ascii=False, sort_keys=True) if record.details else "",
        ]
        for record in records
    ]
    order_label = "Newest First" if descending else "Oldest First"
    local_now = now.astimezone(ZoneInfo(timezone_name)) if timezone_name else now
    basename = audit_export_filename(scope_filtered, descending, local_now)
    table = Table(title="Audit Trail", columns=AUDIT_COLUMNS, rows=rows, widths=[18, 24, 12, 80])

    if fmt == "xlsx":
        properties = None
        if include_headers:
            properties = {
                "title": "Audit Trail Export",
                "subject": "Audit Records",
                "author": "Enervisio System",
                "company": branding.split(" - ")[0],
            }
        content = write_xlsx([table], properties)
        return ExportFile(f"{basename}.xlsx", XLSX_MEDIA_TYPE, content)

    if fmt == "csv":
        preamble: List[List[object]] = []
        if include_headers:
            preamble = [
                [branding, f"Generated: {format_date(now, 'MM/dd/yyyy hh:mm a', tz=timezone_name)}"],
                [f"Sort Order: {order_label}"],
            ]
        return ExportFile(f"{basename}.csv", CSV_MEDIA_TYPE, write_csv(AUDIT_COLUMNS, rows, preamble))

    if fmt == "pdf":
        generated = format_date(now, "MMMM d, yyyy", tz=timezone_name)
        content = write_pdf(
            "Audit Trail Export",
            [Table(title="Audit Trail", columns=AUDIT_COLUMNS, rows=rows, widths=[14, 22, 10, 54])],
            subtitle=(
                f"Generated: {generated} - Sort Order: {order_label}"
                if include_headers
                else f"Sort Order: {order_label}"
            ),
            branding=branding if include_headers else None,
            landscape=True,
        )
        return ExportFile(f"{basename}.pdf", PDF_MEDIA_TYPE, content)

    raise ExportError(f"Unsupported export format: {fmt}")


__all__ = [
    "AUDIT_COLUMNS",
    "ExportFile",
    "ReportPDF",
    "Table",
    "ZIP_MEDIA_TYPE",
    "audit_export_filename",
    "build_audit_export",
    "pdf_sanitize",
    "write_csv",
    "write_pdf",
    "write_xlsx",
    "write_zip",
]
