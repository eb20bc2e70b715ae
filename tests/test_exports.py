from __future__ import annotations

import csv
import io
import zipfile
from datetime import datetime, timezone

import pytest
from openpyxl import load_workbook

from enervisio.errors import ExportError
from enervisio.exports import (
    AUDIT_COLUMNS,
    Table,
    build_audit_export,
    pdf_sanitize,
    write_csv,
    write_pdf,
    write_zip,
)
from enervisio.models import AuditRecord

NOW = datetime(2024, 3, 1, 17, 0, tzinfo=timezone.utc)
BRANDING = "Electroline Corporation - Enervisio"


def _records():
    return [
        AuditRecord(
            id=2,
            action="EXPORT",
            timestamp=datetime(2024, 3, 1, 16, 0, tzinfo=timezone.utc),
            uid=1,
            details={"entity": "report", "format": "csv"},
        ),
        AuditRecord(
            id=1,
            action="LOGIN",
            timestamp=datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc),
            uid=None,
        ),
    ]


def _export(fmt: str, **overrides):
    options = dict(
        fmt=fmt,
        scope_filtered=True,
        descending=True,
        include_headers=True,
        branding=BRANDING,
        now=NOW,
        timezone_name="Asia/Manila",
    )
    options.update(overrides)
    return build_audit_export(_records(), **options)


def test_audit_csv_with_branding_preamble() -> None:
    export = _export("csv")

    assert export.filename == "audit_export_filtered_newest_first_2024-03-02.csv"
    rows = list(csv.reader(io.StringIO(export.content.decode("utf-8"))))
    assert rows[0] == [BRANDING, "Generated: 03/02/2024 01:00 AM", "", ""]
    assert rows[1] == ["Sort Order: Newest First", "", "", ""]
    assert rows[3] == AUDIT_COLUMNS
    assert rows[4] == ["EXPORT", "03/02/2024 12:00:00 AM", "1", '{"entity": "report", "format": "csv"}']
    assert rows[5] == ["LOGIN", "03/01/2024 09:00:00 AM", "", ""]


def test_audit_csv_without_headers_starts_with_columns() -> None:
    export = _export("csv", include_headers=False, scope_filtered=False, descending=False)
    assert export.filename == "audit_export_all_oldest_first_2024-03-02.csv"
    first_line = export.content.decode("utf-8").splitlines()[0]
    assert first_line == "Action,Timestamp,User ID,Details"


def test_audit_xlsx_sets_document_properties() -> None:
    export = _export("xlsx")
    workbook = load_workbook(io.BytesIO(export.content))
    sheet = workbook["Audit Trail"]
    assert [cell.value for cell in sheet[1]] == AUDIT_COLUMNS
    assert sheet["A1"].font.bold
    assert workbook.properties.title == "Audit Trail Export"
    assert workbook.properties.description == "Electroline Corporation"


def test_audit_pdf_is_rendered() -> None:
    export = _export("pdf")
    assert export.media_type == "application/pdf"
    assert export.content.startswith(b"%PDF")


def test_empty_audit_export_is_an_error() -> None:
    with pytest.raises(ExportError, match=r"No records found matching the selected criteria \(all\)."):
        build_audit_export(
            [],
            fmt="csv",
            scope_filtered=False,
            descending=True,
            include_headers=True,
            branding=BRANDING,
            now=NOW,
        )
    with pytest.raises(ExportError, match="Unsupported export format"):
        _export("docx")


def test_writers() -> None:
    assert write_csv(["a", "b"], [[1, None]]).decode("utf-8").splitlines() == ["a,b", "1,"]
    archive = zipfile.ZipFile(io.BytesIO(write_zip({"one.csv": b"a\n", "two.csv": b"b\n"})))
    assert sorted(archive.namelist()) == ["one.csv", "two.csv"]
    assert pdf_sanitize("₱10.00") == "PHP 10.00"

    pdf = write_pdf(
        "Rates",
        [Table("Rates", ["Date", "Rate"], [["03/01/2024", "₱10.00"]], [1, 1])],
        subtitle="Generated today",
        branding=BRANDING,
        section_titles=True,
    )
    assert pdf.startswith(b"%PDF")
