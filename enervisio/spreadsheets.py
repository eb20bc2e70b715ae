"""Bulk rate import and export through Excel workbooks."""
from __future__ import annotations

import io
import logging
import math
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .config import BracketIncrements
from .constants import XLSX_MEDIA_TYPE
from .errors import ExportError, ImportValidationError
from .exports import ExportFile, Table, write_xlsx
from .formatters import format_date
from .models import Rate
from .rates import compute_brackets

logger = logging.getLogger("enervisio.spreadsheets")

RATE_COLUMN = "Rate (PHP)"
DATE_COLUMN = "Effective Date"
ARCHIVED_COLUMN = "Archived"
NOTES_COLUMN = "Notes"

EXPORT_COLUMNS = [
    "Rate (PHP)",
    "Rate2 (PHP)",
    "Rate3 (PHP)",
    "Effective Date",
    "Updated Date",
    "Archived",
    "Notes",
]

# Day zero of Excel's 1900 date system, including the phantom 1900-02-29.
_EXCEL_EPOCH = date(1899, 12, 30)


@dataclass(frozen=True)
class ImportRow:
    """A validated row from an uploaded rate workbook."""

    kwh_rate: float
    effective_from: date
    archived: bool
    notes: str

    def to_payload(self) -> Dict[str, object]:
        return {
            "kwh_rate": self.kwh_rate,
            "effective_from": self.effective_from.isoformat(),
            "archived": self.archived,
            "notes": self.notes,
        }

    @staticmethod
    def from_payload(data: object, number: int) -> "ImportRow":
        """Rebuild a previewed row, applying the same checks as the upload."""

        if not isinstance(data, dict) or _is_blank(data.get("kwh_rate")) or _is_blank(data.get("effective_from")):
            raise ImportValidationError(f"Row {number} is missing required fields.")
        try:
            effective_from = date.fromisoformat(str(data["effective_from"]))
        except ValueError:
            raise ImportValidationError(f"Row {number} has an invalid date format.") from None
        return ImportRow(
            kwh_rate=_parse_rate(data["kwh_rate"], number),
            effective_from=effective_from,
            archived=data.get("archived") is True,
            notes=str(data.get("notes") or "").strip(),
        )


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_rate(value: object, number: int) -> float:
    if isinstance(value, bool):
        raise ImportValidationError(f"Row {number} has an invalid rate value.")
    try:
        rate = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ImportValidationError(f"Row {number} has an invalid rate value.") from None
    if not math.isfinite(rate) or rate <= 0:
        raise ImportValidationError(f"Row {number} has an invalid rate value.")
    return rate


def parse_import_date(value: object) -> date:
    """Accept datetime cells, Excel serials, ``MM/DD/YYYY`` and ``YYYY-MM-DD``."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _EXCEL_EPOCH + timedelta(days=int(value))
    if isinstance(value, str):
        text = value.strip()
        parts = text.replace("/", "-").split("-")
        if len(parts) == 3:
            if len(parts[2]) == 4:
                month, day, year = parts
            else:
                year, month, day = parts
            return date(int(year), int(month), int(day))
        return date.fromisoformat(text)
    raise ValueError(f"Unsupported date value: {value!r}")


def _parse_archived(value: object) -> bool:
    if value is True:
        return True
    return isinstance(value, str) and value.strip() in {"Yes", "TRUE", "True", "true"}


def parse_rate_import(data: bytes) -> List[ImportRow]:
    """Read the first worksheet of an uploaded workbook into validated rows.

    Raises :class:`ImportValidationError` naming the first offending row.
    """

    try:
        workbook = load_workbook(filename=io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise ImportValidationError(
            "Invalid file format. Please check the template and try again."
        ) from exc

    try:
        worksheet = workbook.worksheets[0]
        rows = list(worksheet.iter_rows(values_only=True))
    finally:
        workbook.close()

    if not rows:
        raise ImportValidationError("No valid data to import.")

    header = [str(cell).strip() if cell is not None else "" for cell in rows[0]]
    columns = {name: index for index, name in enumerate(header) if name}

    def _cell(row: Sequence[object], name: str) -> object:
        index = columns.get(name)
        if index is None or index >= len(row):
            return None
        return row[index]

    parsed: List[ImportRow] = []
    data_rows = [row for row in rows[1:] if not all(_is_blank(cell) for cell in row)]
    for number, row in enumerate(data_rows, start=1):
        raw_rate = _cell(row, RATE_COLUMN)
        raw_date = _cell(row, DATE_COLUMN)
        if _is_blank(raw_rate) or _is_blank(raw_date) or raw_rate == 0:
            raise ImportValidationError(f"Row {number} is missing required fields.")
        try:
            effective_from = parse_import_date(raw_date)
        except (TypeError, ValueError, OverflowError):
            raise ImportValidationError(f"Row {number} has an invalid date format.") from None
        rate = _parse_rate(raw_rate, number)
        notes = _cell(row, NOTES_COLUMN)
        parsed.append(
            ImportRow(
                kwh_rate=rate,
                effective_from=effective_from,
                archived=_parse_archived(_cell(row, ARCHIVED_COLUMN)),
                notes=str(notes).strip() if notes is not None else "",
            )
        )

    if not parsed:
        raise ImportValidationError("No valid data to import.")
    logger.info("Parsed %d rate rows from uploaded workbook", len(parsed))
    return parsed


def rate_export_filename(today: date) -> str:
    return f"meralco_rates_export_{today:%Y%m%d}.xlsx"


def build_rate_export(rates: Sequence[Rate], today: date) -> ExportFile:
    if not rates:
        raise ExportError("No rates to export.")
    rows = [
        [
            rate.kwh_rate,
            rate.kwh_rate2,
            rate.kwh_rate3,
            format_date(rate.effective_from),
            format_date(rate.updated_at),
            "Yes" if rate.archived else "No",
            rate.notes,
        ]
        for rate in rates
    ]
    table = Table(
        title="Meralco Rates",
        columns=EXPORT_COLUMNS,
        rows=rows,
        widths=[12, 12, 12, 15, 15, 10, 30],
    )
    return ExportFile(rate_export_filename(today), XLSX_MEDIA_TYPE, write_xlsx([table]))


def build_import_template(
    today: date, increments: Optional[BracketIncrements] = None
) -> ExportFile:
    """Workbook with two sample rows and a sheet describing each column."""

    increments = increments or BracketIncrements()
    samples = []
    for base, when, archived, note in (
        (10.5, today, "No", "Sample rate 1"),
        (11.25, today - timedelta(days=30), "Yes", "Sample rate 2 (archived)"),
    ):
        rate2, rate3 = compute_brackets(base, increments)
        samples.append([base, rate2, rate3, format_date(when), archived, note])

    sample_table = Table(
        title="Sample Data",
        columns=["Rate (PHP)", "Rate2 (PHP)", "Rate3 (PHP)", "Effective Date", "Archived", "Notes"],
        rows=samples,
        widths=[12, 12, 12, 15, 10, 30],
    )
    instructions = Table(
        title="Instructions",
        columns=["Field", "Description"],
        rows=[
            [
                "Rate (PHP)",
                "The base electricity rate in Philippine Pesos per kWh (required). "
                "Rate2 and Rate3 are auto-calculated.",
            ],
            [
                "Rate2 (PHP)",
                f"Auto-calculated: Rate (PHP) + {increments.second:g}. Used for 400-799 kWh consumption.",
            ],
            [
                "Rate3 (PHP)",
                f"Auto-calculated: Rate2 (PHP) + {increments.third:g}. Used for 800 kWh and up.",
            ],
            [
                "Effective Date",
                "The date when the rate becomes effective in MM/DD/YYYY format (required)",
            ],
            ["Archived", 'Whether the rate is archived ("Yes" or "No")'],
            ["Notes", "Any additional notes for this rate"],
        ],
        widths=[15, 80],
    )
    return ExportFile(
        "meralco_rates_template.xlsx",
        XLSX_MEDIA_TYPE,
        write_xlsx([sample_table, instructions]),
    )


__all__ = [
    "EXPORT_COLUMNS",
    "ImportRow",
    "build_import_template",
    "build_rate_export",
    "parse_import_date",
    "parse_rate_import",
    "rate_export_filename",
]
