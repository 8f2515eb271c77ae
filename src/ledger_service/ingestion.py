"""Reading monthly stock report sheets into typed import rows.

A report sheet has a title line naming the reported month and the month of
the purchase request, a header block, and then one row per item. Items are
grouped under section markers (``I -``, ``II -`` ...) in the first column,
and the sheet ends with totals and a signature block that must be skipped.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import pydantic
import xlrd

from .cells import parse_cell_date, parse_decimal, parse_optional_decimal
from .computation import next_period
from .config import get_settings
from .errors import LedgerError, ValidationError
from .schemas import FullImportRow, ImportRowError

logger = logging.getLogger(__name__)

_CURRENT_PATTERNS = (
    re.compile(r"QT\s+THU[OỐ]C\s+TH[AÁ]NG\s+(\d{1,2})\s+N[AĂ]M\s+(\d{4})"),
    re.compile(r"STOCK\s+REPORT\s+MONTH\s+(\d{1,2})\s+YEAR\s+(\d{4})"),
)
_SUGGESTED_PATTERNS = (
    re.compile(
        r"[DĐ][EỀ]\s+NGH[IỊ]\s+MUA\s+THU[OỐ]C\s+TH[AÁ]NG\s+(\d{1,2})\s+N[AĂ]M\s+(\d{4})"
    ),
    re.compile(r"PURCHASE\s+REQUEST\s+MONTH\s+(\d{1,2})\s+YEAR\s+(\d{4})"),
)

CATEGORY_MARKER = re.compile(
    r"^(XVII|XVI|XV|XIV|XIII|XII|XI|X|IX|VIII|VII|VI|V|IV|III|II|I)\s*-"
)

SKIP_PATTERNS = (
    "TỔNG CỘNG",
    "Tổng cộng",
    "Ngày",
    "NGÀY",
    "ngày",
    "TGĐ",
    "TỔNG HỢP",
    "Tổng hợp",
    "KẾ TOÁN",
    "Kế toán",
    "Giám đốc",
    "GIÁM ĐỐC",
    "CHỮ KÝ",
    "chữ ký",
    "TOTAL",
    "SIGNATURE",
)
INVALID_NAME_PATTERNS = ("TGD", "CHỮ KÝ", "GIÁM ĐỐC")

ROW_WIDTH = 28

# (field, column) pairs of the report layout.
_TEXT_COLUMNS = (
    ("route", 2),
    ("strength", 3),
    ("manufacturer", 4),
)
_NUMBER_COLUMNS = (
    ("opening_quantity", 6, False),
    ("opening_unit_price", 7, False),
    ("opening_amount", 8, True),
    ("inbound_quantity", 9, False),
    ("inbound_unit_price", 10, False),
    ("inbound_amount", 11, True),
    ("outbound_quantity", 12, False),
    ("outbound_unit_price", 13, False),
    ("outbound_amount", 14, True),
    ("closing_quantity", 15, True),
    ("closing_unit_price", 16, True),
    ("closing_amount", 17, True),
    ("ytd_inbound_quantity", 19, False),
    ("ytd_inbound_unit_price", 20, False),
    ("ytd_inbound_amount", 21, True),
    ("ytd_outbound_quantity", 22, False),
    ("ytd_outbound_unit_price", 23, False),
    ("ytd_outbound_amount", 24, True),
    ("suggested_purchase_quantity", 25, False),
    ("suggested_purchase_unit_price", 26, False),
    ("suggested_purchase_amount", 27, True),
)
EXPIRY_COLUMN = 18


@dataclass(frozen=True)
class ReportPeriod:
    month: int
    year: int
    suggested_month: int
    suggested_year: int


@dataclass
class IngestedSheet:
    period: ReportPeriod
    records: list[FullImportRow] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)
    skipped: int = 0
    errors: list[ImportRowError] = field(default_factory=list)


def _normalize_title(title: str) -> str:
    return unicodedata.normalize("NFC", title).upper()


def _search(patterns: Iterable[re.Pattern[str]], text: str) -> tuple[int, int] | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return int(match.group(1)), int(match.group(2))
    return None


def parse_title(title: str | None) -> ReportPeriod:
    """Extract the reported and suggested periods from a sheet title.

    >>> parse_title("QT THUỐC THÁNG 09 NĂM 2025 _ ĐỀ NGHỊ MUA THUỐC THÁNG 10 NĂM 2025")
    ReportPeriod(month=9, year=2025, suggested_month=10, suggested_year=2025)
    """

    text = _normalize_title(title or "")
    current = _search(_CURRENT_PATTERNS, text)
    if current is None:
        raise ValidationError(
            f"Cannot determine the report month from title {title!r}; expected "
            "'QT THUỐC THÁNG xx NĂM yyyy _ ĐỀ NGHỊ MUA THUỐC THÁNG xx NĂM yyyy'"
        )
    month, year = current
    suggested = _search(_SUGGESTED_PATTERNS, text) or next_period(month, year)
    for label, (m, y) in (("report", (month, year)), ("suggested", suggested)):
        if not 1 <= m <= 12:
            raise ValidationError(f"Invalid {label} month {m} in title {title!r}")
        if not 1900 <= y <= 2100:
            raise ValidationError(f"Invalid {label} year {y} in title {title!r}")
    return ReportPeriod(month, year, suggested[0], suggested[1])


def is_report_title(text: Any) -> bool:
    if not isinstance(text, str):
        return False
    return _search(_CURRENT_PATTERNS, _normalize_title(text)) is not None


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _should_skip(first: str, second: str) -> bool:
    return any(pattern in first or pattern in second for pattern in SKIP_PATTERNS)


def _parse_numbers(cells: Sequence[Any]) -> dict[str, Decimal | None]:
    values: dict[str, Decimal | None] = {}
    for name, column, optional in _NUMBER_COLUMNS:
        try:
            if optional:
                values[name] = parse_optional_decimal(cells[column])
            else:
                values[name] = parse_decimal(cells[column])
        except ValidationError as exc:
            raise ValidationError(f"Column {column} ({name}): {exc}") from exc
    return values


def ingest(title: str, rows: Iterable[Sequence[Any]]) -> IngestedSheet:
    """Turn a tokenized report sheet into :class:`FullImportRow` records.

    Rows are indexed from zero in the order given. Category markers apply to
    the rows that follow them. Rows with unreadable numbers are reported as
    errors and dropped; an unreadable expiry date is only logged.
    """

    sheet = IngestedSheet(period=parse_title(title))
    category: str | None = None

    for index, raw in enumerate(rows):
        if not raw or all(_cell_text(value) == "" for value in raw):
            sheet.skipped += 1
            continue
        cells = list(raw) + [None] * (ROW_WIDTH - len(raw))

        first = _cell_text(cells[0])
        second = _cell_text(cells[1])
        marker = CATEGORY_MARKER.match(first)
        if marker:
            category = marker.group(1)
            continue
        if _should_skip(first, second):
            logger.debug("Skipping non-data row %d: %s | %s", index, first, second)
            sheet.skipped += 1
            continue

        units = _cell_text(cells[5])
        if not first or not second or not units:
            sheet.skipped += 1
            continue
        if any(pattern in second.upper() for pattern in INVALID_NAME_PATTERNS):
            sheet.skipped += 1
            continue

        try:
            numbers = _parse_numbers(cells)
        except ValidationError as exc:
            logger.warning("Row %d (%s) dropped: %s", index, second, exc)
            sheet.errors.append(ImportRowError(row=index, item=second, error=str(exc)))
            continue

        try:
            expiry = parse_cell_date(cells[EXPIRY_COLUMN])
        except LedgerError as exc:
            logger.warning("Row %d (%s): ignoring expiry date: %s", index, second, exc)
            expiry = None

        try:
            record = FullImportRow(
                seq=first,
                name=second,
                category_code=category,
                units=units,
                expiry_date=expiry,
                **{name: _cell_text(cells[column]) or None for name, column in _TEXT_COLUMNS},
                **numbers,
            )
        except pydantic.ValidationError as exc:
            logger.warning("Row %d (%s) dropped: %s", index, second, exc)
            sheet.errors.append(ImportRowError(row=index, item=second, error=str(exc)))
            continue
        sheet.records.append(record)
        sheet.row_numbers.append(index)

    logger.info(
        "Ingested %d rows for %02d/%d (%d skipped, %d errors)",
        len(sheet.records),
        sheet.period.month,
        sheet.period.year,
        sheet.skipped,
        len(sheet.errors),
    )
    return sheet


def _cell_value(book: xlrd.book.Book, cell: xlrd.sheet.Cell) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate.xldate_as_datetime(cell.value, book.datemode).date()
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_ERROR:
        return None
    return cell.value


def read_workbook(
    data: bytes, *, data_start_row: int | None = None
) -> tuple[str, list[list[Any]]]:
    """Read the first sheet of an ``.xls`` report.

    Returns the title (the first cell above the data block that looks like a
    report title) and the data rows.
    """

    if data_start_row is None:
        data_start_row = get_settings().data_start_row
    try:
        book = xlrd.open_workbook(file_contents=data, formatting_info=False)
    except xlrd.XLRDError as exc:
        raise ValidationError(f"Unreadable workbook: {exc}") from exc
    sheet = book.sheet_by_index(0)

    title = ""
    for row_index in range(min(data_start_row, sheet.nrows)):
        for cell in sheet.row(row_index):
            if is_report_title(cell.value):
                title = str(cell.value)
                break
        if title:
            break

    rows = [
        [_cell_value(book, cell) for cell in sheet.row(row_index)]
        for row_index in range(data_start_row, sheet.nrows)
    ]
    logger.debug("Read %d data rows from sheet %r", len(rows), sheet.name)
    return title, rows


def load_workbook(path: str | Path) -> IngestedSheet:
    title, rows = read_workbook(Path(path).read_bytes())
    return ingest(title, rows)


__all__ = [
    "ReportPeriod",
    "IngestedSheet",
    "SKIP_PATTERNS",
    "INVALID_NAME_PATTERNS",
    "parse_title",
    "is_report_title",
    "ingest",
    "read_workbook",
    "load_workbook",
]
