"""Conversion of raw spreadsheet cell values into dates and decimals."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from .computation import ZERO, to_decimal
from .errors import ValidationError

# Serial 1 is 1900-01-01. Serial 60 is the 1900-02-29 that never existed, so
# serials above 59 are one day ahead of the real calendar.
_SERIAL_BASE = date(1899, 12, 31)
_PHANTOM_LEAP_SERIAL = 59
_MAX_SERIAL = (date(9999, 12, 31) - date(1899, 12, 30)).days

_BLANK_MARKERS = {"", "-", "—"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in _BLANK_MARKERS)


def parse_decimal(value: Any) -> Decimal:
    """Numeric cell to :class:`Decimal`; blank cells count as zero."""

    if _is_blank(value):
        return ZERO
    if isinstance(value, str):
        value = value.strip().replace(",", "").replace(" ", "")
    return to_decimal(value)


def parse_optional_decimal(value: Any) -> Decimal | None:
    """Like :func:`parse_decimal` but keeps blank cells as ``None``."""

    if _is_blank(value):
        return None
    return parse_decimal(value)


def date_from_serial(serial: Any) -> date:
    """Convert a spreadsheet day count to a calendar date."""

    try:
        days = int(float(serial))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid date serial: {serial!r}") from exc
    if days <= 0 or days > _MAX_SERIAL:
        raise ValidationError(f"Date serial out of range: {serial!r}")
    if days > _PHANTOM_LEAP_SERIAL:
        days -= 1
    return _SERIAL_BASE + timedelta(days=days)


def _parse_day_month_year(text: str) -> date:
    parts = [part.strip() for part in text.split("/")]
    if len(parts) != 3:
        raise ValidationError(f"Invalid date format: {text!r} (expected dd/mm/yyyy)")
    try:
        first, second, year = (int(part) for part in parts)
    except ValueError as exc:
        raise ValidationError(f"Invalid date format: {text!r}") from exc

    # Day first unless only the second component can be a day.
    if first > 12:
        day, month = first, second
    elif second > 12:
        month, day = first, second
    else:
        day, month = first, second

    if not (1 <= day <= 31 and 1 <= month <= 12 and 1900 <= year <= 2100):
        raise ValidationError(
            f"Date out of range: {text!r} (day={day}, month={month}, year={year})"
        )
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise ValidationError(f"Invalid calendar date: {text!r}") from exc


def _parse_iso(text: str) -> date:
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid ISO date: {text!r}") from exc


def parse_cell_date(value: Any) -> date | None:
    """Parse a date cell written as d/m/y text, ISO text or a day serial.

    Blank cells give ``None``; anything unreadable raises
    :class:`~ledger_service.errors.ValidationError`.
    """

    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Invalid date: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        return date_from_serial(value)

    text = str(value).strip()
    if "/" in text:
        return _parse_day_month_year(text)
    if "-" in text:
        return _parse_iso(text)
    try:
        serial = float(text)
    except ValueError as exc:
        raise ValidationError(f"Unknown date format: {text!r}") from exc
    return date_from_serial(serial)


__all__ = [
    "parse_decimal",
    "parse_optional_decimal",
    "parse_cell_date",
    "date_from_serial",
]
