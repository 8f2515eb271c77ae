from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from ledger_service.cells import (
    date_from_serial,
    parse_cell_date,
    parse_decimal,
    parse_optional_decimal,
)
from ledger_service.errors import ValidationError


def test_serial_dates_follow_spreadsheet_epoch() -> None:
    assert date_from_serial(1) == date(1900, 1, 1)
    assert date_from_serial(59) == date(1900, 2, 28)
    assert date_from_serial(61) == date(1900, 3, 1)
    assert date_from_serial(46086) == date(2026, 3, 5)
    assert date_from_serial(46086.75) == date(2026, 3, 5)


@pytest.mark.parametrize("serial", [0, -5, "abc", None, float("inf")])
def test_invalid_serials_are_rejected(serial) -> None:
    with pytest.raises(ValidationError):
        date_from_serial(serial)


def test_day_first_text_dates() -> None:
    assert parse_cell_date("05/03/2026") == date(2026, 3, 5)
    assert parse_cell_date("25/12/2025") == date(2025, 12, 25)
    assert parse_cell_date(" 1/2/2027 ") == date(2027, 2, 1)


def test_month_first_when_only_second_part_can_be_a_day() -> None:
    assert parse_cell_date("03/25/2026") == date(2026, 3, 25)


@pytest.mark.parametrize(
    "text",
    ["15/13/2025", "31/02/2026", "10/10/1899", "01/01/2101", "1/2", "a/b/c"],
)
def test_invalid_text_dates_are_rejected(text: str) -> None:
    with pytest.raises(ValidationError):
        parse_cell_date(text)


def test_iso_and_numeric_text_dates() -> None:
    assert parse_cell_date("2026-03-05") == date(2026, 3, 5)
    assert parse_cell_date("2026-03-05T08:30:00") == date(2026, 3, 5)
    assert parse_cell_date("46086") == date(2026, 3, 5)
    assert parse_cell_date(46086) == date(2026, 3, 5)


def test_native_dates_pass_through() -> None:
    assert parse_cell_date(date(2025, 1, 31)) == date(2025, 1, 31)
    assert parse_cell_date(datetime(2025, 1, 31, 12, 0)) == date(2025, 1, 31)


@pytest.mark.parametrize("blank", [None, "", "   ", "-"])
def test_blank_dates_are_none(blank) -> None:
    assert parse_cell_date(blank) is None


def test_unknown_date_text_is_rejected() -> None:
    with pytest.raises(ValidationError):
        parse_cell_date("next spring")
    with pytest.raises(ValidationError):
        parse_cell_date(True)


def test_parse_decimal_handles_report_formatting() -> None:
    assert parse_decimal("1,250,000") == Decimal("1250000")
    assert parse_decimal(" 12.5 ") == Decimal("12.5")
    assert parse_decimal(1200.0) == Decimal(1200)
    assert parse_decimal(0.1) == Decimal("0.1")
    assert parse_decimal(None) == 0
    assert parse_decimal("-") == 0


def test_parse_decimal_rejects_junk() -> None:
    with pytest.raises(ValidationError):
        parse_decimal("12 viên")


def test_optional_decimal_keeps_blanks_distinct_from_zero() -> None:
    assert parse_optional_decimal("") is None
    assert parse_optional_decimal(None) is None
    assert parse_optional_decimal("0") == Decimal(0)
