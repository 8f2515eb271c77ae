from __future__ import annotations

import unicodedata
from datetime import date
from decimal import Decimal

import pytest

from ledger_service.errors import ValidationError
from ledger_service.ingestion import ReportPeriod, ingest, parse_title, read_workbook


def test_parse_title_reads_both_periods(report_title) -> None:
    assert parse_title(report_title) == ReportPeriod(9, 2025, 10, 2025)


def test_parse_title_defaults_suggested_to_next_month() -> None:
    assert parse_title("qt thuốc tháng 12 năm 2025") == ReportPeriod(12, 2025, 1, 2026)


def test_parse_title_without_diacritics_and_in_english() -> None:
    assert parse_title(
        "QT THUOC THANG 3 NAM 2024 _ DE NGHI MUA THUOC THANG 5 NAM 2024"
    ) == ReportPeriod(3, 2024, 5, 2024)
    assert parse_title(
        "Stock report month 07 year 2025 - Purchase request month 08 year 2025"
    ) == ReportPeriod(7, 2025, 8, 2025)


def test_parse_title_accepts_decomposed_unicode(report_title) -> None:
    assert parse_title(unicodedata.normalize("NFD", report_title)) == ReportPeriod(9, 2025, 10, 2025)


@pytest.mark.parametrize(
    "title", ["", "BÁO CÁO TỒN KHO", "QT THUỐC THÁNG 13 NĂM 2025", None]
)
def test_parse_title_rejects_unknown_titles(title) -> None:
    with pytest.raises(ValidationError):
        parse_title(title)


def test_ingest_classifies_rows(report_title, report_rows) -> None:
    sheet = ingest(report_title, report_rows)

    assert sheet.period == ReportPeriod(9, 2025, 10, 2025)
    assert [record.name for record in sheet.records] == [
        "Amoxicillin 500mg",
        "Paracetamol",
        "Gạc vô trùng",
    ]
    assert sheet.row_numbers == [1, 2, 9]
    # missing unit, total line, date stamp, empty row, signature line
    assert sheet.skipped == 5
    assert len(sheet.errors) == 1
    assert sheet.errors[0].row == 4
    assert sheet.errors[0].item == "Bông y tế"


def test_ingest_applies_category_markers_and_columns(report_title, report_rows) -> None:
    amoxicillin, paracetamol, gauze = ingest(report_title, report_rows).records

    assert amoxicillin.category_code == "I"
    assert amoxicillin.seq == "1"
    assert amoxicillin.route == "Uống"
    assert amoxicillin.opening_quantity == 1000
    assert amoxicillin.opening_amount is None
    assert amoxicillin.inbound_unit_price == 120
    assert amoxicillin.outbound_quantity == 300
    assert amoxicillin.closing_quantity is None
    assert amoxicillin.expiry_date == date(2027, 6, 15)

    assert paracetamol.category_code == "I"
    assert paracetamol.opening_quantity == Decimal(1200)
    assert paracetamol.opening_amount == Decimal(60000)
    assert paracetamol.expiry_date == date(2026, 3, 5)

    assert gauze.category_code == "II"
    assert gauze.units == "gói"
    assert gauze.expiry_date is None


def test_read_workbook_finds_title_and_data_rows(
    report_title, report_workbook
) -> None:
    title, rows = read_workbook(report_workbook, data_start_row=8)

    assert title == report_title
    assert rows[0][0] == "I - THUỐC KHÁNG SINH"
    assert rows[1][1] == "Amoxicillin 500mg"

    sheet = ingest(title, rows)
    assert [record.name for record in sheet.records] == [
        "Amoxicillin 500mg",
        "Paracetamol",
        "Gạc vô trùng",
    ]
    assert sheet.records[0].seq == "1"
    assert sheet.records[0].opening_quantity == 1000
    assert sheet.records[1].expiry_date == date(2026, 3, 5)


def test_read_workbook_rejects_garbage() -> None:
    with pytest.raises(ValidationError):
        read_workbook(b"definitely not a workbook")
