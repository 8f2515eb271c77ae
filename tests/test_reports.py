from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledger_service import crud, imports, reports
from ledger_service.errors import NotFoundError
from ledger_service.schemas import FullImportRow


def row(name: str, category: str | None, quantity, price, **extra) -> FullImportRow:
    return FullImportRow(
        name=name,
        category_code=category,
        opening_quantity=quantity,
        opening_unit_price=price,
        **extra,
    )


@pytest.fixture()
async def september(session_factory) -> None:
    await imports.full_import(
        session_factory,
        9,
        2025,
        [
            row("Vật tư A", "II", 3, "0.1"),
            row("Amoxicillin", "I", 50, 10, expiry_date=date(2025, 10, 15)),
            row("Bông", None, 1000, "0.2"),
            row("Cefalexin", "I", 200, "12.5", expiry_date=date(2026, 6, 1)),
            row("Vật tư B", "II", "0.2", "0.1"),
        ],
    )


async def test_monthly_report_groups_by_category(session_factory, september) -> None:
    async with session_factory() as session:
        report = await reports.monthly_report(session, 9, 2025)

    assert [group.category_code for group in report.groups] == ["I", "II", None]
    assert report.groups[-1].category_name == reports.UNCATEGORIZED
    assert [r.item_name for r in report.groups[0].rows] == ["Amoxicillin", "Cefalexin"]
    assert report.groups[0].subtotal.item_count == 2
    assert report.groups[0].subtotal.closing_quantity == 250
    assert report.groups[0].subtotal.closing_amount == Decimal("3000.0")


async def test_subtotals_are_exact_decimal_sums(session_factory, september) -> None:
    async with session_factory() as session:
        report = await reports.monthly_report(session, 9, 2025)

    supplies = report.groups[1]
    assert supplies.subtotal.opening_quantity == Decimal("3.2")
    assert supplies.subtotal.opening_amount == Decimal("0.32")
    assert report.grand_total.item_count == 5
    assert report.grand_total.opening_amount == Decimal("3000.0") + Decimal("0.32") + Decimal("200.0")
    assert sum(
        (group.subtotal.closing_amount for group in report.groups), Decimal(0)
    ) == report.grand_total.closing_amount


async def test_monthly_report_filters(session_factory, september) -> None:
    async with session_factory() as session:
        category = await crud.get_category_by_code(session, "II")
        by_category = await reports.monthly_report(session, 9, 2025, category_id=category.id)
        by_search = await reports.monthly_report(session, 9, 2025, search="cefa")
        empty = await reports.monthly_report(session, 10, 2025)

    assert [r.item_name for g in by_category.groups for r in g.rows] == ["Vật tư A", "Vật tư B"]
    assert [r.item_name for g in by_search.groups for r in g.rows] == ["Cefalexin"]
    assert empty.groups == []
    assert empty.grand_total.item_count == 0


async def test_yearly_report_lists_months_with_balances(session_factory, september) -> None:
    await imports.full_import(session_factory, 3, 2025, [row("Amoxicillin", "I", 5, 10)])
    async with session_factory() as session:
        months = await reports.yearly_report(session, 2025)

    assert [report.month for report in months] == [3, 9]
    assert months[0].grand_total.item_count == 1


async def test_current_stock_reads_or_projects_period(session_factory, september) -> None:
    async with session_factory() as session:
        item = await crud.find_item_by_name(session, "Cefalexin")
        stored = await reports.current_stock(session, item.id, 9, 2025)
        projected = await reports.current_stock(session, item.id, 11, 2025)
        again = await reports.current_stock(session, item.id, 11, 2025)

    assert stored.period_exists is True
    assert stored.quantity == 200
    assert stored.unit_price == Decimal("12.5")
    assert projected.period_exists is False
    assert projected.quantity == 200
    assert projected.expiry_date == date(2026, 6, 1)
    assert again.period_exists is False


async def test_all_current_stock_lists_every_active_item(session_factory, september) -> None:
    async with session_factory() as session:
        stock = await reports.all_current_stock(session, 9, 2025)
        projected = await reports.all_current_stock(session, 12, 2025)
        category = await crud.get_category_by_code(session, "I")
        antibiotics = await reports.all_current_stock(session, 9, 2025, category_id=category.id)
        searched = await reports.all_current_stock(session, 9, 2025, search="bông")

    assert [s.item.name for s in stock] == [
        "Amoxicillin",
        "Bông",
        "Cefalexin",
        "Vật tư A",
        "Vật tư B",
    ]
    assert all(s.period_exists for s in stock)
    assert stock[2].quantity == 200
    assert stock[2].total_value == Decimal("2500.0")
    assert [s.quantity for s in projected] == [s.quantity for s in stock]
    assert not any(s.period_exists for s in projected)
    assert [s.item.name for s in antibiotics] == ["Amoxicillin", "Cefalexin"]
    assert [s.item.name for s in searched] == ["Bông"]


async def test_current_stock_unknown_item(session) -> None:
    with pytest.raises(NotFoundError):
        await reports.current_stock(session, 404, 9, 2025)


async def test_stock_alerts(session_factory, september) -> None:
    async with session_factory() as session:
        alerts = await reports.stock_alerts(
            session, 9, 2025, min_threshold=100, days_until_expiry=60, today=date(2025, 9, 20)
        )

    assert sorted(r.item_name for r in alerts.low_stock) == [
        "Amoxicillin",
        "Vật tư A",
        "Vật tư B",
    ]
    assert [r.item_name for r in alerts.expiring] == ["Amoxicillin"]
