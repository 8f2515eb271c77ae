"""Read-only views over balance periods."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from decimal import localcontext

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import crud, schemas, store
from .computation import DECIMAL_CONTEXT
from .config import get_settings
from .models import BalancePeriod, Category, TrackedItem

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

_TOTAL_FIELDS = tuple(name for name in schemas.ReportTotals.model_fields if name != "item_count")


def _report_row(period: BalancePeriod) -> schemas.ReportRow:
    base = schemas.BalancePeriodOut.model_validate(period).model_dump()
    return schemas.ReportRow(
        **base,
        item_name=period.item.name,
        units=period.item.units,
        category_id=period.item.category_id,
    )


def _add_to_totals(totals: schemas.ReportTotals, row: schemas.ReportRow) -> None:
    with localcontext(DECIMAL_CONTEXT):
        for name in _TOTAL_FIELDS:
            setattr(totals, name, getattr(totals, name) + getattr(row, name))
    totals.item_count += 1


async def _periods(
    session: AsyncSession,
    month: int,
    year: int,
    *,
    category_id: int | None = None,
    search: str | None = None,
) -> Sequence[BalancePeriod]:
    stmt = (
        select(BalancePeriod)
        .join(TrackedItem, BalancePeriod.item_id == TrackedItem.id)
        .options(selectinload(BalancePeriod.item).selectinload(TrackedItem.category))
        .where(BalancePeriod.month == month, BalancePeriod.year == year)
        .order_by(TrackedItem.name, TrackedItem.id)
    )
    if category_id is not None:
        stmt = stmt.where(TrackedItem.category_id == category_id)
    if search:
        stmt = stmt.where(TrackedItem.name.ilike(f"%{search.strip()}%"))
    result = await session.execute(stmt)
    return result.scalars().all()


async def monthly_report(
    session: AsyncSession,
    month: int,
    year: int,
    *,
    category_id: int | None = None,
    search: str | None = None,
) -> schemas.MonthlyReport:
    """Balance rows of a month grouped by category with decimal rollups.

    Groups follow the category sort order; items without a category come last.
    """

    periods = await _periods(session, month, year, category_id=category_id, search=search)

    groups: dict[int | None, schemas.CategoryGroup] = {}
    ordering: dict[int | None, tuple] = {}
    report = schemas.MonthlyReport(month=month, year=year)
    for period in periods:
        category: Category | None = period.item.category
        key = category.id if category is not None else None
        group = groups.get(key)
        if group is None:
            if category is None:
                group = schemas.CategoryGroup(category_name=UNCATEGORIZED)
                ordering[key] = (1, 0, "")
            else:
                group = schemas.CategoryGroup(
                    category_id=category.id,
                    category_code=category.code,
                    category_name=category.name,
                )
                ordering[key] = (0, category.sort_order, category.name)
            groups[key] = group
        row = _report_row(period)
        group.rows.append(row)
        _add_to_totals(group.subtotal, row)
        _add_to_totals(report.grand_total, row)

    report.groups = [groups[key] for key in sorted(groups, key=ordering.__getitem__)]
    return report


async def yearly_report(
    session: AsyncSession, year: int, *, category_id: int | None = None
) -> list[schemas.MonthlyReport]:
    """One :func:`monthly_report` per month of ``year`` that has balances."""

    stmt = (
        select(BalancePeriod.month)
        .where(BalancePeriod.year == year)
        .distinct()
        .order_by(BalancePeriod.month)
    )
    months = (await session.execute(stmt)).scalars().all()
    return [
        await monthly_report(session, month, year, category_id=category_id) for month in months
    ]


async def _stock_of(
    session: AsyncSession, item: TrackedItem, month: int, year: int
) -> schemas.CurrentStock:
    period = await store.get_period(session, item.id, month, year)
    if period is not None:
        quantity = period.closing_quantity
        unit_price = period.closing_unit_price
        total_value = period.closing_amount
        expiry = period.expiry_date
    else:
        figures, expiry = await store.opening_figures(session, item.id, month, year)
        quantity = figures.closing_quantity
        unit_price = figures.closing_unit_price
        total_value = figures.closing_amount

    return schemas.CurrentStock(
        item=schemas.ItemOut.model_validate(item),
        month=month,
        year=year,
        quantity=quantity,
        unit_price=unit_price,
        total_value=total_value,
        expiry_date=expiry,
        period_exists=period is not None,
    )


async def current_stock(
    session: AsyncSession, item_id: int, month: int, year: int
) -> schemas.CurrentStock:
    """Closing stock of an item for a month.

    A month without a period reports what it would open with, without
    creating it.
    """

    item = await crud.get_item(session, item_id)
    return await _stock_of(session, item, month, year)


async def all_current_stock(
    session: AsyncSession,
    month: int,
    year: int,
    *,
    category_id: int | None = None,
    search: str | None = None,
) -> list[schemas.CurrentStock]:
    """Current stock of every active item, ordered by name."""

    items = await crud.list_items(session, category_id=category_id, search=search)
    return [await _stock_of(session, item, month, year) for item in items]


async def stock_alerts(
    session: AsyncSession,
    month: int,
    year: int,
    *,
    min_threshold: int | None = None,
    days_until_expiry: int | None = None,
    today: date | None = None,
) -> schemas.StockAlerts:
    """Low-stock rows (``0 < closing < threshold``) and stock close to expiry."""

    settings = get_settings()
    threshold = settings.low_stock_threshold if min_threshold is None else min_threshold
    days = settings.expiry_warning_days if days_until_expiry is None else days_until_expiry
    today = today or date.today()
    horizon = today + timedelta(days=days)

    alerts = schemas.StockAlerts(month=month, year=year)
    for period in await _periods(session, month, year):
        in_stock = period.closing_quantity > 0
        if in_stock and period.closing_quantity < threshold:
            alerts.low_stock.append(_report_row(period))
        if in_stock and period.expiry_date is not None and today <= period.expiry_date <= horizon:
            alerts.expiring.append(_report_row(period))
    logger.debug(
        "Alerts %02d/%d: %d low stock, %d expiring",
        month,
        year,
        len(alerts.low_stock),
        len(alerts.expiring),
    )
    return alerts


__all__ = [
    "UNCATEGORIZED",
    "monthly_report",
    "yearly_report",
    "current_stock",
    "all_current_stock",
    "stock_alerts",
]
