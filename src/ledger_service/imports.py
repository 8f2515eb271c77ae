"""Bulk loading of monthly balances.

Every row runs in its own transaction. A row that fails is rolled back,
reported in the :class:`~ledger_service.schemas.ImportSummary` and the batch
moves on, so re-running an import is how an interrupted one is resumed.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal, localcontext
from functools import partial
from typing import Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud, store
from .computation import (
    DECIMAL_CONTEXT,
    ZERO,
    BalanceFigures,
    MovementKind,
    amount_or_product,
    replace_inbound,
    replace_outbound,
    replace_suggested_purchase,
    to_decimal,
    with_year_to_date,
)
from .config import get_settings
from .errors import LedgerError, NotFoundError, ValidationError
from .ingestion import ingest, read_workbook
from .models import LedgerEntry, TrackedItem
from .schemas import FullImportRow, ImportRowError, ImportSummary, SimplifiedImportRow

logger = logging.getLogger(__name__)

IMPORT_REFERENCE_TYPE = "simplified-import"


def import_reference_id(month: int, year: int) -> str:
    return f"import:{year:04d}-{month:02d}"


class ConsumptionSource(Protocol):
    """Where the simplified import learns how much of an item was issued."""

    async def total_issued(
        self, session: AsyncSession, item_id: int, month: int, year: int
    ) -> Decimal: ...


class NullConsumptionSource:
    """No consumption data: new periods open with zero outbound."""

    async def total_issued(
        self, session: AsyncSession, item_id: int, month: int, year: int
    ) -> Decimal:
        return ZERO


class MappingConsumptionSource:
    """Issued quantities supplied up front, keyed by ``(item_id, month, year)``."""

    def __init__(self, totals: Mapping[tuple[int, int, int], object]) -> None:
        self._totals = {key: to_decimal(value) for key, value in totals.items()}

    async def total_issued(
        self, session: AsyncSession, item_id: int, month: int, year: int
    ) -> Decimal:
        return self._totals.get((item_id, month, year), ZERO)


def _check_period(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}")
    if not 1900 <= year <= 2100:
        raise ValidationError(f"Invalid year {year}")


async def _resolve_named_item(
    session: AsyncSession,
    name: str,
    row: FullImportRow | SimplifiedImportRow,
) -> TrackedItem:
    category_id = None
    if row.category_code:
        category = await crud.get_or_create_category(session, row.category_code)
        category_id = category.id

    item = await crud.find_item_by_name(session, name)
    if item is None:
        item = TrackedItem(
            name=name.strip(),
            category_id=category_id,
            units=row.units or get_settings().default_item_units,
            route=row.route,
            strength=row.strength,
            manufacturer=row.manufacturer,
        )
        session.add(item)
        await session.flush()
        logger.info("Created item %r", item.name)
        return item

    await crud.refresh_item_metadata(
        session,
        item,
        category_id=category_id,
        units=row.units,
        route=row.route,
        strength=row.strength,
        manufacturer=row.manufacturer,
    )
    return item


# ---------------------------------------------------------------------------
# Full authoritative import
# ---------------------------------------------------------------------------


def full_row_figures(row: FullImportRow) -> BalanceFigures:
    """The figures a full row states, deriving only what it leaves out."""

    with localcontext(DECIMAL_CONTEXT):
        if row.closing_quantity is not None:
            closing_quantity = row.closing_quantity
        else:
            closing_quantity = (
                row.opening_quantity + row.inbound_quantity - row.outbound_quantity
            )
        if row.closing_unit_price is not None:
            closing_unit_price = row.closing_unit_price
        else:
            closing_unit_price = row.opening_unit_price

        return BalanceFigures(
            opening_quantity=row.opening_quantity,
            opening_unit_price=row.opening_unit_price,
            opening_amount=amount_or_product(
                row.opening_amount, row.opening_quantity, row.opening_unit_price
            ),
            inbound_quantity=row.inbound_quantity,
            inbound_unit_price=row.inbound_unit_price,
            inbound_amount=amount_or_product(
                row.inbound_amount, row.inbound_quantity, row.inbound_unit_price
            ),
            outbound_quantity=row.outbound_quantity,
            outbound_unit_price=row.outbound_unit_price,
            outbound_amount=amount_or_product(
                row.outbound_amount, row.outbound_quantity, row.outbound_unit_price
            ),
            closing_quantity=closing_quantity,
            closing_unit_price=closing_unit_price,
            closing_amount=amount_or_product(
                row.closing_amount, closing_quantity, closing_unit_price
            ),
            ytd_inbound_quantity=row.ytd_inbound_quantity,
            ytd_inbound_unit_price=row.ytd_inbound_unit_price,
            ytd_inbound_amount=amount_or_product(
                row.ytd_inbound_amount, row.ytd_inbound_quantity, row.ytd_inbound_unit_price
            ),
            ytd_outbound_quantity=row.ytd_outbound_quantity,
            ytd_outbound_unit_price=row.ytd_outbound_unit_price,
            ytd_outbound_amount=amount_or_product(
                row.ytd_outbound_amount, row.ytd_outbound_quantity, row.ytd_outbound_unit_price
            ),
            suggested_purchase_quantity=row.suggested_purchase_quantity,
            suggested_purchase_unit_price=row.suggested_purchase_unit_price,
            suggested_purchase_amount=amount_or_product(
                row.suggested_purchase_amount,
                row.suggested_purchase_quantity,
                row.suggested_purchase_unit_price,
            ),
        )


async def _write_full_row(
    session: AsyncSession, month: int, year: int, row: FullImportRow
) -> bool:
    item = await _resolve_named_item(session, row.name, row)
    figures = full_row_figures(row)

    period = await store.get_period(session, item.id, month, year, for_update=True)
    if period is None:
        period, created = await store.create_period(
            session, item.id, month, year, figures, expiry_date=row.expiry_date
        )
        if created:
            return True
    if row.expiry_date is not None:
        period.expiry_date = row.expiry_date
    await store.save_period(session, period, figures)
    return False


# ---------------------------------------------------------------------------
# Simplified derived import
# ---------------------------------------------------------------------------


async def _resolve_simplified_item(
    session: AsyncSession, row: SimplifiedImportRow
) -> TrackedItem:
    if row.item_id is not None:
        try:
            return await crud.get_item(session, row.item_id)
        except NotFoundError:
            if not row.name:
                raise
            logger.info("Item %s not found, resolving %r by name", row.item_id, row.name)
    if row.name:
        return await _resolve_named_item(session, row.name, row)
    raise ValidationError("Row has neither an item id nor a name")


def _with_row_inputs(figures: BalanceFigures, row: SimplifiedImportRow) -> BalanceFigures:
    figures = replace_inbound(
        figures, row.inbound_quantity, row.inbound_unit_price, row.inbound_amount
    )
    return replace_suggested_purchase(
        figures,
        row.suggested_purchase_quantity,
        row.suggested_purchase_unit_price,
        row.suggested_purchase_amount,
    )


async def _year_to_date(
    session: AsyncSession, item_id: int, month: int, year: int, figures: BalanceFigures
) -> BalanceFigures:
    history = await store.year_history(session, item_id, year, month)
    return with_year_to_date(figures, [BalanceFigures.from_record(p) for p in history])


async def _upsert_import_entry(
    session: AsyncSession,
    item_id: int,
    month: int,
    year: int,
    figures: BalanceFigures,
    expiry_date,
) -> None:
    """Keep exactly one tagged inbound entry mirroring the imported inbound."""

    reference_id = import_reference_id(month, year)
    stmt = (
        select(LedgerEntry)
        .where(
            LedgerEntry.item_id == item_id,
            LedgerEntry.reference_id == reference_id,
            LedgerEntry.kind == MovementKind.INBOUND,
            LedgerEntry.reference_type == IMPORT_REFERENCE_TYPE,
        )
        .order_by(LedgerEntry.id)
    )
    existing = list((await session.execute(stmt)).scalars().all())

    if figures.inbound_quantity <= 0:
        for entry in existing:
            await session.delete(entry)
        await session.flush()
        return

    if existing:
        entry = existing.pop(0)
        for extra in existing:
            await session.delete(extra)
    else:
        entry = LedgerEntry(
            item_id=item_id,
            kind=MovementKind.INBOUND,
            transaction_date=datetime(year, month, 1, tzinfo=ZoneInfo(get_settings().default_timezone)),
            month=month,
            year=year,
            reference_type=IMPORT_REFERENCE_TYPE,
            reference_id=reference_id,
            notes=f"Inbound imported for {month:02d}/{year}",
        )
        session.add(entry)
    entry.quantity = figures.inbound_quantity
    entry.unit_price = figures.inbound_unit_price
    entry.total_amount = figures.inbound_amount
    entry.expiry_date = expiry_date
    await session.flush()


async def _write_simplified_row(
    session: AsyncSession,
    month: int,
    year: int,
    row: SimplifiedImportRow,
    consumption: ConsumptionSource,
) -> bool:
    item = await _resolve_simplified_item(session, row)
    created = False

    period = await store.get_period(session, item.id, month, year, for_update=True)
    if period is None:
        figures, inherited_expiry = await store.opening_figures(session, item.id, month, year)
        figures = _with_row_inputs(figures, row)
        issued = to_decimal(await consumption.total_issued(session, item.id, month, year))
        if figures.opening_unit_price > 0:
            outbound_price = figures.opening_unit_price
        else:
            outbound_price = figures.inbound_unit_price
        figures = replace_outbound(figures, issued, outbound_price)
        figures = await _year_to_date(session, item.id, month, year, figures)
        period, created = await store.create_period(
            session,
            item.id,
            month,
            year,
            figures,
            expiry_date=row.expiry_date or inherited_expiry,
        )

    if not created:
        figures = _with_row_inputs(BalanceFigures.from_record(period), row)
        figures = await _year_to_date(session, item.id, month, year, figures)
        if row.expiry_date is not None:
            period.expiry_date = row.expiry_date
        await store.save_period(session, period, figures)

    await _upsert_import_entry(session, item.id, month, year, figures, period.expiry_date)
    return created


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


async def _run_rows(
    session_factory: async_sessionmaker[AsyncSession],
    month: int,
    year: int,
    rows: Sequence[FullImportRow | SimplifiedImportRow],
    write,
    row_numbers: Sequence[int] | None = None,
) -> ImportSummary:
    _check_period(month, year)
    summary = ImportSummary(month=month, year=year)
    for position, row in enumerate(rows):
        index = row_numbers[position] if row_numbers is not None else position
        label = row.name or (f"item {row.item_id}" if getattr(row, "item_id", None) else None)
        try:
            created = await store.run_in_transaction(session_factory, partial(write, row=row))
        except (LedgerError, SQLAlchemyError) as exc:
            logger.warning("Import row %d (%s) failed: %s", index, label, exc)
            summary.errors.append(ImportRowError(row=index, item=label, error=str(exc)))
            continue
        if created:
            summary.created += 1
        else:
            summary.updated += 1

    logger.info(
        "Imported %02d/%d: %d created, %d updated, %d errors",
        month,
        year,
        summary.created,
        summary.updated,
        len(summary.errors),
    )
    return summary


async def full_import(
    session_factory: async_sessionmaker[AsyncSession],
    month: int,
    year: int,
    rows: Sequence[FullImportRow],
    *,
    row_numbers: Sequence[int] | None = None,
) -> ImportSummary:
    """Write each row's figures as the authoritative state of its period."""

    async def write(session: AsyncSession, *, row: FullImportRow) -> bool:
        return await _write_full_row(session, month, year, row)

    return await _run_rows(session_factory, month, year, rows, write, row_numbers)


async def simplified_import(
    session_factory: async_sessionmaker[AsyncSession],
    month: int,
    year: int,
    rows: Sequence[SimplifiedImportRow],
    consumption: ConsumptionSource | None = None,
) -> ImportSummary:
    """Import inbound and suggested-purchase figures and derive the rest."""

    source = consumption or NullConsumptionSource()

    async def write(session: AsyncSession, *, row: SimplifiedImportRow) -> bool:
        return await _write_simplified_row(session, month, year, row, source)

    return await _run_rows(session_factory, month, year, rows, write)


async def import_sheet(
    session_factory: async_sessionmaker[AsyncSession],
    title: str,
    rows: Sequence[Sequence[object]],
) -> ImportSummary:
    """Ingest a tokenized report sheet and run the full import for its month."""

    sheet = ingest(title, rows)
    summary = await full_import(
        session_factory,
        sheet.period.month,
        sheet.period.year,
        sheet.records,
        row_numbers=sheet.row_numbers,
    )
    summary.skipped += sheet.skipped
    summary.errors = sorted(sheet.errors + summary.errors, key=lambda error: error.row)
    return summary


async def import_workbook(
    session_factory: async_sessionmaker[AsyncSession], data: bytes
) -> ImportSummary:
    title, rows = read_workbook(data)
    return await import_sheet(session_factory, title, rows)


__all__ = [
    "IMPORT_REFERENCE_TYPE",
    "import_reference_id",
    "ConsumptionSource",
    "NullConsumptionSource",
    "MappingConsumptionSource",
    "full_row_figures",
    "full_import",
    "simplified_import",
    "import_sheet",
    "import_workbook",
]
