"""Stock movements and the balance periods they feed."""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal, localcontext
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import crud, schemas, store
from .computation import (
    DECIMAL_CONTEXT,
    ZERO,
    BalanceFigures,
    MovementKind,
    apply_movement,
    recompute_closing,
    replace_opening,
    replace_suggested_purchase,
    reverse_movement,
    to_decimal,
)
from .config import get_settings
from .errors import ValidationError
from .models import BalancePeriod, LedgerEntry

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().default_timezone))


def _default_unit_price(kind: MovementKind, figures: BalanceFigures) -> Decimal:
    if kind is not MovementKind.OUTBOUND:
        return ZERO
    if figures.opening_unit_price > 0:
        return figures.opening_unit_price
    return figures.inbound_unit_price


def _check_quantity(kind: MovementKind, quantity: Decimal) -> None:
    if kind is MovementKind.ADJUSTMENT:
        if quantity == 0:
            raise ValidationError("Adjustment quantity must not be zero")
    elif quantity <= 0:
        raise ValidationError(f"{kind.value.title()} quantity must be positive")


async def record(session: AsyncSession, movement: schemas.MovementCreate) -> LedgerEntry:
    """Insert a ledger entry and fold it into the period of its transaction date.

    Runs inside the caller's transaction; the caller commits.
    """

    item = await crud.get_item(session, movement.item_id)
    kind = MovementKind(movement.kind)
    quantity = to_decimal(movement.quantity)
    _check_quantity(kind, quantity)

    when = movement.transaction_date or _now()
    period = await store.get_or_create_period(session, item.id, when.month, when.year)
    figures = BalanceFigures.from_record(period)

    if movement.unit_price is None:
        unit_price = _default_unit_price(kind, figures)
    else:
        unit_price = to_decimal(movement.unit_price)
        if unit_price < 0:
            raise ValidationError("Unit price must not be negative")

    with localcontext(DECIMAL_CONTEXT):
        total_amount = quantity * unit_price

    entry = LedgerEntry(
        item_id=item.id,
        kind=kind,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=total_amount,
        transaction_date=when,
        month=when.month,
        year=when.year,
        expiry_date=movement.expiry_date,
        batch_number=movement.batch_number,
        supplier=movement.supplier,
        reference_type=movement.reference_type,
        reference_id=movement.reference_id,
        notes=movement.notes,
        created_by=movement.created_by,
    )
    session.add(entry)

    if movement.expiry_date is not None and kind is not MovementKind.OUTBOUND:
        period.expiry_date = movement.expiry_date
    await store.save_period(
        session, period, apply_movement(figures, kind, quantity, unit_price)
    )
    logger.debug(
        "Recorded %s of %s x %s for item %s in %02d/%d",
        kind.value,
        quantity,
        unit_price,
        item.id,
        when.month,
        when.year,
    )
    return entry


async def _matching_entries(
    session: AsyncSession, item_id: int, reference_id: str, kind: MovementKind
) -> Sequence[LedgerEntry]:
    stmt = (
        select(LedgerEntry)
        .where(
            LedgerEntry.item_id == item_id,
            LedgerEntry.reference_id == reference_id,
            LedgerEntry.kind == kind,
        )
        .order_by(LedgerEntry.id)
        .with_for_update()
    )
    result = await session.execute(stmt)
    return result.scalars().all()


def _reverse_group(
    figures: BalanceFigures, kind: MovementKind, entries: Sequence[LedgerEntry]
) -> BalanceFigures:
    with localcontext(DECIMAL_CONTEXT):
        if kind is not MovementKind.ADJUSTMENT:
            quantity = sum((entry.quantity for entry in entries), ZERO)
            amount = sum((entry.total_amount for entry in entries), ZERO)
            return reverse_movement(figures, kind, quantity, amount)
        # Increases were folded into inbound and decreases into outbound.
        for positive in (True, False):
            side = [entry for entry in entries if (entry.quantity > 0) == positive]
            if side:
                quantity = sum((entry.quantity for entry in side), ZERO)
                amount = sum((entry.total_amount for entry in side), ZERO)
                figures = reverse_movement(figures, kind, quantity, amount)
        return figures


async def reverse(
    session: AsyncSession,
    item_id: int,
    reference_id: str,
    kind: MovementKind = MovementKind.OUTBOUND,
) -> int:
    """Delete the entries carrying ``reference_id`` and back them out of their periods.

    Returns how many entries were removed; nothing matching is not an error.
    """

    kind = MovementKind(kind)
    entries = await _matching_entries(session, item_id, reference_id, kind)
    if not entries:
        return 0

    groups: dict[tuple[int, int], list[LedgerEntry]] = defaultdict(list)
    for entry in entries:
        groups[(entry.year, entry.month)].append(entry)

    for (year, month), group in sorted(groups.items()):
        period = await store.get_period(session, item_id, month, year, for_update=True)
        if period is None:
            logger.warning(
                "No period %02d/%d for item %s while reversing %s", month, year, item_id, reference_id
            )
            continue
        figures = _reverse_group(BalanceFigures.from_record(period), kind, group)
        await store.save_period(session, period, figures)

    for entry in entries:
        await session.delete(entry)
    await session.flush()
    logger.info(
        "Reversed %d %s entries for item %s reference %s", len(entries), kind.value, item_id, reference_id
    )
    return len(entries)


async def list_entries(
    session: AsyncSession,
    *,
    item_id: int | None = None,
    kind: MovementKind | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    month: int | None = None,
    year: int | None = None,
    reference_id: str | None = None,
) -> Sequence[LedgerEntry]:
    stmt = select(LedgerEntry).order_by(
        LedgerEntry.transaction_date.desc(), LedgerEntry.id.desc()
    )
    if item_id is not None:
        stmt = stmt.where(LedgerEntry.item_id == item_id)
    if kind is not None:
        stmt = stmt.where(LedgerEntry.kind == MovementKind(kind))
    if start is not None:
        stmt = stmt.where(LedgerEntry.transaction_date >= start)
    if end is not None:
        stmt = stmt.where(LedgerEntry.transaction_date <= end)
    if month is not None:
        stmt = stmt.where(LedgerEntry.month == month)
    if year is not None:
        stmt = stmt.where(LedgerEntry.year == year)
    if reference_id is not None:
        stmt = stmt.where(LedgerEntry.reference_id == reference_id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def update_balance(session: AsyncSession, data: schemas.BalanceUpdate) -> BalancePeriod:
    """Correct a period's opening and suggested-purchase figures by hand.

    Omitted values keep their current figures. Inbound and outbound are left
    alone and the closing is recomputed.
    """

    await crud.get_item(session, data.item_id)
    period, _ = await store.obtain_period(session, data.item_id, data.month, data.year)
    figures = BalanceFigures.from_record(period)

    figures = replace_opening(
        figures,
        figures.opening_quantity if data.opening_quantity is None else data.opening_quantity,
        figures.opening_unit_price if data.opening_unit_price is None else data.opening_unit_price,
    )
    figures = replace_suggested_purchase(
        figures,
        figures.suggested_purchase_quantity
        if data.suggested_purchase_quantity is None
        else data.suggested_purchase_quantity,
        figures.suggested_purchase_unit_price
        if data.suggested_purchase_unit_price is None
        else data.suggested_purchase_unit_price,
    )
    if data.expiry_date is not None:
        period.expiry_date = data.expiry_date
    return await store.save_period(session, period, recompute_closing(figures))


__all__ = ["record", "reverse", "list_entries", "update_balance"]
