"""Persistence of monthly balance periods.

Writers to one ``(item, month, year)`` key are linearized three ways: the
read for a read-modify-write takes a row lock where the backend has one
(SQLite takes its write lock when the transaction begins), every UPDATE is
guarded by the ``version`` column, and a duplicate INSERT of the same key is
rolled back to a SAVEPOINT and replaced by the winner's row.
:func:`run_in_transaction` retries a unit of work that lost the race or
timed out waiting for the database lock.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .computation import BalanceFigures, carry_forward
from .config import get_settings
from .errors import ConflictError
from .models import BalancePeriod

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNCHANGED = object()


async def get_period(
    session: AsyncSession,
    item_id: int,
    month: int,
    year: int,
    *,
    for_update: bool = False,
) -> BalancePeriod | None:
    stmt = select(BalancePeriod).where(
        BalancePeriod.item_id == item_id,
        BalancePeriod.month == month,
        BalancePeriod.year == year,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def latest_period_before(
    session: AsyncSession, item_id: int, month: int, year: int
) -> BalancePeriod | None:
    """The most recent period of the item strictly before ``month``/``year``."""

    stmt = (
        select(BalancePeriod)
        .where(
            BalancePeriod.item_id == item_id,
            or_(
                BalancePeriod.year < year,
                and_(BalancePeriod.year == year, BalancePeriod.month < month),
            ),
        )
        .order_by(BalancePeriod.year.desc(), BalancePeriod.month.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def opening_figures(
    session: AsyncSession, item_id: int, month: int, year: int
) -> tuple[BalanceFigures, date | None]:
    """Figures a new period would open with, plus the inherited expiry date."""

    previous = await latest_period_before(session, item_id, month, year)
    if previous is None:
        return carry_forward(None, same_year=False), None
    figures = carry_forward(
        BalanceFigures.from_record(previous), same_year=previous.year == year
    )
    return figures, previous.expiry_date


async def create_period(
    session: AsyncSession,
    item_id: int,
    month: int,
    year: int,
    figures: BalanceFigures | None = None,
    *,
    expiry_date: date | None = None,
) -> tuple[BalancePeriod, bool]:
    """Insert a period, or return the existing row if another writer won.

    When ``figures`` is omitted the period is opened from the prior period's
    closing. The flag is ``True`` when this call inserted the row.
    """

    if figures is None:
        figures, inherited_expiry = await opening_figures(session, item_id, month, year)
        expiry_date = expiry_date or inherited_expiry

    period = BalancePeriod(
        item_id=item_id,
        month=month,
        year=year,
        expiry_date=expiry_date,
        **figures.as_dict(),
    )
    try:
        async with session.begin_nested():
            session.add(period)
            await session.flush()
    except IntegrityError as exc:
        existing = await get_period(session, item_id, month, year, for_update=True)
        if existing is None:
            raise ConflictError(
                f"Could not create period {month:02d}/{year} for item {item_id}"
            ) from exc
        logger.debug("Period %02d/%d for item %s created concurrently", month, year, item_id)
        return existing, False
    return period, True


async def obtain_period(
    session: AsyncSession, item_id: int, month: int, year: int
) -> tuple[BalancePeriod, bool]:
    """Locked existing period, or a newly carried-forward one."""

    period = await get_period(session, item_id, month, year, for_update=True)
    if period is not None:
        return period, False
    return await create_period(session, item_id, month, year)


async def get_or_create_period(
    session: AsyncSession, item_id: int, month: int, year: int
) -> BalancePeriod:
    period, _ = await obtain_period(session, item_id, month, year)
    return period


async def save_period(
    session: AsyncSession,
    period: BalancePeriod,
    figures: BalanceFigures,
    *,
    expiry_date: date | None | object = _UNCHANGED,
) -> BalancePeriod:
    """Replace every figure of ``period`` and flush under the version guard."""

    item_id, month, year = period.item_id, period.month, period.year
    for name, value in figures.as_dict().items():
        setattr(period, name, value)
    if expiry_date is not _UNCHANGED:
        period.expiry_date = expiry_date
    try:
        await session.flush()
    except StaleDataError as exc:
        raise ConflictError(
            f"Period {month:02d}/{year} for item {item_id} "
            "was modified concurrently"
        ) from exc
    if figures.closing_quantity < 0:
        logger.warning(
            "Item %s closes %02d/%d with negative stock %s",
            item_id,
            month,
            year,
            figures.closing_quantity,
        )
    return period


async def year_history(
    session: AsyncSession, item_id: int, year: int, before_month: int
) -> Sequence[BalancePeriod]:
    stmt = (
        select(BalancePeriod)
        .where(
            BalancePeriod.item_id == item_id,
            BalancePeriod.year == year,
            BalancePeriod.month < before_month,
        )
        .order_by(BalancePeriod.month)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(exc.orig or exc).lower()
    return "locked" in message or "busy" in message


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    retries: int | None = None,
) -> T:
    """Run ``work`` in a fresh committed transaction, retrying lost races."""

    if retries is None:
        retries = get_settings().conflict_retries
    attempt = 0
    while True:
        attempt += 1
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await work(session)
        except (ConflictError, StaleDataError, OperationalError) as exc:
            if isinstance(exc, OperationalError) and not _is_lock_error(exc):
                raise
            if attempt > retries:
                if isinstance(exc, ConflictError):
                    raise
                raise ConflictError(str(exc)) from exc
            logger.warning("Retrying after write conflict (attempt %d): %s", attempt, exc)


__all__ = [
    "get_period",
    "latest_period_before",
    "opening_figures",
    "create_period",
    "obtain_period",
    "get_or_create_period",
    "save_period",
    "year_history",
    "run_in_transaction",
]
