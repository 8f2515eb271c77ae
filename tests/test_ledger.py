from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, localcontext

import pytest

from ledger_service import ledger, store
from ledger_service.computation import DECIMAL_CONTEXT, MovementKind
from ledger_service.errors import NotFoundError, ValidationError
from ledger_service.models import TrackedItem
from ledger_service.schemas import BalanceUpdate, MovementCreate


def at(month: int, year: int = 2025, day: int = 10) -> datetime:
    return datetime(year, month, day, 9, 0, tzinfo=timezone.utc)


def movement(item_id: int, kind: MovementKind, quantity, unit_price=None, **extra) -> MovementCreate:
    return MovementCreate(
        item_id=item_id,
        kind=kind,
        quantity=Decimal(str(quantity)),
        unit_price=None if unit_price is None else Decimal(str(unit_price)),
        **extra,
    )


@pytest.fixture()
async def item(session) -> TrackedItem:
    tracked = TrackedItem(name="Paracetamol 500mg", units="viên")
    session.add(tracked)
    await session.flush()
    return tracked


async def test_record_inbound_creates_period(session, item) -> None:
    entry = await ledger.record(
        session, movement(item.id, MovementKind.INBOUND, 500, 100, transaction_date=at(9))
    )

    assert entry.total_amount == 50000
    assert (entry.month, entry.year) == (9, 2025)
    period = await store.get_period(session, item.id, 9, 2025)
    assert period.opening_quantity == 0
    assert period.inbound_quantity == 500
    assert period.closing_quantity == 500
    assert period.closing_unit_price == 100
    assert period.closing_amount == 50000


async def test_outbound_without_price_uses_opening_price(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 1000, 100, transaction_date=at(8)))
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 500, 120, transaction_date=at(9)))
    entry = await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 300, transaction_date=at(9), reference_id="RX-1"),
    )

    assert entry.unit_price == 100
    period = await store.get_period(session, item.id, 9, 2025)
    assert period.opening_quantity == 1000
    assert period.closing_quantity == 1200
    with localcontext(DECIMAL_CONTEXT):
        assert period.closing_unit_price == Decimal(130000) / Decimal(1200)


async def test_outbound_without_opening_falls_back_to_inbound_price(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 10, 7, transaction_date=at(4)))
    entry = await ledger.record(session, movement(item.id, MovementKind.OUTBOUND, 2, transaction_date=at(4)))

    assert entry.unit_price == 7
    assert entry.total_amount == 14


async def test_record_rejects_unknown_item_and_bad_quantities(session, item) -> None:
    with pytest.raises(NotFoundError):
        await ledger.record(session, movement(9999, MovementKind.INBOUND, 1, 1))
    with pytest.raises(ValidationError):
        await ledger.record(session, movement(item.id, MovementKind.OUTBOUND, 0))
    with pytest.raises(ValidationError):
        await ledger.record(session, movement(item.id, MovementKind.INBOUND, -3, 1))
    with pytest.raises(ValidationError):
        await ledger.record(session, movement(item.id, MovementKind.ADJUSTMENT, 0))


async def test_over_issue_produces_negative_closing(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 5, 10, transaction_date=at(2)))
    await ledger.record(session, movement(item.id, MovementKind.OUTBOUND, 8, 10, transaction_date=at(2)))

    period = await store.get_period(session, item.id, 2, 2025)
    assert period.closing_quantity == -3
    assert period.closing_unit_price == 0


async def test_adjustments_fold_by_sign(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.ADJUSTMENT, 12, 2, transaction_date=at(6)))
    await ledger.record(session, movement(item.id, MovementKind.ADJUSTMENT, -5, 2, transaction_date=at(6)))

    period = await store.get_period(session, item.id, 6, 2025)
    assert period.inbound_quantity == 12
    assert period.outbound_quantity == 5
    assert period.closing_quantity == 7


async def test_reverse_removes_entries_and_restores_balance(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 100, 10, transaction_date=at(5)))
    await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 30, 10, transaction_date=at(5), reference_id="RX-9"),
    )
    await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 20, 10, transaction_date=at(5, day=20), reference_id="RX-9"),
    )

    removed = await ledger.reverse(session, item.id, "RX-9", MovementKind.OUTBOUND)

    assert removed == 2
    period = await store.get_period(session, item.id, 5, 2025)
    assert period.outbound_quantity == 0
    assert period.ytd_outbound_quantity == 0
    assert period.closing_quantity == 100
    assert await ledger.list_entries(session, reference_id="RX-9") == []


async def test_second_reversal_is_a_no_op(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 100, 10, transaction_date=at(5)))
    await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 30, 10, transaction_date=at(5), reference_id="RX-2"),
    )
    assert await ledger.reverse(session, item.id, "RX-2") == 1
    before = await store.get_period(session, item.id, 5, 2025)
    snapshot = (before.outbound_quantity, before.closing_quantity, before.version)

    assert await ledger.reverse(session, item.id, "RX-2") == 0

    after = await store.get_period(session, item.id, 5, 2025)
    assert (after.outbound_quantity, after.closing_quantity, after.version) == snapshot


async def test_reverse_spanning_months_touches_each_period(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 100, 10, transaction_date=at(3)))
    await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 10, 10, transaction_date=at(3), reference_id="RX-7"),
    )
    await ledger.record(
        session,
        movement(item.id, MovementKind.OUTBOUND, 15, 10, transaction_date=at(4), reference_id="RX-7"),
    )

    assert await ledger.reverse(session, item.id, "RX-7") == 2

    march = await store.get_period(session, item.id, 3, 2025)
    april = await store.get_period(session, item.id, 4, 2025)
    assert march.outbound_quantity == 0
    assert april.outbound_quantity == 0


async def test_list_entries_filters_and_orders_newest_first(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 1, 1, transaction_date=at(1)))
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 2, 1, transaction_date=at(2)))
    await ledger.record(session, movement(item.id, MovementKind.OUTBOUND, 1, 1, transaction_date=at(3)))

    entries = await ledger.list_entries(session, item_id=item.id)
    assert [entry.month for entry in entries] == [3, 2, 1]

    inbound = await ledger.list_entries(session, item_id=item.id, kind=MovementKind.INBOUND)
    assert [entry.quantity for entry in inbound] == [2, 1]

    february = await ledger.list_entries(session, month=2, year=2025)
    assert len(february) == 1


async def test_update_balance_corrects_opening_and_suggestion(session, item) -> None:
    await ledger.record(session, movement(item.id, MovementKind.INBOUND, 50, 20, transaction_date=at(7)))

    period = await ledger.update_balance(
        session,
        BalanceUpdate(
            item_id=item.id,
            month=7,
            year=2025,
            opening_quantity=Decimal(100),
            opening_unit_price=Decimal(20),
            suggested_purchase_quantity=Decimal(30),
            suggested_purchase_unit_price=Decimal(21),
            expiry_date=date(2027, 1, 31),
        ),
    )

    assert period.opening_amount == 2000
    assert period.inbound_quantity == 50
    assert period.closing_quantity == 150
    assert period.closing_unit_price == 20
    assert period.suggested_purchase_amount == 630
    assert period.expiry_date == date(2027, 1, 31)


async def test_update_balance_keeps_omitted_values(session, item) -> None:
    await ledger.update_balance(
        session,
        BalanceUpdate(item_id=item.id, month=1, year=2025, opening_quantity=Decimal(10), opening_unit_price=Decimal(3)),
    )
    period = await ledger.update_balance(
        session,
        BalanceUpdate(item_id=item.id, month=1, year=2025, suggested_purchase_quantity=Decimal(4)),
    )

    assert period.opening_quantity == 10
    assert period.opening_unit_price == 3
    assert period.suggested_purchase_quantity == 4
    assert period.suggested_purchase_amount == 0
