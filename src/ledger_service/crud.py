"""Business logic for categories and tracked items."""
from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas
from .errors import NotFoundError, ValidationError
from .models import Category, TrackedItem

logger = logging.getLogger(__name__)

_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}
_DIGITS = re.compile(r"\d+")


def _roman_to_int(text: str) -> int | None:
    if not text or any(char not in _ROMAN_VALUES for char in text):
        return None
    total = 0
    for index, char in enumerate(text):
        value = _ROMAN_VALUES[char]
        if index + 1 < len(text) and _ROMAN_VALUES[text[index + 1]] > value:
            total -= value
        else:
            total += value
    return total


def sort_order_for_code(code: str) -> int:
    """Ordering key for an auto-created category: ``IV`` sorts as 4, ``A12`` as 12."""

    normalized = code.strip().upper()
    roman = _roman_to_int(normalized)
    if roman is not None:
        return roman
    match = _DIGITS.search(normalized)
    return int(match.group()) if match else 0


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


async def create_category(session: AsyncSession, data: schemas.CategoryCreate) -> Category:
    category = Category(**data.model_dump())
    session.add(category)
    await session.flush()
    return category


async def list_categories(
    session: AsyncSession, *, include_inactive: bool = False
) -> Sequence[Category]:
    stmt = select(Category).order_by(Category.sort_order, Category.name)
    if not include_inactive:
        stmt = stmt.where(Category.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_category(session: AsyncSession, category_id: int) -> Category:
    category = await session.get(Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    return category


async def get_category_by_code(session: AsyncSession, code: str) -> Category | None:
    stmt = select(Category).where(Category.code == code)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_category(session: AsyncSession, code: str) -> Category:
    code = code.strip()
    if not code:
        raise ValidationError("Category code must not be empty")
    category = await get_category_by_code(session, code)
    if category is None:
        category = Category(
            code=code, name=f"Category {code}", sort_order=sort_order_for_code(code)
        )
        session.add(category)
        await session.flush()
        logger.info("Created category %s", code)
    elif not category.is_active:
        category.is_active = True
    return category


async def update_category(
    session: AsyncSession, category: Category, data: schemas.CategoryUpdate
) -> Category:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(category, field, value)
    await session.flush()
    return category


async def deactivate_category(session: AsyncSession, category: Category) -> None:
    category.is_active = False
    await session.flush()


# ---------------------------------------------------------------------------
# Tracked items
# ---------------------------------------------------------------------------


async def create_item(session: AsyncSession, data: schemas.ItemCreate) -> TrackedItem:
    if data.category_id is not None:
        await get_category(session, data.category_id)
    item = TrackedItem(**data.model_dump())
    session.add(item)
    await session.flush()
    return item


async def list_items(
    session: AsyncSession,
    *,
    category_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
) -> Sequence[TrackedItem]:
    stmt = select(TrackedItem).order_by(TrackedItem.name)
    if not include_inactive:
        stmt = stmt.where(TrackedItem.is_active.is_(True))
    if category_id is not None:
        stmt = stmt.where(TrackedItem.category_id == category_id)
    if search:
        stmt = stmt.where(TrackedItem.name.ilike(f"%{search.strip()}%"))
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_item(session: AsyncSession, item_id: int) -> TrackedItem:
    item = await session.get(TrackedItem, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found")
    return item


async def find_item_by_name(session: AsyncSession, name: str) -> TrackedItem | None:
    """Return the active item with exactly this (trimmed) name, if any."""

    stmt = (
        select(TrackedItem)
        .where(TrackedItem.name == name.strip(), TrackedItem.is_active.is_(True))
        .order_by(TrackedItem.id)
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def update_item(
    session: AsyncSession, item: TrackedItem, data: schemas.ItemUpdate
) -> TrackedItem:
    values = data.model_dump(exclude_unset=True)
    if values.get("category_id") is not None:
        await get_category(session, values["category_id"])
    for field, value in values.items():
        setattr(item, field, value)
    await session.flush()
    return item


async def deactivate_item(session: AsyncSession, item: TrackedItem) -> None:
    item.is_active = False
    await session.flush()


async def refresh_item_metadata(
    session: AsyncSession,
    item: TrackedItem,
    *,
    category_id: int | None = None,
    units: str | None = None,
    route: str | None = None,
    strength: str | None = None,
    manufacturer: str | None = None,
) -> bool:
    """Overwrite display fields that the caller actually supplied.

    Returns ``True`` when anything changed.
    """

    supplied = {
        "category_id": category_id,
        "units": units,
        "route": route,
        "strength": strength,
        "manufacturer": manufacturer,
    }
    changed = False
    for field, value in supplied.items():
        if value is not None and getattr(item, field) != value:
            setattr(item, field, value)
            changed = True
    if changed:
        await session.flush()
    return changed


__all__ = [name for name in globals() if not name.startswith("_")]
