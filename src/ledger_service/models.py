"""Database models for the balance ledger."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .computation import MovementKind
from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DecimalText(TypeDecorator):
    """Stores :class:`~decimal.Decimal` values as plain decimal text, every digit kept."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class TimestampMixin:
    """Mixin providing created/updated timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


def _figure() -> Mapped[Decimal]:
    return mapped_column(DecimalText, default=Decimal("0"), nullable=False)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    items: Mapped[list["TrackedItem"]] = relationship(back_populates="category")


class TrackedItem(Base, TimestampMixin):
    __tablename__ = "tracked_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    units: Mapped[str] = mapped_column(String(32), default="", nullable=False)
    route: Mapped[str | None] = mapped_column(String(128))
    strength: Mapped[str | None] = mapped_column(String(128))
    manufacturer: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category: Mapped[Category | None] = relationship(back_populates="items")
    periods: Mapped[list["BalancePeriod"]] = relationship(back_populates="item")
    entries: Mapped[list["LedgerEntry"]] = relationship(back_populates="item")


class BalancePeriod(Base, TimestampMixin):
    __tablename__ = "balance_periods"
    __table_args__ = (
        UniqueConstraint("item_id", "month", "year", name="uq_balance_periods_item_month_year"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_balance_periods_month_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("tracked_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)

    opening_quantity: Mapped[Decimal] = _figure()
    opening_unit_price: Mapped[Decimal] = _figure()
    opening_amount: Mapped[Decimal] = _figure()
    inbound_quantity: Mapped[Decimal] = _figure()
    inbound_unit_price: Mapped[Decimal] = _figure()
    inbound_amount: Mapped[Decimal] = _figure()
    outbound_quantity: Mapped[Decimal] = _figure()
    outbound_unit_price: Mapped[Decimal] = _figure()
    outbound_amount: Mapped[Decimal] = _figure()
    closing_quantity: Mapped[Decimal] = _figure()
    closing_unit_price: Mapped[Decimal] = _figure()
    closing_amount: Mapped[Decimal] = _figure()
    ytd_inbound_quantity: Mapped[Decimal] = _figure()
    ytd_inbound_unit_price: Mapped[Decimal] = _figure()
    ytd_inbound_amount: Mapped[Decimal] = _figure()
    ytd_outbound_quantity: Mapped[Decimal] = _figure()
    ytd_outbound_unit_price: Mapped[Decimal] = _figure()
    ytd_outbound_amount: Mapped[Decimal] = _figure()
    suggested_purchase_quantity: Mapped[Decimal] = _figure()
    suggested_purchase_unit_price: Mapped[Decimal] = _figure()
    suggested_purchase_amount: Mapped[Decimal] = _figure()

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    item: Mapped[TrackedItem] = relationship(back_populates="periods")

    __mapper_args__ = {"version_id_col": version}


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_entries_item_reference_kind", "item_id", "reference_id", "kind"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("tracked_items.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[MovementKind] = mapped_column(
        Enum(MovementKind, native_enum=False, length=16), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(DecimalText, nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    batch_number: Mapped[str | None] = mapped_column(String(64))
    supplier: Mapped[str | None] = mapped_column(String(255))
    reference_type: Mapped[str | None] = mapped_column(String(64))
    reference_id: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    item: Mapped[TrackedItem] = relationship(back_populates="entries")


__all__ = [
    "DecimalText",
    "Category",
    "TrackedItem",
    "BalancePeriod",
    "LedgerEntry",
]
