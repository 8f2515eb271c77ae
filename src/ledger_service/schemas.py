"""Pydantic schemas used by the API and the import pipeline."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .cells import parse_cell_date, parse_decimal, parse_optional_decimal
from .computation import MovementKind

# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class CategoryBase(BaseModel):
    code: str = Field(..., min_length=1, description="Section marker, e.g. I, II, III.")
    name: str
    sort_order: int = 0


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    code: str | None = None
    name: str | None = None
    sort_order: int | None = None


class CategoryOut(CategoryBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ItemBase(BaseModel):
    name: str = Field(..., min_length=1)
    category_id: int | None = None
    units: str = Field("", description="Unit of measure label, e.g. viên, chai, hộp.")
    route: str | None = None
    strength: str | None = None
    manufacturer: str | None = None


class ItemCreate(ItemBase):
    pass


class ItemUpdate(BaseModel):
    name: str | None = None
    category_id: int | None = None
    units: str | None = None
    route: str | None = None
    strength: str | None = None
    manufacturer: str | None = None


class ItemOut(ItemBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Balances and movements
# ---------------------------------------------------------------------------


class BalancePeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    month: int
    year: int
    expiry_date: date | None = None
    opening_quantity: Decimal
    opening_unit_price: Decimal
    opening_amount: Decimal
    inbound_quantity: Decimal
    inbound_unit_price: Decimal
    inbound_amount: Decimal
    outbound_quantity: Decimal
    outbound_unit_price: Decimal
    outbound_amount: Decimal
    closing_quantity: Decimal
    closing_unit_price: Decimal
    closing_amount: Decimal
    ytd_inbound_quantity: Decimal
    ytd_inbound_unit_price: Decimal
    ytd_inbound_amount: Decimal
    ytd_outbound_quantity: Decimal
    ytd_outbound_unit_price: Decimal
    ytd_outbound_amount: Decimal
    suggested_purchase_quantity: Decimal
    suggested_purchase_unit_price: Decimal
    suggested_purchase_amount: Decimal
    version: int
    updated_at: datetime


class MovementCreate(BaseModel):
    item_id: int
    kind: MovementKind
    quantity: Decimal = Field(
        ..., description="Positive for inbound/outbound; signed for adjustments."
    )
    unit_price: Decimal | None = Field(
        None, description="Omitted outbound movements are costed at the opening price."
    )
    transaction_date: datetime | None = None
    expiry_date: date | None = None
    batch_number: str | None = None
    supplier: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    created_by: str | None = None

    @field_validator("expiry_date", mode="before")
    @classmethod
    def _parse_expiry(cls, value: object) -> date | None:
        return parse_cell_date(value)


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    kind: MovementKind
    quantity: Decimal
    unit_price: Decimal
    total_amount: Decimal
    transaction_date: datetime
    month: int
    year: int
    expiry_date: date | None = None
    batch_number: str | None = None
    supplier: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime


class ReversalRequest(BaseModel):
    item_id: int
    reference_id: str = Field(..., min_length=1)
    kind: MovementKind = MovementKind.OUTBOUND


class ReversalResult(BaseModel):
    item_id: int
    reference_id: str
    kind: MovementKind
    reversed: int


class BalanceUpdate(BaseModel):
    """Manual correction of a period's opening and suggested-purchase figures."""

    item_id: int
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=2100)
    expiry_date: date | None = None
    opening_quantity: Decimal | None = None
    opening_unit_price: Decimal | None = None
    suggested_purchase_quantity: Decimal | None = None
    suggested_purchase_unit_price: Decimal | None = None

    @field_validator("expiry_date", mode="before")
    @classmethod
    def _parse_expiry(cls, value: object) -> date | None:
        return parse_cell_date(value)


# ---------------------------------------------------------------------------
# Import rows
# ---------------------------------------------------------------------------

_FULL_REQUIRED_NUMBERS = (
    "opening_quantity",
    "opening_unit_price",
    "inbound_quantity",
    "inbound_unit_price",
    "outbound_quantity",
    "outbound_unit_price",
    "ytd_inbound_quantity",
    "ytd_inbound_unit_price",
    "ytd_outbound_quantity",
    "ytd_outbound_unit_price",
    "suggested_purchase_quantity",
    "suggested_purchase_unit_price",
)
_FULL_OPTIONAL_NUMBERS = (
    "opening_amount",
    "inbound_amount",
    "outbound_amount",
    "closing_quantity",
    "closing_unit_price",
    "closing_amount",
    "ytd_inbound_amount",
    "ytd_outbound_amount",
    "suggested_purchase_amount",
)


class _ItemFields(BaseModel):
    seq: str | None = Field(None, description="Sequence number printed in the report.")
    category_code: str | None = None
    route: str | None = None
    strength: str | None = None
    manufacturer: str | None = None
    units: str | None = None
    expiry_date: date | None = None

    @field_validator("expiry_date", mode="before")
    @classmethod
    def _parse_expiry(cls, value: object) -> date | None:
        return parse_cell_date(value)

    @field_validator("seq", "category_code", "route", "strength", "manufacturer", "units", mode="before")
    @classmethod
    def _blank_text_to_none(cls, value: object) -> object:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class FullImportRow(_ItemFields):
    """Complete period figures for one item as printed by the monthly report.

    Quantities and prices default to zero. Amounts and closing figures stay
    ``None`` when the source omits them so the pipeline can derive them.
    """

    row_type: Literal["full"] = "full"
    name: str = Field(..., min_length=1)

    opening_quantity: Decimal = Decimal(0)
    opening_unit_price: Decimal = Decimal(0)
    opening_amount: Decimal | None = None
    inbound_quantity: Decimal = Decimal(0)
    inbound_unit_price: Decimal = Decimal(0)
    inbound_amount: Decimal | None = None
    outbound_quantity: Decimal = Decimal(0)
    outbound_unit_price: Decimal = Decimal(0)
    outbound_amount: Decimal | None = None
    closing_quantity: Decimal | None = None
    closing_unit_price: Decimal | None = None
    closing_amount: Decimal | None = None
    ytd_inbound_quantity: Decimal = Decimal(0)
    ytd_inbound_unit_price: Decimal = Decimal(0)
    ytd_inbound_amount: Decimal | None = None
    ytd_outbound_quantity: Decimal = Decimal(0)
    ytd_outbound_unit_price: Decimal = Decimal(0)
    ytd_outbound_amount: Decimal | None = None
    suggested_purchase_quantity: Decimal = Decimal(0)
    suggested_purchase_unit_price: Decimal = Decimal(0)
    suggested_purchase_amount: Decimal | None = None

    @field_validator(*_FULL_REQUIRED_NUMBERS, mode="before")
    @classmethod
    def _number_or_zero(cls, value: object) -> Decimal:
        return parse_decimal(value)

    @field_validator(*_FULL_OPTIONAL_NUMBERS, mode="before")
    @classmethod
    def _number_or_none(cls, value: object) -> Decimal | None:
        return parse_optional_decimal(value)


class SimplifiedImportRow(_ItemFields):
    """Inbound and suggested-purchase figures only; the rest is derived."""

    row_type: Literal["simplified"] = "simplified"
    item_id: int | None = None
    name: str | None = None

    inbound_quantity: Decimal = Decimal(0)
    inbound_unit_price: Decimal = Decimal(0)
    inbound_amount: Decimal | None = None
    suggested_purchase_quantity: Decimal = Decimal(0)
    suggested_purchase_unit_price: Decimal = Decimal(0)
    suggested_purchase_amount: Decimal | None = None

    @field_validator(
        "inbound_quantity",
        "inbound_unit_price",
        "suggested_purchase_quantity",
        "suggested_purchase_unit_price",
        mode="before",
    )
    @classmethod
    def _number_or_zero(cls, value: object) -> Decimal:
        return parse_decimal(value)

    @field_validator("inbound_amount", "suggested_purchase_amount", mode="before")
    @classmethod
    def _number_or_none(cls, value: object) -> Decimal | None:
        return parse_optional_decimal(value)

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name_to_none(cls, value: object) -> object:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class _ImportRequest(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=2100)


class FullImportRequest(_ImportRequest):
    rows: list[FullImportRow]


class SimplifiedImportRequest(_ImportRequest):
    rows: list[SimplifiedImportRow]


class SheetImportRequest(BaseModel):
    """Already tokenized spreadsheet content: the title line plus its rows."""

    title: str
    rows: list[list[object]]


class ImportRowError(BaseModel):
    row: int
    item: str | None = None
    error: str


class ImportSummary(BaseModel):
    month: int
    year: int
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[ImportRowError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportRow(BalancePeriodOut):
    item_name: str
    units: str
    category_id: int | None = None


class ReportTotals(BaseModel):
    item_count: int = 0
    opening_quantity: Decimal = Decimal(0)
    opening_amount: Decimal = Decimal(0)
    inbound_quantity: Decimal = Decimal(0)
    inbound_amount: Decimal = Decimal(0)
    outbound_quantity: Decimal = Decimal(0)
    outbound_amount: Decimal = Decimal(0)
    closing_quantity: Decimal = Decimal(0)
    closing_amount: Decimal = Decimal(0)
    ytd_inbound_quantity: Decimal = Decimal(0)
    ytd_inbound_amount: Decimal = Decimal(0)
    ytd_outbound_quantity: Decimal = Decimal(0)
    ytd_outbound_amount: Decimal = Decimal(0)
    suggested_purchase_quantity: Decimal = Decimal(0)
    suggested_purchase_amount: Decimal = Decimal(0)


class CategoryGroup(BaseModel):
    category_id: int | None = None
    category_code: str | None = None
    category_name: str
    rows: list[ReportRow] = Field(default_factory=list)
    subtotal: ReportTotals = Field(default_factory=ReportTotals)


class MonthlyReport(BaseModel):
    month: int
    year: int
    groups: list[CategoryGroup] = Field(default_factory=list)
    grand_total: ReportTotals = Field(default_factory=ReportTotals)


class CurrentStock(BaseModel):
    item: ItemOut
    month: int
    year: int
    quantity: Decimal
    unit_price: Decimal
    total_value: Decimal
    expiry_date: date | None = None
    period_exists: bool


class StockAlerts(BaseModel):
    month: int
    year: int
    low_stock: list[ReportRow] = Field(default_factory=list)
    expiring: list[ReportRow] = Field(default_factory=list)


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "CategoryCreate",
    "CategoryUpdate",
    "CategoryOut",
    "ItemCreate",
    "ItemUpdate",
    "ItemOut",
    "BalancePeriodOut",
    "MovementCreate",
    "LedgerEntryOut",
    "ReversalRequest",
    "ReversalResult",
    "BalanceUpdate",
    "FullImportRow",
    "SimplifiedImportRow",
    "FullImportRequest",
    "SimplifiedImportRequest",
    "SheetImportRequest",
    "ImportRowError",
    "ImportSummary",
    "ReportRow",
    "ReportTotals",
    "CategoryGroup",
    "MonthlyReport",
    "CurrentStock",
    "StockAlerts",
    "HealthStatus",
]
