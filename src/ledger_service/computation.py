"""Balance arithmetic for monthly stock periods.

Every function here is pure: it takes a :class:`BalanceFigures` value and
returns a new one. Nothing touches the database.

All arithmetic runs inside :data:`DECIMAL_CONTEXT` (50 significant digits).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from decimal import ROUND_HALF_EVEN, Context, Decimal, InvalidOperation, localcontext
from enum import Enum
from functools import wraps
from typing import Any, Callable, Iterable, TypeVar

from .errors import ValidationError

DECIMAL_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)
ZERO = Decimal(0)

_F = TypeVar("_F", bound=Callable[..., Any])


class MovementKind(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    ADJUSTMENT = "ADJUSTMENT"


def _precise(func: _F) -> _F:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        with localcontext(DECIMAL_CONTEXT):
            return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


@dataclass(frozen=True)
class BalanceFigures:
    """The numeric state of one item in one month."""

    opening_quantity: Decimal = ZERO
    opening_unit_price: Decimal = ZERO
    opening_amount: Decimal = ZERO
    inbound_quantity: Decimal = ZERO
    inbound_unit_price: Decimal = ZERO
    inbound_amount: Decimal = ZERO
    outbound_quantity: Decimal = ZERO
    outbound_unit_price: Decimal = ZERO
    outbound_amount: Decimal = ZERO
    closing_quantity: Decimal = ZERO
    closing_unit_price: Decimal = ZERO
    closing_amount: Decimal = ZERO
    ytd_inbound_quantity: Decimal = ZERO
    ytd_inbound_unit_price: Decimal = ZERO
    ytd_inbound_amount: Decimal = ZERO
    ytd_outbound_quantity: Decimal = ZERO
    ytd_outbound_unit_price: Decimal = ZERO
    ytd_outbound_amount: Decimal = ZERO
    suggested_purchase_quantity: Decimal = ZERO
    suggested_purchase_unit_price: Decimal = ZERO
    suggested_purchase_amount: Decimal = ZERO

    @classmethod
    def from_record(cls, record: Any) -> "BalanceFigures":
        """Read the figure attributes off any object (an ORM row, a schema)."""

        values = {}
        for name in FIGURE_FIELDS:
            values[name] = to_decimal(getattr(record, name, None))
        return cls(**values)

    def as_dict(self) -> dict[str, Decimal]:
        return asdict(self)


FIGURE_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(BalanceFigures))


def to_decimal(value: Any) -> Decimal:
    """Convert a number-like value to :class:`Decimal` without a float detour.

    ``None`` becomes zero. Floats go through ``repr`` so ``0.1`` stays ``0.1``.
    """

    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Not a number: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"Not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(f"Not a finite number: {value!r}")
    return result


@_precise
def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, returning zero for a zero divisor."""

    if denominator == 0:
        return ZERO
    return numerator / denominator


@_precise
def amount_or_product(amount: Any, quantity: Any, unit_price: Any) -> Decimal:
    """Return ``amount`` when supplied, else ``quantity * unit_price``."""

    if amount is not None:
        return to_decimal(amount)
    return to_decimal(quantity) * to_decimal(unit_price)


def next_period(month: int, year: int) -> tuple[int, int]:
    if month == 12:
        return 1, year + 1
    return month + 1, year


@_precise
def recompute_closing(figures: BalanceFigures) -> BalanceFigures:
    """Derive the closing quantity, weighted-average price and amount.

    A period whose residual value is not positive closes at a zero unit price.
    """

    closing_quantity = (
        figures.opening_quantity + figures.inbound_quantity - figures.outbound_quantity
    )
    total_value = (
        figures.opening_quantity * figures.opening_unit_price
        + figures.inbound_amount
        - figures.outbound_amount
    )
    if closing_quantity > 0 and total_value > 0:
        closing_unit_price = total_value / closing_quantity
    else:
        closing_unit_price = ZERO
    return replace(
        figures,
        closing_quantity=closing_quantity,
        closing_unit_price=closing_unit_price,
        closing_amount=closing_quantity * closing_unit_price,
    )


@_precise
def _add_inbound(figures: BalanceFigures, quantity: Decimal, amount: Decimal) -> BalanceFigures:
    inbound_quantity = figures.inbound_quantity + quantity
    inbound_amount = figures.inbound_amount + amount
    ytd_quantity = figures.ytd_inbound_quantity + quantity
    ytd_amount = figures.ytd_inbound_amount + amount
    updated = replace(
        figures,
        inbound_quantity=inbound_quantity,
        inbound_amount=inbound_amount,
        inbound_unit_price=safe_divide(inbound_amount, inbound_quantity),
        ytd_inbound_quantity=ytd_quantity,
        ytd_inbound_amount=ytd_amount,
        ytd_inbound_unit_price=safe_divide(ytd_amount, ytd_quantity),
    )
    return recompute_closing(updated)


@_precise
def _add_outbound(figures: BalanceFigures, quantity: Decimal, amount: Decimal) -> BalanceFigures:
    outbound_quantity = figures.outbound_quantity + quantity
    outbound_amount = figures.outbound_amount + amount
    ytd_quantity = figures.ytd_outbound_quantity + quantity
    ytd_amount = figures.ytd_outbound_amount + amount
    updated = replace(
        figures,
        outbound_quantity=outbound_quantity,
        outbound_amount=outbound_amount,
        outbound_unit_price=safe_divide(outbound_amount, outbound_quantity),
        ytd_outbound_quantity=ytd_quantity,
        ytd_outbound_amount=ytd_amount,
        ytd_outbound_unit_price=safe_divide(ytd_amount, ytd_quantity),
    )
    return recompute_closing(updated)


@_precise
def apply_inbound(figures: BalanceFigures, quantity: Any, unit_price: Any) -> BalanceFigures:
    q = to_decimal(quantity)
    return _add_inbound(figures, q, q * to_decimal(unit_price))


@_precise
def apply_outbound(figures: BalanceFigures, quantity: Any, unit_price: Any) -> BalanceFigures:
    q = to_decimal(quantity)
    return _add_outbound(figures, q, q * to_decimal(unit_price))


@_precise
def apply_adjustment(figures: BalanceFigures, quantity: Any, unit_price: Any) -> BalanceFigures:
    """Fold a stock correction into inbound (positive) or outbound (negative)."""

    q = to_decimal(quantity)
    amount = q * to_decimal(unit_price)
    if q > 0:
        return _add_inbound(figures, q, amount)
    if q < 0:
        return _add_outbound(figures, abs(q), abs(amount))
    return recompute_closing(figures)


def apply_movement(
    figures: BalanceFigures, kind: MovementKind, quantity: Any, unit_price: Any
) -> BalanceFigures:
    kind = MovementKind(kind)
    if kind is MovementKind.INBOUND:
        return apply_inbound(figures, quantity, unit_price)
    if kind is MovementKind.OUTBOUND:
        return apply_outbound(figures, quantity, unit_price)
    return apply_adjustment(figures, quantity, unit_price)


def _clamped(value: Decimal) -> Decimal:
    return value if value >= 0 else ZERO


@_precise
def reverse_outbound(figures: BalanceFigures, quantity: Any, amount: Any) -> BalanceFigures:
    """Take a previously applied outbound quantity/amount back out.

    Results are clamped at zero so reversing twice cannot create negative
    issues.
    """

    q = to_decimal(quantity)
    a = to_decimal(amount)
    outbound_quantity = _clamped(figures.outbound_quantity - q)
    outbound_amount = _clamped(figures.outbound_amount - a)
    ytd_quantity = _clamped(figures.ytd_outbound_quantity - q)
    ytd_amount = _clamped(figures.ytd_outbound_amount - a)
    updated = replace(
        figures,
        outbound_quantity=outbound_quantity,
        outbound_amount=outbound_amount,
        outbound_unit_price=safe_divide(outbound_amount, outbound_quantity),
        ytd_outbound_quantity=ytd_quantity,
        ytd_outbound_amount=ytd_amount,
        ytd_outbound_unit_price=safe_divide(ytd_amount, ytd_quantity),
    )
    return recompute_closing(updated)


@_precise
def reverse_inbound(figures: BalanceFigures, quantity: Any, amount: Any) -> BalanceFigures:
    q = to_decimal(quantity)
    a = to_decimal(amount)
    inbound_quantity = _clamped(figures.inbound_quantity - q)
    inbound_amount = _clamped(figures.inbound_amount - a)
    ytd_quantity = _clamped(figures.ytd_inbound_quantity - q)
    ytd_amount = _clamped(figures.ytd_inbound_amount - a)
    updated = replace(
        figures,
        inbound_quantity=inbound_quantity,
        inbound_amount=inbound_amount,
        inbound_unit_price=safe_divide(inbound_amount, inbound_quantity),
        ytd_inbound_quantity=ytd_quantity,
        ytd_inbound_amount=ytd_amount,
        ytd_inbound_unit_price=safe_divide(ytd_amount, ytd_quantity),
    )
    return recompute_closing(updated)


def reverse_movement(
    figures: BalanceFigures, kind: MovementKind, quantity: Any, amount: Any
) -> BalanceFigures:
    kind = MovementKind(kind)
    q = to_decimal(quantity)
    a = to_decimal(amount)
    if kind is MovementKind.INBOUND:
        return reverse_inbound(figures, q, a)
    if kind is MovementKind.OUTBOUND:
        return reverse_outbound(figures, q, a)
    if q > 0:
        return reverse_inbound(figures, q, a)
    if q < 0:
        return reverse_outbound(figures, abs(q), abs(a))
    return recompute_closing(figures)


@_precise
def carry_forward(previous: BalanceFigures | None, *, same_year: bool) -> BalanceFigures:
    """Opening figures for a new period built from the prior period's closing.

    Year-to-date figures only survive inside the same calendar year.
    """

    if previous is None:
        return BalanceFigures()
    opened = BalanceFigures(
        opening_quantity=previous.closing_quantity,
        opening_unit_price=previous.closing_unit_price,
        opening_amount=previous.closing_amount,
    )
    if same_year:
        opened = replace(
            opened,
            ytd_inbound_quantity=previous.ytd_inbound_quantity,
            ytd_inbound_unit_price=previous.ytd_inbound_unit_price,
            ytd_inbound_amount=previous.ytd_inbound_amount,
            ytd_outbound_quantity=previous.ytd_outbound_quantity,
            ytd_outbound_unit_price=previous.ytd_outbound_unit_price,
            ytd_outbound_amount=previous.ytd_outbound_amount,
        )
    return recompute_closing(opened)


@_precise
def replace_inbound(
    figures: BalanceFigures, quantity: Any, unit_price: Any, amount: Any = None
) -> BalanceFigures:
    """Overwrite this month's inbound figures (year-to-date is left alone)."""

    q = to_decimal(quantity)
    p = to_decimal(unit_price)
    return recompute_closing(
        replace(
            figures,
            inbound_quantity=q,
            inbound_unit_price=p,
            inbound_amount=amount_or_product(amount, q, p),
        )
    )


@_precise
def replace_outbound(
    figures: BalanceFigures, quantity: Any, unit_price: Any, amount: Any = None
) -> BalanceFigures:
    q = to_decimal(quantity)
    p = to_decimal(unit_price)
    return recompute_closing(
        replace(
            figures,
            outbound_quantity=q,
            outbound_unit_price=p,
            outbound_amount=amount_or_product(amount, q, p),
        )
    )


@_precise
def replace_opening(figures: BalanceFigures, quantity: Any, unit_price: Any) -> BalanceFigures:
    q = to_decimal(quantity)
    p = to_decimal(unit_price)
    return recompute_closing(
        replace(figures, opening_quantity=q, opening_unit_price=p, opening_amount=q * p)
    )


@_precise
def replace_suggested_purchase(
    figures: BalanceFigures, quantity: Any, unit_price: Any, amount: Any = None
) -> BalanceFigures:
    """Suggested purchase figures are advisory and never feed the closing."""

    q = to_decimal(quantity)
    p = to_decimal(unit_price)
    return replace(
        figures,
        suggested_purchase_quantity=q,
        suggested_purchase_unit_price=p,
        suggested_purchase_amount=amount_or_product(amount, q, p),
    )


@_precise
def with_year_to_date(
    figures: BalanceFigures, earlier_months: Iterable[BalanceFigures]
) -> BalanceFigures:
    """Recompute year-to-date totals from the year's earlier months plus this one."""

    in_quantity = figures.inbound_quantity
    in_amount = figures.inbound_amount
    out_quantity = figures.outbound_quantity
    out_amount = figures.outbound_amount
    for month in earlier_months:
        in_quantity += month.inbound_quantity
        in_amount += month.inbound_amount
        out_quantity += month.outbound_quantity
        out_amount += month.outbound_amount
    return replace(
        figures,
        ytd_inbound_quantity=in_quantity,
        ytd_inbound_amount=in_amount,
        ytd_inbound_unit_price=safe_divide(in_amount, in_quantity),
        ytd_outbound_quantity=out_quantity,
        ytd_outbound_amount=out_amount,
        ytd_outbound_unit_price=safe_divide(out_amount, out_quantity),
    )


__all__ = [
    "DECIMAL_CONTEXT",
    "ZERO",
    "FIGURE_FIELDS",
    "MovementKind",
    "BalanceFigures",
    "to_decimal",
    "safe_divide",
    "amount_or_product",
    "next_period",
    "recompute_closing",
    "apply_inbound",
    "apply_outbound",
    "apply_adjustment",
    "apply_movement",
    "reverse_outbound",
    "reverse_inbound",
    "reverse_movement",
    "carry_forward",
    "replace_inbound",
    "replace_outbound",
    "replace_opening",
    "replace_suggested_purchase",
    "with_year_to_date",
]
