"""
Decimal Engine -- exact arithmetic and the single rounding policy.

Responsibility:
    Converts caller-supplied amounts into ``Decimal`` and owns every rounding
    operation performed on public results.  Calculators multiply and add
    unrounded decimals and call ``round_money`` / ``round_whole`` exactly once
    per published figure.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by values,
    the catalog, and every calculator.

Invariants enforced:
    - No binary floats: ``to_decimal`` rejects ``float`` input outright.
    - Round-half-up is the only rounding mode used for published amounts.
    - Rates are stored as percentages in the catalog and converted to
      fractions with ``percent_to_fraction`` without any rounding.
    - The arithmetic context carries 50 significant digits, so chained
      multiplication of rates never loses precision before the final round.

Failure modes:
    - InvalidAmountError for floats, NaN, infinities, unparseable strings,
      and negative values where ``allow_negative=False``.

Audit relevance:
    A published figure must be reproducible from stored inputs alone.  A
    single rounding function with a fixed mode and scale makes every stored
    result re-derivable.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext
from typing import Iterable

from tax_kernel.exceptions import InvalidAmountError

# Scale for PLN amounts (grosze).
MONEY_SCALE = 2

# Scale for final income-tax totals (full PLN).
WHOLE_SCALE = 0

# Scale for published percentages (effective rate).
PERCENT_SCALE = 2

DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")

_CONTEXT = Context(prec=50, rounding=ROUND_HALF_UP)


def to_decimal(
    value: Decimal | str | int,
    field: str | None = None,
    *,
    allow_negative: bool = True,
) -> Decimal:
    """
    Convert a caller-supplied amount to ``Decimal``.

    Preconditions:
        - ``value`` is a ``Decimal``, ``int`` or numeric ``str``.  Floats are
          refused because their binary representation is already inexact.
    Postconditions:
        - Returns a finite ``Decimal``; never rounds.
    Raises:
        InvalidAmountError: float input, non-numeric strings, NaN/Infinity,
            or a negative value when ``allow_negative`` is False.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(value, field, "binary floats are not accepted")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise InvalidAmountError(value, field, "not a number") from e
    else:
        raise InvalidAmountError(value, field, f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise InvalidAmountError(value, field, "must be finite")
    if not allow_negative and result < ZERO:
        raise InvalidAmountError(value, field, "must not be negative")
    return result


def round_to_scale(
    value: Decimal,
    scale: int,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round ``value`` to ``scale`` decimal places.

    This is the only function that quantizes published amounts; the helpers
    below fix the scale for the common cases.
    """
    exponent = Decimal(1).scaleb(-scale)
    with localcontext(_CONTEXT):
        return value.quantize(exponent, rounding=rounding)


def round_money(value: Decimal) -> Decimal:
    """Round to grosze (2 dp, half-up)."""
    return round_to_scale(value, MONEY_SCALE)


def round_whole(value: Decimal) -> Decimal:
    """Round to full PLN (0 dp, half-up)."""
    return round_to_scale(value, WHOLE_SCALE)


def percent_to_fraction(percent: Decimal) -> Decimal:
    """23 -> 0.23; exact, never rounded."""
    with localcontext(_CONTEXT):
        return percent / HUNDRED


def fraction_to_percent(fraction: Decimal) -> Decimal:
    """0.19 -> 19; exact, never rounded."""
    with localcontext(_CONTEXT):
        return fraction * HUNDRED


def multiply(*factors: Decimal) -> Decimal:
    """Exact product under the engine context."""
    with localcontext(_CONTEXT):
        result = Decimal(1)
        for factor in factors:
            result *= factor
        return result


def divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Quotient under the engine context (50 significant digits)."""
    with localcontext(_CONTEXT):
        return numerator / denominator


def effective_rate(tax: Decimal, base: Decimal) -> Decimal:
    """tax / base x 100 at 2 dp; zero when the base is not positive."""
    if base <= ZERO:
        return round_to_scale(ZERO, PERCENT_SCALE)
    return round_to_scale(fraction_to_percent(divide(tax, base)), PERCENT_SCALE)


def clamp_non_negative(value: Decimal) -> Decimal:
    """max(value, 0)."""
    return value if value > ZERO else ZERO


def total(values: Iterable[Decimal]) -> Decimal:
    """Exact sum; empty input sums to zero."""
    with localcontext(_CONTEXT):
        return sum(values, ZERO)
