"""
Advance Payment Engine - monthly/quarterly income tax advances.

The advance for a period is the tax on cumulative year-to-date figures,
less the advances already due for earlier periods of the same year,
floored at zero.  Due on the 20th of the month after the month (monthly)
or after the quarter (quarterly).

Usage:
    calculator = AdvancePaymentCalculator(catalog)
    advance = calculator.calculate(AdvancePaymentInput(
        method="CIT_STANDARD",
        tax_year=2024,
        period_type="MONTHLY",
        period_number=3,
        cumulative_revenue=Decimal("300000"),
        cumulative_costs=Decimal("200000"),
        previous_advances=Decimal("12000"),
    ))
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from tax_config.catalog import RateCatalog
from tax_engines.income_tax import CalculationMethod, progressive_tax
from tax_kernel.domain.decimal_engine import (
    ZERO,
    clamp_non_negative,
    multiply,
    round_money,
    to_decimal,
)
from tax_kernel.domain.periods import (
    last_month_of_quarter,
    payment_due_date,
    tax_year_as_of,
    validate_month,
    validate_quarter,
    validate_year,
)
from tax_kernel.exceptions import MissingFieldError, UnknownRegimeError
from tax_kernel.logging_config import get_logger

logger = get_logger("engines.advance_payments")


class PeriodType(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"


_FLAT_RATE_CODES: dict[CalculationMethod, tuple[str, str]] = {
    CalculationMethod.CIT_STANDARD: ("CIT", "STANDARD"),
    CalculationMethod.CIT_SMALL: ("CIT", "REDUCED"),
    CalculationMethod.CIT_ESTONIAN: ("CIT", "ESTONIAN"),
    CalculationMethod.PIT_FLAT: ("PIT", "FLAT"),
}


@dataclass(frozen=True)
class AdvancePaymentInput:
    method: CalculationMethod
    tax_year: int
    period_type: PeriodType
    period_number: int
    cumulative_revenue: Decimal
    cumulative_costs: Decimal
    previous_advances: Decimal = ZERO
    activity_code: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", CalculationMethod.parse(self.method))
        try:
            object.__setattr__(self, "period_type", PeriodType(self.period_type))
        except ValueError as e:
            raise UnknownRegimeError(self.period_type, field="period_type") from e
        validate_year(self.tax_year, "tax_year")
        if self.period_type == PeriodType.MONTHLY:
            validate_month(self.period_number, "period_number")
        else:
            validate_quarter(self.period_number, "period_number")
        for name in ("cumulative_revenue", "cumulative_costs", "previous_advances"):
            object.__setattr__(
                self, name, to_decimal(getattr(self, name), name, allow_negative=False)
            )
        if self.method == CalculationMethod.PIT_LUMP_SUM and not self.activity_code:
            raise MissingFieldError("activity_code", "lump-sum advances")


@dataclass(frozen=True)
class AdvancePaymentResult:
    method: CalculationMethod
    tax_year: int
    period_type: PeriodType
    period_number: int
    cumulative_income: Decimal
    cumulative_tax: Decimal
    previous_advances: Decimal
    advance_due: Decimal
    due_date: date


def advance_due_date(tax_year: int, period_type: PeriodType, period_number: int) -> date:
    """20th of the month following the month, or the quarter's last month."""
    if period_type == PeriodType.QUARTERLY:
        return payment_due_date(tax_year, last_month_of_quarter(period_number))
    return payment_due_date(tax_year, period_number)


class AdvancePaymentCalculator:
    """
    Compute the advance due for one period.

    Pure functions - no I/O.  Flat regimes use the catalog rate;
    PIT_PROGRESSIVE applies the annual scale to cumulative income;
    PIT_LUMP_SUM applies the activity rate to cumulative revenue.
    """

    def __init__(self, catalog: RateCatalog):
        self._catalog = catalog

    def calculate(self, inp: AdvancePaymentInput) -> AdvancePaymentResult:
        t0 = time.monotonic()
        logger.info("advance_payment_calculation_started", extra={
            "method": inp.method.value,
            "tax_year": inp.tax_year,
            "period_type": inp.period_type.value,
            "period_number": inp.period_number,
            "cumulative_revenue": str(inp.cumulative_revenue),
            "cumulative_costs": str(inp.cumulative_costs),
        })

        as_of = tax_year_as_of(inp.tax_year)
        cumulative_income = clamp_non_negative(inp.cumulative_revenue - inp.cumulative_costs)

        if inp.method == CalculationMethod.PIT_LUMP_SUM:
            rate = self._catalog.lump_sum_rate(inp.activity_code, as_of)
            exact = multiply(inp.cumulative_revenue, rate.fraction)
        elif inp.method == CalculationMethod.PIT_PROGRESSIVE:
            allowance = self._catalog.statutory_amount("TAX_FREE_AMOUNT", as_of)
            table = self._catalog.thresholds("PIT", as_of)
            exact, _ = progressive_tax(clamp_non_negative(cumulative_income - allowance), table)
        else:
            tax_type, code = _FLAT_RATE_CODES[inp.method]
            exact = multiply(cumulative_income, self._catalog.rate_fraction(tax_type, code, as_of))

        cumulative_tax = round_money(exact)
        advance_due = clamp_non_negative(cumulative_tax - inp.previous_advances)

        result = AdvancePaymentResult(
            method=inp.method,
            tax_year=inp.tax_year,
            period_type=inp.period_type,
            period_number=inp.period_number,
            cumulative_income=cumulative_income,
            cumulative_tax=cumulative_tax,
            previous_advances=inp.previous_advances,
            advance_due=advance_due,
            due_date=advance_due_date(inp.tax_year, inp.period_type, inp.period_number),
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("advance_payment_calculation_completed", extra={
            "cumulative_tax": str(cumulative_tax),
            "advance_due": str(advance_due),
            "due_date": result.due_date.isoformat(),
            "duration_ms": duration_ms,
        })
        return result
