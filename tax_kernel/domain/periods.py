"""
Periods -- tax years, monthly and quarterly periods, statutory due dates.

Responsibility:
    Validates period numbers and derives the calendar facts the calculators
    need: the as-of date used for catalog lookups, period ordering for the
    VAT carry-forward ledger, and the 20th-of-the-following-month payment
    deadline shared by advance payments and contributions.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Months are 1-12, quarters 1-4, years 2000-2100.
    - TaxPeriod ordering is chronological (year, then month).

Failure modes:
    - InvalidPeriodError for any out-of-range component.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from tax_kernel.exceptions import InvalidPeriodError

MIN_YEAR = 2000
MAX_YEAR = 2100

# Statutory payment day for PIT/CIT advances, VAT and ZUS.
PAYMENT_DAY = 20


def validate_year(year: int, field: str = "year") -> int:
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidPeriodError(year, field, "must be an integer")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidPeriodError(year, field, f"must be between {MIN_YEAR} and {MAX_YEAR}")
    return year


def validate_month(month: int, field: str = "month") -> int:
    if isinstance(month, bool) or not isinstance(month, int):
        raise InvalidPeriodError(month, field, "must be an integer")
    if not 1 <= month <= 12:
        raise InvalidPeriodError(month, field, "must be between 1 and 12")
    return month


def validate_quarter(quarter: int, field: str = "quarter") -> int:
    if isinstance(quarter, bool) or not isinstance(quarter, int):
        raise InvalidPeriodError(quarter, field, "must be an integer")
    if not 1 <= quarter <= 4:
        raise InvalidPeriodError(quarter, field, "must be between 1 and 4")
    return quarter


def quarter_of(month: int) -> int:
    """Quarter (1-4) containing ``month``."""
    return (validate_month(month) - 1) // 3 + 1


def last_month_of_quarter(quarter: int) -> int:
    return validate_quarter(quarter) * 3


def tax_year_as_of(tax_year: int) -> date:
    """Catalog lookup date for an annual computation: 31 December of the year."""
    return date(validate_year(tax_year, "tax_year"), 12, 31)


def payment_due_date(year: int, month: int) -> date:
    """The 20th of the month following (year, month)."""
    validate_year(year)
    validate_month(month)
    if month == 12:
        return date(year + 1, 1, PAYMENT_DAY)
    return date(year, month + 1, PAYMENT_DAY)


@dataclass(frozen=True, order=True, slots=True)
class TaxPeriod:
    """
    A monthly settlement period.

    Contract:
        Orders chronologically; ``previous()``/``next()`` roll over year
        boundaries.
    """

    year: int
    month: int

    def __post_init__(self) -> None:
        validate_year(self.year)
        validate_month(self.month)

    @property
    def quarter(self) -> int:
        return quarter_of(self.month)

    @property
    def label(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @property
    def as_of(self) -> date:
        """First day of the period; VAT rates are looked up on this date."""
        return date(self.year, self.month, 1)

    def previous(self) -> TaxPeriod:
        if self.month == 1:
            return TaxPeriod(self.year - 1, 12)
        return TaxPeriod(self.year, self.month - 1)

    def next(self) -> TaxPeriod:
        if self.month == 12:
            return TaxPeriod(self.year + 1, 1)
        return TaxPeriod(self.year, self.month + 1)

    def payment_due_date(self) -> date:
        return payment_due_date(self.year, self.month)

    def __str__(self) -> str:
        return self.label
