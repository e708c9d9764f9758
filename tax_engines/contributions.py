"""
Contribution Engine - ZUS social-security and health contributions.

Pure functions with no I/O.  Rates and bases come from the RateCatalog
(``ZUS``/``FP``/``FGSP`` rate entries and ``ZusBase`` rows), so a rate
change is a catalog change, never a code change.

Employee split:
    pension     9.76% employee + 9.76% employer   (capped base)
    disability  1.5%  employee + 6.5%  employer   (capped base)
    sickness    2.45% employee                    (uncapped)
    accident    employer, rate per employer       (uncapped)
    labor fund  2.45% employer; FGSP 0.1% employer
    health      9% employee on income net of the employee social part

The annual ceiling caps only the pension/disability base.  Once
year-to-date base plus this month exceeds it, the base is cut to what
remains (possibly zero) and a warning is returned.

Self-employed contributors pay both sides on a scheme-selected base:
    ULGA_NA_START   health only
    PREFERENTIAL    preferential base (custom base floored at it)
    MALY_ZUS_PLUS   prior-year income / days x 30 x 0.5, clamped to
                    [0.3 x minimum wage, standard base]
    STANDARD        standard base (custom base floored at it)

Usage:
    calculator = ContributionCalculator(catalog)
    result = calculator.calculate_employee(EmployeeContributionInput(
        year=2024, month=5, gross_salary=Decimal("8000"),
    ))
    print(result.total_employee)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig, ZusBase
from tax_kernel.domain.decimal_engine import (
    ZERO,
    divide,
    multiply,
    percent_to_fraction,
    round_money,
    to_decimal,
    total,
)
from tax_kernel.domain.periods import TaxPeriod, payment_due_date, validate_month, validate_year
from tax_kernel.exceptions import InvalidInputError, MissingFieldError, UnknownRegimeError
from tax_kernel.logging_config import get_logger

logger = get_logger("engines.contributions")

DAYS_PER_MONTH = Decimal("30")


class ContributionKind(str, Enum):
    PENSION = "PENSION"
    DISABILITY = "DISABILITY"
    SICKNESS = "SICKNESS"
    ACCIDENT = "ACCIDENT"
    HEALTH = "HEALTH"
    LABOR_FUND = "LABOR_FUND"
    FGSP = "FGSP"


class ContributorType(str, Enum):
    EMPLOYMENT_CONTRACT = "EMPLOYMENT_CONTRACT"
    CIVIL_CONTRACT = "CIVIL_CONTRACT"


class SelfEmployedScheme(str, Enum):
    ULGA_NA_START = "ULGA_NA_START"
    PREFERENTIAL = "PREFERENTIAL"
    MALY_ZUS_PLUS = "MALY_ZUS_PLUS"
    STANDARD = "STANDARD"


class HealthDeductionMethod(str, Enum):
    """PIT regime that decides how much health contribution reduces tax."""

    PROGRESSIVE = "PROGRESSIVE"
    FLAT = "FLAT"
    LUMP_SUM = "LUMP_SUM"


def _parse_enum(enum_cls, value, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        raise UnknownRegimeError(value, field=field_name) from e


@dataclass(frozen=True)
class ContributionLine:
    """One contribution with its base, rates and rounded amounts per side."""

    kind: ContributionKind
    base: Decimal
    employee_rate: Decimal
    employer_rate: Decimal
    employee_amount: Decimal
    employer_amount: Decimal

    @property
    def total(self) -> Decimal:
        return self.employee_amount + self.employer_amount


def _line(
    kind: ContributionKind,
    base: Decimal,
    employee_rate: Decimal = ZERO,
    employer_rate: Decimal = ZERO,
) -> ContributionLine:
    return ContributionLine(
        kind=kind,
        base=round_money(base),
        employee_rate=employee_rate,
        employer_rate=employer_rate,
        employee_amount=round_money(multiply(base, percent_to_fraction(employee_rate))),
        employer_amount=round_money(multiply(base, percent_to_fraction(employer_rate))),
    )


def _cap_to_annual_limit(
    base: Decimal,
    ytd_base: Decimal,
    annual_limit: Decimal,
    warnings: list[str],
) -> tuple[Decimal, bool, Decimal | None]:
    """(capped base, limit reached, remaining under the limit)."""
    if ytd_base + base <= annual_limit:
        return base, False, None
    remaining = annual_limit - ytd_base
    if remaining <= ZERO:
        warnings.append("Annual pension/disability contribution limit reached")
        return ZERO, True, ZERO
    warnings.append(f"Pension/disability base limited to {round_money(remaining)} PLN")
    return remaining, True, remaining


# ---------------------------------------------------------------------------
# Employee
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmployeeContributionInput:
    year: int
    month: int
    gross_salary: Decimal
    bonus: Decimal = ZERO
    overtime: Decimal = ZERO
    other_income: Decimal = ZERO
    ytd_pension_base: Decimal = ZERO
    accident_rate: Decimal | None = None
    contributor_type: ContributorType = ContributorType.EMPLOYMENT_CONTRACT
    is_student_under_26: bool = False

    def __post_init__(self) -> None:
        validate_year(self.year, "year")
        validate_month(self.month, "month")
        for name in ("gross_salary", "bonus", "overtime", "other_income", "ytd_pension_base"):
            object.__setattr__(
                self, name, to_decimal(getattr(self, name), name, allow_negative=False)
            )
        if self.accident_rate is not None:
            object.__setattr__(
                self,
                "accident_rate",
                to_decimal(self.accident_rate, "accident_rate", allow_negative=False),
            )
        object.__setattr__(
            self,
            "contributor_type",
            _parse_enum(ContributorType, self.contributor_type, "contributor_type"),
        )

    @property
    def total_income(self) -> Decimal:
        return self.gross_salary + self.bonus + self.overtime + self.other_income


@dataclass(frozen=True)
class EmployeeContributionResult:
    year: int
    month: int
    gross_salary: Decimal
    total_income: Decimal
    pension_base: Decimal
    sickness_base: Decimal
    accident_base: Decimal
    health_base: Decimal
    lines: tuple[ContributionLine, ...]
    total_employee: Decimal
    total_employer: Decimal
    health_deductible: Decimal
    net_income: Decimal
    annual_limit_reached: bool
    annual_limit_remaining: Decimal | None
    due_date: date
    warnings: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.total_employee + self.total_employer

    def line(self, kind: ContributionKind) -> ContributionLine:
        for line in self.lines:
            if line.kind == kind:
                return line
        raise KeyError(kind)


# ---------------------------------------------------------------------------
# Self-employed
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SelfEmployedContributionInput:
    year: int
    month: int
    scheme: SelfEmployedScheme = SelfEmployedScheme.STANDARD
    include_sickness: bool = False
    custom_pension_base: Decimal | None = None
    custom_health_base: Decimal | None = None
    previous_year_income: Decimal | None = None
    previous_year_days: int | None = None
    ytd_pension_base: Decimal = ZERO
    health_deduction_method: HealthDeductionMethod = HealthDeductionMethod.PROGRESSIVE

    def __post_init__(self) -> None:
        validate_year(self.year, "year")
        validate_month(self.month, "month")
        object.__setattr__(self, "scheme", _parse_enum(SelfEmployedScheme, self.scheme, "scheme"))
        object.__setattr__(
            self,
            "health_deduction_method",
            _parse_enum(HealthDeductionMethod, self.health_deduction_method, "health_deduction_method"),
        )
        object.__setattr__(
            self,
            "ytd_pension_base",
            to_decimal(self.ytd_pension_base, "ytd_pension_base", allow_negative=False),
        )
        for name in ("custom_pension_base", "custom_health_base", "previous_year_income"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_decimal(value, name, allow_negative=False))
        if self.previous_year_days is not None and not 1 <= self.previous_year_days <= 366:
            raise InvalidInputError(
                f"previous_year_days must be between 1 and 366, got {self.previous_year_days}",
                field="previous_year_days",
            )


@dataclass(frozen=True)
class SelfEmployedContributionResult:
    year: int
    month: int
    scheme: SelfEmployedScheme
    pension_base: Decimal
    sickness_base: Decimal
    health_base: Decimal
    calculated_base: Decimal | None
    minimum_base: Decimal
    maximum_base: Decimal
    lines: tuple[ContributionLine, ...]
    total: Decimal
    health_deductible_from_tax: Decimal
    annual_limit_reached: bool
    due_date: date
    warnings: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def social_total(self) -> Decimal:
        """Everything except health; deductible from income under PIT."""
        return total(l.total for l in self.lines if l.kind != ContributionKind.HEALTH)

    def line(self, kind: ContributionKind) -> ContributionLine:
        for line in self.lines:
            if line.kind == kind:
                return line
        raise KeyError(kind)


@dataclass(frozen=True)
class _ZusRates:
    pension_ee: Decimal
    pension_er: Decimal
    disability_ee: Decimal
    disability_er: Decimal
    sickness: Decimal
    accident: Decimal
    health: Decimal
    health_deductible: Decimal
    labor_fund: Decimal
    fgsp: Decimal


class ContributionCalculator:
    """
    Employee and self-employed ZUS contributions for one month.

    Contract:
        Every published amount is rounded once to grosze; totals are sums
        of the rounded lines so they always match what is paid.
    Non-goals:
        - Does NOT track year-to-date bases; callers supply them.
    """

    def __init__(self, catalog: RateCatalog, config: TaxEngineConfig | None = None):
        self._catalog = catalog
        self._config = config or TaxEngineConfig()

    def _rates(self, on_date: date) -> _ZusRates:
        c = self._catalog
        return _ZusRates(
            pension_ee=c.rate("ZUS", "EMERY_EE", on_date).value,
            pension_er=c.rate("ZUS", "EMERY_ER", on_date).value,
            disability_ee=c.rate("ZUS", "RENT_EE", on_date).value,
            disability_er=c.rate("ZUS", "RENT_ER", on_date).value,
            sickness=c.rate("ZUS", "CHOR_EE", on_date).value,
            accident=c.rate("ZUS", "WYPAD", on_date).value,
            health=c.rate("ZUS", "ZDROW", on_date).value,
            health_deductible=c.rate("ZUS", "ZDROW_ODL", on_date).value,
            labor_fund=c.rate("FP", "FP", on_date).value,
            fgsp=c.rate("FGSP", "FGSP", on_date).value,
        )

    # -------------------------------------------------------------------
    # Employee
    # -------------------------------------------------------------------

    def calculate_employee(self, inp: EmployeeContributionInput) -> EmployeeContributionResult:
        """
        Preconditions:
            - ``ytd_pension_base`` is the pension base already charged this
              year, excluding this month.
        Raises:
            RateNotFoundError / ZusBaseNotFoundError: catalog has no entry.
        """
        t0 = time.monotonic()
        period = TaxPeriod(inp.year, inp.month)
        income = inp.total_income
        logger.info("employee_contribution_calculation_started", extra={
            "period": period.label,
            "total_income": str(income),
            "ytd_pension_base": str(inp.ytd_pension_base),
            "contributor_type": inp.contributor_type.value,
        })

        zus_base = self._catalog.zus_base_for(inp.year, inp.month)
        warnings: list[str] = []
        notes: list[str] = []
        pd_base, reached, remaining = _cap_to_annual_limit(
            income, inp.ytd_pension_base, zus_base.annual_limit, warnings
        )
        if reached:
            logger.warning("annual_contribution_limit_applied", extra={
                "period": period.label,
                "ytd_pension_base": str(inp.ytd_pension_base),
                "annual_limit": str(zus_base.annual_limit),
                "capped_base": str(pd_base),
            })

        if inp.is_student_under_26 and inp.contributor_type == ContributorType.CIVIL_CONTRACT:
            notes.append("Student under 26 on a civil contract - no ZUS contributions")
            lines = tuple(_line(kind, ZERO) for kind in ContributionKind)
            health_base = ZERO
            health_deductible = ZERO
        else:
            rates = self._rates(period.as_of)
            accident_rate = (
                inp.accident_rate if inp.accident_rate is not None else rates.accident
            )
            health_base = (
                income
                - multiply(pd_base, percent_to_fraction(rates.pension_ee))
                - multiply(pd_base, percent_to_fraction(rates.disability_ee))
                - multiply(income, percent_to_fraction(rates.sickness))
            )
            lines = (
                _line(ContributionKind.PENSION, pd_base, rates.pension_ee, rates.pension_er),
                _line(ContributionKind.DISABILITY, pd_base, rates.disability_ee, rates.disability_er),
                _line(ContributionKind.SICKNESS, income, employee_rate=rates.sickness),
                _line(ContributionKind.ACCIDENT, income, employer_rate=accident_rate),
                _line(ContributionKind.HEALTH, health_base, employee_rate=rates.health),
                _line(ContributionKind.LABOR_FUND, income, employer_rate=rates.labor_fund),
                _line(ContributionKind.FGSP, income, employer_rate=rates.fgsp),
            )
            health_deductible = round_money(
                multiply(health_base, percent_to_fraction(rates.health_deductible))
            )

        total_employee = total(l.employee_amount for l in lines)
        total_employer = total(l.employer_amount for l in lines)

        result = EmployeeContributionResult(
            year=inp.year,
            month=inp.month,
            gross_salary=inp.gross_salary,
            total_income=income,
            pension_base=round_money(pd_base),
            sickness_base=round_money(income),
            accident_base=round_money(income),
            health_base=round_money(health_base),
            lines=lines,
            total_employee=total_employee,
            total_employer=total_employer,
            health_deductible=health_deductible,
            net_income=income - total_employee,
            annual_limit_reached=reached,
            annual_limit_remaining=round_money(remaining) if remaining is not None else None,
            due_date=payment_due_date(inp.year, inp.month),
            warnings=tuple(warnings),
            notes=tuple(notes),
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("employee_contribution_calculation_completed", extra={
            "period": period.label,
            "total_employee": str(total_employee),
            "total_employer": str(total_employer),
            "annual_limit_reached": reached,
            "duration_ms": duration_ms,
        })
        return result

    # -------------------------------------------------------------------
    # Self-employed
    # -------------------------------------------------------------------

    def _scheme_base(
        self,
        inp: SelfEmployedContributionInput,
        zus_base: ZusBase,
        notes: list[str],
    ) -> tuple[Decimal, Decimal, Decimal, Decimal | None]:
        """(pension base, minimum, maximum, calculated) for the scheme."""
        scheme = inp.scheme
        if scheme == SelfEmployedScheme.ULGA_NA_START:
            notes.append("Startup relief - health contribution only")
            return ZERO, ZERO, ZERO, None

        if scheme == SelfEmployedScheme.MALY_ZUS_PLUS:
            if inp.previous_year_income is None:
                raise MissingFieldError("previous_year_income", "MALY_ZUS_PLUS")
            if inp.previous_year_days is None:
                raise MissingFieldError("previous_year_days", "MALY_ZUS_PLUS")
            calculated = multiply(
                divide(inp.previous_year_income, Decimal(inp.previous_year_days)),
                DAYS_PER_MONTH,
                self._config.maly_zus_income_ratio,
            )
            minimum = multiply(zus_base.minimum_wage, self._config.maly_zus_min_ratio)
            maximum = zus_base.standard_base
            base = min(max(calculated, minimum), maximum)
            notes.append(f"Income-based base calculated: {round_money(calculated)} PLN")
            notes.append(f"Base after limits: {round_money(base)} PLN")
            return base, minimum, maximum, calculated

        if scheme == SelfEmployedScheme.PREFERENTIAL:
            minimum = zus_base.preferential_base
            notes.append("Preferential base for the first 24 months")
        else:
            minimum = zus_base.standard_base
            notes.append("Standard base (60% of projected average wage)")
        base = minimum
        if inp.custom_pension_base is not None:
            base = max(inp.custom_pension_base, minimum)
        return base, minimum, zus_base.annual_limit, None

    def calculate_self_employed(
        self, inp: SelfEmployedContributionInput
    ) -> SelfEmployedContributionResult:
        """
        Raises:
            MissingFieldError: MALY_ZUS_PLUS without prior-year income/days.
            RateNotFoundError / ZusBaseNotFoundError /
            StatutoryAmountNotFoundError: catalog has no entry.
        """
        t0 = time.monotonic()
        period = TaxPeriod(inp.year, inp.month)
        logger.info("self_employed_contribution_calculation_started", extra={
            "period": period.label,
            "scheme": inp.scheme.value,
            "include_sickness": inp.include_sickness,
        })

        zus_base = self._catalog.zus_base_for(inp.year, inp.month)
        rates = self._rates(period.as_of)
        warnings: list[str] = []
        notes: list[str] = []

        pension_base, minimum, maximum, calculated = self._scheme_base(inp, zus_base, notes)
        health_base = (
            inp.custom_health_base
            if inp.custom_health_base is not None
            else multiply(zus_base.minimum_wage, self._config.self_employed_health_base_ratio)
        )

        # The annual limit caps pension and disability only.
        declared_base = pension_base
        reached = False
        if pension_base > ZERO:
            pension_base, reached, _ = _cap_to_annual_limit(
                pension_base, inp.ytd_pension_base, zus_base.annual_limit, warnings
            )
        sickness_base = declared_base if inp.include_sickness else ZERO

        lines = (
            _line(ContributionKind.PENSION, pension_base, rates.pension_ee + rates.pension_er),
            _line(
                ContributionKind.DISABILITY,
                pension_base,
                rates.disability_ee + rates.disability_er,
            ),
            _line(ContributionKind.SICKNESS, sickness_base, rates.sickness),
            _line(ContributionKind.ACCIDENT, declared_base, self._config.default_accident_rate),
            _line(ContributionKind.HEALTH, health_base, rates.health),
            _line(ContributionKind.LABOR_FUND, declared_base, rates.labor_fund),
        )
        health_line = lines[4]

        method = inp.health_deduction_method
        if method == HealthDeductionMethod.FLAT:
            cap = self._catalog.statutory_amount("HEALTH_DEDUCTION_FLAT_CAP", period.as_of)
            health_deductible = round_money(min(
                multiply(health_base, percent_to_fraction(self._config.health_flat_deduction_percent)),
                cap,
            ))
        elif method == HealthDeductionMethod.LUMP_SUM:
            health_deductible = round_money(multiply(
                health_line.total,
                percent_to_fraction(self._config.health_lump_sum_deduction_percent),
            ))
        else:
            health_deductible = ZERO

        result = SelfEmployedContributionResult(
            year=inp.year,
            month=inp.month,
            scheme=inp.scheme,
            pension_base=round_money(pension_base),
            sickness_base=round_money(sickness_base),
            health_base=round_money(health_base),
            calculated_base=round_money(calculated) if calculated is not None else None,
            minimum_base=round_money(minimum),
            maximum_base=round_money(maximum),
            lines=lines,
            total=total(l.total for l in lines),
            health_deductible_from_tax=health_deductible,
            annual_limit_reached=reached,
            due_date=payment_due_date(inp.year, inp.month),
            warnings=tuple(warnings),
            notes=tuple(notes),
        )

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("self_employed_contribution_calculation_completed", extra={
            "period": period.label,
            "scheme": inp.scheme.value,
            "pension_base": str(result.pension_base),
            "total": str(result.total),
            "health_deductible_from_tax": str(health_deductible),
            "duration_ms": duration_ms,
        })
        return result
