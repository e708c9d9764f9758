"""
Income Tax Engine - CIT and PIT liability for a tax year.

Pure computation over (input, catalog snapshot, available-loss snapshot).
No ledger access: the caller reads the available loss balance and passes it
in, and applies the resulting ``loss_applied`` to the ledger afterwards.

Regimes (selected explicitly by ``CalculationMethod``, never inferred):
    CIT_STANDARD      19% of income after loss offset
    CIT_SMALL         9% reduced rate for small taxpayers
    CIT_ESTONIAN      0% base rate (tax deferred to distribution)
    PIT_PROGRESSIVE   12% / 32% scale above the tax-free allowance
    PIT_FLAT          19% minus capped health-contribution deduction
    PIT_LUMP_SUM      activity rate applied to revenue, no loss offset

Usage:
    from tax_config import load_default_catalog
    from tax_engines.income_tax import IncomeTaxCalculator, IncomeTaxInput

    calculator = IncomeTaxCalculator(load_default_catalog())
    result = calculator.calculate(IncomeTaxInput(
        method="CIT_STANDARD",
        tax_year=2024,
        revenue=Decimal("500000"),
        costs=Decimal("300000"),
    ))
    print(result.tax_due)  # 38000.00
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Sequence

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig, Threshold
from tax_kernel.domain.decimal_engine import (
    MONEY_SCALE,
    ZERO,
    clamp_non_negative,
    divide,
    effective_rate,
    multiply,
    round_money,
    round_to_scale,
    round_whole,
    to_decimal,
    total,
)
from tax_kernel.domain.periods import tax_year_as_of, validate_year
from tax_kernel.exceptions import InvalidAmountError, MissingFieldError, UnknownRegimeError
from tax_kernel.logging_config import get_logger

logger = get_logger("engines.income_tax")

TWO = Decimal("2")


class TaxType(str, Enum):
    """Income tax kind."""

    CIT = "CIT"
    PIT = "PIT"


class CalculationMethod(str, Enum):
    """Regime selector."""

    CIT_STANDARD = "CIT_STANDARD"
    CIT_SMALL = "CIT_SMALL"
    CIT_ESTONIAN = "CIT_ESTONIAN"
    PIT_PROGRESSIVE = "PIT_PROGRESSIVE"
    PIT_FLAT = "PIT_FLAT"
    PIT_LUMP_SUM = "PIT_LUMP_SUM"

    @property
    def tax_type(self) -> TaxType:
        return TaxType.CIT if self.value.startswith("CIT") else TaxType.PIT

    @classmethod
    def parse(cls, value: CalculationMethod | str) -> CalculationMethod:
        """
        Raises:
            UnknownRegimeError: ``value`` is not a known method code.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            logger.warning("unknown_regime", extra={"regime": str(value)})
            raise UnknownRegimeError(value, field="method") from e


# Catalog rate code per flat-rate regime.
_RATE_CODES: dict[CalculationMethod, tuple[str, str]] = {
    CalculationMethod.CIT_STANDARD: ("CIT", "STANDARD"),
    CalculationMethod.CIT_SMALL: ("CIT", "REDUCED"),
    CalculationMethod.CIT_ESTONIAN: ("CIT", "ESTONIAN"),
    CalculationMethod.PIT_FLAT: ("PIT", "FLAT"),
}


@dataclass(frozen=True)
class IncomeTaxInput:
    """
    Period inputs for one income tax computation.

    ``available_loss`` is the ledger balance snapshot the caller read for
    (client, tax type, tax year); it is only used when
    ``apply_loss_carry_forward`` is set.
    """

    method: CalculationMethod
    tax_year: int
    revenue: Decimal
    costs: Decimal
    non_deductible_costs: Decimal = ZERO
    tax_exempt_revenue: Decimal = ZERO
    apply_loss_carry_forward: bool = False
    available_loss: Decimal = ZERO
    social_contributions: Decimal = ZERO
    health_contributions: Decimal = ZERO
    joint_filing: bool = False
    spouse_income: Decimal | None = None
    child_count: int = 0
    activity_code: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", CalculationMethod.parse(self.method))
        validate_year(self.tax_year, "tax_year")
        for name in (
            "revenue",
            "costs",
            "non_deductible_costs",
            "tax_exempt_revenue",
            "available_loss",
            "social_contributions",
            "health_contributions",
        ):
            object.__setattr__(
                self, name, to_decimal(getattr(self, name), name, allow_negative=False)
            )
        if self.spouse_income is not None:
            object.__setattr__(
                self,
                "spouse_income",
                to_decimal(self.spouse_income, "spouse_income", allow_negative=False),
            )
        if self.non_deductible_costs > self.costs:
            raise InvalidAmountError(
                self.non_deductible_costs, "non_deductible_costs", "exceeds costs"
            )
        if self.tax_exempt_revenue > self.revenue:
            raise InvalidAmountError(
                self.tax_exempt_revenue, "tax_exempt_revenue", "exceeds revenue"
            )
        if isinstance(self.child_count, bool) or not isinstance(self.child_count, int) or self.child_count < 0:
            raise InvalidAmountError(self.child_count, "child_count", "must be a non-negative integer")
        if self.method == CalculationMethod.PIT_LUMP_SUM and not self.activity_code:
            raise MissingFieldError("activity_code", "lump-sum taxation")

    @property
    def tax_type(self) -> TaxType:
        return self.method.tax_type


@dataclass(frozen=True)
class BracketLine:
    """The slice of the base taxed within one bracket."""

    lower_bound: Decimal
    upper_bound: Decimal | None
    rate: Decimal  # percentage
    taxable_amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class IncomeTaxResult:
    """
    Structured breakdown sufficient to reproduce the computation.

    Amounts are rounded to grosze except ``tax_due`` for PIT, which is
    rounded to full PLN.
    """

    tax_type: TaxType
    method: CalculationMethod
    tax_year: int
    revenue: Decimal
    taxable_revenue: Decimal
    deductible_costs: Decimal
    income: Decimal
    loss: Decimal
    social_contributions_deducted: Decimal
    tax_base: Decimal
    available_loss: Decimal
    loss_applied: Decimal
    income_after_loss: Decimal
    rate: Decimal | None
    brackets: tuple[BracketLine, ...]
    tax_before_reliefs: Decimal
    solidarity_surcharge: Decimal
    child_relief: Decimal
    health_deduction: Decimal
    tax_due: Decimal
    effective_rate: Decimal
    activity_code: str | None = None
    # Brackets then hold per-spouse slices; tax_before_reliefs is twice their sum.
    joint_filing: bool = False

    @property
    def taxable_income(self) -> Decimal:
        return self.income_after_loss


def progressive_tax(
    base: Decimal, table: Sequence[Threshold]
) -> tuple[Decimal, tuple[BracketLine, ...]]:
    """
    Unrounded tax of ``base`` across an ascending threshold table.

    Returns the exact total and one BracketLine (tax rounded to grosze for
    display) for every bracket the base reaches.
    """
    lines: list[BracketLine] = []
    exact: list[Decimal] = []
    for bracket in table:
        if base <= bracket.lower_bound and bracket.lower_bound > ZERO:
            break
        top = base if bracket.upper_bound is None else min(base, bracket.upper_bound)
        slice_amount = clamp_non_negative(top - bracket.lower_bound)
        tax = multiply(slice_amount, bracket.fraction)
        exact.append(tax)
        lines.append(
            BracketLine(
                lower_bound=bracket.lower_bound,
                upper_bound=bracket.upper_bound,
                rate=bracket.rate,
                taxable_amount=round_money(slice_amount),
                tax=round_money(tax),
            )
        )
    return total(exact), tuple(lines)


@dataclass(frozen=True)
class _IncomeSplit:
    taxable_revenue: Decimal
    deductible_costs: Decimal
    income: Decimal
    loss: Decimal


def _split_income(inp: IncomeTaxInput) -> _IncomeSplit:
    deductible_costs = inp.costs - inp.non_deductible_costs
    taxable_revenue = inp.revenue - inp.tax_exempt_revenue
    income = taxable_revenue - deductible_costs
    loss = ZERO
    if income < ZERO:
        loss = -income
        income = ZERO
    return _IncomeSplit(taxable_revenue, deductible_costs, income, loss)


class IncomeTaxCalculator:
    """
    Calculate CIT and PIT liability.

    Pure functions - no I/O.  Rates, thresholds and statutory amounts come
    from the injected RateCatalog, looked up as of 31 December of the tax
    year.

    Raises from ``calculate``:
        RateNotFoundError, ThresholdTableNotFoundError,
        StatutoryAmountNotFoundError, UnknownActivityCodeError.
    """

    def __init__(self, catalog: RateCatalog, config: TaxEngineConfig | None = None):
        self._catalog = catalog
        self._config = config or TaxEngineConfig()

    def calculate(self, inp: IncomeTaxInput) -> IncomeTaxResult:
        t0 = time.monotonic()
        logger.info("income_tax_calculation_started", extra={
            "method": inp.method.value,
            "tax_year": inp.tax_year,
            "revenue": str(inp.revenue),
            "costs": str(inp.costs),
            "apply_loss_carry_forward": inp.apply_loss_carry_forward,
            "available_loss": str(inp.available_loss),
        })

        if inp.tax_type == TaxType.CIT:
            result = self._calculate_cit(inp)
        else:
            result = self._calculate_pit(inp)

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("income_tax_calculation_completed", extra={
            "method": result.method.value,
            "tax_year": result.tax_year,
            "income": str(result.income),
            "loss": str(result.loss),
            "loss_applied": str(result.loss_applied),
            "tax_due": str(result.tax_due),
            "effective_rate": str(result.effective_rate),
            "duration_ms": duration_ms,
        })
        return result

    def max_loss_offset(self, income: Decimal, available_loss: Decimal) -> Decimal:
        """min(available, income x cap ratio), never rounded up past the cap."""
        if income <= ZERO or available_loss <= ZERO:
            return ZERO
        cap = round_to_scale(
            multiply(income, self._config.loss_offset_cap_ratio), MONEY_SCALE, ROUND_DOWN
        )
        return min(available_loss, cap)

    # ------------------------------------------------------------------
    # CIT
    # ------------------------------------------------------------------

    def _calculate_cit(self, inp: IncomeTaxInput) -> IncomeTaxResult:
        as_of = tax_year_as_of(inp.tax_year)
        split = _split_income(inp)

        loss_applied = ZERO
        if inp.apply_loss_carry_forward:
            loss_applied = self.max_loss_offset(split.income, inp.available_loss)
        income_after_loss = split.income - loss_applied

        tax_type, code = _RATE_CODES[inp.method]
        rate = self._catalog.rate(tax_type, code, as_of)
        base_tax = round_money(multiply(income_after_loss, rate.fraction))

        surcharge = ZERO
        threshold = self._catalog.statutory_amount("SOLIDARITY_THRESHOLD", as_of)
        if income_after_loss > threshold:
            surcharge_rate = self._catalog.rate_fraction("CIT", "SOLIDARITY", as_of)
            surcharge = round_money(multiply(income_after_loss - threshold, surcharge_rate))
            logger.info("solidarity_surcharge_applied", extra={
                "income_after_loss": str(income_after_loss),
                "threshold": str(threshold),
                "surcharge": str(surcharge),
            })

        tax_due = base_tax + surcharge
        return IncomeTaxResult(
            tax_type=TaxType.CIT,
            method=inp.method,
            tax_year=inp.tax_year,
            revenue=inp.revenue,
            taxable_revenue=split.taxable_revenue,
            deductible_costs=split.deductible_costs,
            income=split.income,
            loss=split.loss,
            social_contributions_deducted=ZERO,
            tax_base=split.income,
            available_loss=inp.available_loss,
            loss_applied=loss_applied,
            income_after_loss=income_after_loss,
            rate=rate.value,
            brackets=(),
            tax_before_reliefs=base_tax,
            solidarity_surcharge=surcharge,
            child_relief=ZERO,
            health_deduction=ZERO,
            tax_due=tax_due,
            effective_rate=effective_rate(tax_due, income_after_loss),
        )

    # ------------------------------------------------------------------
    # PIT
    # ------------------------------------------------------------------

    def _calculate_pit(self, inp: IncomeTaxInput) -> IncomeTaxResult:
        as_of = tax_year_as_of(inp.tax_year)
        split = _split_income(inp)

        if inp.method == CalculationMethod.PIT_LUMP_SUM:
            return self._calculate_lump_sum(inp, split)

        contributions = min(inp.social_contributions, split.income)
        tax_base = split.income - contributions

        loss_applied = ZERO
        if inp.apply_loss_carry_forward:
            loss_applied = self.max_loss_offset(tax_base, inp.available_loss)
        income_after_loss = tax_base - loss_applied

        rate: Decimal | None
        child_relief = ZERO
        health_deduction = ZERO
        if inp.method == CalculationMethod.PIT_PROGRESSIVE:
            rate = None
            exact_tax, brackets = self._progressive(inp, income_after_loss, as_of)
            if inp.child_count > 0:
                child_relief = total(self._catalog.child_relief_schedule(inp.child_count, as_of))
            after_reliefs = clamp_non_negative(exact_tax - child_relief)
        else:
            flat = self._catalog.rate("PIT", "FLAT", as_of)
            rate = flat.value
            exact_tax = multiply(income_after_loss, flat.fraction)
            brackets = (
                BracketLine(
                    lower_bound=ZERO,
                    upper_bound=None,
                    rate=flat.value,
                    taxable_amount=round_money(income_after_loss),
                    tax=round_money(exact_tax),
                ),
            )
            after_reliefs = exact_tax
            cap = self._catalog.statutory_amount("HEALTH_DEDUCTION_FLAT_CAP", as_of)
            health_deduction = min(inp.health_contributions, cap)

        # Health deduction follows child relief; both floor at zero.
        tax_due = round_whole(clamp_non_negative(after_reliefs - health_deduction))

        return IncomeTaxResult(
            tax_type=TaxType.PIT,
            method=inp.method,
            tax_year=inp.tax_year,
            revenue=inp.revenue,
            taxable_revenue=split.taxable_revenue,
            deductible_costs=split.deductible_costs,
            income=split.income,
            loss=split.loss,
            social_contributions_deducted=contributions,
            tax_base=tax_base,
            available_loss=inp.available_loss,
            loss_applied=loss_applied,
            income_after_loss=income_after_loss,
            rate=rate,
            brackets=brackets,
            tax_before_reliefs=round_money(exact_tax),
            solidarity_surcharge=ZERO,
            child_relief=child_relief,
            health_deduction=health_deduction,
            tax_due=tax_due,
            effective_rate=effective_rate(tax_due, split.income),
            joint_filing=inp.method == CalculationMethod.PIT_PROGRESSIVE and inp.joint_filing,
        )

    def _progressive(
        self, inp: IncomeTaxInput, base: Decimal, as_of
    ) -> tuple[Decimal, tuple[BracketLine, ...]]:
        table = self._catalog.thresholds("PIT", as_of)
        allowance = self._catalog.statutory_amount("TAX_FREE_AMOUNT", as_of)

        per_person = base
        if inp.joint_filing:
            per_person = divide(base + (inp.spouse_income or ZERO), TWO)
        adjusted = clamp_non_negative(per_person - allowance)

        exact, lines = progressive_tax(adjusted, table)
        if inp.joint_filing:
            exact = multiply(exact, TWO)
        logger.debug("progressive_scale_applied", extra={
            "base": str(base),
            "adjusted_base": str(adjusted),
            "joint_filing": inp.joint_filing,
            "bracket_count": len(lines),
        })
        return exact, lines

    def _calculate_lump_sum(self, inp: IncomeTaxInput, split: _IncomeSplit) -> IncomeTaxResult:
        as_of = tax_year_as_of(inp.tax_year)
        rate = self._catalog.lump_sum_rate(inp.activity_code, as_of)
        # Charged on gross revenue; exempt revenue and costs do not reduce it.
        exact_tax = multiply(inp.revenue, rate.fraction)
        tax_due = round_whole(exact_tax)
        return IncomeTaxResult(
            tax_type=TaxType.PIT,
            method=inp.method,
            tax_year=inp.tax_year,
            revenue=inp.revenue,
            taxable_revenue=split.taxable_revenue,
            deductible_costs=split.deductible_costs,
            income=split.income,
            loss=ZERO,
            social_contributions_deducted=ZERO,
            tax_base=inp.revenue,
            available_loss=inp.available_loss,
            loss_applied=ZERO,
            income_after_loss=inp.revenue,
            rate=rate.value,
            brackets=(
                BracketLine(
                    lower_bound=ZERO,
                    upper_bound=None,
                    rate=rate.value,
                    taxable_amount=round_money(inp.revenue),
                    tax=round_money(exact_tax),
                ),
            ),
            tax_before_reliefs=round_money(exact_tax),
            solidarity_surcharge=ZERO,
            child_relief=ZERO,
            health_deduction=ZERO,
            tax_due=tax_due,
            effective_rate=effective_rate(tax_due, inp.revenue),
            activity_code=inp.activity_code,
        )
