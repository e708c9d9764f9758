"""Monthly and quarterly income tax advances."""

from datetime import date
from decimal import Decimal

import pytest

from tax_engines.advance_payments import (
    AdvancePaymentCalculator,
    AdvancePaymentInput,
    PeriodType,
    advance_due_date,
)
from tax_kernel.exceptions import InvalidPeriodError, MissingFieldError, UnknownRegimeError


@pytest.fixture
def calculator(catalog):
    return AdvancePaymentCalculator(catalog)


def _inp(method="CIT_STANDARD", period_type="MONTHLY", period_number=3,
         revenue="300000", costs="200000", previous="0", **kwargs):
    return AdvancePaymentInput(
        method=method,
        tax_year=2024,
        period_type=period_type,
        period_number=period_number,
        cumulative_revenue=Decimal(revenue),
        cumulative_costs=Decimal(costs),
        previous_advances=Decimal(previous),
        **kwargs,
    )


class TestAdvanceAmounts:
    def test_cumulative_minus_previous(self, calculator):
        result = calculator.calculate(_inp(previous="12000"))
        assert result.cumulative_income == Decimal("100000")
        assert result.cumulative_tax == Decimal("19000.00")
        assert result.advance_due == Decimal("7000.00")

    def test_floored_at_zero(self, calculator):
        result = calculator.calculate(_inp(previous="25000"))
        assert result.advance_due == Decimal("0")

    def test_costs_above_revenue(self, calculator):
        result = calculator.calculate(_inp(revenue="100", costs="500"))
        assert result.cumulative_income == Decimal("0")
        assert result.advance_due == Decimal("0")

    def test_small_taxpayer_rate(self, calculator):
        assert calculator.calculate(_inp(method="CIT_SMALL")).cumulative_tax == Decimal("9000.00")

    def test_progressive_uses_allowance(self, calculator):
        result = calculator.calculate(_inp(method="PIT_PROGRESSIVE", revenue="150000", costs="0"))
        assert result.cumulative_tax == Decimal("14400.00")

    def test_lump_sum_on_revenue(self, calculator):
        result = calculator.calculate(_inp(
            method="PIT_LUMP_SUM", revenue="100000", costs="90000", activity_code="TRADE",
        ))
        assert result.cumulative_tax == Decimal("5500.00")

    def test_lump_sum_needs_activity(self):
        with pytest.raises(MissingFieldError):
            _inp(method="PIT_LUMP_SUM")


class TestDueDates:
    def test_monthly(self, calculator):
        assert calculator.calculate(_inp()).due_date == date(2024, 4, 20)

    def test_quarterly(self, calculator):
        result = calculator.calculate(_inp(period_type="QUARTERLY", period_number=2))
        assert result.due_date == date(2024, 7, 20)

    def test_fourth_quarter_rolls_year(self):
        assert advance_due_date(2024, PeriodType.QUARTERLY, 4) == date(2025, 1, 20)


class TestPeriodValidation:
    def test_month_out_of_range(self):
        with pytest.raises(InvalidPeriodError) as exc_info:
            _inp(period_number=13)
        assert exc_info.value.field == "period_number"

    def test_quarter_out_of_range(self):
        with pytest.raises(InvalidPeriodError):
            _inp(period_type="QUARTERLY", period_number=5)

    def test_unknown_period_type(self):
        with pytest.raises(UnknownRegimeError) as exc_info:
            _inp(period_type="WEEKLY")
        assert exc_info.value.field == "period_type"
