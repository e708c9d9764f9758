"""
Property-based tests over the calculation engines and the loss ledger.

Properties checked:
- Decimal engine: money rounding is idempotent, string round-trip is exact
- Loss ledger: used + remaining == original, consumption applies exactly
  the requested amount, FIFO exhausts older records first
- VAT: WNT pairs are settlement-neutral, gross-based amounts split exactly,
  net -> gross -> net reproduces the net, the PLN triple adds up
- Income tax: progressive PIT never falls as revenue rises, CIT is never
  negative
- ZUS: totals equal the sum of rounded lines and the pension base never
  exceeds what is left under the annual limit

Mutable state (ledgers, repositories) is built inside each example so
that no state leaks between generated cases.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from tax_config.schema import TaxEngineConfig
from tax_engines.contributions import ContributionCalculator, EmployeeContributionInput
from tax_engines.income_tax import IncomeTaxCalculator, IncomeTaxInput
from tax_engines.vat import VatCalculator
from tax_kernel.domain.clock import DeterministicClock
from tax_kernel.domain.decimal_engine import round_money, to_decimal
from tax_modules.losses import InMemoryLossRepository, LossLedger
from tax_modules.vat import InMemoryVatRepository, VatService

FUZZ_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)

amounts = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("10000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

raw_decimals = st.decimals(
    min_value=Decimal("-1000000000"),
    max_value=Decimal("1000000000"),
    places=6,
    allow_nan=False,
    allow_infinity=False,
)


def _ledger() -> LossLedger:
    clock = DeterministicClock(datetime(2025, 3, 15, tzinfo=timezone.utc))
    return LossLedger(InMemoryLossRepository(), clock=clock, config=TaxEngineConfig())


# ---------------------------------------------------------------------------
# Decimal engine
# ---------------------------------------------------------------------------


class TestDecimalProperties:
    @FUZZ_SETTINGS
    @given(value=raw_decimals)
    def test_round_money_idempotent(self, value):
        once = round_money(value)
        assert round_money(once) == once
        assert once.as_tuple().exponent == -2

    @FUZZ_SETTINGS
    @given(value=raw_decimals)
    def test_string_round_trip(self, value):
        assert to_decimal(str(value), "value") == value


# ---------------------------------------------------------------------------
# Loss ledger
# ---------------------------------------------------------------------------


class TestLossLedgerProperties:
    @FUZZ_SETTINGS
    @given(
        losses=st.lists(
            st.tuples(st.integers(min_value=2020, max_value=2023), amounts),
            min_size=1,
            max_size=6,
        ),
        percent=st.integers(min_value=1, max_value=100),
    )
    def test_consumption_conserves_and_follows_fifo(self, losses, percent):
        ledger = _ledger()
        client_id = uuid4()
        for loss_year, amount in losses:
            ledger.record_loss(client_id, "CIT", loss_year, amount)

        available = ledger.get_available_balance(client_id, "CIT", 2024)
        assert available == sum(amount for _, amount in losses)

        requested = max(round_money(available * percent / 100), Decimal("0.01"))
        result = ledger.consume(client_id, "CIT", requested, 2024)

        assert result.total_applied == requested
        assert sum(a.amount_applied for a in result.applications) == requested
        # Every record touched before the last one is exhausted.
        for application in result.applications[:-1]:
            assert application.remaining_after == Decimal("0")
        years = [a.loss_year for a in result.applications]
        assert years == sorted(years)

        for record in ledger.list_records(client_id, "CIT"):
            assert record.used_amount + record.remaining_amount == record.original_amount
            assert record.remaining_amount >= 0
        assert ledger.get_available_balance(client_id, "CIT", 2024) == available - requested

    @FUZZ_SETTINGS
    @given(amount=amounts, first=st.integers(min_value=1, max_value=99))
    def test_reversal_restores_balance(self, amount, first):
        ledger = _ledger()
        client_id = uuid4()
        declaration_id = uuid4()
        ledger.record_loss(client_id, "PIT", 2022, amount)
        requested = max(round_money(amount * first / 100), Decimal("0.01"))

        ledger.consume(client_id, "PIT", requested, 2024, declaration_id=declaration_id)
        restored = ledger.reverse_consumption(client_id, "PIT", declaration_id, 2024)

        assert restored == requested
        assert ledger.get_available_balance(client_id, "PIT", 2024) == amount


# ---------------------------------------------------------------------------
# VAT
# ---------------------------------------------------------------------------


class TestVatProperties:
    @FUZZ_SETTINGS
    @given(gross=amounts, rate_code=st.sampled_from(["STANDARD", "REDUCED_8", "REDUCED_5", "ZERO"]))
    def test_gross_split_is_exact(self, catalog, gross, rate_code):
        result = VatCalculator(catalog).calculate_amounts(rate_code, date(2024, 5, 10), gross=gross)
        assert result.net + result.vat == result.gross == gross
        assert result.vat >= 0

    @FUZZ_SETTINGS
    @given(
        net=amounts,
        rate_code=st.sampled_from(["STANDARD", "REDUCED_8", "REDUCED_5", "ZERO", "EXEMPT"]),
    )
    def test_net_to_gross_and_back(self, catalog, net, rate_code):
        calculator = VatCalculator(catalog)
        forward = calculator.calculate_amounts(rate_code, date(2024, 5, 10), net=net)
        back = calculator.calculate_amounts(rate_code, date(2024, 5, 10), gross=forward.gross)
        assert back.net == net
        assert back.vat == forward.vat

    @FUZZ_SETTINGS
    @given(net=amounts, rate=st.decimals(min_value=Decimal("0.0001"), max_value=Decimal("10"), places=4))
    def test_pln_triple_adds_up(self, catalog, net, rate):
        result = VatCalculator(catalog).calculate_amounts(
            "STANDARD", date(2024, 5, 10), net=net, currency="EUR", exchange_rate=rate,
        )
        assert result.gross_pln == result.net_pln + result.vat_pln

    @FUZZ_SETTINGS
    @given(net=amounts)
    def test_intra_eu_acquisition_is_neutral(self, catalog, net):
        service = VatService(
            InMemoryVatRepository(),
            catalog,
            clock=DeterministicClock(datetime(2025, 3, 15, tzinfo=timezone.utc)),
            config=TaxEngineConfig(),
        )
        client_id = uuid4()
        output, input_ = service.record_intra_eu_acquisition(client_id, date(2024, 5, 10), net)

        assert output.vat_amount_pln == input_.vat_amount_pln
        assert output.pair_id == input_.pair_id
        settlement = service.calculate_settlement(client_id, 2024, 5)
        assert settlement.difference == Decimal("0")
        assert settlement.vat_due == settlement.vat_refund == Decimal("0")


# ---------------------------------------------------------------------------
# Income tax
# ---------------------------------------------------------------------------


class TestIncomeTaxProperties:
    @FUZZ_SETTINGS
    @given(low=amounts, extra=amounts)
    def test_progressive_tax_monotone(self, catalog, low, extra):
        calculator = IncomeTaxCalculator(catalog, TaxEngineConfig())
        lower = calculator.calculate(IncomeTaxInput(
            method="PIT_PROGRESSIVE", tax_year=2024, revenue=low, costs=Decimal("0"),
        ))
        higher = calculator.calculate(IncomeTaxInput(
            method="PIT_PROGRESSIVE", tax_year=2024, revenue=low + extra, costs=Decimal("0"),
        ))
        assert lower.tax_due <= higher.tax_due

    @FUZZ_SETTINGS
    @given(
        revenue=amounts,
        costs=amounts,
        method=st.sampled_from(["CIT_STANDARD", "CIT_SMALL", "CIT_ESTONIAN"]),
    )
    def test_cit_never_negative(self, catalog, revenue, costs, method):
        result = IncomeTaxCalculator(catalog, TaxEngineConfig()).calculate(IncomeTaxInput(
            method=method, tax_year=2024, revenue=revenue, costs=costs,
        ))
        assert result.tax_due >= 0
        assert result.income == max(revenue - costs, Decimal("0"))
        assert result.loss == max(costs - revenue, Decimal("0"))


# ---------------------------------------------------------------------------
# ZUS
# ---------------------------------------------------------------------------


class TestContributionProperties:
    @FUZZ_SETTINGS
    @given(
        gross=st.decimals(
            min_value=Decimal("0.01"), max_value=Decimal("60000"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        ytd=st.decimals(
            min_value=Decimal("0"), max_value=Decimal("300000"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        month=st.integers(min_value=1, max_value=12),
    )
    def test_employee_totals_and_limit(self, catalog, gross, ytd, month):
        result = ContributionCalculator(catalog, TaxEngineConfig()).calculate_employee(
            EmployeeContributionInput(
                year=2024, month=month, gross_salary=gross, ytd_pension_base=ytd,
            )
        )
        assert result.total_employee == sum(l.employee_amount for l in result.lines)
        assert result.total_employer == sum(l.employer_amount for l in result.lines)
        assert result.pension_base <= max(Decimal("234720") - ytd, Decimal("0"))
        assert result.pension_base <= gross
        assert result.net_income <= result.total_income
