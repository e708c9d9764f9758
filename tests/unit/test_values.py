"""
Invoice currencies, Money and NBP exchange rates.
"""

from decimal import Decimal

import pytest

from tax_kernel.domain.values import INVOICE_CURRENCIES, Currency, ExchangeRate, Money
from tax_kernel.exceptions import InvalidAmountError, InvalidInputError


class TestCurrency:
    def test_normalized(self):
        assert Currency(" eur ").code == "EUR"

    def test_unsupported_code(self):
        with pytest.raises(InvalidInputError) as exc_info:
            Currency("XXX")
        assert exc_info.value.field == "currency"

    def test_settlement_is_pln(self):
        assert Currency.settlement() == Currency("PLN")
        assert Currency("pln").is_settlement
        assert not Currency("EUR").is_settlement

    def test_decimal_places(self):
        assert Currency("PLN").decimal_places == 2
        assert Currency("JPY").decimal_places == 0

    def test_every_invoice_currency_constructs(self):
        for code in INVOICE_CURRENCIES:
            assert str(Currency(code)) == code


class TestMoney:
    def test_of_defaults_to_pln(self):
        m = Money.of("100.50")
        assert m.amount == Decimal("100.50")
        assert m.currency == Currency("PLN")

    def test_float_refused(self):
        with pytest.raises(InvalidAmountError):
            Money.of(100.5)

    def test_addition_same_currency(self):
        assert Money.of("1.10") + Money.of("2.20") == Money.of("3.30")

    def test_cross_currency_refused(self):
        with pytest.raises(ValueError, match="Cannot combine"):
            Money.of("1", "EUR") - Money.of("1", "PLN")

    def test_multiply_keeps_precision(self):
        assert (Money.of("100.10") * Decimal("0.23")).amount == Decimal("23.0230")
        assert 3 * Money.of("2.50") == Money.of("7.50")

    def test_round_to_minor_unit(self):
        assert Money.of("10.005").round().amount == Decimal("10.01")
        assert Money.of("100.5", "JPY").round().amount == Decimal("101")

    def test_negation(self):
        assert (-Money.of("4")).is_negative
        assert Money.zero("EUR").amount == Decimal("0")

    def test_str(self):
        assert str(Money.of("12.30", "EUR")) == "12.30 EUR"


class TestExchangeRate:
    def test_pln_amount_rounds_to_grosze(self):
        rate = ExchangeRate.to_pln("EUR", "4.3215")
        assert rate.pln_amount(Decimal("230.00")) == Decimal("993.95")

    def test_convert(self):
        rate = ExchangeRate.to_pln("EUR", "4.3215")
        converted = rate.convert(Money.of("1000.00", "EUR"))
        assert converted == Money.of("4321.50")
        assert converted.amount.as_tuple().exponent == -2

    def test_convert_half_up(self):
        rate = ExchangeRate.to_pln("USD", "3.9875")
        assert rate.convert(Money.of("0.02", "USD")).amount == Decimal("0.08")

    def test_wrong_source_currency(self):
        rate = ExchangeRate.to_pln("EUR", "4.30")
        with pytest.raises(ValueError, match="Rate converts EUR"):
            rate.convert(Money.of("1", "USD"))

    @pytest.mark.parametrize("value", ["0", "-4.3"])
    def test_non_positive_rate(self, value):
        with pytest.raises(InvalidAmountError):
            ExchangeRate.to_pln("EUR", value)

    def test_pln_must_convert_at_one(self):
        assert ExchangeRate.to_pln("PLN").rate == Decimal("1")
        with pytest.raises(InvalidInputError) as exc_info:
            ExchangeRate.to_pln("PLN", "4.30")
        assert exc_info.value.field == "exchange_rate"
