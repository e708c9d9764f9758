"""
Values -- invoice currencies, amounts and NBP exchange rates.

Responsibility:
    Every declaration and VAT period summary is denominated in PLN.  A VAT
    transaction may be invoiced in another currency; it then carries the
    NBP average rate of the business day before the tax point, and its PLN
    triple is derived from the invoice triple with that rate.

Architecture position:
    Kernel > Domain.  Depends only on decimal_engine and exceptions.

Invariants enforced:
    - Only currencies in ``INVOICE_CURRENCIES`` are accepted.
    - A PLN amount converts at exactly 1.
    - Money arithmetic never mixes currencies.

Failure modes:
    - InvalidInputError(field="currency") for an unsupported code.
    - InvalidAmountError for float amounts and non-positive rates.
    - ValueError for cross-currency arithmetic (a programming error).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tax_kernel.domain.decimal_engine import (
    ZERO,
    multiply,
    round_money,
    round_to_scale,
    to_decimal,
)
from tax_kernel.exceptions import InvalidAmountError, InvalidInputError

SETTLEMENT_CURRENCY = "PLN"

# Currencies quoted in NBP table A that appear on client invoices, with
# their minor-unit scale.
INVOICE_CURRENCIES: dict[str, int] = {
    "PLN": 2,
    "EUR": 2,
    "USD": 2,
    "GBP": 2,
    "CHF": 2,
    "CZK": 2,
    "DKK": 2,
    "SEK": 2,
    "NOK": 2,
    "HUF": 2,
    "RON": 2,
    "BGN": 2,
    "UAH": 2,
    "CAD": 2,
    "JPY": 0,
}


@dataclass(frozen=True, slots=True)
class Currency:
    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if normalized not in INVOICE_CURRENCIES:
            raise InvalidInputError(
                f"Unsupported invoice currency: {self.code!r}", field="currency"
            )
        object.__setattr__(self, "code", normalized)

    @classmethod
    def settlement(cls) -> Currency:
        return cls(SETTLEMENT_CURRENCY)

    @property
    def is_settlement(self) -> bool:
        return self.code == SETTLEMENT_CURRENCY

    @property
    def decimal_places(self) -> int:
        return INVOICE_CURRENCIES[self.code]

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True, slots=True)
class Money:
    """An exact amount in one currency.  Never rounded implicitly."""

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount, "amount"))
        if not isinstance(self.currency, Currency):
            object.__setattr__(self, "currency", Currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency = SETTLEMENT_CURRENCY) -> Money:
        return cls(amount, currency)

    @classmethod
    def zero(cls, currency: str | Currency = SETTLEMENT_CURRENCY) -> Money:
        return cls(ZERO, currency)

    @property
    def is_negative(self) -> bool:
        return self.amount < ZERO

    def round(self) -> Money:
        """Half-up to the currency's minor unit."""
        return Money(round_to_scale(self.amount, self.currency.decimal_places), self.currency)

    def _same_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot combine {self.currency} and {other.currency} amounts")

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._same_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __mul__(self, factor: Decimal | int) -> Money:
        if isinstance(factor, bool) or not isinstance(factor, (Decimal, int)):
            return NotImplemented
        return Money(multiply(self.amount, Decimal(factor)), self.currency)

    __rmul__ = __mul__

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """
    NBP rate: 1 unit of ``from_currency`` is ``rate`` PLN.

    The rate keeps its published precision; only converted amounts are
    rounded, to grosze.
    """

    from_currency: Currency
    rate: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.from_currency, Currency):
            object.__setattr__(self, "from_currency", Currency(self.from_currency))
        rate = to_decimal(self.rate, "exchange_rate")
        if rate <= ZERO:
            raise InvalidAmountError(rate, "exchange_rate", "must be positive")
        if self.from_currency.is_settlement and rate != Decimal("1"):
            raise InvalidInputError(
                f"PLN amounts convert at 1, got exchange rate {rate}", field="exchange_rate"
            )
        object.__setattr__(self, "rate", rate)

    @classmethod
    def to_pln(cls, from_currency: str | Currency, rate: Decimal | str | int = Decimal("1")) -> ExchangeRate:
        return cls(from_currency, rate)

    def pln_amount(self, amount: Decimal) -> Decimal:
        """``amount`` in PLN, rounded to grosze."""
        return round_money(multiply(amount, self.rate))

    def convert(self, money: Money) -> Money:
        if money.currency != self.from_currency:
            raise ValueError(
                f"Rate converts {self.from_currency}, got an amount in {money.currency}"
            )
        return Money(self.pln_amount(money.amount), Currency.settlement())

    def __str__(self) -> str:
        return f"{self.from_currency}/PLN {self.rate}"
