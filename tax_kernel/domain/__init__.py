"""Pure domain primitives: decimals, money, periods, clock, workflows."""

from tax_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.domain.values import Currency, ExchangeRate, Money

__all__ = [
    "Clock",
    "Currency",
    "DeterministicClock",
    "ExchangeRate",
    "Money",
    "SystemClock",
    "TaxPeriod",
]
