"""
VAT Engine - per-transaction amounts and period settlement.

Pure functions with no I/O.  Rates come from the injected RateCatalog;
transactions and carry-forward balances are passed in as typed snapshots.

Amount derivation (one of net/gross given):
    from net:    vat = round(net x rate), gross = net + vat
    from gross:  net = round(gross / (1 + rate)), vat = gross - net
Foreign-currency amounts get a parallel PLN triple, each converted and
rounded independently.

Settlement:
    output total = VAT at 23% + 8% + 5% + reverse charge
    input total  = deductible + intra-EU acquisition + imports
    adjusted     = (output - input) - carry-forwards from earlier periods
    adjusted > 0 -> VAT due; adjusted < 0 -> refund of |adjusted|

Usage:
    calculator = VatCalculator(catalog)
    amounts = calculator.calculate_amounts("STANDARD", date(2024, 5, 10), net=Decimal("1000"))
    print(amounts.vat)    # 230.00
    print(amounts.gross)  # 1230.00
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence
from uuid import UUID

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig
from tax_kernel.domain.decimal_engine import (
    ZERO,
    divide,
    multiply,
    percent_to_fraction,
    round_money,
    to_decimal,
    total,
)
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.domain.values import ExchangeRate
from tax_kernel.exceptions import InvalidAmountError, InvalidInputError, MissingFieldError, UnknownRateCodeError
from tax_kernel.logging_config import get_logger

logger = get_logger("engines.vat")

ONE = Decimal("1")


class VatRateCode(str, Enum):
    STANDARD = "STANDARD"
    REDUCED_8 = "REDUCED_8"
    REDUCED_5 = "REDUCED_5"
    ZERO = "ZERO"
    EXEMPT = "EXEMPT"
    REVERSE_CHARGE = "REVERSE_CHARGE"

    @classmethod
    def parse(cls, value: VatRateCode | str) -> VatRateCode:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise UnknownRateCodeError(value, field="rate_code") from e


class VatDirection(str, Enum):
    INPUT = "INPUT"    # VAT naliczony
    OUTPUT = "OUTPUT"  # VAT nalezny
    BOTH = "BOTH"      # self-assessed pair


class TransactionType(str, Enum):
    DOMESTIC_SALE = "DOMESTIC_SALE"
    DOMESTIC_PURCHASE = "DOMESTIC_PURCHASE"
    WDT = "WDT"                    # intra-EU supply
    WNT = "WNT"                    # intra-EU acquisition
    EXPORT = "EXPORT"
    IMPORT_GOODS = "IMPORT_GOODS"
    IMPORT_SERVICES = "IMPORT_SERVICES"
    REVERSE_CHARGE = "REVERSE_CHARGE"
    OSS_SALE = "OSS_SALE"
    CORRECTION = "CORRECTION"

    @classmethod
    def parse(cls, value: TransactionType | str) -> TransactionType:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise UnknownRateCodeError(value, field="transaction_type") from e


_DIRECTIONS: dict[TransactionType, VatDirection] = {
    TransactionType.DOMESTIC_PURCHASE: VatDirection.INPUT,
    TransactionType.IMPORT_GOODS: VatDirection.INPUT,
    TransactionType.IMPORT_SERVICES: VatDirection.INPUT,
    TransactionType.DOMESTIC_SALE: VatDirection.OUTPUT,
    TransactionType.WDT: VatDirection.OUTPUT,
    TransactionType.EXPORT: VatDirection.OUTPUT,
    TransactionType.OSS_SALE: VatDirection.OUTPUT,
    TransactionType.WNT: VatDirection.BOTH,
    TransactionType.REVERSE_CHARGE: VatDirection.BOTH,
}

# Input lines of these types are reported in their own buckets.
_NON_DOMESTIC_INPUT_TYPES = frozenset(
    {TransactionType.WNT, TransactionType.IMPORT_GOODS, TransactionType.IMPORT_SERVICES}
)


def direction_for(transaction_type: TransactionType | str) -> VatDirection:
    """
    Direction implied by a transaction type.

    Raises:
        UnknownRateCodeError: unknown type.
        InvalidInputError: CORRECTION, whose direction comes from the
            corrected transaction.
    """
    tx_type = TransactionType.parse(transaction_type)
    if tx_type == TransactionType.CORRECTION:
        raise InvalidInputError(
            "Correction direction is inherited from the corrected transaction",
            field="transaction_type",
        )
    return _DIRECTIONS[tx_type]


@dataclass(frozen=True)
class VatAmounts:
    """Net/VAT/gross in invoice currency plus the PLN triple."""

    rate_code: VatRateCode
    rate: Decimal  # percentage
    currency: str
    exchange_rate: Decimal
    net: Decimal
    vat: Decimal
    gross: Decimal
    net_pln: Decimal
    vat_pln: Decimal
    gross_pln: Decimal


class VatCalculator:
    """
    Derive VAT amounts from a rate code and a net or gross amount.

    Only the final net and VAT values are rounded; the PLN net and VAT are
    converted from the rounded invoice amounts and the PLN gross is their sum.
    """

    def __init__(self, catalog: RateCatalog):
        self._catalog = catalog

    def rate_percent(self, rate_code: VatRateCode | str, on_date: date) -> Decimal:
        code = VatRateCode.parse(rate_code)
        return self._catalog.rate("VAT", code.value, on_date).value

    def calculate_amounts(
        self,
        rate_code: VatRateCode | str,
        on_date: date,
        *,
        net: Decimal | str | int | None = None,
        gross: Decimal | str | int | None = None,
        currency: str = "PLN",
        exchange_rate: Decimal | str | int = ONE,
    ) -> VatAmounts:
        """
        Raises:
            MissingFieldError: neither net nor gross given.
            InvalidInputError: both given.
            UnknownRateCodeError / RateNotFoundError: bad code or date.
        """
        code = VatRateCode.parse(rate_code)
        if net is None and gross is None:
            raise MissingFieldError("net_amount", "VAT calculation (or gross_amount)")
        if net is not None and gross is not None:
            raise InvalidInputError(
                "Provide either net_amount or gross_amount, not both", field="gross_amount"
            )
        fx = ExchangeRate.to_pln(currency, exchange_rate)

        rate = self._catalog.rate("VAT", code.value, on_date)
        if net is not None:
            net_amount = to_decimal(net, "net_amount")
            vat_amount = round_money(multiply(net_amount, rate.fraction))
            gross_amount = net_amount + vat_amount
        else:
            gross_amount = to_decimal(gross, "gross_amount")
            net_amount = round_money(divide(gross_amount, ONE + rate.fraction))
            vat_amount = gross_amount - net_amount

        amounts = VatAmounts(
            rate_code=code,
            rate=rate.value,
            currency=fx.from_currency.code,
            exchange_rate=fx.rate,
            net=net_amount,
            vat=vat_amount,
            gross=gross_amount,
            net_pln=fx.pln_amount(net_amount),
            vat_pln=fx.pln_amount(vat_amount),
            gross_pln=fx.pln_amount(net_amount) + fx.pln_amount(vat_amount),
        )
        logger.debug("vat_amounts_calculated", extra={
            "rate_code": code.value,
            "net": str(amounts.net),
            "vat": str(amounts.vat),
            "gross": str(amounts.gross),
            "currency": amounts.currency,
        })
        return amounts

    def correction_amounts(
        self,
        rate: Decimal,
        net_difference: Decimal,
        exchange_rate: Decimal = ONE,
    ) -> tuple[Decimal, Decimal, Decimal]:
        """
        (net, vat, gross) PLN differences at the corrected transaction's rate.

        VAT is rounded in the invoice currency before conversion, as in
        ``calculate_amounts``; the PLN gross is the sum of the other two.
        """
        net_diff = to_decimal(net_difference, "net_difference")
        vat_diff = round_money(multiply(net_diff, percent_to_fraction(rate)))
        net_pln = round_money(multiply(net_diff, exchange_rate))
        vat_pln = round_money(multiply(vat_diff, exchange_rate))
        return net_pln, vat_pln, net_pln + vat_pln


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementLine:
    """One stored transaction as seen by the settlement."""

    transaction_type: TransactionType
    direction: VatDirection
    rate_code: VatRateCode
    net_pln: Decimal
    vat_pln: Decimal


@dataclass(frozen=True)
class CarryForwardBalance:
    """Snapshot of an open carry-forward (ACTIVE or PARTIALLY_APPLIED)."""

    carry_forward_id: UUID
    source: TaxPeriod
    remaining: Decimal


@dataclass(frozen=True)
class OutputVatBreakdown:
    rate23: Decimal
    rate8: Decimal
    rate5: Decimal
    rate0: Decimal
    wdt: Decimal
    exports: Decimal
    reverse_charge: Decimal
    total: Decimal


@dataclass(frozen=True)
class InputVatBreakdown:
    deductible: Decimal
    wnt: Decimal
    imports: Decimal
    total: Decimal


@dataclass(frozen=True)
class VatSettlementResult:
    period: TaxPeriod
    output_vat: OutputVatBreakdown
    input_vat: InputVatBreakdown
    difference: Decimal
    carry_forward_from_previous: Decimal
    carry_forwards_used: tuple[CarryForwardBalance, ...]
    adjusted_difference: Decimal
    vat_due: Decimal
    vat_refund: Decimal
    transaction_count: int


def _vat_where(lines: Iterable[SettlementLine], predicate) -> Decimal:
    return round_money(total(line.vat_pln for line in lines if predicate(line)))


def _net_where(lines: Iterable[SettlementLine], predicate) -> Decimal:
    return round_money(total(line.net_pln for line in lines if predicate(line)))


def output_breakdown(lines: Sequence[SettlementLine]) -> OutputVatBreakdown:
    out = [l for l in lines if l.direction in (VatDirection.OUTPUT, VatDirection.BOTH)]
    rate23 = _vat_where(out, lambda l: l.rate_code == VatRateCode.STANDARD)
    rate8 = _vat_where(out, lambda l: l.rate_code == VatRateCode.REDUCED_8)
    rate5 = _vat_where(out, lambda l: l.rate_code == VatRateCode.REDUCED_5)
    rate0 = _vat_where(out, lambda l: l.rate_code == VatRateCode.ZERO)
    reverse_charge = _vat_where(out, lambda l: l.rate_code == VatRateCode.REVERSE_CHARGE)
    return OutputVatBreakdown(
        rate23=rate23,
        rate8=rate8,
        rate5=rate5,
        rate0=rate0,
        wdt=_net_where(out, lambda l: l.transaction_type == TransactionType.WDT),
        exports=_net_where(out, lambda l: l.transaction_type == TransactionType.EXPORT),
        reverse_charge=reverse_charge,
        total=rate23 + rate8 + rate5 + reverse_charge,
    )


def input_breakdown(lines: Sequence[SettlementLine]) -> InputVatBreakdown:
    inp = [l for l in lines if l.direction in (VatDirection.INPUT, VatDirection.BOTH)]
    deductible = _vat_where(inp, lambda l: l.transaction_type not in _NON_DOMESTIC_INPUT_TYPES)
    wnt = _vat_where(inp, lambda l: l.transaction_type == TransactionType.WNT)
    imports = _vat_where(
        inp,
        lambda l: l.transaction_type
        in (TransactionType.IMPORT_GOODS, TransactionType.IMPORT_SERVICES),
    )
    return InputVatBreakdown(
        deductible=deductible, wnt=wnt, imports=imports, total=deductible + wnt + imports
    )


def settle(
    period: TaxPeriod,
    lines: Sequence[SettlementLine],
    carry_forwards: Iterable[CarryForwardBalance] = (),
) -> VatSettlementResult:
    """
    Net a period's VAT.

    Preconditions:
        - ``lines`` are the period's ACTIVE and CORRECTED transactions.
        - ``carry_forwards`` are the client's open carry-forwards; only those
          with a source period before ``period`` and a positive remainder
          are used, oldest first.
    """
    t0 = time.monotonic()
    logger.info("vat_settlement_started", extra={
        "period": period.label,
        "line_count": len(lines),
    })

    output_vat = output_breakdown(lines)
    input_vat = input_breakdown(lines)
    difference = output_vat.total - input_vat.total

    used = tuple(
        sorted(
            (cf for cf in carry_forwards if cf.source < period and cf.remaining > ZERO),
            key=lambda cf: cf.source,
        )
    )
    carried = round_money(total(cf.remaining for cf in used))
    adjusted = difference - carried

    vat_due = adjusted if adjusted > ZERO else ZERO
    vat_refund = -adjusted if adjusted < ZERO else ZERO

    result = VatSettlementResult(
        period=period,
        output_vat=output_vat,
        input_vat=input_vat,
        difference=difference,
        carry_forward_from_previous=carried,
        carry_forwards_used=used,
        adjusted_difference=adjusted,
        vat_due=vat_due,
        vat_refund=vat_refund,
        transaction_count=len(lines),
    )

    duration_ms = round((time.monotonic() - t0) * 1000, 2)
    logger.info("vat_settlement_completed", extra={
        "period": period.label,
        "output_total": str(output_vat.total),
        "input_total": str(input_vat.total),
        "carry_forward_from_previous": str(carried),
        "vat_due": str(vat_due),
        "vat_refund": str(vat_refund),
        "duration_ms": duration_ms,
    })
    return result


# ---------------------------------------------------------------------------
# Refund options
# ---------------------------------------------------------------------------


class RefundOption(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    OFFSET_NEXT_PERIOD = "OFFSET_NEXT_PERIOD"
    ACCELERATED_25D = "ACCELERATED_25D"
    ACCELERATED_40D = "ACCELERATED_40D"

    @property
    def requires_eligibility(self) -> bool:
        return self == RefundOption.ACCELERATED_25D

    @classmethod
    def parse(cls, value: RefundOption | str) -> RefundOption:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            raise InvalidInputError(f"Unknown refund option: {value}", field="refund_option") from e


@dataclass(frozen=True)
class RefundOptionAvailability:
    option: RefundOption
    days: int
    available: bool
    reasons: tuple[str, ...] = ()


def refund_options(
    ineligibility_reasons: Sequence[str],
    config: TaxEngineConfig | None = None,
) -> tuple[RefundOptionAvailability, ...]:
    """
    Every refund option with its timeline; options that need eligibility
    are unavailable while ``ineligibility_reasons`` is non-empty.
    """
    config = config or TaxEngineConfig()
    reasons = tuple(ineligibility_reasons)
    return tuple(
        RefundOptionAvailability(
            option=option,
            days=config.refund_days[option.value],
            available=not (option.requires_eligibility and reasons),
            reasons=reasons if option.requires_eligibility else (),
        )
        for option in RefundOption
    )


def check_non_negative(value: Decimal, field: str) -> Decimal:
    """Reject negative amounts on new (non-correction) transactions."""
    amount = to_decimal(value, field)
    if amount < ZERO:
        raise InvalidAmountError(value, field, "must not be negative")
    return amount
