"""
VAT Domain Models.

Responsibility:
    Frozen DTOs for recorded VAT transactions, VAT credit carry-forwards
    (with their application history) and finalised period settlements.

Invariants:
    - All models are ``frozen=True``; state changes produce new instances.
    - Stored transactions are always OUTPUT or INPUT; a type whose
      direction is BOTH is stored as a linked pair sharing ``pair_id``.
    - Carry-forward: remaining == original - sum(applications).
    - All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from tax_engines.vat import (
    InputVatBreakdown,
    OutputVatBreakdown,
    RefundOption,
    SettlementLine,
    TransactionType,
    VatDirection,
    VatRateCode,
)
from tax_kernel.domain.decimal_engine import ZERO, total
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.exceptions import InvariantViolationError
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.vat.models")


class VatTransactionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CORRECTED = "CORRECTED"


class CarryForwardStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PARTIALLY_APPLIED = "PARTIALLY_APPLIED"
    FULLY_APPLIED = "FULLY_APPLIED"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class VatTransaction:
    """A recorded VAT transaction (one side of a pair for BOTH types)."""

    client_id: UUID
    period_year: int
    period_month: int
    transaction_type: TransactionType
    direction: VatDirection
    rate_code: VatRateCode
    rate: Decimal
    net_amount: Decimal
    vat_amount: Decimal
    gross_amount: Decimal
    net_amount_pln: Decimal
    vat_amount_pln: Decimal
    gross_amount_pln: Decimal
    transaction_date: date
    currency: str = "PLN"
    exchange_rate: Decimal = Decimal("1")
    is_deductible: bool = True
    counterparty_vat_id: str | None = None
    description: str | None = None
    is_correction: bool = False
    corrects_transaction_id: UUID | None = None
    correction_reason: str | None = None
    pair_id: UUID | None = None
    status: VatTransactionStatus = VatTransactionStatus.ACTIVE
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())
        if self.direction == VatDirection.BOTH:
            raise InvariantViolationError(
                "Stored VAT transactions are OUTPUT or INPUT; BOTH is recorded as a pair",
                field="direction",
            )

    @property
    def period(self) -> TaxPeriod:
        return TaxPeriod(self.period_year, self.period_month)

    def to_settlement_line(self) -> SettlementLine:
        return SettlementLine(
            transaction_type=self.transaction_type,
            direction=self.direction,
            rate_code=self.rate_code,
            net_pln=self.net_amount_pln,
            vat_pln=self.vat_amount_pln,
        )

    def mark_corrected(self) -> VatTransaction:
        return replace(self, status=VatTransactionStatus.CORRECTED)


@dataclass(frozen=True)
class CarryForwardApplication:
    target_year: int
    target_month: int
    amount_applied: Decimal
    applied_at: datetime
    settlement_id: UUID | None = None


@dataclass(frozen=True)
class VatCarryForward:
    """
    VAT credit carried into later periods.

    Guarantees:
        - remaining == original - sum(applications), remaining >= 0.
    """

    client_id: UUID
    source_year: int
    source_month: int
    original_amount: Decimal
    remaining_amount: Decimal | None = None
    status: CarryForwardStatus = CarryForwardStatus.ACTIVE
    applications: tuple[CarryForwardApplication, ...] = ()
    source_settlement_id: UUID | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())
        applied = total(a.amount_applied for a in self.applications)
        if self.remaining_amount is None:
            object.__setattr__(self, "remaining_amount", self.original_amount - applied)
        if self.remaining_amount != self.original_amount - applied:
            raise InvariantViolationError(
                f"Carry forward {self.id}: remaining {self.remaining_amount} != "
                f"original {self.original_amount} - applied {applied}",
                field="remaining_amount",
            )
        if self.remaining_amount < ZERO:
            raise InvariantViolationError(
                f"Carry forward {self.id}: remaining amount cannot be negative",
                field="remaining_amount",
            )

    @property
    def source(self) -> TaxPeriod:
        return TaxPeriod(self.source_year, self.source_month)

    @property
    def is_open(self) -> bool:
        return self.status in (CarryForwardStatus.ACTIVE, CarryForwardStatus.PARTIALLY_APPLIED)


@dataclass(frozen=True)
class VatSettlement:
    """A finalised VAT period summary."""

    client_id: UUID
    period_year: int
    period_month: int
    output_vat: OutputVatBreakdown
    input_vat: InputVatBreakdown
    difference: Decimal
    carry_forward_from_previous: Decimal
    adjusted_difference: Decimal
    vat_due: Decimal
    vat_refund: Decimal
    refund_option: RefundOption | None
    refund_days: int | None
    transaction_count: int
    finalized_at: datetime
    due_date: date
    carry_forward_created_id: UUID | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())

    @property
    def period(self) -> TaxPeriod:
        return TaxPeriod(self.period_year, self.period_month)
