"""
Loss Carry-Forward Domain Models.

Responsibility:
    Frozen DTOs for tax losses carried forward between years and the
    append-only usage history that records every consumption.

Invariants:
    - ``used_amount + remaining_amount == original_amount`` on every record.
    - ``remaining_amount >= 0``.
    - Usage history is append-only; a reversal is a new entry with a
      negative amount, never an edit of an earlier entry.
    - All monetary fields use ``Decimal`` -- NEVER ``float``.

Failure modes:
    - InvariantViolationError on construction of an inconsistent record.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from tax_kernel.domain.decimal_engine import ZERO, total
from tax_kernel.exceptions import InvariantViolationError
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.losses.models")


class LossStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PARTIALLY_CONSUMED = "PARTIALLY_CONSUMED"
    FULLY_CONSUMED = "FULLY_CONSUMED"
    EXPIRED = "EXPIRED"
    SUPERSEDED = "SUPERSEDED"


@dataclass(frozen=True)
class LossUsage:
    """One entry in a loss record's usage history."""

    year: int
    amount: Decimal  # negative for a reversal
    declaration_id: UUID | None
    recorded_at: datetime
    is_reversal: bool = False


@dataclass(frozen=True)
class LossRecord:
    """
    A tax loss available for carry-forward.

    Contract:
        Created once when a declaration is submitted with a loss; mutated
        only by consumption, reversal and supersession, each producing a
        new instance.
    Guarantees:
        - used + remaining == original, remaining >= 0.
        - ``used_amount`` equals the sum of ``usage_history`` amounts.
    """

    client_id: UUID
    tax_type: str
    loss_year: int
    original_amount: Decimal
    expiry_year: int
    used_amount: Decimal = ZERO
    remaining_amount: Decimal | None = None
    usage_history: tuple[LossUsage, ...] = ()
    source_declaration_id: UUID | None = None
    superseded_by_declaration_id: UUID | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())
        if self.remaining_amount is None:
            object.__setattr__(self, "remaining_amount", self.original_amount - self.used_amount)
        if self.original_amount <= ZERO:
            raise InvariantViolationError(
                f"Loss record original amount must be positive, got {self.original_amount}",
                field="original_amount",
            )
        if self.remaining_amount < ZERO:
            raise InvariantViolationError(
                f"Loss record {self.id} remaining amount cannot be negative",
                field="remaining_amount",
            )
        if self.used_amount + self.remaining_amount != self.original_amount:
            raise InvariantViolationError(
                f"Loss record {self.id}: used {self.used_amount} + remaining "
                f"{self.remaining_amount} != original {self.original_amount}",
                field="used_amount",
            )
        if total(u.amount for u in self.usage_history) != self.used_amount:
            raise InvariantViolationError(
                f"Loss record {self.id}: usage history does not sum to used amount",
                field="usage_history",
            )
        if self.expiry_year < self.loss_year:
            raise InvariantViolationError(
                f"Loss record {self.id}: expiry year precedes loss year",
                field="expiry_year",
            )

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by_declaration_id is not None

    def status_for(self, current_year: int) -> LossStatus:
        """Lifecycle status as seen in ``current_year``."""
        if self.is_superseded:
            return LossStatus.SUPERSEDED
        if current_year > self.expiry_year:
            return LossStatus.EXPIRED
        if self.remaining_amount == ZERO:
            return LossStatus.FULLY_CONSUMED
        if self.used_amount > ZERO:
            return LossStatus.PARTIALLY_CONSUMED
        return LossStatus.ACTIVE

    def is_eligible(self, current_year: int) -> bool:
        """Consumable in ``current_year``: later than the loss year, not expired."""
        return (
            not self.is_superseded
            and self.loss_year < current_year <= self.expiry_year
            and self.remaining_amount > ZERO
        )

    def with_usage(self, usage: LossUsage) -> LossRecord:
        return replace(
            self,
            used_amount=self.used_amount + usage.amount,
            remaining_amount=self.remaining_amount - usage.amount,
            usage_history=self.usage_history + (usage,),
        )

    def net_used_by(self, declaration_id: UUID) -> Decimal:
        """Net amount consumed by one declaration (reversals included)."""
        return total(u.amount for u in self.usage_history if u.declaration_id == declaration_id)


@dataclass(frozen=True)
class LossApplication:
    """One record's share of a FIFO consumption."""

    loss_record_id: UUID
    loss_year: int
    amount_applied: Decimal
    remaining_after: Decimal


@dataclass(frozen=True)
class LossConsumptionResult:
    client_id: UUID
    tax_type: str
    year: int
    declaration_id: UUID | None
    total_applied: Decimal
    applications: tuple[LossApplication, ...]
