"""
LossLedger -- per-client, per-tax-type loss carry-forward balances.

Responsibility:
    Records losses, reports the balance available in a tax year and
    consumes it strictly FIFO by loss year.  Every consumption appends to
    the record's usage history; reversals (for corrected declarations)
    append negative entries instead of editing history.

Architecture position:
    Modules layer -- owns ledger mutation.  Persistence is delegated to a
    ``LossRepository``; all read-modify-write happens inside
    ``repository.locked(client_id, tax_type)``.

Invariants enforced:
    - used + remaining == original on every record (checked by LossRecord).
    - FIFO: a younger loss is never touched while an older eligible loss
      still has a remaining balance.
    - Eligibility: loss_year < year <= expiry_year, not superseded.
    - Applying more than the remaining (or available) balance is an
      InsufficientBalanceError, never a partial application.

Failure modes:
    - LossRecordNotFoundError for unknown record IDs.
    - InsufficientBalanceError when the request exceeds the balance.
    - InvariantViolationError when a direct application would skip FIFO
      order or targets an ineligible record.
    - LedgerRecordLockedError when superseding a loss that has been used.

Audit relevance:
    Usage entries carry the consuming declaration ID; the history alone
    explains every change of ``remaining_amount``.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import UUID

from tax_config.schema import TaxEngineConfig
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.decimal_engine import ZERO, round_money, to_decimal, total
from tax_kernel.domain.periods import validate_year
from tax_kernel.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    LedgerRecordLockedError,
    LossRecordNotFoundError,
)
from tax_kernel.logging_config import LogContext, get_logger
from tax_modules.losses.models import (
    LossApplication,
    LossConsumptionResult,
    LossRecord,
    LossUsage,
)
from tax_modules.losses.repository import LossRepository

logger = get_logger("modules.losses.ledger")


def _positive(amount: Decimal | str | int, field: str) -> Decimal:
    value = to_decimal(amount, field)
    if value <= ZERO:
        raise InvalidAmountError(amount, field, "must be positive")
    return value


class LossLedger:
    """
    Loss carry-forward ledger.

    Contract:
        ``get_available_balance`` is a pure read.  ``consume``,
        ``apply_consumption``, ``reverse_consumption``, ``record_loss`` and
        ``supersede`` are the only mutations; each runs under the
        repository lock for (client, tax type).
    Non-goals:
        - Does NOT decide how much loss to apply; the income tax calculator
          caps the offset and the declaration service asks for it.
    """

    def __init__(
        self,
        repository: LossRepository,
        clock: Clock | None = None,
        config: TaxEngineConfig | None = None,
    ):
        self._repo = repository
        self._clock = clock or SystemClock()
        self._config = config or TaxEngineConfig()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_records(self, client_id: UUID, tax_type: str) -> list[LossRecord]:
        return self._repo.list_for(client_id, tax_type)

    def get_record(self, record_id: UUID) -> LossRecord:
        return self._repo.get(record_id)

    def eligible_records(self, client_id: UUID, tax_type: str, year: int) -> list[LossRecord]:
        """Records consumable in ``year``, FIFO order."""
        return [r for r in self._repo.list_for(client_id, tax_type) if r.is_eligible(year)]

    def get_available_balance(self, client_id: UUID, tax_type: str, as_of_year: int) -> Decimal:
        """Sum of remaining balances of records eligible in ``as_of_year``."""
        validate_year(as_of_year, "as_of_year")
        available = total(
            r.remaining_amount for r in self.eligible_records(client_id, tax_type, as_of_year)
        )
        logger.debug("loss_balance_queried", extra={
            "client_id": str(client_id),
            "tax_type": tax_type,
            "as_of_year": as_of_year,
            "available": str(available),
        })
        return available

    def balance_after_reversal(
        self,
        client_id: UUID,
        tax_type: str,
        declaration_id: UUID,
        year: int,
        superseded_record_id: UUID | None = None,
    ) -> Decimal:
        """
        Balance available in ``year`` once ``declaration_id``'s consumption
        is reversed and ``superseded_record_id`` is retired.  Mutates nothing.
        """
        validate_year(year, "year")
        available = ZERO
        for record in self._repo.list_for(client_id, tax_type):
            if record.id == superseded_record_id or record.is_superseded:
                continue
            if not record.loss_year < year <= record.expiry_year:
                continue
            available += record.remaining_amount + max(record.net_used_by(declaration_id), ZERO)
        return available

    # ------------------------------------------------------------------
    # Mutations)
    # ------------------------------------------------------------------

    def record_loss(
        self,
        client_id: UUID,
        tax_type: str,
        loss_year: int,
        amount: Decimal,
        declaration_id: UUID | None = None,
    ) -> LossRecord:
        """
        Create a loss record expiring ``loss_carry_forward_years`` after
        ``loss_year``.
        """
        validate_year(loss_year, "loss_year")
        value = round_money(_positive(amount, "amount"))
        record = LossRecord(
            client_id=client_id,
            tax_type=tax_type,
            loss_year=loss_year,
            original_amount=value,
            expiry_year=loss_year + self._config.loss_carry_forward_years,
            source_declaration_id=declaration_id,
        )
        with self._repo.locked(client_id, tax_type):
            self._repo.add(record)
        logger.info("loss_recorded", extra={
            "loss_record_id": str(record.id),
            "client_id": str(client_id),
            "tax_type": tax_type,
            "loss_year": loss_year,
            "amount": str(value),
            "expiry_year": record.expiry_year,
            "declaration_id": str(declaration_id) if declaration_id else None,
        })
        return record

    def consume(
        self,
        client_id: UUID,
        tax_type: str,
        amount: Decimal,
        year: int,
        declaration_id: UUID | None = None,
    ) -> LossConsumptionResult:
        """
        Consume ``amount`` FIFO by loss year across eligible records.

        Postconditions:
            - Older records are exhausted before younger ones are touched.
            - Exactly ``amount`` is consumed, or nothing is.
        Raises:
            InsufficientBalanceError: amount exceeds the available balance.
        """
        requested = _positive(amount, "amount")
        validate_year(year, "year")
        applications: list[LossApplication] = []

        with LogContext.bind(
            client_id=client_id, tax_type=tax_type, declaration_id=declaration_id
        ), self._repo.locked(client_id, tax_type) as records:
            eligible = [r for r in records if r.is_eligible(year)]
            available = total(r.remaining_amount for r in eligible)
            if requested > available:
                logger.warning("loss_consumption_insufficient_balance", extra={
                    "client_id": str(client_id),
                    "tax_type": tax_type,
                    "year": year,
                    "requested": str(requested),
                    "available": str(available),
                })
                raise InsufficientBalanceError(
                    f"{client_id}/{tax_type}", requested, available
                )

            outstanding = requested
            now = self._clock.now()
            for record in eligible:
                if outstanding == ZERO:
                    break
                portion = min(outstanding, record.remaining_amount)
                updated = record.with_usage(LossUsage(
                    year=year,
                    amount=portion,
                    declaration_id=declaration_id,
                    recorded_at=now,
                ))
                self._repo.save(updated)
                applications.append(LossApplication(
                    loss_record_id=record.id,
                    loss_year=record.loss_year,
                    amount_applied=portion,
                    remaining_after=updated.remaining_amount,
                ))
                outstanding -= portion

        result = LossConsumptionResult(
            client_id=client_id,
            tax_type=tax_type,
            year=year,
            declaration_id=declaration_id,
            total_applied=requested,
            applications=tuple(applications),
        )
        logger.info("loss_consumed", extra={
            "client_id": str(client_id),
            "tax_type": tax_type,
            "year": year,
            "amount": str(requested),
            "records_touched": len(applications),
            "declaration_id": str(declaration_id) if declaration_id else None,
        })
        return result

    def apply_consumption(
        self,
        record_id: UUID,
        amount: Decimal,
        reference_id: UUID | None = None,
        year: int | None = None,
    ) -> LossRecord:
        """
        Apply ``amount`` to one record.

        Preconditions:
            - The record is eligible in ``year`` (default: current year).
            - No older eligible record of the same client and tax type has
              a remaining balance.
        Postconditions:
            - Returns the updated record; ``remaining_amount`` is the new
              balance.
        Raises:
            LossRecordNotFoundError, InsufficientBalanceError,
            InvariantViolationError (ineligible record or FIFO skip).
        """
        requested = _positive(amount, "amount")
        year = year if year is not None else self._clock.today().year
        current = self._repo.get(record_id)

        with self._repo.locked(current.client_id, current.tax_type) as records:
            record = next((r for r in records if r.id == record_id), None)
            if record is None:
                raise LossRecordNotFoundError(record_id)
            if not record.is_eligible(year):
                logger.warning("loss_application_ineligible", extra={
                    "loss_record_id": str(record_id),
                    "year": year,
                    "status": record.status_for(year).value,
                })
                raise InvariantViolationError(
                    f"Loss record {record_id} is not eligible in {year} "
                    f"(status {record.status_for(year).value})",
                    field="record_id",
                )
            older = [
                r for r in records
                if r.is_eligible(year) and r.loss_year < record.loss_year
            ]
            if older:
                logger.warning("loss_application_fifo_violation", extra={
                    "loss_record_id": str(record_id),
                    "older_record_id": str(older[0].id),
                })
                raise InvariantViolationError(
                    f"Loss from {older[0].loss_year} must be consumed before "
                    f"loss from {record.loss_year}",
                    field="record_id",
                )
            if requested > record.remaining_amount:
                logger.warning("loss_application_insufficient_balance", extra={
                    "loss_record_id": str(record_id),
                    "requested": str(requested),
                    "remaining": str(record.remaining_amount),
                })
                raise InsufficientBalanceError(record_id, requested, record.remaining_amount)

            updated = record.with_usage(LossUsage(
                year=year,
                amount=requested,
                declaration_id=reference_id,
                recorded_at=self._clock.now(),
            ))
            self._repo.save(updated)

        logger.info("loss_applied", extra={
            "loss_record_id": str(record_id),
            "amount": str(requested),
            "remaining": str(updated.remaining_amount),
            "reference_id": str(reference_id) if reference_id else None,
        })
        return updated

    def reverse_consumption(
        self,
        client_id: UUID,
        tax_type: str,
        declaration_id: UUID,
        year: int,
    ) -> Decimal:
        """
        Undo a declaration's net consumption by appending reversal entries.

        Returns the total amount restored.
        """
        restored = ZERO
        with self._repo.locked(client_id, tax_type) as records:
            now = self._clock.now()
            for record in records:
                net_used = record.net_used_by(declaration_id)
                if net_used <= ZERO:
                    continue
                self._repo.save(record.with_usage(LossUsage(
                    year=year,
                    amount=-net_used,
                    declaration_id=declaration_id,
                    recorded_at=now,
                    is_reversal=True,
                )))
                restored += net_used
        logger.info("loss_consumption_reversed", extra={
            "client_id": str(client_id),
            "tax_type": tax_type,
            "declaration_id": str(declaration_id),
            "restored": str(restored),
        })
        return restored

    def supersede(self, record_id: UUID, by_declaration_id: UUID) -> LossRecord:
        """
        Retire a loss record created by a declaration that is being
        corrected.

        Raises:
            LedgerRecordLockedError: part of the loss has already been used.
        """
        current = self._repo.get(record_id)
        with self._repo.locked(current.client_id, current.tax_type) as records:
            record = next(r for r in records if r.id == record_id)
            if record.used_amount > ZERO:
                logger.warning("loss_supersede_refused", extra={
                    "loss_record_id": str(record_id),
                    "used_amount": str(record.used_amount),
                })
                raise LedgerRecordLockedError(record_id, record.used_amount)
            updated = replace(record, superseded_by_declaration_id=by_declaration_id)
            self._repo.save(updated)
        logger.info("loss_record_superseded", extra={
            "loss_record_id": str(record_id),
            "superseded_by": str(by_declaration_id),
        })
        return updated

    def records_created_by(
        self, client_id: UUID, tax_type: str, declaration_id: UUID
    ) -> list[LossRecord]:
        return [
            r for r in self._repo.list_for(client_id, tax_type)
            if r.source_declaration_id == declaration_id and not r.is_superseded
        ]
