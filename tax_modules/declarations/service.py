"""
DeclarationService -- income tax declaration lifecycle.

Responsibility:
    Creates, edits, calculates, submits, accepts and corrects income tax
    declarations.  Calculation reads a loss ledger snapshot and is
    replayable; submission is the single point at which ledger effects
    (FIFO loss consumption, new loss record) are applied.

Architecture position:
    Modules layer -- orchestrates ``tax_engines.income_tax`` (pure) with the
    ``LossLedger`` and a ``DeclarationRepository``.  Transitions are checked
    against ``DECLARATION_WORKFLOW``.

Invariants enforced:
    - One original declaration per (client, tax type, year, period).
    - SUBMITTED, ACCEPTED and CORRECTED declarations are never edited or
      deleted.
    - Ledger effects are applied exactly once per declaration, at submit.
    - Submitting a correction first undoes the corrected declaration's
      ledger effects: its consumption is reversed by appended entries and
      the loss it created is superseded.

Failure modes:
    - DuplicateDeclarationError on a second original for the same period.
    - DeclarationImmutableError on update/delete after submission.
    - InvalidTransitionError for actions the workflow does not allow.
    - InvalidInputError when the client profile does not permit the method.
    - InsufficientBalanceError at submit when the ledger no longer holds the
      loss applied at calculation (recalculate and resubmit).  It is raised
      before any ledger entry is written, also for a correction.
    - LedgerRecordLockedError when a correction would supersede a loss that
      later declarations have already consumed.

Audit relevance:
    Every transition is logged with the declaration ID, from/to status and
    the ledger effect it produced.
"""

from __future__ import annotations

import time
from dataclasses import replace
from decimal import Decimal
from typing import Any
from uuid import UUID

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig
from tax_engines.income_tax import CalculationMethod, IncomeTaxCalculator, IncomeTaxResult
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.decimal_engine import ZERO
from tax_kernel.exceptions import (
    DeclarationImmutableError,
    DuplicateDeclarationError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidTransitionError,
)
from tax_kernel.logging_config import LogContext, get_logger
from tax_modules.declarations.models import INPUT_FIELDS, Declaration, DeclarationStatus
from tax_modules.declarations.repository import DeclarationRepository
from tax_modules.declarations.workflows import DECLARATION_WORKFLOW
from tax_modules.losses.ledger import LossLedger
from tax_modules.profiles import ClientProfileProvider

logger = get_logger("modules.declarations.service")


def _check_fields(changes: dict[str, Any]) -> None:
    unknown = sorted(set(changes) - set(INPUT_FIELDS))
    if unknown:
        raise InvalidInputError(
            f"Fields cannot be changed: {', '.join(unknown)}", field=unknown[0]
        )


class DeclarationService:
    """
    Income tax declaration lifecycle.

    Contract:
        Every public mutation returns the new state of the declaration.
        With SQL repositories the caller's ``session_scope`` makes the
        declaration and ledger writes of one call atomic.
    """

    def __init__(
        self,
        repository: DeclarationRepository,
        ledger: LossLedger,
        catalog: RateCatalog,
        profiles: ClientProfileProvider | None = None,
        clock: Clock | None = None,
        config: TaxEngineConfig | None = None,
    ):
        self._repo = repository
        self._ledger = ledger
        self._calculator = IncomeTaxCalculator(catalog, config)
        self._profiles = profiles
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, declaration_id: UUID) -> Declaration:
        return self._repo.get(declaration_id)

    def list_for_client(self, client_id: UUID) -> list[Declaration]:
        return self._repo.list_for_client(client_id)

    def corrections_of(self, declaration_id: UUID) -> list[Declaration]:
        original = self._repo.get(declaration_id)
        return [
            d for d in self._repo.find(
                original.client_id, original.tax_type.value, original.tax_year, original.period
            )
            if d.corrects_declaration_id == declaration_id
        ]

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    def create(
        self,
        client_id: UUID,
        method: CalculationMethod | str,
        tax_year: int,
        revenue: Decimal,
        costs: Decimal,
        *,
        period: int | None = None,
        **inputs: Any,
    ) -> Declaration:
        """
        Create a DRAFT declaration.

        Raises:
            DuplicateDeclarationError: an original already exists for the
                client, tax type, year and period.
        """
        _check_fields(inputs)
        declaration = Declaration(
            client_id=client_id,
            method=method,
            tax_year=tax_year,
            period=period,
            revenue=revenue,
            costs=costs,
            **inputs,
        )
        # Validates the inputs the calculator will need.
        declaration.to_calculation_input()
        existing = [
            d for d in self._repo.find(client_id, declaration.tax_type.value, tax_year, period)
            if not d.is_correction
        ]
        if existing:
            logger.warning("declaration_duplicate", extra={
                "client_id": str(client_id),
                "tax_type": declaration.tax_type.value,
                "tax_year": tax_year,
                "period": period,
                "existing_id": str(existing[0].id),
            })
            raise DuplicateDeclarationError(client_id, declaration.tax_type.value, tax_year, period)

        self._repo.add(declaration)
        logger.info("declaration_created", extra={
            "declaration_id": str(declaration.id),
            "client_id": str(client_id),
            "method": declaration.method.value,
            "tax_year": tax_year,
            "period": period,
        })
        return declaration

    def update(self, declaration_id: UUID, **changes: Any) -> Declaration:
        """
        Change inputs of a DRAFT or CALCULATED declaration.

        A CALCULATED declaration returns to DRAFT and loses its result.

        Raises:
            DeclarationImmutableError: SUBMITTED, ACCEPTED or CORRECTED.
        """
        _check_fields(changes)
        with self._repo.locked(declaration_id) as declaration:
            if not declaration.is_editable:
                self._refuse(declaration, "update")
            if "method" in changes:
                new_method = CalculationMethod.parse(changes["method"])
                if new_method.tax_type != declaration.tax_type:
                    raise InvalidInputError(
                        "Method cannot change the tax type of a declaration", field="method"
                    )
            transition = self._transition(declaration, "edit")
            updated = replace(
                declaration,
                status=DeclarationStatus(transition.to_state),
                **declaration.cleared_result(),
                **changes,
            )
            updated.to_calculation_input()
            self._repo.save(updated)
        logger.info("declaration_updated", extra={
            "declaration_id": str(declaration_id),
            "fields": sorted(changes),
            "from_status": declaration.status.value,
            "to_status": updated.status.value,
        })
        return updated

    def delete(self, declaration_id: UUID) -> None:
        """Raises DeclarationImmutableError once submitted."""
        with self._repo.locked(declaration_id) as declaration:
            if not declaration.is_editable:
                self._refuse(declaration, "delete")
            self._repo.delete(declaration_id)
        logger.info("declaration_deleted", extra={"declaration_id": str(declaration_id)})

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def _check_regime(self, declaration: Declaration) -> None:
        if self._profiles is None:
            return
        profile = self._profiles.get_profile(declaration.client_id)
        method = declaration.method
        reason = None
        if method == CalculationMethod.CIT_SMALL and not profile.is_small_taxpayer:
            reason = "Reduced CIT rate requires small taxpayer status"
        elif method == CalculationMethod.CIT_ESTONIAN and not profile.is_estonian_cit:
            reason = "Estonian CIT requires the client to have elected it"
        elif method.tax_type.value == "CIT" and method != CalculationMethod.CIT_ESTONIAN \
                and profile.is_estonian_cit:
            reason = "Client has elected Estonian CIT"
        if reason is not None:
            logger.warning("declaration_regime_not_eligible", extra={
                "declaration_id": str(declaration.id),
                "method": method.value,
                "reason": reason,
            })
            raise InvalidInputError(reason, field="method")

    def _available_loss(self, declaration: Declaration) -> Decimal:
        if not (declaration.apply_loss_carry_forward and declaration.is_annual):
            return ZERO
        return self._ledger_balance(declaration)

    def _ledger_balance(self, declaration: Declaration) -> Decimal:
        tax_type = declaration.tax_type.value
        if declaration.is_correction:
            # The corrected declaration's effects are undone at submit.
            original = self._repo.get(declaration.corrects_declaration_id)
            return self._ledger.balance_after_reversal(
                declaration.client_id,
                tax_type,
                original.id,
                declaration.tax_year,
                superseded_record_id=original.loss_record_id,
            )
        return self._ledger.get_available_balance(
            declaration.client_id, tax_type, declaration.tax_year
        )

    def preview(self, declaration_id: UUID) -> IncomeTaxResult:
        """Run the calculation without changing the declaration."""
        declaration = self._repo.get(declaration_id)
        return self._calculator.calculate(
            declaration.to_calculation_input(self._available_loss(declaration))
        )

    def calculate(self, declaration_id: UUID) -> Declaration:
        """
        DRAFT/CALCULATED -> CALCULATED.

        Idempotent: recalculating with unchanged inputs and ledger produces
        the same result.
        """
        t0 = time.monotonic()
        with LogContext.bind(declaration_id=str(declaration_id)):
            with self._repo.locked(declaration_id) as declaration:
                transition = self._transition(declaration, "calculate")
                self._check_regime(declaration)
                result = self._calculator.calculate(
                    declaration.to_calculation_input(self._available_loss(declaration))
                )
                updated = replace(
                    declaration,
                    status=DeclarationStatus(transition.to_state),
                    calculated_at=self._clock.now(),
                    **Declaration.result_fields(result),
                )
                self._repo.save(updated)

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info("declaration_calculated", extra={
                "method": updated.method.value,
                "tax_due": str(updated.tax_due),
                "loss": str(updated.loss),
                "loss_applied": str(updated.loss_applied),
                "duration_ms": duration_ms,
            })
        return updated

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _compensate(self, correction: Declaration) -> None:
        original = self._repo.get(correction.corrects_declaration_id)
        tax_type = original.tax_type.value
        if original.loss_record_id is not None:
            self._ledger.supersede(original.loss_record_id, by_declaration_id=correction.id)
        restored = self._ledger.reverse_consumption(
            original.client_id, tax_type, original.id, original.tax_year
        )
        logger.info("declaration_ledger_compensated", extra={
            "original_id": str(original.id),
            "correction_id": str(correction.id),
            "restored_loss": str(restored),
            "superseded_loss_record_id": (
                str(original.loss_record_id) if original.loss_record_id else None
            ),
        })

    def _check_loss_available(self, declaration: Declaration) -> None:
        """Refuse before any ledger row moves when the loss to apply is not there."""
        tax_type = declaration.tax_type.value
        available = self._ledger_balance(declaration)
        if declaration.loss_applied > available:
            logger.warning("declaration_submit_insufficient_loss", extra={
                "tax_type": tax_type,
                "loss_applied": str(declaration.loss_applied),
                "available": str(available),
            })
            raise InsufficientBalanceError(
                f"{declaration.client_id}/{tax_type}", declaration.loss_applied, available
            )

    def submit(self, declaration_id: UUID) -> Declaration:
        """
        CALCULATED -> SUBMITTED, applying ledger effects.

        Postconditions:
            - For a correction, the corrected declaration's effects are
              compensated first.
            - ``loss_applied`` has been consumed FIFO with this declaration
              as reference.
            - A loss record exists for ``loss`` when it is positive.
        """
        with LogContext.bind(declaration_id=str(declaration_id)):
            with self._repo.locked(declaration_id) as declaration:
                transition = self._transition(declaration, "submit")
                tax_type = declaration.tax_type.value
                loss_record_id = None

                if declaration.is_annual:
                    consumes = bool(declaration.loss_applied and declaration.loss_applied > ZERO)
                    if consumes:
                        self._check_loss_available(declaration)
                    if declaration.is_correction:
                        self._compensate(declaration)
                    if consumes:
                        self._ledger.consume(
                            declaration.client_id,
                            tax_type,
                            declaration.loss_applied,
                            declaration.tax_year,
                            declaration_id=declaration.id,
                        )
                    if declaration.loss and declaration.loss > ZERO:
                        record = self._ledger.record_loss(
                            declaration.client_id,
                            tax_type,
                            declaration.tax_year,
                            declaration.loss,
                            declaration_id=declaration.id,
                        )
                        loss_record_id = record.id

                updated = replace(
                    declaration,
                    status=DeclarationStatus(transition.to_state),
                    submitted_at=self._clock.now(),
                    loss_record_id=loss_record_id,
                )
                self._repo.save(updated)

            logger.info("declaration_submitted", extra={
                "tax_type": tax_type,
                "tax_year": updated.tax_year,
                "tax_due": str(updated.tax_due),
                "loss_applied": str(updated.loss_applied),
                "loss_record_id": str(loss_record_id) if loss_record_id else None,
                "correction_number": updated.correction_number,
            })
        return updated

    def accept(self, declaration_id: UUID) -> Declaration:
        with self._repo.locked(declaration_id) as declaration:
            transition = self._transition(declaration, "accept")
            updated = replace(
                declaration,
                status=DeclarationStatus(transition.to_state),
                accepted_at=self._clock.now(),
            )
            self._repo.save(updated)
        logger.info("declaration_accepted", extra={"declaration_id": str(declaration_id)})
        return updated

    def correct(self, declaration_id: UUID, reason: str, **changes: Any) -> Declaration:
        """
        SUBMITTED/ACCEPTED -> CORRECTED, returning the new DRAFT correction.

        The correction copies the original's inputs with ``changes``
        applied.  Ledger effects move only when the correction is
        submitted.
        """
        if not reason:
            raise InvalidInputError("A correction requires a reason", field="correction_reason")
        _check_fields(changes)
        with self._repo.locked(declaration_id) as original:
            transition = self._transition(original, "correct")
            correction = replace(
                original,
                id=None,
                status=DeclarationStatus.DRAFT,
                submitted_at=None,
                accepted_at=None,
                loss_record_id=None,
                corrects_declaration_id=original.id,
                correction_number=original.correction_number + 1,
                correction_reason=reason,
                **original.cleared_result(),
                **changes,
            )
            if correction.tax_type != original.tax_type:
                raise InvalidInputError(
                    "Method cannot change the tax type of a declaration", field="method"
                )
            correction.to_calculation_input()
            self._repo.save(replace(original, status=DeclarationStatus(transition.to_state)))
            self._repo.add(correction)

        logger.info("declaration_corrected", extra={
            "declaration_id": str(declaration_id),
            "correction_id": str(correction.id),
            "correction_number": correction.correction_number,
            "reason": reason,
        })
        return correction

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, declaration: Declaration, action: str):
        transition = DECLARATION_WORKFLOW.transition_for(declaration.status.value, action)
        if transition is None:
            logger.warning("declaration_transition_refused", extra={
                "declaration_id": str(declaration.id),
                "status": declaration.status.value,
                "action": action,
            })
            raise InvalidTransitionError(declaration.id, declaration.status.value, action)
        return transition

    def _refuse(self, declaration: Declaration, action: str) -> None:
        logger.warning("declaration_immutable", extra={
            "declaration_id": str(declaration.id),
            "status": declaration.status.value,
            "action": action,
        })
        raise DeclarationImmutableError(declaration.id, declaration.status.value, action)
