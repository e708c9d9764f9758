"""
PeriodCloseService -- month and year close sequencing.

Responsibility:
    Sequences the stateful steps that close a client's period: finalising
    the monthly VAT settlement and, at year end, calculating and submitting
    the annual income tax declaration.  All business rules live in
    ``VatService`` and ``DeclarationService``; this service adds ordering,
    readiness diagnostics and a per-phase record of the outcome.

Architecture position:
    Modules layer -- orchestration over the VAT and declaration services.

Invariants enforced:
    - Closing is idempotent: a finalised VAT period or a submitted
      declaration is reported as a skipped phase, never processed twice.
    - A failed phase stops the phases that depend on it.

Failure modes:
    - Domain errors raised inside a phase are logged and recorded on the
      phase result (``error_code``, ``message``); the run result reports
      ``success=False``.  Errors outside phases propagate.
"""

from __future__ import annotations

from uuid import UUID

from tax_engines.vat import RefundOption
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.exceptions import TaxKernelError
from tax_kernel.logging_config import LogContext, get_logger
from tax_modules.declarations.models import DeclarationStatus
from tax_modules.declarations.service import DeclarationService
from tax_modules.period_close.models import (
    ClosePhaseResult,
    CloseIssue,
    HealthCheckResult,
    PeriodCloseResult,
)
from tax_modules.vat.service import VatService

logger = get_logger("modules.period_close")


class PeriodCloseService:
    """
    Contract:
        ``close_month`` finalises VAT for one month; ``close_year``
        calculates and submits the annual declaration.  Both return a
        PeriodCloseResult describing every phase.
    Non-goals:
        Filing, payment and any external submission.
    """

    def __init__(
        self,
        vat: VatService,
        declarations: DeclarationService,
        clock: Clock | None = None,
    ):
        self._vat = vat
        self._declarations = declarations
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def health_check(self, client_id: UUID, year: int, month: int) -> HealthCheckResult:
        """Readiness of a month for VAT close."""
        period = TaxPeriod(year, month)
        blocking: list[CloseIssue] = []
        warnings: list[CloseIssue] = []

        if self._vat.get_settlement(client_id, year, month) is not None:
            warnings.append(CloseIssue(
                category="vat_settlement",
                description=f"VAT period {period.label} is already finalised",
                severity="warning",
            ))
        for earlier in range(1, month):
            if self._vat.get_settlement(client_id, year, earlier) is None:
                warnings.append(CloseIssue(
                    category="vat_settlement",
                    description=f"Earlier VAT period {TaxPeriod(year, earlier).label} is not finalised",
                    severity="warning",
                ))
        if not self._vat.list_transactions(client_id, year, month):
            warnings.append(CloseIssue(
                category="vat_transactions",
                description=f"No VAT transactions recorded for {period.label}",
                severity="warning",
            ))

        result = HealthCheckResult(
            client_id=client_id,
            period_label=period.label,
            run_at=self._clock.now(),
            blocking_issues=tuple(blocking),
            warnings=tuple(warnings),
        )
        logger.info("period_close_health_check", extra={
            "client_id": str(client_id),
            "period": period.label,
            "blocking_count": len(blocking),
            "warning_count": len(warnings),
        })
        return result

    # ------------------------------------------------------------------
    # Month close
    # ------------------------------------------------------------------

    def close_month(
        self,
        client_id: UUID,
        year: int,
        month: int,
        refund_option: RefundOption | str = RefundOption.BANK_TRANSFER,
    ) -> PeriodCloseResult:
        period = TaxPeriod(year, month)
        started_at = self._clock.now()
        with LogContext.bind(client_id=str(client_id), period=period.label):
            logger.info("period_close_started", extra={"scope": "month"})
            settlement = self._vat.get_settlement(client_id, year, month)
            if settlement is not None:
                phase = ClosePhaseResult(
                    phase=1,
                    phase_name="vat_settlement",
                    success=True,
                    skipped=True,
                    message="VAT period already finalised",
                    details={"settlement_id": str(settlement.id)},
                )
            else:
                try:
                    settlement = self._vat.finalize_settlement(client_id, year, month, refund_option)
                    phase = ClosePhaseResult(
                        phase=1,
                        phase_name="vat_settlement",
                        success=True,
                        details={
                            "settlement_id": str(settlement.id),
                            "vat_due": str(settlement.vat_due),
                            "vat_refund": str(settlement.vat_refund),
                        },
                    )
                except TaxKernelError as e:
                    phase = self._failed(1, "vat_settlement", e)

            result = PeriodCloseResult(
                client_id=client_id,
                period_label=period.label,
                started_at=started_at,
                completed_at=self._clock.now(),
                phases=(phase,),
                vat_settlement=settlement,
            )
            logger.info("period_close_completed", extra={
                "scope": "month",
                "success": result.success,
            })
        return result

    # ------------------------------------------------------------------
    # Year close
    # ------------------------------------------------------------------

    def close_year(self, declaration_id: UUID) -> PeriodCloseResult:
        """Calculate (if needed) and submit an annual declaration."""
        started_at = self._clock.now()
        declaration = self._declarations.get(declaration_id)
        client_id = declaration.client_id
        label = str(declaration.tax_year)
        phases: list[ClosePhaseResult] = []

        with LogContext.bind(
            client_id=str(client_id), declaration_id=str(declaration_id), period=label
        ):
            logger.info("period_close_started", extra={"scope": "year"})

            if declaration.status in (DeclarationStatus.DRAFT, DeclarationStatus.CALCULATED):
                try:
                    declaration = self._declarations.calculate(declaration_id)
                    phases.append(ClosePhaseResult(
                        phase=1,
                        phase_name="declaration_calculate",
                        success=True,
                        details={"tax_due": str(declaration.tax_due)},
                    ))
                except TaxKernelError as e:
                    phases.append(self._failed(1, "declaration_calculate", e))
            else:
                phases.append(ClosePhaseResult(
                    phase=1,
                    phase_name="declaration_calculate",
                    success=True,
                    skipped=True,
                    message=f"Declaration is {declaration.status.value}",
                ))

            # A failed calculation leaves nothing to submit.
            if not phases[-1].success:
                declaration = self._declarations.get(declaration_id)
            elif declaration.status == DeclarationStatus.CALCULATED:
                try:
                    declaration = self._declarations.submit(declaration_id)
                    phases.append(ClosePhaseResult(
                        phase=2,
                        phase_name="declaration_submit",
                        success=True,
                        details={
                            "loss_applied": str(declaration.loss_applied),
                            "loss_record_id": (
                                str(declaration.loss_record_id)
                                if declaration.loss_record_id else None
                            ),
                        },
                    ))
                except TaxKernelError as e:
                    phases.append(self._failed(2, "declaration_submit", e))
            else:
                phases.append(ClosePhaseResult(
                    phase=2,
                    phase_name="declaration_submit",
                    success=True,
                    skipped=True,
                    message=f"Declaration is {declaration.status.value}",
                ))

            result = PeriodCloseResult(
                client_id=client_id,
                period_label=label,
                started_at=started_at,
                completed_at=self._clock.now(),
                phases=tuple(phases),
                declaration=declaration,
            )
            logger.info("period_close_completed", extra={
                "scope": "year",
                "success": result.success,
                "status": declaration.status.value,
            })
        return result

    def _failed(self, phase: int, name: str, error: TaxKernelError) -> ClosePhaseResult:
        logger.warning("period_close_phase_failed", extra={
            "phase": phase,
            "phase_name": name,
            "error_code": error.code,
            "error_message": error.message,
        })
        return ClosePhaseResult(
            phase=phase,
            phase_name=name,
            success=False,
            message=error.message,
            error_code=error.code,
        )
