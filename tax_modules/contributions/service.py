"""
ContributionService -- monthly ZUS contributions with year-to-date tracking.

Responsibility:
    Feeds the contribution calculator the year-to-date pension base derived
    from the person's earlier records, and records each month's result so
    the annual ceiling applies across months.

Invariants enforced:
    - One record per insured person and month.
    - Months are recorded in order within a year; recording a month earlier
      than the latest recorded one would invalidate the ceiling applied to
      the later months.

Failure modes:
    - ContributionAlreadyRecordedError for a second record of a month.
    - InvalidPeriodError for a month earlier than the latest recorded one.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig
from tax_engines.contributions import (
    ContributionCalculator,
    EmployeeContributionInput,
    EmployeeContributionResult,
    SelfEmployedContributionInput,
    SelfEmployedContributionResult,
)
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.decimal_engine import ZERO, total
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.exceptions import ContributionAlreadyRecordedError, InvalidPeriodError
from tax_kernel.logging_config import LogContext, get_logger
from tax_modules.contributions.models import ContributionRecord, ContributorKind
from tax_modules.contributions.repository import ContributionRepository

logger = get_logger("modules.contributions.service")


def _ytd_base(records: list[ContributionRecord], month: int) -> Decimal:
    return total(r.pension_base for r in records if r.month < month)


class ContributionService:
    def __init__(
        self,
        repository: ContributionRepository,
        catalog: RateCatalog,
        clock: Clock | None = None,
        config: TaxEngineConfig | None = None,
    ):
        self._repo = repository
        self._calculator = ContributionCalculator(catalog, config)
        self._clock = clock or SystemClock()

    def ytd_pension_base(self, person_id: UUID, year: int, before_month: int = 13) -> Decimal:
        """Pension base already charged in ``year`` before ``before_month``."""
        return _ytd_base(self._repo.list_for(person_id, year), before_month)

    def list_records(self, person_id: UUID, year: int) -> list[ContributionRecord]:
        return self._repo.list_for(person_id, year)

    # ------------------------------------------------------------------
    # Previews
    # ------------------------------------------------------------------

    def calculate_employee(
        self, person_id: UUID, year: int, month: int, gross_salary: Decimal, **inputs: Any
    ) -> EmployeeContributionResult:
        """Preview; the year-to-date base comes from recorded months."""
        inp = EmployeeContributionInput(
            year=year,
            month=month,
            gross_salary=gross_salary,
            ytd_pension_base=self.ytd_pension_base(person_id, year, month),
            **inputs,
        )
        return self._calculator.calculate_employee(inp)

    def calculate_self_employed(
        self, person_id: UUID, year: int, month: int, **inputs: Any
    ) -> SelfEmployedContributionResult:
        inp = SelfEmployedContributionInput(
            year=year,
            month=month,
            ytd_pension_base=self.ytd_pension_base(person_id, year, month),
            **inputs,
        )
        return self._calculator.calculate_self_employed(inp)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _check_month(self, records: list[ContributionRecord], person_id: UUID, year: int, month: int) -> None:
        if any(r.month == month for r in records):
            logger.warning("contribution_already_recorded", extra={
                "person_id": str(person_id),
                "year": year,
                "month": month,
            })
            raise ContributionAlreadyRecordedError(person_id, year, month)
        latest = max((r.month for r in records), default=0)
        if month < latest:
            raise InvalidPeriodError(
                month, "month", f"months up to {latest} are already recorded for {year}"
            )

    def record_employee(
        self,
        client_id: UUID,
        person_id: UUID,
        year: int,
        month: int,
        gross_salary: Decimal,
        **inputs: Any,
    ) -> tuple[ContributionRecord, EmployeeContributionResult]:
        with LogContext.bind(
            client_id=client_id, person_id=person_id, period=TaxPeriod(year, month).label
        ), self._repo.locked(person_id, year) as records:
            self._check_month(records, person_id, year, month)
            result = self._calculator.calculate_employee(EmployeeContributionInput(
                year=year,
                month=month,
                gross_salary=gross_salary,
                ytd_pension_base=_ytd_base(records, month),
                **inputs,
            ))
            record = ContributionRecord(
                client_id=client_id,
                person_id=person_id,
                kind=ContributorKind.EMPLOYEE,
                year=year,
                month=month,
                pension_base=result.pension_base,
                health_base=result.health_base,
                total_employee=result.total_employee,
                total_employer=result.total_employer,
                total=result.total,
                annual_limit_reached=result.annual_limit_reached,
                due_date=result.due_date,
                recorded_at=self._clock.now(),
            )
            self._repo.add(record)
        self._log_recorded(record)
        return record, result

    def record_self_employed(
        self,
        client_id: UUID,
        person_id: UUID,
        year: int,
        month: int,
        **inputs: Any,
    ) -> tuple[ContributionRecord, SelfEmployedContributionResult]:
        with LogContext.bind(
            client_id=client_id, person_id=person_id, period=TaxPeriod(year, month).label
        ), self._repo.locked(person_id, year) as records:
            self._check_month(records, person_id, year, month)
            result = self._calculator.calculate_self_employed(SelfEmployedContributionInput(
                year=year,
                month=month,
                ytd_pension_base=_ytd_base(records, month),
                **inputs,
            ))
            record = ContributionRecord(
                client_id=client_id,
                person_id=person_id,
                kind=ContributorKind.SELF_EMPLOYED,
                year=year,
                month=month,
                pension_base=result.pension_base,
                health_base=result.health_base,
                total_employee=result.total,
                total_employer=ZERO,
                total=result.total,
                annual_limit_reached=result.annual_limit_reached,
                due_date=result.due_date,
                recorded_at=self._clock.now(),
            )
            self._repo.add(record)
        self._log_recorded(record)
        return record, result

    def _log_recorded(self, record: ContributionRecord) -> None:
        logger.info("contribution_recorded", extra={
            "record_id": str(record.id),
            "person_id": str(record.person_id),
            "kind": record.kind.value,
            "period": record.period.label,
            "pension_base": str(record.pension_base),
            "total": str(record.total),
            "annual_limit_reached": record.annual_limit_reached,
        })
