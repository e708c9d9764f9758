"""
Period Close DTOs.

Frozen results produced by ``PeriodCloseService``: one ``ClosePhaseResult``
per phase and a ``PeriodCloseResult`` for the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from tax_modules.declarations.models import Declaration
from tax_modules.vat.models import VatSettlement


@dataclass(frozen=True)
class CloseIssue:
    """Diagnostic item from a readiness check."""
    category: str
    description: str
    severity: str  # "blocking" or "warning"
    entity_id: str | None = None


@dataclass(frozen=True)
class HealthCheckResult:
    """Pre-close diagnostic; mutates nothing."""
    client_id: UUID
    period_label: str
    run_at: datetime
    blocking_issues: tuple[CloseIssue, ...] = ()
    warnings: tuple[CloseIssue, ...] = ()

    @property
    def can_proceed(self) -> bool:
        return not self.blocking_issues


@dataclass(frozen=True)
class ClosePhaseResult:
    phase: int
    phase_name: str
    success: bool
    skipped: bool = False
    message: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PeriodCloseResult:
    client_id: UUID
    period_label: str
    started_at: datetime
    completed_at: datetime
    phases: tuple[ClosePhaseResult, ...]
    vat_settlement: VatSettlement | None = None
    declaration: Declaration | None = None

    @property
    def success(self) -> bool:
        return all(p.success for p in self.phases)

    @property
    def failed_phases(self) -> tuple[ClosePhaseResult, ...]:
        return tuple(p for p in self.phases if not p.success)
