"""Month and year close sequencing."""

from tax_modules.period_close.models import (
    CloseIssue,
    ClosePhaseResult,
    HealthCheckResult,
    PeriodCloseResult,
)
from tax_modules.period_close.service import PeriodCloseService

__all__ = [
    "CloseIssue",
    "ClosePhaseResult",
    "HealthCheckResult",
    "PeriodCloseResult",
    "PeriodCloseService",
]
