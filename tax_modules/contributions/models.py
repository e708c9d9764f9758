"""
Contribution Domain Models.

``ContributionRecord`` is the persisted summary of one month of ZUS
contributions for one insured person.  The year-to-date pension base that
drives the annual ceiling is the sum of ``pension_base`` over the person's
earlier records of the same year.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from tax_kernel.domain.periods import TaxPeriod, validate_month, validate_year
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.contributions.models")


class ContributorKind(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    SELF_EMPLOYED = "SELF_EMPLOYED"


@dataclass(frozen=True)
class ContributionRecord:
    """One recorded month of contributions."""

    client_id: UUID
    person_id: UUID
    kind: ContributorKind
    year: int
    month: int
    pension_base: Decimal
    health_base: Decimal
    total_employee: Decimal
    total_employer: Decimal
    total: Decimal
    annual_limit_reached: bool
    due_date: date
    recorded_at: datetime
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())
        validate_year(self.year)
        validate_month(self.month)

    @property
    def period(self) -> TaxPeriod:
        return TaxPeriod(self.year, self.month)
