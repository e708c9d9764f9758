"""ZUS contributions with year-to-date tracking."""

from tax_modules.contributions.models import ContributionRecord, ContributorKind
from tax_modules.contributions.repository import (
    ContributionRepository,
    InMemoryContributionRepository,
    SqlContributionRepository,
)
from tax_modules.contributions.service import ContributionService

__all__ = [
    "ContributionRecord",
    "ContributionRepository",
    "ContributionService",
    "ContributorKind",
    "InMemoryContributionRepository",
    "SqlContributionRepository",
]
