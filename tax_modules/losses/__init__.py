"""Loss carry-forward ledger."""

from tax_modules.losses.ledger import LossLedger
from tax_modules.losses.models import (
    LossApplication,
    LossConsumptionResult,
    LossRecord,
    LossStatus,
    LossUsage,
)
from tax_modules.losses.repository import (
    InMemoryLossRepository,
    LossRepository,
    SqlLossRepository,
)

__all__ = [
    "InMemoryLossRepository",
    "LossApplication",
    "LossConsumptionResult",
    "LossLedger",
    "LossRecord",
    "LossRepository",
    "LossStatus",
    "LossUsage",
    "SqlLossRepository",
]
