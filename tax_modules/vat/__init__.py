"""VAT transactions, settlements and the carry-forward ledger."""

from tax_modules.vat.eligibility import accelerated_refund_ineligibility, validate_vies_vat_id
from tax_modules.vat.models import (
    CarryForwardApplication,
    CarryForwardStatus,
    VatCarryForward,
    VatSettlement,
    VatTransaction,
    VatTransactionStatus,
)
from tax_modules.vat.repository import (
    InMemoryVatRepository,
    SqlVatRepository,
    VatRepository,
)
from tax_modules.vat.service import VAT_PAYMENT_DAY, VatService, vat_due_date
from tax_modules.vat.workflows import CARRY_FORWARD_WORKFLOW

__all__ = [
    "CARRY_FORWARD_WORKFLOW",
    "CarryForwardApplication",
    "CarryForwardStatus",
    "InMemoryVatRepository",
    "SqlVatRepository",
    "VAT_PAYMENT_DAY",
    "VatCarryForward",
    "VatRepository",
    "VatService",
    "VatSettlement",
    "VatTransaction",
    "VatTransactionStatus",
    "accelerated_refund_ineligibility",
    "validate_vies_vat_id",
    "vat_due_date",
]
