"""
Module: tax_engines
Responsibility:
    Package entrypoint that re-exports the pure calculators.  This is the
    import surface for tax_modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import tax_kernel and tax_config only.
    MUST NOT import tax_modules.

Invariants enforced:
    - Purity: engines never read the clock; dates arrive as parameters or
      are derived from the tax year/period in the input.
    - Decimal-only arithmetic; floats are rejected at input construction.
    - Determinism: identical inputs and catalog give identical outputs.

Usage:
    from tax_engines import IncomeTaxCalculator, IncomeTaxInput
    from tax_engines import VatCalculator, settle
    from tax_engines import ContributionCalculator
"""

from tax_engines.advance_payments import (
    AdvancePaymentCalculator,
    AdvancePaymentInput,
    AdvancePaymentResult,
    PeriodType,
    advance_due_date,
)
from tax_engines.contributions import (
    ContributionCalculator,
    ContributionKind,
    ContributionLine,
    ContributorType,
    EmployeeContributionInput,
    EmployeeContributionResult,
    HealthDeductionMethod,
    SelfEmployedContributionInput,
    SelfEmployedContributionResult,
    SelfEmployedScheme,
)
from tax_engines.income_tax import (
    BracketLine,
    CalculationMethod,
    IncomeTaxCalculator,
    IncomeTaxInput,
    IncomeTaxResult,
    TaxType,
    progressive_tax,
)
from tax_engines.vat import (
    CarryForwardBalance,
    InputVatBreakdown,
    OutputVatBreakdown,
    RefundOption,
    RefundOptionAvailability,
    SettlementLine,
    TransactionType,
    VatAmounts,
    VatCalculator,
    VatDirection,
    VatRateCode,
    VatSettlementResult,
    direction_for,
    refund_options,
    settle,
)

__all__ = [
    "AdvancePaymentCalculator",
    "AdvancePaymentInput",
    "AdvancePaymentResult",
    "BracketLine",
    "CalculationMethod",
    "CarryForwardBalance",
    "ContributionCalculator",
    "ContributionKind",
    "ContributionLine",
    "ContributorType",
    "EmployeeContributionInput",
    "EmployeeContributionResult",
    "HealthDeductionMethod",
    "IncomeTaxCalculator",
    "IncomeTaxInput",
    "IncomeTaxResult",
    "InputVatBreakdown",
    "OutputVatBreakdown",
    "PeriodType",
    "RefundOption",
    "RefundOptionAvailability",
    "SelfEmployedContributionInput",
    "SelfEmployedContributionResult",
    "SelfEmployedScheme",
    "SettlementLine",
    "TaxType",
    "TransactionType",
    "VatAmounts",
    "VatCalculator",
    "VatDirection",
    "VatRateCode",
    "VatSettlementResult",
    "advance_due_date",
    "direction_for",
    "progressive_tax",
    "refund_options",
    "settle",
]
