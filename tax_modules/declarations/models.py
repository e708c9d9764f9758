"""
Declaration Domain Models.

Responsibility:
    Frozen DTO for an income tax declaration: the period inputs the
    calculator needs, the computed breakdown, lifecycle status and the
    correction chain.

Invariants:
    - ``frozen=True``; every lifecycle step produces a new instance.
    - Monetary fields are ``Decimal``.
    - ``correction_number`` is 0 for an original and ``n`` for the n-th
      correction; a correction always names the declaration it corrects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from tax_engines.income_tax import CalculationMethod, IncomeTaxInput, IncomeTaxResult, TaxType
from tax_kernel.domain.decimal_engine import ZERO, to_decimal
from tax_kernel.domain.periods import validate_month, validate_year
from tax_kernel.exceptions import InvariantViolationError
from tax_kernel.logging_config import get_logger

logger = get_logger("modules.declarations.models")


class DeclarationStatus(str, Enum):
    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    CORRECTED = "CORRECTED"


EDITABLE_STATUSES = frozenset({DeclarationStatus.DRAFT, DeclarationStatus.CALCULATED})

# Input fields a caller may change through update() or correct().
INPUT_FIELDS = (
    "method",
    "revenue",
    "costs",
    "non_deductible_costs",
    "tax_exempt_revenue",
    "apply_loss_carry_forward",
    "social_contributions",
    "health_contributions",
    "joint_filing",
    "spouse_income",
    "child_count",
    "activity_code",
)

_MONEY_INPUTS = (
    "revenue",
    "costs",
    "non_deductible_costs",
    "tax_exempt_revenue",
    "social_contributions",
    "health_contributions",
    "spouse_income",
)


@dataclass(frozen=True)
class Declaration:
    """
    One income tax declaration.

    ``period`` is None for an annual declaration, otherwise the month of a
    monthly one.  Only annual declarations consume or create losses.
    """

    client_id: UUID
    tax_year: int
    method: CalculationMethod
    revenue: Decimal
    costs: Decimal
    period: int | None = None
    non_deductible_costs: Decimal = ZERO
    tax_exempt_revenue: Decimal = ZERO
    apply_loss_carry_forward: bool = False
    social_contributions: Decimal = ZERO
    health_contributions: Decimal = ZERO
    joint_filing: bool = False
    spouse_income: Decimal | None = None
    child_count: int = 0
    activity_code: str | None = None
    status: DeclarationStatus = DeclarationStatus.DRAFT
    # Computed breakdown, set by calculate().
    income: Decimal | None = None
    loss: Decimal | None = None
    tax_base: Decimal | None = None
    available_loss: Decimal | None = None
    loss_applied: Decimal | None = None
    taxable_income: Decimal | None = None
    tax_before_reliefs: Decimal | None = None
    solidarity_surcharge: Decimal | None = None
    child_relief: Decimal | None = None
    health_deduction: Decimal | None = None
    tax_due: Decimal | None = None
    effective_rate: Decimal | None = None
    calculated_at: datetime | None = None
    submitted_at: datetime | None = None
    accepted_at: datetime | None = None
    corrects_declaration_id: UUID | None = None
    correction_number: int = 0
    correction_reason: str | None = None
    loss_record_id: UUID | None = None
    id: UUID | None = None

    def __post_init__(self) -> None:
        if self.id is None:
            object.__setattr__(self, "id", uuid4())
        object.__setattr__(self, "method", CalculationMethod.parse(self.method))
        for name in _MONEY_INPUTS:
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_decimal(value, name, allow_negative=False))
        validate_year(self.tax_year, "tax_year")
        if self.period is not None:
            validate_month(self.period, "period")
        if self.correction_number < 0:
            raise InvariantViolationError(
                "correction_number cannot be negative", field="correction_number"
            )
        if (self.correction_number > 0) != (self.corrects_declaration_id is not None):
            raise InvariantViolationError(
                "A correction must reference the declaration it corrects",
                field="corrects_declaration_id",
            )

    @property
    def tax_type(self) -> TaxType:
        return self.method.tax_type

    @property
    def is_annual(self) -> bool:
        return self.period is None

    @property
    def is_correction(self) -> bool:
        return self.corrects_declaration_id is not None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def to_calculation_input(self, available_loss: Decimal = ZERO) -> IncomeTaxInput:
        return IncomeTaxInput(
            method=self.method,
            tax_year=self.tax_year,
            revenue=self.revenue,
            costs=self.costs,
            non_deductible_costs=self.non_deductible_costs,
            tax_exempt_revenue=self.tax_exempt_revenue,
            apply_loss_carry_forward=self.apply_loss_carry_forward,
            available_loss=available_loss,
            social_contributions=self.social_contributions,
            health_contributions=self.health_contributions,
            joint_filing=self.joint_filing,
            spouse_income=self.spouse_income,
            child_count=self.child_count,
            activity_code=self.activity_code,
        )

    @staticmethod
    def result_fields(result: IncomeTaxResult) -> dict:
        """Declaration fields populated from a calculation result."""
        return {
            "income": result.income,
            "loss": result.loss,
            "tax_base": result.tax_base,
            "available_loss": result.available_loss,
            "loss_applied": result.loss_applied,
            "taxable_income": result.taxable_income,
            "tax_before_reliefs": result.tax_before_reliefs,
            "solidarity_surcharge": result.solidarity_surcharge,
            "child_relief": result.child_relief,
            "health_deduction": result.health_deduction,
            "tax_due": result.tax_due,
            "effective_rate": result.effective_rate,
        }

    def cleared_result(self) -> dict:
        return {name: None for name in (
            "income", "loss", "tax_base", "available_loss", "loss_applied",
            "taxable_income", "tax_before_reliefs", "solidarity_surcharge",
            "child_relief", "health_deduction", "tax_due", "effective_rate",
            "calculated_at",
        )}
