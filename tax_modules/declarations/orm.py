"""
Declaration ORM Persistence Model (``tax_modules.declarations.orm``).

Responsibility:
    SQLAlchemy model persisting ``Declaration`` with its computed breakdown
    and correction chain.

Invariants enforced:
    - Monetary fields use Decimal (Numeric(38,9)).
    - Status stored as String(20) holding the enum value.
    - ``correction_number >= 0`` is a database CHECK constraint.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from tax_kernel.db.base import TrackedBase

_COPIED_FIELDS = (
    "client_id",
    "tax_year",
    "period",
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
    "income",
    "loss",
    "tax_base",
    "available_loss",
    "loss_applied",
    "taxable_income",
    "tax_before_reliefs",
    "solidarity_surcharge",
    "child_relief",
    "health_deduction",
    "tax_due",
    "effective_rate",
    "calculated_at",
    "submitted_at",
    "accepted_at",
    "corrects_declaration_id",
    "correction_number",
    "correction_reason",
    "loss_record_id",
)


class DeclarationModel(TrackedBase):
    """ORM model for ``Declaration``."""

    __tablename__ = "tax_declarations"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    tax_type: Mapped[str] = mapped_column(String(10), nullable=False)
    tax_year: Mapped[int] = mapped_column(nullable=False)
    period: Mapped[int | None] = mapped_column(nullable=True)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="DRAFT")

    revenue: Mapped[Decimal] = mapped_column(nullable=False)
    costs: Mapped[Decimal] = mapped_column(nullable=False)
    non_deductible_costs: Mapped[Decimal] = mapped_column(nullable=False)
    tax_exempt_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    apply_loss_carry_forward: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    social_contributions: Mapped[Decimal] = mapped_column(nullable=False)
    health_contributions: Mapped[Decimal] = mapped_column(nullable=False)
    joint_filing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    spouse_income: Mapped[Decimal | None] = mapped_column(nullable=True)
    child_count: Mapped[int] = mapped_column(nullable=False, default=0)
    activity_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    income: Mapped[Decimal | None] = mapped_column(nullable=True)
    loss: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_base: Mapped[Decimal | None] = mapped_column(nullable=True)
    available_loss: Mapped[Decimal | None] = mapped_column(nullable=True)
    loss_applied: Mapped[Decimal | None] = mapped_column(nullable=True)
    taxable_income: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_before_reliefs: Mapped[Decimal | None] = mapped_column(nullable=True)
    solidarity_surcharge: Mapped[Decimal | None] = mapped_column(nullable=True)
    child_relief: Mapped[Decimal | None] = mapped_column(nullable=True)
    health_deduction: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_due: Mapped[Decimal | None] = mapped_column(nullable=True)
    effective_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    corrects_declaration_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tax_declarations.id"), nullable=True,
    )
    correction_number: Mapped[int] = mapped_column(nullable=False, default=0)
    correction_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    loss_record_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("correction_number >= 0", name="ck_tax_declaration_correction_number"),
        Index("idx_tax_declaration_client_period", "client_id", "tax_type", "tax_year", "period"),
        Index("idx_tax_declaration_corrects", "corrects_declaration_id"),
    )

    def to_dto(self):
        from tax_engines.income_tax import CalculationMethod
        from tax_modules.declarations.models import Declaration, DeclarationStatus
        return Declaration(
            id=self.id,
            method=CalculationMethod(self.method),
            status=DeclarationStatus(self.status),
            **{name: getattr(self, name) for name in _COPIED_FIELDS},
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "DeclarationModel":
        model = cls(id=dto.id, created_by_id=created_by_id)
        model.update_from_dto(dto, None)
        return model

    def update_from_dto(self, dto, updated_by_id: UUID | None) -> None:
        for name in _COPIED_FIELDS:
            setattr(self, name, getattr(dto, name))
        self.tax_type = dto.tax_type.value
        self.method = dto.method.value
        self.status = dto.status.value
        if updated_by_id is not None:
            self.touch(updated_by_id)

    def __repr__(self) -> str:
        label = f"{self.tax_year}" if self.period is None else f"{self.tax_year}/{self.period:02d}"
        return f"<DeclarationModel {self.tax_type} {label} [{self.status}] #{self.correction_number}>"
