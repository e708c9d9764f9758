"""
Contribution ORM Persistence Model (``tax_modules.contributions.orm``).

One row per insured person and month (uq_tax_contribution_person_month).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tax_kernel.db.base import TrackedBase


class ContributionRecordModel(TrackedBase):
    """ORM model for ``ContributionRecord``."""

    __tablename__ = "tax_contribution_records"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    person_id: Mapped[UUID] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(nullable=False)
    pension_base: Mapped[Decimal] = mapped_column(nullable=False)
    health_base: Mapped[Decimal] = mapped_column(nullable=False)
    total_employee: Mapped[Decimal] = mapped_column(nullable=False)
    total_employer: Mapped[Decimal] = mapped_column(nullable=False)
    total: Mapped[Decimal] = mapped_column(nullable=False)
    annual_limit_reached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("person_id", "year", "month", name="uq_tax_contribution_person_month"),
        Index("idx_tax_contribution_client_year", "client_id", "year"),
    )

    def to_dto(self):
        from tax_modules.contributions.models import ContributionRecord, ContributorKind
        return ContributionRecord(
            id=self.id,
            client_id=self.client_id,
            person_id=self.person_id,
            kind=ContributorKind(self.kind),
            year=self.year,
            month=self.month,
            pension_base=self.pension_base,
            health_base=self.health_base,
            total_employee=self.total_employee,
            total_employer=self.total_employer,
            total=self.total,
            annual_limit_reached=self.annual_limit_reached,
            due_date=self.due_date,
            recorded_at=self.recorded_at,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "ContributionRecordModel":
        return cls(
            id=dto.id,
            client_id=dto.client_id,
            person_id=dto.person_id,
            kind=dto.kind.value,
            year=dto.year,
            month=dto.month,
            pension_base=dto.pension_base,
            health_base=dto.health_base,
            total_employee=dto.total_employee,
            total_employer=dto.total_employer,
            total=dto.total,
            annual_limit_reached=dto.annual_limit_reached,
            due_date=dto.due_date,
            recorded_at=dto.recorded_at,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ContributionRecordModel {self.person_id} {self.year}/{self.month:02d}: {self.total}>"
