"""
Loss Ledger ORM Persistence Models (``tax_modules.losses.orm``).

Responsibility:
    SQLAlchemy ORM models persisting ``LossRecord`` and its usage history.
    Each ORM class mirrors a DTO and provides ``to_dto()`` / ``from_dto()``.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.
    Inherits from ``TrackedBase`` (id, created_at, updated_at,
    created_by_id, updated_by_id).

Invariants enforced:
    - All monetary fields use Decimal (Numeric(38,9)) -- NEVER float.
    - ``remaining_amount >= 0`` is also a database CHECK constraint.
    - Usage rows are append-only and ordered by ``sequence``.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tax_kernel.db.base import TrackedBase


class LossUsageModel(TrackedBase):
    """ORM model for ``LossUsage`` -- one consumption or reversal entry."""

    __tablename__ = "tax_loss_usages"

    loss_record_id: Mapped[UUID] = mapped_column(
        ForeignKey("tax_loss_records.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    year: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    declaration_id: Mapped[UUID | None] = mapped_column(nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("loss_record_id", "sequence", name="uq_tax_loss_usage_sequence"),
        Index("idx_tax_loss_usage_declaration", "declaration_id"),
    )

    def to_dto(self):
        from tax_modules.losses.models import LossUsage
        return LossUsage(
            year=self.year,
            amount=self.amount,
            declaration_id=self.declaration_id,
            recorded_at=self.recorded_at,
            is_reversal=self.is_reversal,
        )

    def __repr__(self) -> str:
        return f"<LossUsageModel #{self.sequence} {self.year}: {self.amount}>"


class LossRecordModel(TrackedBase):
    """
    ORM model for ``LossRecord``.

    Contract:
        Rows are locked with ``SELECT ... FOR UPDATE`` by
        ``SqlLossRepository.locked`` before any consumption.
    """

    __tablename__ = "tax_loss_records"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    tax_type: Mapped[str] = mapped_column(String(10), nullable=False)
    loss_year: Mapped[int] = mapped_column(nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    used_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    expiry_year: Mapped[int] = mapped_column(nullable=False)
    source_declaration_id: Mapped[UUID | None] = mapped_column(nullable=True)
    superseded_by_declaration_id: Mapped[UUID | None] = mapped_column(nullable=True)

    usages: Mapped[list["LossUsageModel"]] = relationship(
        "LossUsageModel",
        order_by="LossUsageModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_tax_loss_remaining_non_negative"),
        Index("idx_tax_loss_client_type_year", "client_id", "tax_type", "loss_year"),
        Index("idx_tax_loss_source_declaration", "source_declaration_id"),
    )

    def to_dto(self):
        from tax_modules.losses.models import LossRecord
        return LossRecord(
            id=self.id,
            client_id=self.client_id,
            tax_type=self.tax_type,
            loss_year=self.loss_year,
            original_amount=self.original_amount,
            used_amount=self.used_amount,
            remaining_amount=self.remaining_amount,
            expiry_year=self.expiry_year,
            usage_history=tuple(u.to_dto() for u in self.usages),
            source_declaration_id=self.source_declaration_id,
            superseded_by_declaration_id=self.superseded_by_declaration_id,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "LossRecordModel":
        model = cls(
            id=dto.id,
            client_id=dto.client_id,
            tax_type=dto.tax_type,
            loss_year=dto.loss_year,
            original_amount=dto.original_amount,
            used_amount=dto.used_amount,
            remaining_amount=dto.remaining_amount,
            expiry_year=dto.expiry_year,
            source_declaration_id=dto.source_declaration_id,
            superseded_by_declaration_id=dto.superseded_by_declaration_id,
            created_by_id=created_by_id,
        )
        model.append_usages(dto.usage_history, created_by_id)
        return model

    def update_from_dto(self, dto, updated_by_id: UUID) -> None:
        """Copy balances and append usage entries not yet persisted."""
        self.used_amount = dto.used_amount
        self.remaining_amount = dto.remaining_amount
        self.superseded_by_declaration_id = dto.superseded_by_declaration_id
        self.touch(updated_by_id)
        self.append_usages(dto.usage_history[len(self.usages):], updated_by_id)

    def append_usages(self, usages, actor_id: UUID) -> None:
        start = len(self.usages)
        for offset, usage in enumerate(usages):
            self.usages.append(LossUsageModel(
                sequence=start + offset + 1,
                year=usage.year,
                amount=usage.amount,
                declaration_id=usage.declaration_id,
                recorded_at=usage.recorded_at,
                is_reversal=usage.is_reversal,
                created_by_id=actor_id,
            ))

    def __repr__(self) -> str:
        return (
            f"<LossRecordModel {self.tax_type} {self.loss_year}: "
            f"{self.remaining_amount}/{self.original_amount}>"
        )
