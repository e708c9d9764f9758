"""
VAT ORM Persistence Models (``tax_modules.vat.orm``).

Responsibility:
    SQLAlchemy ORM models that persist the DTOs of ``tax_modules.vat.models``:
    transactions, carry-forwards with their applications, and finalised
    settlements.  Each provides ``to_dto()`` / ``from_dto()``.

Architecture position:
    **Modules layer** -- persistence companions to the pure DTO models.

Invariants enforced:
    - All monetary fields use Decimal (Numeric(38,9)) -- NEVER float.
    - Enum fields stored as String(50) containing the enum .value string.
    - One settlement per (client, year, month) (uq_vat_settlement_period).
    - Carry-forward applications are append-only, ordered by ``sequence``.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tax_kernel.db.base import TrackedBase


# ---------------------------------------------------------------------------
# VatTransactionModel
# ---------------------------------------------------------------------------

class VatTransactionModel(TrackedBase):
    """ORM model for ``VatTransaction``."""

    __tablename__ = "tax_vat_transactions"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    period_year: Mapped[int] = mapped_column(nullable=False)
    period_month: Mapped[int] = mapped_column(nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    rate_code: Mapped[str] = mapped_column(String(50), nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(nullable=False)
    gross_amount: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount_pln: Mapped[Decimal] = mapped_column(nullable=False)
    vat_amount_pln: Mapped[Decimal] = mapped_column(nullable=False)
    gross_amount_pln: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="PLN")
    exchange_rate: Mapped[Decimal] = mapped_column(nullable=False)
    is_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    counterparty_vat_id: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_correction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    corrects_transaction_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tax_vat_transactions.id"), nullable=True,
    )
    correction_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pair_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")

    __table_args__ = (
        CheckConstraint("direction IN ('INPUT', 'OUTPUT')", name="ck_vat_tx_direction"),
        Index("idx_vat_tx_client_period", "client_id", "period_year", "period_month"),
        Index("idx_vat_tx_pair", "pair_id"),
        Index("idx_vat_tx_corrects", "corrects_transaction_id"),
    )

    def to_dto(self):
        from tax_engines.vat import TransactionType, VatDirection, VatRateCode
        from tax_modules.vat.models import VatTransaction, VatTransactionStatus
        return VatTransaction(
            id=self.id,
            client_id=self.client_id,
            period_year=self.period_year,
            period_month=self.period_month,
            transaction_type=TransactionType(self.transaction_type),
            direction=VatDirection(self.direction),
            rate_code=VatRateCode(self.rate_code),
            rate=self.rate,
            net_amount=self.net_amount,
            vat_amount=self.vat_amount,
            gross_amount=self.gross_amount,
            net_amount_pln=self.net_amount_pln,
            vat_amount_pln=self.vat_amount_pln,
            gross_amount_pln=self.gross_amount_pln,
            transaction_date=self.transaction_date,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            is_deductible=self.is_deductible,
            counterparty_vat_id=self.counterparty_vat_id,
            description=self.description,
            is_correction=self.is_correction,
            corrects_transaction_id=self.corrects_transaction_id,
            correction_reason=self.correction_reason,
            pair_id=self.pair_id,
            status=VatTransactionStatus(self.status),
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "VatTransactionModel":
        return cls(
            id=dto.id,
            client_id=dto.client_id,
            period_year=dto.period_year,
            period_month=dto.period_month,
            transaction_type=dto.transaction_type.value,
            direction=dto.direction.value,
            rate_code=dto.rate_code.value,
            rate=dto.rate,
            net_amount=dto.net_amount,
            vat_amount=dto.vat_amount,
            gross_amount=dto.gross_amount,
            net_amount_pln=dto.net_amount_pln,
            vat_amount_pln=dto.vat_amount_pln,
            gross_amount_pln=dto.gross_amount_pln,
            transaction_date=dto.transaction_date,
            currency=dto.currency,
            exchange_rate=dto.exchange_rate,
            is_deductible=dto.is_deductible,
            counterparty_vat_id=dto.counterparty_vat_id,
            description=dto.description,
            is_correction=dto.is_correction,
            corrects_transaction_id=dto.corrects_transaction_id,
            correction_reason=dto.correction_reason,
            pair_id=dto.pair_id,
            status=dto.status.value,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<VatTransactionModel {self.transaction_type}/{self.direction} "
            f"{self.period_year}-{self.period_month:02d}: {self.vat_amount_pln}>"
        )


# ---------------------------------------------------------------------------
# VatCarryForwardModel
# ---------------------------------------------------------------------------

class VatCarryForwardApplicationModel(TrackedBase):
    """ORM model for ``CarryForwardApplication``."""

    __tablename__ = "tax_vat_carry_forward_applications"

    carry_forward_id: Mapped[UUID] = mapped_column(
        ForeignKey("tax_vat_carry_forwards.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    target_year: Mapped[int] = mapped_column(nullable=False)
    target_month: Mapped[int] = mapped_column(nullable=False)
    amount_applied: Mapped[Decimal] = mapped_column(nullable=False)
    applied_at: Mapped[datetime] = mapped_column(nullable=False)
    settlement_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("carry_forward_id", "sequence", name="uq_vat_cf_application_sequence"),
    )

    def to_dto(self):
        from tax_modules.vat.models import CarryForwardApplication
        return CarryForwardApplication(
            target_year=self.target_year,
            target_month=self.target_month,
            amount_applied=self.amount_applied,
            applied_at=self.applied_at,
            settlement_id=self.settlement_id,
        )


class VatCarryForwardModel(TrackedBase):
    """
    ORM model for ``VatCarryForward``.

    Contract:
        Rows are locked with ``SELECT ... FOR UPDATE`` before settlement
        finalisation or manual application.
    """

    __tablename__ = "tax_vat_carry_forwards"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    source_year: Mapped[int] = mapped_column(nullable=False)
    source_month: Mapped[int] = mapped_column(nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    source_settlement_id: Mapped[UUID | None] = mapped_column(nullable=True)

    applications: Mapped[list["VatCarryForwardApplicationModel"]] = relationship(
        "VatCarryForwardApplicationModel",
        order_by="VatCarryForwardApplicationModel.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("remaining_amount >= 0", name="ck_vat_cf_remaining_non_negative"),
        Index("idx_vat_cf_client_source", "client_id", "source_year", "source_month"),
        Index("idx_vat_cf_status", "status"),
    )

    def to_dto(self):
        from tax_modules.vat.models import CarryForwardStatus, VatCarryForward
        return VatCarryForward(
            id=self.id,
            client_id=self.client_id,
            source_year=self.source_year,
            source_month=self.source_month,
            original_amount=self.original_amount,
            remaining_amount=self.remaining_amount,
            status=CarryForwardStatus(self.status),
            applications=tuple(a.to_dto() for a in self.applications),
            source_settlement_id=self.source_settlement_id,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "VatCarryForwardModel":
        model = cls(
            id=dto.id,
            client_id=dto.client_id,
            source_year=dto.source_year,
            source_month=dto.source_month,
            original_amount=dto.original_amount,
            remaining_amount=dto.remaining_amount,
            status=dto.status.value,
            source_settlement_id=dto.source_settlement_id,
            created_by_id=created_by_id,
        )
        model.append_applications(dto.applications, created_by_id)
        return model

    def update_from_dto(self, dto, updated_by_id: UUID) -> None:
        self.remaining_amount = dto.remaining_amount
        self.status = dto.status.value
        self.touch(updated_by_id)
        self.append_applications(dto.applications[len(self.applications):], updated_by_id)

    def append_applications(self, applications, actor_id: UUID) -> None:
        start = len(self.applications)
        for offset, app in enumerate(applications):
            self.applications.append(VatCarryForwardApplicationModel(
                sequence=start + offset + 1,
                target_year=app.target_year,
                target_month=app.target_month,
                amount_applied=app.amount_applied,
                applied_at=app.applied_at,
                settlement_id=app.settlement_id,
                created_by_id=actor_id,
            ))

    def __repr__(self) -> str:
        return (
            f"<VatCarryForwardModel {self.source_year}-{self.source_month:02d} "
            f"{self.remaining_amount}/{self.original_amount} {self.status}>"
        )


# ---------------------------------------------------------------------------
# VatSettlementModel
# ---------------------------------------------------------------------------

class VatSettlementModel(TrackedBase):
    """ORM model for ``VatSettlement`` -- one finalised VAT period."""

    __tablename__ = "tax_vat_settlements"

    client_id: Mapped[UUID] = mapped_column(nullable=False)
    period_year: Mapped[int] = mapped_column(nullable=False)
    period_month: Mapped[int] = mapped_column(nullable=False)
    output_rate23: Mapped[Decimal] = mapped_column(nullable=False)
    output_rate8: Mapped[Decimal] = mapped_column(nullable=False)
    output_rate5: Mapped[Decimal] = mapped_column(nullable=False)
    output_rate0: Mapped[Decimal] = mapped_column(nullable=False)
    output_wdt: Mapped[Decimal] = mapped_column(nullable=False)
    output_exports: Mapped[Decimal] = mapped_column(nullable=False)
    output_reverse_charge: Mapped[Decimal] = mapped_column(nullable=False)
    output_total: Mapped[Decimal] = mapped_column(nullable=False)
    input_deductible: Mapped[Decimal] = mapped_column(nullable=False)
    input_wnt: Mapped[Decimal] = mapped_column(nullable=False)
    input_imports: Mapped[Decimal] = mapped_column(nullable=False)
    input_total: Mapped[Decimal] = mapped_column(nullable=False)
    difference: Mapped[Decimal] = mapped_column(nullable=False)
    carry_forward_from_previous: Mapped[Decimal] = mapped_column(nullable=False)
    adjusted_difference: Mapped[Decimal] = mapped_column(nullable=False)
    vat_due: Mapped[Decimal] = mapped_column(nullable=False)
    vat_refund: Mapped[Decimal] = mapped_column(nullable=False)
    refund_option: Mapped[str | None] = mapped_column(String(30), nullable=True)
    refund_days: Mapped[int | None] = mapped_column(nullable=True)
    transaction_count: Mapped[int] = mapped_column(nullable=False)
    finalized_at: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    carry_forward_created_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "client_id", "period_year", "period_month",
            name="uq_vat_settlement_period",
        ),
    )

    def to_dto(self):
        from tax_engines.vat import InputVatBreakdown, OutputVatBreakdown, RefundOption
        from tax_modules.vat.models import VatSettlement
        return VatSettlement(
            id=self.id,
            client_id=self.client_id,
            period_year=self.period_year,
            period_month=self.period_month,
            output_vat=OutputVatBreakdown(
                rate23=self.output_rate23,
                rate8=self.output_rate8,
                rate5=self.output_rate5,
                rate0=self.output_rate0,
                wdt=self.output_wdt,
                exports=self.output_exports,
                reverse_charge=self.output_reverse_charge,
                total=self.output_total,
            ),
            input_vat=InputVatBreakdown(
                deductible=self.input_deductible,
                wnt=self.input_wnt,
                imports=self.input_imports,
                total=self.input_total,
            ),
            difference=self.difference,
            carry_forward_from_previous=self.carry_forward_from_previous,
            adjusted_difference=self.adjusted_difference,
            vat_due=self.vat_due,
            vat_refund=self.vat_refund,
            refund_option=RefundOption(self.refund_option) if self.refund_option else None,
            refund_days=self.refund_days,
            transaction_count=self.transaction_count,
            finalized_at=self.finalized_at,
            due_date=self.due_date,
            carry_forward_created_id=self.carry_forward_created_id,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "VatSettlementModel":
        out, inp = dto.output_vat, dto.input_vat
        return cls(
            id=dto.id,
            client_id=dto.client_id,
            period_year=dto.period_year,
            period_month=dto.period_month,
            output_rate23=out.rate23,
            output_rate8=out.rate8,
            output_rate5=out.rate5,
            output_rate0=out.rate0,
            output_wdt=out.wdt,
            output_exports=out.exports,
            output_reverse_charge=out.reverse_charge,
            output_total=out.total,
            input_deductible=inp.deductible,
            input_wnt=inp.wnt,
            input_imports=inp.imports,
            input_total=inp.total,
            difference=dto.difference,
            carry_forward_from_previous=dto.carry_forward_from_previous,
            adjusted_difference=dto.adjusted_difference,
            vat_due=dto.vat_due,
            vat_refund=dto.vat_refund,
            refund_option=dto.refund_option.value if dto.refund_option else None,
            refund_days=dto.refund_days,
            transaction_count=dto.transaction_count,
            finalized_at=dto.finalized_at,
            due_date=dto.due_date,
            carry_forward_created_id=dto.carry_forward_created_id,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<VatSettlementModel {self.period_year}-{self.period_month:02d}: "
            f"due={self.vat_due} refund={self.vat_refund}>"
        )
