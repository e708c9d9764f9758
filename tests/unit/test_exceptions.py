"""
Unit tests for the typed exception hierarchy.

Every error exposes ``code``, ``field`` and ``message`` and renders them
with ``to_dict()``.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from tax_kernel.exceptions import (
    CatalogIntegrityError,
    ConflictError,
    ContributionAlreadyRecordedError,
    DeclarationImmutableError,
    DuplicateDeclarationError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
    InvalidPeriodError,
    InvalidTransitionError,
    InvariantViolationError,
    LedgerRecordLockedError,
    MissingFieldError,
    NotFoundError,
    RateNotFoundError,
    RefundNotEligibleError,
    SettlementAlreadyFinalizedError,
    TaxKernelError,
    ThresholdTableNotFoundError,
    UnknownActivityCodeError,
    UnknownRegimeError,
)


class TestHierarchy:
    @pytest.mark.parametrize("exc,base", [
        (RateNotFoundError("VAT", "STANDARD", "2024-01-01"), NotFoundError),
        (ThresholdTableNotFoundError("PIT", "1990-12-31"), NotFoundError),
        (UnknownRegimeError("FLAT_TAX"), InvalidInputError),
        (UnknownActivityCodeError("ASTROLOGY"), InvalidInputError),
        (InvalidAmountError(0.1, "revenue", "float"), InvalidInputError),
        (MissingFieldError("activity_code", "PIT_LUMP_SUM"), InvalidInputError),
        (InvalidPeriodError(13, "month"), InvalidInputError),
        (CatalogIntegrityError("gap"), InvalidInputError),
        (InsufficientBalanceError("r", Decimal("2"), Decimal("1")), InvariantViolationError),
        (DeclarationImmutableError("d", "SUBMITTED", "update"), InvariantViolationError),
        (InvalidTransitionError("d", "DRAFT", "submit"), InvariantViolationError),
        (RefundNotEligibleError("c", "ACCELERATED_REFUND", ("late",)), InvariantViolationError),
        (LedgerRecordLockedError("r", Decimal("5")), InvariantViolationError),
        (DuplicateDeclarationError("c", "CIT", 2024, None), ConflictError),
        (SettlementAlreadyFinalizedError("c", 2024, 5), ConflictError),
        (ContributionAlreadyRecordedError("p", 2024, 5), ConflictError),
    ])
    def test_subclass_and_base(self, exc, base):
        assert isinstance(exc, base)
        assert isinstance(exc, TaxKernelError)

    def test_codes_are_unique(self):
        classes = [
            RateNotFoundError, ThresholdTableNotFoundError, UnknownRegimeError,
            UnknownActivityCodeError, InvalidAmountError, MissingFieldError,
            InvalidPeriodError, CatalogIntegrityError, InsufficientBalanceError,
            DeclarationImmutableError, InvalidTransitionError, RefundNotEligibleError,
            LedgerRecordLockedError, DuplicateDeclarationError,
            SettlementAlreadyFinalizedError, ContributionAlreadyRecordedError,
        ]
        codes = [cls.code for cls in classes]
        assert len(codes) == len(set(codes))


class TestPayload:
    def test_to_dict(self):
        err = MissingFieldError("activity_code", "PIT_LUMP_SUM")
        assert err.to_dict() == {
            "code": "MISSING_FIELD",
            "field": "activity_code",
            "message": "activity_code is required for PIT_LUMP_SUM",
        }

    def test_base_error_defaults(self):
        err = TaxKernelError("boom")
        assert err.code == "TAX_KERNEL_ERROR"
        assert err.field is None
        assert str(err) == "boom"

    def test_insufficient_balance_carries_amounts(self):
        record_id = uuid4()
        err = InsufficientBalanceError(record_id, Decimal("500.00"), Decimal("200.00"))
        assert err.record_id == record_id
        assert err.requested == Decimal("500.00")
        assert err.remaining == Decimal("200.00")
        assert "200.00" in err.message

    def test_duplicate_declaration_labels_period(self):
        annual = DuplicateDeclarationError("c", "CIT", 2024, None)
        monthly = DuplicateDeclarationError("c", "PIT", 2024, 3)
        assert "CIT 2024 " in annual.message
        assert "PIT 2024/03" in monthly.message

    def test_refund_not_eligible_lists_reasons(self):
        err = RefundNotEligibleError("c", "ACCELERATED_REFUND", ("late filing", "unpaid dues"))
        assert "late filing; unpaid dues" in err.message
        assert err.field == "refund_option"

    def test_unknown_regime_field_override(self):
        assert UnknownRegimeError("X", field="method").field == "method"
