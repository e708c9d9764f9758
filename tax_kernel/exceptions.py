"""
Typed Exception Hierarchy for the Tax Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Tax computations feed declarations that are filed with the authorities.
Callers (the presentation layer, batch period-close jobs, validation UIs)
must be able to react to a failure without parsing its message:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception carries a FIELD (the input or entity attribute that
     failed, or None) and a MESSAGE, rendered together by ``to_dict()``

Example - WRONG way to handle errors:
    try:
        calculator.calculate(inputs)
    except Exception as e:
        if "not found" in str(e):  # FRAGILE - message might change
            use_some_default()

Example - RIGHT way:
    try:
        calculator.calculate(inputs)
    except ThresholdTableNotFoundError as e:
        return api_error(**e.to_dict())   # {"code", "field", "message"}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TaxKernelError (base)
    |
    +-- NotFoundError
    |   +-- RateNotFoundError
    |   +-- ThresholdTableNotFoundError
    |   +-- StatutoryAmountNotFoundError
    |   +-- ZusBaseNotFoundError
    |   +-- DeclarationNotFoundError
    |   +-- LossRecordNotFoundError
    |   +-- VatTransactionNotFoundError
    |   +-- CarryForwardNotFoundError
    |
    +-- InvalidInputError
    |   +-- UnknownRegimeError
    |   +-- UnknownActivityCodeError
    |   +-- UnknownRateCodeError
    |   +-- InvalidAmountError
    |   +-- MissingFieldError
    |   +-- InvalidPeriodError
    |   +-- CatalogIntegrityError
    |
    +-- InvariantViolationError
    |   +-- InsufficientBalanceError
    |   +-- DeclarationImmutableError
    |   +-- InvalidTransitionError
    |   +-- RefundNotEligibleError
    |   +-- LedgerRecordLockedError
    |
    +-- ConflictError
        +-- DuplicateDeclarationError
        +-- SettlementAlreadyFinalizedError
        +-- ContributionAlreadyRecordedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|--------------------------------------
NotFound        | RATE_NOT_FOUND                | No catalog rate for (type, code, date)
                | THRESHOLD_TABLE_NOT_FOUND     | No progressive table for the date
                | STATUTORY_AMOUNT_NOT_FOUND    | No statutory amount for the date
                | ZUS_BASE_NOT_FOUND            | No contribution bases for the year
                | DECLARATION_NOT_FOUND         | Declaration ID doesn't exist
                | LOSS_RECORD_NOT_FOUND         | Loss record ID doesn't exist
                | VAT_TRANSACTION_NOT_FOUND     | VAT transaction ID doesn't exist
                | CARRY_FORWARD_NOT_FOUND       | VAT carry-forward ID doesn't exist
----------------|-------------------------------|--------------------------------------
InvalidInput    | UNKNOWN_REGIME                | Regime/method code not recognised
                | UNKNOWN_ACTIVITY_CODE         | Lump-sum activity code not in catalog
                | UNKNOWN_RATE_CODE             | VAT/ZUS rate code not recognised
                | INVALID_AMOUNT                | Float, NaN, negative where forbidden
                | MISSING_FIELD                 | Required input not supplied
                | INVALID_PERIOD                | Month/quarter/year out of range
                | CATALOG_INTEGRITY             | Overlapping validity, gapped table
----------------|-------------------------------|--------------------------------------
Invariant       | INSUFFICIENT_BALANCE          | Consuming more than remaining
                | DECLARATION_IMMUTABLE         | Mutating SUBMITTED/ACCEPTED/CORRECTED
                | INVALID_TRANSITION            | Lifecycle action not allowed in state
                | REFUND_NOT_ELIGIBLE           | Accelerated refund without eligibility
                | LEDGER_RECORD_LOCKED          | Superseding an already consumed loss
----------------|-------------------------------|--------------------------------------
Conflict        | DUPLICATE_DECLARATION         | Declaration exists for the period
                | SETTLEMENT_ALREADY_FINALIZED  | VAT period finalised twice
                | CONTRIBUTION_ALREADY_RECORDED | ZUS month recorded twice

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NotFoundError is never recovered inside the core.  A missing rate or
   threshold table fails the calculation; there is no retry-with-default.

2. InvariantViolationError from a ledger means the snapshot the caller
   computed against is stale.  Re-read the balance and recalculate; never
   blindly retry the mutation.

3. ConflictError is safe to surface as "already exists" to the user.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class TaxKernelError(Exception):
    """
    Base exception for all tax kernel errors.

    All subclasses have a ``code`` class attribute for machine-readable
    identification, plus ``field`` and ``message`` instance attributes.
    """

    code: str = "TAX_KERNEL_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Render the error as ``{code, field, message}``."""
        return {"code": self.code, "field": self.field, "message": self.message}


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(TaxKernelError):
    """Base for missing catalog entries and missing entities."""

    code: str = "NOT_FOUND"


class RateNotFoundError(NotFoundError):
    """No catalog rate for the tax type and code on the requested date."""

    code: str = "RATE_NOT_FOUND"

    def __init__(self, tax_type: str, rate_code: str, as_of: Any):
        self.tax_type = tax_type
        self.rate_code = rate_code
        self.as_of = as_of
        super().__init__(
            f"Tax rate {tax_type}/{rate_code} not found for date {as_of}",
            field="rate_code",
        )


class ThresholdTableNotFoundError(NotFoundError):
    """No progressive threshold table is effective on the requested date."""

    code: str = "THRESHOLD_TABLE_NOT_FOUND"

    def __init__(self, tax_type: str, as_of: Any):
        self.tax_type = tax_type
        self.as_of = as_of
        super().__init__(
            f"{tax_type} thresholds not found for date {as_of}",
            field="tax_year",
        )


class StatutoryAmountNotFoundError(NotFoundError):
    """No statutory fixed amount (allowance, cap, relief) for the date."""

    code: str = "STATUTORY_AMOUNT_NOT_FOUND"

    def __init__(self, amount_code: str, as_of: Any):
        self.amount_code = amount_code
        self.as_of = as_of
        super().__init__(
            f"Statutory amount {amount_code} not found for date {as_of}",
            field="tax_year",
        )


class ZusBaseNotFoundError(NotFoundError):
    """No contribution base table for the requested year."""

    code: str = "ZUS_BASE_NOT_FOUND"

    def __init__(self, year: int):
        self.year = year
        super().__init__(f"ZUS contribution bases not found for year {year}", field="year")


class DeclarationNotFoundError(NotFoundError):
    """Declaration with given ID was not found."""

    code: str = "DECLARATION_NOT_FOUND"

    def __init__(self, declaration_id: Any):
        self.declaration_id = declaration_id
        super().__init__(f"Declaration not found: {declaration_id}", field="declaration_id")


class LossRecordNotFoundError(NotFoundError):
    """Loss record with given ID was not found."""

    code: str = "LOSS_RECORD_NOT_FOUND"

    def __init__(self, record_id: Any):
        self.record_id = record_id
        super().__init__(f"Loss record not found: {record_id}", field="record_id")


class VatTransactionNotFoundError(NotFoundError):
    """VAT transaction with given ID was not found."""

    code: str = "VAT_TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: Any):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found", field="transaction_id")


class CarryForwardNotFoundError(NotFoundError):
    """VAT carry-forward record with given ID was not found."""

    code: str = "CARRY_FORWARD_NOT_FOUND"

    def __init__(self, carry_forward_id: Any):
        self.carry_forward_id = carry_forward_id
        super().__init__(
            f"Carry forward {carry_forward_id} not found", field="carry_forward_id"
        )


class ClientProfileNotFoundError(NotFoundError):
    """No tax profile is registered for the client."""

    code: str = "CLIENT_PROFILE_NOT_FOUND"

    def __init__(self, client_id: Any):
        self.client_id = client_id
        super().__init__(f"Client profile not found: {client_id}", field="client_id")


# =============================================================================
# InvalidInput
# =============================================================================


class InvalidInputError(TaxKernelError):
    """Base for malformed or unrecognised caller input."""

    code: str = "INVALID_INPUT"


class UnknownRegimeError(InvalidInputError):
    """Regime or calculation method code is not recognised."""

    code: str = "UNKNOWN_REGIME"

    def __init__(self, regime: Any, field: str = "regime"):
        self.regime = regime
        super().__init__(f"Unknown tax regime: {regime}", field=field)


class UnknownActivityCodeError(InvalidInputError):
    """Lump-sum activity code has no rate in the catalog."""

    code: str = "UNKNOWN_ACTIVITY_CODE"

    def __init__(self, activity_code: Any):
        self.activity_code = activity_code
        super().__init__(f"Unknown activity type: {activity_code}", field="activity_code")


class UnknownRateCodeError(InvalidInputError):
    """Rate or transaction-type code is not recognised."""

    code: str = "UNKNOWN_RATE_CODE"

    def __init__(self, rate_code: Any, field: str = "rate_code"):
        self.rate_code = rate_code
        super().__init__(f"Unknown rate code: {rate_code}", field=field)


class InvalidAmountError(InvalidInputError):
    """Amount is a float, not a number, or outside its allowed range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: Any, field: str | None = None, reason: str = "invalid amount"):
        self.value = value
        self.reason = reason
        label = field or "amount"
        super().__init__(f"{label}: {reason} ({value!r})", field=field)


class MissingFieldError(InvalidInputError):
    """A field required by the selected regime or scheme was not supplied."""

    code: str = "MISSING_FIELD"

    def __init__(self, field: str, context: str):
        self.context = context
        super().__init__(f"{field} is required for {context}", field=field)


class InvalidPeriodError(InvalidInputError):
    """Tax period (year, month, quarter) is out of range."""

    code: str = "INVALID_PERIOD"

    def __init__(self, value: Any, field: str = "period", reason: str = "out of range"):
        self.value = value
        super().__init__(f"Invalid {field} {value!r}: {reason}", field=field)


class CatalogIntegrityError(InvalidInputError):
    """Catalog data violates its validity or tiling invariants."""

    code: str = "CATALOG_INTEGRITY"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field)


# =============================================================================
# InvariantViolation
# =============================================================================


class InvariantViolationError(TaxKernelError):
    """Base for attempts to break a ledger or lifecycle invariant."""

    code: str = "INVARIANT_VIOLATION"


class InsufficientBalanceError(InvariantViolationError):
    """Attempt to consume more than the remaining balance of a record."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, record_id: Any, requested: Decimal, remaining: Decimal):
        self.record_id = record_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Cannot apply {requested} - only {remaining} remaining on {record_id}",
            field="amount",
        )


class DeclarationImmutableError(InvariantViolationError):
    """Attempt to mutate a declaration that is no longer editable."""

    code: str = "DECLARATION_IMMUTABLE"

    def __init__(self, declaration_id: Any, status: str, action: str):
        self.declaration_id = declaration_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} declaration {declaration_id} in status {status}",
            field="status",
        )


class InvalidTransitionError(InvariantViolationError):
    """Lifecycle action is not permitted from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: Any, from_state: str, action: str):
        self.entity_id = entity_id
        self.from_state = from_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not allowed from state {from_state} ({entity_id})",
            field="status",
        )


class RefundNotEligibleError(InvariantViolationError):
    """Refund option requires eligibility the client does not have."""

    code: str = "REFUND_NOT_ELIGIBLE"

    def __init__(self, client_id: Any, option: str, reasons: tuple[str, ...]):
        self.client_id = client_id
        self.option = option
        self.reasons = reasons
        super().__init__(
            f"Refund option {option} not available for client {client_id}: "
            f"{'; '.join(reasons)}",
            field="refund_option",
        )


class LedgerRecordLockedError(InvariantViolationError):
    """Ledger record cannot be superseded because it was already consumed."""

    code: str = "LEDGER_RECORD_LOCKED"

    def __init__(self, record_id: Any, used_amount: Decimal):
        self.record_id = record_id
        self.used_amount = used_amount
        super().__init__(
            f"Loss record {record_id} has {used_amount} consumed and cannot be superseded",
            field="record_id",
        )


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(TaxKernelError):
    """Base for duplicates of entities that must be unique per period."""

    code: str = "CONFLICT"


class DuplicateDeclarationError(ConflictError):
    """A live declaration already exists for the client, tax and period."""

    code: str = "DUPLICATE_DECLARATION"

    def __init__(self, client_id: Any, tax_type: str, tax_year: int, period: int | None):
        self.client_id = client_id
        self.tax_type = tax_type
        self.tax_year = tax_year
        self.period = period
        label = f"{tax_year}" if period is None else f"{tax_year}/{period:02d}"
        super().__init__(
            f"Declaration {tax_type} {label} already exists for client {client_id}",
            field="tax_year",
        )


class SettlementAlreadyFinalizedError(ConflictError):
    """The VAT period settlement was already finalised."""

    code: str = "SETTLEMENT_ALREADY_FINALIZED"

    def __init__(self, client_id: Any, year: int, month: int):
        self.client_id = client_id
        self.year = year
        self.month = month
        super().__init__(
            f"VAT settlement {year}/{month:02d} already finalized for client {client_id}",
            field="month",
        )


class ContributionAlreadyRecordedError(ConflictError):
    """Contributions for the insured person and month were already recorded."""

    code: str = "CONTRIBUTION_ALREADY_RECORDED"

    def __init__(self, person_id: Any, year: int, month: int):
        self.person_id = person_id
        self.year = year
        self.month = month
        super().__init__(
            f"Contributions {year}/{month:02d} already recorded for {person_id}",
            field="month",
        )
