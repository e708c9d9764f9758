"""
VatService -- VAT transactions, period settlement and the carry-forward ledger.

Responsibility:
    Records transactions (splitting self-assessed types into matched
    OUTPUT/INPUT pairs), corrects them by appending correction
    transactions, previews and finalises period settlements, and maintains
    VAT credit carry-forwards.

Architecture:
    tax_modules -- stateful layer.
    1. Amounts and settlement arithmetic are delegated to
       ``tax_engines.vat`` (pure).
    2. Persistence is delegated to a ``VatRepository``; finalisation and
       carry-forward mutation run inside ``repository.locked(client_id)``.

Invariants:
    - WNT is always stored as an OUTPUT/INPUT pair at the standard rate with
      equal VAT on both sides.
    - A correction never edits or deletes the original; the original's
      status becomes CORRECTED and a CORRECTION transaction carries the
      difference.  Pairs are corrected together.
    - A finalised period accepts no further transactions and cannot be
      finalised again.
    - Carry-forwards used by a settlement are consumed in full, oldest
      first, each with an application entry.

Failure modes:
    - UnknownRateCodeError for unknown rate codes or transaction types.
    - InvalidInputError for a BOTH type recorded at the wrong rate, a
      malformed buyer VAT number, or a correction with no difference.
    - InvalidTransitionError for mutating a closed carry-forward.
    - SettlementAlreadyFinalizedError for a second finalisation or for a
      transaction dated into a finalised period.
    - RefundNotEligibleError when an accelerated refund is requested by an
      ineligible client.
    - InsufficientBalanceError when applying more than a carry-forward holds.

Usage:
    service = VatService(InMemoryVatRepository(), catalog, profiles, clock)
    service.record_transaction(client_id, "DOMESTIC_SALE", "STANDARD",
                               date(2024, 5, 10), net=Decimal("100000"))
    settlement = service.finalize_settlement(client_id, 2024, 5)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from tax_config.catalog import RateCatalog
from tax_config.schema import TaxEngineConfig
from tax_engines.vat import (
    CarryForwardBalance,
    RefundOption,
    RefundOptionAvailability,
    TransactionType,
    VatAmounts,
    VatCalculator,
    VatDirection,
    VatRateCode,
    VatSettlementResult,
    check_non_negative,
    direction_for,
    refund_options,
    settle,
)
from tax_kernel.domain.clock import Clock, SystemClock
from tax_kernel.domain.decimal_engine import (
    ZERO,
    multiply,
    percent_to_fraction,
    round_money,
    to_decimal,
    total,
)
from tax_kernel.domain.periods import TaxPeriod
from tax_kernel.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidInputError,
    InvalidPeriodError,
    InvalidTransitionError,
    RefundNotEligibleError,
    SettlementAlreadyFinalizedError,
)
from tax_kernel.logging_config import LogContext, get_logger
from tax_modules.profiles import ClientProfileProvider
from tax_modules.vat.eligibility import accelerated_refund_ineligibility, validate_vies_vat_id
from tax_modules.vat.models import (
    CarryForwardApplication,
    CarryForwardStatus,
    VatCarryForward,
    VatSettlement,
    VatTransaction,
)
from tax_modules.vat.repository import VatRepository
from tax_modules.vat.workflows import CARRY_FORWARD_WORKFLOW

logger = get_logger("modules.vat.service")

# JPK_V7 filing and payment deadline.
VAT_PAYMENT_DAY = 25

# Types whose VAT is self-assessed and reported under the reverse-charge code.
_REVERSE_CHARGED_TYPES = frozenset({TransactionType.REVERSE_CHARGE, TransactionType.IMPORT_SERVICES})


def vat_due_date(period: TaxPeriod) -> date:
    following = period.next()
    return date(following.year, following.month, VAT_PAYMENT_DAY)


class VatService:
    """
    VAT ledger service.

    Contract:
        Every public mutation leaves transactions, carry-forwards and
        settlements consistent with each other; with a SQL repository the
        caller's ``session_scope`` makes them atomic.
    """

    def __init__(
        self,
        repository: VatRepository,
        catalog: RateCatalog,
        profiles: ClientProfileProvider | None = None,
        clock: Clock | None = None,
        config: TaxEngineConfig | None = None,
    ):
        self._repo = repository
        self._catalog = catalog
        self._calculator = VatCalculator(catalog)
        self._profiles = profiles
        self._clock = clock or SystemClock()
        self._config = config or TaxEngineConfig()

    # =========================================================================
    # Transactions
    # =========================================================================

    def _ensure_open(self, client_id: UUID, period: TaxPeriod) -> None:
        if self._repo.find_settlement(client_id, period.year, period.month) is not None:
            logger.warning("vat_period_already_finalized", extra={
                "client_id": str(client_id),
                "period": period.label,
            })
            raise SettlementAlreadyFinalizedError(client_id, period.year, period.month)

    def _build(
        self,
        client_id: UUID,
        period: TaxPeriod,
        transaction_type: TransactionType,
        direction: VatDirection,
        amounts: VatAmounts,
        transaction_date: date,
        *,
        stored_rate_code: VatRateCode | None = None,
        is_deductible: bool = True,
        counterparty_vat_id: str | None = None,
        description: str | None = None,
        pair_id: UUID | None = None,
    ) -> VatTransaction:
        vat, vat_pln, gross, gross_pln = amounts.vat, amounts.vat_pln, amounts.gross, amounts.gross_pln
        if direction == VatDirection.INPUT and not is_deductible:
            vat, vat_pln = ZERO, ZERO
            gross, gross_pln = amounts.net, amounts.net_pln
        return VatTransaction(
            client_id=client_id,
            period_year=period.year,
            period_month=period.month,
            transaction_type=transaction_type,
            direction=direction,
            rate_code=stored_rate_code or amounts.rate_code,
            rate=amounts.rate,
            net_amount=amounts.net,
            vat_amount=vat,
            gross_amount=gross,
            net_amount_pln=amounts.net_pln,
            vat_amount_pln=vat_pln,
            gross_amount_pln=gross_pln,
            transaction_date=transaction_date,
            currency=amounts.currency,
            exchange_rate=amounts.exchange_rate,
            is_deductible=is_deductible,
            counterparty_vat_id=counterparty_vat_id,
            description=description,
            pair_id=pair_id,
        )

    def record_transaction(
        self,
        client_id: UUID,
        transaction_type: TransactionType | str,
        rate_code: VatRateCode | str,
        transaction_date: date,
        *,
        net: Decimal | str | int | None = None,
        gross: Decimal | str | int | None = None,
        period: TaxPeriod | None = None,
        currency: str = "PLN",
        exchange_rate: Decimal | str | int = Decimal("1"),
        counterparty_vat_id: str | None = None,
        description: str | None = None,
        is_deductible: bool = True,
    ) -> tuple[VatTransaction, ...]:
        """
        Record a transaction; BOTH types produce an (OUTPUT, INPUT) pair.

        ``period`` defaults to the month of ``transaction_date``.  For
        REVERSE_CHARGE and IMPORT_SERVICES ``rate_code`` is the rate the
        buyer self-assesses at; the rows are stored under the
        REVERSE_CHARGE code.

        Raises:
            UnknownRateCodeError, InvalidInputError,
            SettlementAlreadyFinalizedError.
        """
        tx_type = TransactionType.parse(transaction_type)
        code = VatRateCode.parse(rate_code)
        direction = direction_for(tx_type)
        period = period or TaxPeriod(transaction_date.year, transaction_date.month)
        for name, value in (("net_amount", net), ("gross_amount", gross)):
            if value is not None:
                check_non_negative(value, name)
        if tx_type == TransactionType.WNT and code != VatRateCode.STANDARD:
            raise InvalidInputError(
                "Intra-EU acquisition is recorded at the standard rate", field="rate_code"
            )
        if tx_type == TransactionType.WDT:
            if code != VatRateCode.ZERO:
                raise InvalidInputError("Intra-EU supply is zero-rated", field="rate_code")
            counterparty_vat_id = validate_vies_vat_id(counterparty_vat_id, self._config)
        self._ensure_open(client_id, period)

        amounts = self._calculator.calculate_amounts(
            code,
            transaction_date,
            net=net,
            gross=gross,
            currency=currency,
            exchange_rate=exchange_rate,
        )
        stored_code = VatRateCode.REVERSE_CHARGE if tx_type in _REVERSE_CHARGED_TYPES else None

        if direction == VatDirection.BOTH:
            pair_id = uuid4()
            created = tuple(
                self._build(
                    client_id, period, tx_type, side, amounts, transaction_date,
                    stored_rate_code=stored_code,
                    is_deductible=is_deductible if side == VatDirection.INPUT else True,
                    counterparty_vat_id=counterparty_vat_id,
                    description=description,
                    pair_id=pair_id,
                )
                for side in (VatDirection.OUTPUT, VatDirection.INPUT)
            )
        else:
            created = (
                self._build(
                    client_id, period, tx_type, direction, amounts, transaction_date,
                    stored_rate_code=stored_code,
                    is_deductible=is_deductible,
                    counterparty_vat_id=counterparty_vat_id,
                    description=description,
                ),
            )

        for tx in created:
            self._repo.add_transaction(tx)
        logger.info("vat_transaction_recorded", extra={
            "client_id": str(client_id),
            "period": period.label,
            "transaction_type": tx_type.value,
            "rate_code": created[0].rate_code.value,
            "net_pln": str(amounts.net_pln),
            "vat_pln": str(amounts.vat_pln),
            "rows": len(created),
        })
        return created

    def record_intra_eu_acquisition(
        self,
        client_id: UUID,
        transaction_date: date,
        net: Decimal,
        *,
        currency: str = "PLN",
        exchange_rate: Decimal | str | int = Decimal("1"),
        counterparty_vat_id: str | None = None,
        description: str | None = None,
    ) -> tuple[VatTransaction, VatTransaction]:
        """WNT: matched (OUTPUT, INPUT) pair at the standard rate."""
        output, input_ = self.record_transaction(
            client_id, TransactionType.WNT, VatRateCode.STANDARD, transaction_date,
            net=net, currency=currency, exchange_rate=exchange_rate,
            counterparty_vat_id=counterparty_vat_id, description=description,
        )
        return output, input_

    def record_intra_eu_supply(
        self,
        client_id: UUID,
        transaction_date: date,
        net: Decimal,
        buyer_vat_id: str,
        *,
        currency: str = "PLN",
        exchange_rate: Decimal | str | int = Decimal("1"),
        description: str | None = None,
    ) -> VatTransaction:
        """WDT: zero-rated OUTPUT; the buyer VAT number must pass the VIES check."""
        (tx,) = self.record_transaction(
            client_id, TransactionType.WDT, VatRateCode.ZERO, transaction_date,
            net=net, currency=currency, exchange_rate=exchange_rate,
            counterparty_vat_id=buyer_vat_id, description=description,
        )
        return tx

    def record_import_of_services(
        self,
        client_id: UUID,
        transaction_date: date,
        net: Decimal,
        *,
        is_deductible: bool = False,
        rate_code: VatRateCode | str = VatRateCode.STANDARD,
        currency: str = "PLN",
        exchange_rate: Decimal | str | int = Decimal("1"),
        counterparty_vat_id: str | None = None,
        description: str | None = None,
    ) -> tuple[VatTransaction, VatTransaction]:
        """Import of services: self-assessed pair; input VAT counts only if deductible."""
        output, input_ = self.record_transaction(
            client_id, TransactionType.IMPORT_SERVICES, rate_code, transaction_date,
            net=net, currency=currency, exchange_rate=exchange_rate,
            counterparty_vat_id=counterparty_vat_id, description=description,
            is_deductible=is_deductible,
        )
        return output, input_

    def get_transaction(self, transaction_id: UUID) -> VatTransaction:
        return self._repo.get_transaction(transaction_id)

    def list_transactions(self, client_id: UUID, year: int, month: int) -> list[VatTransaction]:
        return self._repo.list_transactions(client_id, year, month)

    def correct_transaction(
        self,
        transaction_id: UUID,
        new_net_amount: Decimal | str | int,
        reason: str,
        *,
        period: TaxPeriod | None = None,
        correction_date: date | None = None,
    ) -> tuple[VatTransaction, ...]:
        """
        Correct a transaction's net amount to ``new_net_amount``.

        Each corrected row (both rows of a pair) gets a CORRECTION
        transaction carrying the net difference and the VAT on it at the
        original rate; the originals become CORRECTED.  A transaction can be
        corrected again: the difference is measured from its net after the
        earlier corrections.  Passing a CORRECTION row corrects the
        transaction it refers to.

        Raises:
            InvalidInputError: the new amount equals the current one.
        """
        original = self._repo.get_transaction(transaction_id)
        if original.is_correction:
            original = self._repo.get_transaction(original.corrects_transaction_id)
        new_net = to_decimal(new_net_amount, "new_net_amount")
        current_net = original.net_amount + total(
            c.net_amount for c in self._repo.list_corrections(original.id)
        )
        difference = new_net - current_net
        if difference == ZERO:
            logger.warning("vat_correction_refused", extra={
                "transaction_id": str(original.id),
                "current_net": str(current_net),
            })
            raise InvalidInputError(
                "Correction does not change the net amount", field="new_net_amount"
            )
        period = period or original.period
        self._ensure_open(original.client_id, period)
        correction_date = correction_date or self._clock.today()

        members = (
            self._repo.list_pair(original.pair_id) if original.pair_id else [original]
        )
        correction_pair_id = uuid4() if original.pair_id else None
        corrections: list[VatTransaction] = []
        for member in members:
            net_pln, vat_pln, gross_pln = self._calculator.correction_amounts(
                member.rate, difference, member.exchange_rate
            )
            vat = round_money(multiply(difference, percent_to_fraction(member.rate)))
            if not member.is_deductible:
                vat, vat_pln, gross_pln = ZERO, ZERO, net_pln
            correction = VatTransaction(
                client_id=member.client_id,
                period_year=period.year,
                period_month=period.month,
                transaction_type=TransactionType.CORRECTION,
                direction=member.direction,
                rate_code=member.rate_code,
                rate=member.rate,
                net_amount=difference,
                vat_amount=vat,
                gross_amount=difference + vat,
                net_amount_pln=net_pln,
                vat_amount_pln=vat_pln,
                gross_amount_pln=gross_pln,
                transaction_date=correction_date,
                currency=member.currency,
                exchange_rate=member.exchange_rate,
                is_deductible=member.is_deductible,
                counterparty_vat_id=member.counterparty_vat_id,
                description=member.description,
                is_correction=True,
                corrects_transaction_id=member.id,
                correction_reason=reason,
                pair_id=correction_pair_id,
            )
            self._repo.add_transaction(correction)
            self._repo.save_transaction(member.mark_corrected())
            corrections.append(correction)

        logger.info("vat_transaction_corrected", extra={
            "transaction_id": str(transaction_id),
            "net_difference": str(difference),
            "corrections": len(corrections),
            "period": period.label,
            "reason": reason,
        })
        return tuple(corrections)

    # =========================================================================
    # Settlement
    # =========================================================================

    def calculate_settlement(self, client_id: UUID, year: int, month: int) -> VatSettlementResult:
        """Preview a period's settlement; mutates nothing."""
        period = TaxPeriod(year, month)
        lines = [tx.to_settlement_line() for tx in self._repo.list_transactions(client_id, year, month)]
        balances = [
            CarryForwardBalance(cf.id, cf.source, cf.remaining_amount)
            for cf in self._repo.list_carry_forwards(client_id)
            if cf.is_open
        ]
        return settle(period, lines, balances)

    def refund_options(
        self, client_id: UUID, as_of: date | None = None
    ) -> tuple[RefundOptionAvailability, ...]:
        return refund_options(self._ineligibility(client_id, as_of), self._config)

    def _ineligibility(self, client_id: UUID, as_of: date | None) -> tuple[str, ...]:
        if self._profiles is None:
            return ("Client profile is not available",)
        profile = self._profiles.get_profile(client_id)
        return accelerated_refund_ineligibility(
            profile, as_of or self._clock.today(), self._config
        )

    def finalize_settlement(
        self,
        client_id: UUID,
        year: int,
        month: int,
        refund_option: RefundOption | str = RefundOption.BANK_TRANSFER,
    ) -> VatSettlement:
        """
        Finalise a period.

        Postconditions:
            - A VatSettlement is stored for (client, year, month).
            - Every prior open carry-forward counted by the settlement is
              FULLY_APPLIED with an application targeting this period.
            - With OFFSET_NEXT_PERIOD and a refund, a new ACTIVE
              carry-forward holds the refund.
        Raises:
            SettlementAlreadyFinalizedError, RefundNotEligibleError.
        """
        option = RefundOption.parse(refund_option)
        period = TaxPeriod(year, month)

        with LogContext.bind(client_id=str(client_id), period=period.label):
            with self._repo.locked(client_id) as carry_forwards:
                self._ensure_open(client_id, period)
                result = self.calculate_settlement(client_id, year, month)

                if result.vat_refund > ZERO and option.requires_eligibility:
                    reasons = self._ineligibility(client_id, None)
                    if reasons:
                        logger.warning("vat_refund_not_eligible", extra={
                            "refund_option": option.value,
                            "reasons": list(reasons),
                        })
                        raise RefundNotEligibleError(client_id, option.value, reasons)

                settlement_id = uuid4()
                now = self._clock.now()
                by_id = {cf.id: cf for cf in carry_forwards}
                for used in result.carry_forwards_used:
                    cf = by_id[used.carry_forward_id]
                    self._apply(cf, cf.remaining_amount, period, settlement_id, now)

                created_cf_id = None
                if result.vat_refund > ZERO and option == RefundOption.OFFSET_NEXT_PERIOD:
                    new_cf = VatCarryForward(
                        client_id=client_id,
                        source_year=year,
                        source_month=month,
                        original_amount=result.vat_refund,
                        source_settlement_id=settlement_id,
                    )
                    self._repo.add_carry_forward(new_cf)
                    created_cf_id = new_cf.id
                    logger.info("vat_carry_forward_created", extra={
                        "carry_forward_id": str(new_cf.id),
                        "amount": str(new_cf.original_amount),
                    })

                has_refund = result.vat_refund > ZERO
                settlement = VatSettlement(
                    id=settlement_id,
                    client_id=client_id,
                    period_year=year,
                    period_month=month,
                    output_vat=result.output_vat,
                    input_vat=result.input_vat,
                    difference=result.difference,
                    carry_forward_from_previous=result.carry_forward_from_previous,
                    adjusted_difference=result.adjusted_difference,
                    vat_due=result.vat_due,
                    vat_refund=result.vat_refund,
                    refund_option=option if has_refund else None,
                    refund_days=self._config.refund_days[option.value] if has_refund else None,
                    transaction_count=result.transaction_count,
                    finalized_at=now,
                    due_date=vat_due_date(period),
                    carry_forward_created_id=created_cf_id,
                )
                self._repo.add_settlement(settlement)

            logger.info("vat_settlement_finalized", extra={
                "settlement_id": str(settlement.id),
                "vat_due": str(settlement.vat_due),
                "vat_refund": str(settlement.vat_refund),
                "carry_forwards_consumed": len(result.carry_forwards_used),
                "refund_option": option.value if has_refund else None,
            })
        return settlement

    def get_settlement(self, client_id: UUID, year: int, month: int) -> VatSettlement | None:
        return self._repo.find_settlement(client_id, year, month)

    # =========================================================================
    # Carry-forward ledger
    # =========================================================================

    def list_carry_forwards(self, client_id: UUID) -> list[VatCarryForward]:
        return self._repo.list_carry_forwards(client_id)

    def available_carry_forward(self, client_id: UUID, year: int, month: int) -> Decimal:
        """Open balance from periods before (year, month)."""
        period = TaxPeriod(year, month)
        return total(
            cf.remaining_amount
            for cf in self._repo.list_carry_forwards(client_id)
            if cf.is_open and cf.source < period
        )

    def _apply(
        self,
        cf: VatCarryForward,
        amount: Decimal,
        target: TaxPeriod,
        settlement_id: UUID | None,
        applied_at,
    ) -> VatCarryForward:
        if amount > cf.remaining_amount:
            logger.warning("vat_carry_forward_insufficient_balance", extra={
                "carry_forward_id": str(cf.id),
                "requested": str(amount),
                "remaining": str(cf.remaining_amount),
            })
            raise InsufficientBalanceError(cf.id, amount, cf.remaining_amount)
        action = "apply_full" if amount == cf.remaining_amount else "apply_partial"
        transition = CARRY_FORWARD_WORKFLOW.transition_for(cf.status.value, action)
        if transition is None:
            raise InvalidTransitionError(cf.id, cf.status.value, action)
        updated = VatCarryForward(
            id=cf.id,
            client_id=cf.client_id,
            source_year=cf.source_year,
            source_month=cf.source_month,
            original_amount=cf.original_amount,
            remaining_amount=cf.remaining_amount - amount,
            status=CarryForwardStatus(transition.to_state),
            applications=cf.applications + (CarryForwardApplication(
                target_year=target.year,
                target_month=target.month,
                amount_applied=amount,
                applied_at=applied_at,
                settlement_id=settlement_id,
            ),),
            source_settlement_id=cf.source_settlement_id,
        )
        self._repo.save_carry_forward(updated)
        logger.info("vat_carry_forward_applied", extra={
            "carry_forward_id": str(cf.id),
            "amount": str(amount),
            "remaining": str(updated.remaining_amount),
            "target_period": target.label,
            "status": updated.status.value,
        })
        return updated

    def apply_carry_forward(
        self,
        carry_forward_id: UUID,
        amount: Decimal | str | int,
        target_year: int,
        target_month: int,
    ) -> VatCarryForward:
        """
        Manually apply part of a carry-forward to a later period.

        Raises:
            InvalidAmountError: amount not positive.
            InvalidPeriodError: target not after the source period.
            InsufficientBalanceError: amount exceeds the remaining balance.
            InvalidTransitionError: carry-forward is FULLY_APPLIED or EXPIRED.
        """
        value = to_decimal(amount, "amount")
        if value <= ZERO:
            raise InvalidAmountError(amount, "amount", "must be positive")
        target = TaxPeriod(target_year, target_month)
        current = self._repo.get_carry_forward(carry_forward_id)
        with self._repo.locked(current.client_id) as records:
            cf = next(r for r in records if r.id == carry_forward_id)
            if target <= cf.source:
                raise InvalidPeriodError(
                    target.label, "target_period", f"must be after source period {cf.source.label}"
                )
            return self._apply(cf, value, target, None, self._clock.now())

    def expire_carry_forward(self, carry_forward_id: UUID) -> VatCarryForward:
        """Mark as EXPIRED; the remaining amount is kept for the record."""
        current = self._repo.get_carry_forward(carry_forward_id)
        with self._repo.locked(current.client_id) as records:
            cf = next(r for r in records if r.id == carry_forward_id)
            transition = CARRY_FORWARD_WORKFLOW.transition_for(cf.status.value, "expire")
            if transition is None:
                logger.warning("vat_carry_forward_expire_refused", extra={
                    "carry_forward_id": str(carry_forward_id),
                    "status": cf.status.value,
                })
                raise InvalidTransitionError(carry_forward_id, cf.status.value, "expire")
            updated = replace(cf, status=CarryForwardStatus(transition.to_state))
            self._repo.save_carry_forward(updated)
        logger.info("vat_carry_forward_expired", extra={
            "carry_forward_id": str(carry_forward_id),
            "remaining": str(updated.remaining_amount),
        })
        return updated
