"""
Declaration lifecycle: drafting, calculation, submission ledger effects,
acceptance and corrections with compensation.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from tax_kernel.exceptions import (
    DeclarationImmutableError,
    DeclarationNotFoundError,
    DuplicateDeclarationError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidTransitionError,
    LedgerRecordLockedError,
    MissingFieldError,
    UnknownRegimeError,
)
from tax_modules.declarations import DeclarationStatus
from tax_modules.losses import LossStatus

CIT = "CIT"


def _loss_year(declaration_service, client_id):
    """Submitted 2023 CIT declaration with an 80000 loss."""
    decl = declaration_service.create(
        client_id, "CIT_STANDARD", 2023, Decimal("100000"), Decimal("180000")
    )
    declaration_service.calculate(decl.id)
    return declaration_service.submit(decl.id)


def _profit_year(declaration_service, client_id, costs="300000"):
    decl = declaration_service.create(
        client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal(costs),
        apply_loss_carry_forward=True,
    )
    return declaration_service.calculate(decl.id)


class TestDrafting:
    def test_create_draft(self, declaration_service, client_id):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000")
        )
        assert decl.status == DeclarationStatus.DRAFT
        assert decl.is_annual
        assert decl.tax_due is None
        assert declaration_service.list_for_client(client_id) == [decl]

    def test_duplicate_original(self, declaration_service, client_id):
        declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        with pytest.raises(DuplicateDeclarationError):
            declaration_service.create(client_id, "CIT_SMALL", 2024, Decimal("1"), Decimal("0"))

    def test_monthly_and_annual_coexist(self, declaration_service, client_id):
        declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        monthly = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"), period=5
        )
        assert not monthly.is_annual

    def test_pit_and_cit_coexist(self, declaration_service, client_id):
        declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        pit = declaration_service.create(
            client_id, "PIT_FLAT", 2024, Decimal("1"), Decimal("0")
        )
        assert pit.tax_type.value == "PIT"

    def test_unknown_method(self, declaration_service, client_id):
        with pytest.raises(UnknownRegimeError):
            declaration_service.create(client_id, "VAT", 2024, Decimal("1"), Decimal("0"))

    def test_lump_sum_requires_activity(self, declaration_service, client_id):
        with pytest.raises(MissingFieldError):
            declaration_service.create(client_id, "PIT_LUMP_SUM", 2024, Decimal("1"), Decimal("0"))

    def test_unknown_input_field(self, declaration_service, client_id):
        with pytest.raises(InvalidInputError):
            declaration_service.create(
                client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"), tax_due=Decimal("5")
            )

    def test_update_clears_result(self, declaration_service, client_id):
        calculated = _profit_year(declaration_service, client_id)
        assert calculated.status == DeclarationStatus.CALCULATED

        updated = declaration_service.update(calculated.id, costs=Decimal("350000"))

        assert updated.status == DeclarationStatus.DRAFT
        assert updated.costs == Decimal("350000")
        assert updated.tax_due is None
        assert updated.calculated_at is None

    def test_update_cannot_change_tax_type(self, declaration_service, client_id):
        decl = declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        with pytest.raises(InvalidInputError):
            declaration_service.update(decl.id, method="PIT_FLAT")

    def test_delete_draft(self, declaration_service, client_id):
        decl = declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        declaration_service.delete(decl.id)
        with pytest.raises(DeclarationNotFoundError):
            declaration_service.get(decl.id)


class TestCalculate:
    def test_cit_standard(self, declaration_service, client_id, deterministic_clock):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000")
        )
        calculated = declaration_service.calculate(decl.id)
        assert calculated.income == Decimal("200000.00")
        assert calculated.tax_due == Decimal("38000.00")
        assert calculated.calculated_at == deterministic_clock.now()

    def test_recalculate_is_idempotent(self, declaration_service, client_id):
        first = _profit_year(declaration_service, client_id)
        second = declaration_service.calculate(first.id)
        assert second.tax_due == first.tax_due
        assert second.loss_applied == first.loss_applied

    def test_loss_offset_from_ledger(self, declaration_service, client_id):
        _loss_year(declaration_service, client_id)
        calculated = _profit_year(declaration_service, client_id)
        assert calculated.available_loss == Decimal("80000.00")
        assert calculated.loss_applied == Decimal("80000.00")
        assert calculated.tax_due == Decimal("22800.00")

    def test_calculation_does_not_touch_ledger(self, declaration_service, loss_ledger, client_id):
        _loss_year(declaration_service, client_id)
        _profit_year(declaration_service, client_id)
        assert loss_ledger.get_available_balance(client_id, CIT, 2024) == Decimal("80000.00")

    def test_preview_matches_calculation(self, declaration_service, client_id):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000")
        )
        assert declaration_service.preview(decl.id).tax_due == Decimal("38000.00")
        assert declaration_service.get(decl.id).status == DeclarationStatus.DRAFT

    def test_small_taxpayer_requires_status(self, declaration_service, profiles, client_id):
        decl = declaration_service.create(
            client_id, "CIT_SMALL", 2024, Decimal("500000"), Decimal("300000")
        )
        with pytest.raises(InvalidInputError) as exc_info:
            declaration_service.calculate(decl.id)
        assert exc_info.value.field == "method"

        profiles.put(replace(profiles.get_profile(client_id), is_small_taxpayer=True))
        assert declaration_service.calculate(decl.id).tax_due == Decimal("18000.00")

    def test_estonian_election_excludes_standard(self, declaration_service, profiles, client_id):
        profiles.put(replace(profiles.get_profile(client_id), is_estonian_cit=True))
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000")
        )
        with pytest.raises(InvalidInputError):
            declaration_service.calculate(decl.id)

    def test_pit_ignores_cit_profile_flags(self, declaration_service, profiles, client_id):
        profiles.put(replace(profiles.get_profile(client_id), is_estonian_cit=True))
        decl = declaration_service.create(
            client_id, "PIT_FLAT", 2024, Decimal("100000"), Decimal("0")
        )
        assert declaration_service.calculate(decl.id).tax_due == Decimal("19000")


class TestSubmit:
    def test_loss_recorded_on_submit(self, declaration_service, loss_ledger, client_id):
        submitted = _loss_year(declaration_service, client_id)
        assert submitted.status == DeclarationStatus.SUBMITTED
        assert submitted.loss == Decimal("80000.00")
        assert submitted.tax_due == Decimal("0.00")
        record = loss_ledger.get_record(submitted.loss_record_id)
        assert record.loss_year == 2023
        assert record.source_declaration_id == submitted.id

    def test_loss_consumed_on_submit(self, declaration_service, loss_ledger, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        profit = _profit_year(declaration_service, client_id)

        submitted = declaration_service.submit(profit.id)

        assert submitted.loss_record_id is None
        record = loss_ledger.get_record(loss_decl.loss_record_id)
        assert record.remaining_amount == Decimal("0.00")
        assert record.usage_history[0].declaration_id == profit.id

    def test_submit_draft_refused(self, declaration_service, client_id):
        decl = declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        with pytest.raises(InvalidTransitionError):
            declaration_service.submit(decl.id)

    def test_stale_loss_snapshot(self, declaration_service, loss_ledger, client_id):
        _loss_year(declaration_service, client_id)
        profit = _profit_year(declaration_service, client_id)
        loss_ledger.consume(client_id, CIT, Decimal("10000"), 2024)
        with pytest.raises(InsufficientBalanceError):
            declaration_service.submit(profit.id)
        assert declaration_service.get(profit.id).status == DeclarationStatus.CALCULATED

    def test_monthly_has_no_ledger_effects(self, declaration_service, loss_ledger, client_id):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("10000"), Decimal("20000"), period=5
        )
        declaration_service.calculate(decl.id)
        submitted = declaration_service.submit(decl.id)
        assert submitted.loss_record_id is None
        assert loss_ledger.list_records(client_id, CIT) == []

    def test_submitted_is_immutable(self, declaration_service, client_id):
        submitted = _loss_year(declaration_service, client_id)
        with pytest.raises(DeclarationImmutableError):
            declaration_service.update(submitted.id, costs=Decimal("1"))
        with pytest.raises(DeclarationImmutableError):
            declaration_service.delete(submitted.id)

    def test_accept(self, declaration_service, client_id, deterministic_clock):
        submitted = _loss_year(declaration_service, client_id)
        accepted = declaration_service.accept(submitted.id)
        assert accepted.status == DeclarationStatus.ACCEPTED
        assert accepted.accepted_at == deterministic_clock.now()
        with pytest.raises(InvalidTransitionError):
            declaration_service.accept(submitted.id)


class TestCorrections:
    def test_correct_creates_draft(self, declaration_service, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        correction = declaration_service.correct(loss_decl.id, "cost invoice", costs=Decimal("150000"))

        assert correction.status == DeclarationStatus.DRAFT
        assert correction.correction_number == 1
        assert correction.corrects_declaration_id == loss_decl.id
        assert correction.costs == Decimal("150000")
        assert correction.id != loss_decl.id
        assert declaration_service.get(loss_decl.id).status == DeclarationStatus.CORRECTED
        assert declaration_service.corrections_of(loss_decl.id) == [correction]

    def test_reason_required(self, declaration_service, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        with pytest.raises(InvalidInputError):
            declaration_service.correct(loss_decl.id, "")

    def test_draft_cannot_be_corrected(self, declaration_service, client_id):
        decl = declaration_service.create(client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0"))
        with pytest.raises(InvalidTransitionError):
            declaration_service.correct(decl.id, "typo")

    def test_corrected_is_terminal(self, declaration_service, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        declaration_service.correct(loss_decl.id, "first")
        with pytest.raises(InvalidTransitionError):
            declaration_service.correct(loss_decl.id, "second")

    def test_correction_reverses_and_reapplies_loss(
        self, declaration_service, loss_ledger, client_id
    ):
        loss_decl = _loss_year(declaration_service, client_id)
        profit = declaration_service.submit(_profit_year(declaration_service, client_id).id)

        correction = declaration_service.correct(profit.id, "missing costs", costs=Decimal("400000"))
        calculated = declaration_service.calculate(correction.id)
        # Original consumption counts as available for the correction.
        assert calculated.available_loss == Decimal("80000.00")
        assert calculated.loss_applied == Decimal("50000.00")
        assert calculated.tax_due == Decimal("9500.00")

        declaration_service.submit(correction.id)

        record = loss_ledger.get_record(loss_decl.loss_record_id)
        assert record.remaining_amount == Decimal("30000.00")
        assert record.net_used_by(profit.id) == Decimal("0")
        assert record.net_used_by(correction.id) == Decimal("50000.00")
        assert [u.is_reversal for u in record.usage_history] == [False, True, False]

    def test_correction_supersedes_unused_loss(self, declaration_service, loss_ledger, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        correction = declaration_service.correct(loss_decl.id, "revised", costs=Decimal("150000"))
        declaration_service.calculate(correction.id)
        submitted = declaration_service.submit(correction.id)

        old = loss_ledger.get_record(loss_decl.loss_record_id)
        new = loss_ledger.get_record(submitted.loss_record_id)
        assert old.status_for(2024) == LossStatus.SUPERSEDED
        assert old.superseded_by_declaration_id == correction.id
        assert new.original_amount == Decimal("50000.00")
        assert loss_ledger.get_available_balance(client_id, CIT, 2024) == Decimal("50000.00")

    def test_correction_of_used_loss_refused(self, declaration_service, client_id):
        loss_decl = _loss_year(declaration_service, client_id)
        declaration_service.submit(_profit_year(declaration_service, client_id).id)

        correction = declaration_service.correct(loss_decl.id, "revised", costs=Decimal("150000"))
        declaration_service.calculate(correction.id)
        with pytest.raises(LedgerRecordLockedError):
            declaration_service.submit(correction.id)

    def test_failed_correction_submit_leaves_ledger_untouched(
        self, declaration_service, loss_ledger, client_id
    ):
        loss_decl = _loss_year(declaration_service, client_id)
        profit = declaration_service.submit(
            _profit_year(declaration_service, client_id, costs="450000").id
        )
        correction = declaration_service.correct(profit.id, "revenue missed", costs=Decimal("300000"))
        calculated = declaration_service.calculate(correction.id)
        assert calculated.loss_applied == Decimal("80000.00")

        loss_ledger.consume(client_id, CIT, Decimal("10000"), 2024)
        before = loss_ledger.get_record(loss_decl.loss_record_id)

        with pytest.raises(InsufficientBalanceError):
            declaration_service.submit(correction.id)

        after = loss_ledger.get_record(loss_decl.loss_record_id)
        assert after == before
        assert after.remaining_amount == Decimal("45000.00")
        assert after.net_used_by(profit.id) == Decimal("25000.00")
        assert not any(u.is_reversal for u in after.usage_history)
        assert declaration_service.get(correction.id).status == DeclarationStatus.CALCULATED
