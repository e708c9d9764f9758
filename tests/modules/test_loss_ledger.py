"""
Loss carry-forward ledger: balances, FIFO consumption, reversal and
supersession.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from tax_kernel.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    LedgerRecordLockedError,
    LossRecordNotFoundError,
)
from tax_modules.losses import LossRecord, LossStatus, LossUsage

CIT = "CIT"


class TestRecordLoss:
    def test_expiry_five_years(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("80000"))
        assert record.expiry_year == 2025
        assert record.original_amount == Decimal("80000.00")
        assert record.remaining_amount == Decimal("80000.00")
        assert record.status_for(2021) == LossStatus.ACTIVE

    def test_amount_must_be_positive(self, loss_ledger, client_id):
        with pytest.raises(InvalidAmountError):
            loss_ledger.record_loss(client_id, CIT, 2020, Decimal("0"))

    def test_logged(self, loss_ledger, client_id, captured_logs):
        loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"))
        records = [r for r in captured_logs() if r["message"] == "loss_recorded"]
        assert records[0]["amount"] == "1000.00"
        assert records[0]["expiry_year"] == 2027


class TestAvailableBalance:
    def test_not_available_in_loss_year(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2023, Decimal("5000"))
        assert loss_ledger.get_available_balance(client_id, CIT, 2023) == Decimal("0")
        assert loss_ledger.get_available_balance(client_id, CIT, 2024) == Decimal("5000.00")

    def test_expired_excluded(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2018, Decimal("5000"))
        loss_ledger.record_loss(client_id, CIT, 2021, Decimal("3000"))
        assert loss_ledger.get_available_balance(client_id, CIT, 2023) == Decimal("8000.00")
        assert loss_ledger.get_available_balance(client_id, CIT, 2024) == Decimal("3000.00")

    def test_separate_tax_types(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2022, Decimal("5000"))
        assert loss_ledger.get_available_balance(client_id, "PIT", 2023) == Decimal("0")

    def test_separate_clients(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2022, Decimal("5000"))
        assert loss_ledger.get_available_balance(uuid4(), CIT, 2023) == Decimal("0")


class TestConsume:
    def test_fifo_across_records(self, loss_ledger, client_id):
        older = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("30000"))
        younger = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("50000"))

        result = loss_ledger.consume(client_id, CIT, Decimal("40000"), 2023)

        assert result.total_applied == Decimal("40000")
        assert [a.loss_record_id for a in result.applications] == [older.id, younger.id]
        assert [a.amount_applied for a in result.applications] == [
            Decimal("30000.00"), Decimal("10000"),
        ]
        assert loss_ledger.get_record(older.id).remaining_amount == Decimal("0.00")
        assert loss_ledger.get_record(younger.id).remaining_amount == Decimal("40000.00")
        assert loss_ledger.get_available_balance(client_id, CIT, 2023) == Decimal("40000.00")

    def test_status_after_consumption(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("100"))
        loss_ledger.consume(client_id, CIT, Decimal("40"), 2021)
        assert loss_ledger.get_record(record.id).status_for(2021) == LossStatus.PARTIALLY_CONSUMED
        loss_ledger.consume(client_id, CIT, Decimal("60"), 2021)
        assert loss_ledger.get_record(record.id).status_for(2021) == LossStatus.FULLY_CONSUMED

    def test_insufficient_balance_applies_nothing(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("100"))
        with pytest.raises(InsufficientBalanceError) as exc_info:
            loss_ledger.consume(client_id, CIT, Decimal("100.01"), 2021)
        assert exc_info.value.remaining == Decimal("100.00")
        assert loss_ledger.get_record(record.id).used_amount == Decimal("0")

    def test_usage_history_carries_declaration(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("100"))
        declaration_id = uuid4()
        loss_ledger.consume(client_id, CIT, Decimal("25"), 2021, declaration_id=declaration_id)
        history = loss_ledger.get_record(record.id).usage_history
        assert len(history) == 1
        assert history[0].declaration_id == declaration_id
        assert history[0].year == 2021


class TestApplyConsumption:
    def test_applies_to_single_record(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"))
        updated = loss_ledger.apply_consumption(record.id, Decimal("400"))
        assert updated.remaining_amount == Decimal("600.00")
        assert updated.usage_history[0].year == 2025

    def test_exceeds_remaining(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"))
        with pytest.raises(InsufficientBalanceError):
            loss_ledger.apply_consumption(record.id, Decimal("1000.01"))

    def test_fifo_skip_refused(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2021, Decimal("1000"))
        younger = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"))
        with pytest.raises(InvariantViolationError):
            loss_ledger.apply_consumption(younger.id, Decimal("10"))

    def test_ineligible_record(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2025, Decimal("1000"))
        with pytest.raises(InvariantViolationError):
            loss_ledger.apply_consumption(record.id, Decimal("10"))

    def test_unknown_record(self, loss_ledger):
        with pytest.raises(LossRecordNotFoundError):
            loss_ledger.apply_consumption(uuid4(), Decimal("10"))


class TestReversalAndSupersession:
    def test_reverse_restores_balance(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("1000"))
        declaration_id = uuid4()
        loss_ledger.consume(client_id, CIT, Decimal("700"), 2021, declaration_id=declaration_id)

        restored = loss_ledger.reverse_consumption(client_id, CIT, declaration_id, 2021)

        assert restored == Decimal("700")
        updated = loss_ledger.get_record(record.id)
        assert updated.remaining_amount == Decimal("1000.00")
        assert len(updated.usage_history) == 2
        assert updated.usage_history[1].is_reversal
        assert updated.usage_history[1].amount == Decimal("-700")

    def test_reverse_twice_is_noop(self, loss_ledger, client_id):
        loss_ledger.record_loss(client_id, CIT, 2020, Decimal("1000"))
        declaration_id = uuid4()
        loss_ledger.consume(client_id, CIT, Decimal("700"), 2021, declaration_id=declaration_id)
        loss_ledger.reverse_consumption(client_id, CIT, declaration_id, 2021)
        assert loss_ledger.reverse_consumption(client_id, CIT, declaration_id, 2021) == Decimal("0")

    def test_balance_after_reversal_mutates_nothing(self, loss_ledger, client_id):
        first = loss_ledger.record_loss(client_id, CIT, 2020, Decimal("1000"))
        second = loss_ledger.record_loss(client_id, CIT, 2021, Decimal("500"))
        declaration_id = uuid4()
        loss_ledger.consume(client_id, CIT, Decimal("1200"), 2022, declaration_id=declaration_id)

        assert loss_ledger.get_available_balance(client_id, CIT, 2022) == Decimal("300")
        assert loss_ledger.balance_after_reversal(client_id, CIT, declaration_id, 2022) == Decimal("1500")
        assert loss_ledger.balance_after_reversal(
            client_id, CIT, declaration_id, 2022, superseded_record_id=second.id
        ) == Decimal("1000")
        assert len(loss_ledger.get_record(first.id).usage_history) == 1

    def test_supersede_unused(self, loss_ledger, client_id):
        source = uuid4()
        record = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"), declaration_id=source)
        assert loss_ledger.records_created_by(client_id, CIT, source) == [record]

        superseded = loss_ledger.supersede(record.id, uuid4())

        assert superseded.status_for(2023) == LossStatus.SUPERSEDED
        assert loss_ledger.get_available_balance(client_id, CIT, 2023) == Decimal("0")
        assert loss_ledger.records_created_by(client_id, CIT, source) == []

    def test_supersede_used_refused(self, loss_ledger, client_id):
        record = loss_ledger.record_loss(client_id, CIT, 2022, Decimal("1000"))
        loss_ledger.consume(client_id, CIT, Decimal("1"), 2023)
        with pytest.raises(LedgerRecordLockedError):
            loss_ledger.supersede(record.id, uuid4())


class TestLossRecordInvariants:
    def test_used_plus_remaining(self, client_id):
        with pytest.raises(InvariantViolationError):
            LossRecord(
                client_id=client_id,
                tax_type=CIT,
                loss_year=2020,
                original_amount=Decimal("100"),
                expiry_year=2025,
                used_amount=Decimal("10"),
                remaining_amount=Decimal("80"),
            )

    def test_history_must_match_used(self, client_id, deterministic_clock):
        with pytest.raises(InvariantViolationError):
            LossRecord(
                client_id=client_id,
                tax_type=CIT,
                loss_year=2020,
                original_amount=Decimal("100"),
                expiry_year=2025,
                used_amount=Decimal("10"),
                usage_history=(LossUsage(2021, Decimal("5"), None, deterministic_clock.now()),),
            )

    def test_negative_remaining(self, client_id):
        with pytest.raises(InvariantViolationError):
            LossRecord(
                client_id=client_id,
                tax_type=CIT,
                loss_year=2020,
                original_amount=Decimal("100"),
                expiry_year=2025,
                used_amount=Decimal("110"),
            )

    def test_expired_status(self, client_id):
        record = LossRecord(
            client_id=client_id,
            tax_type=CIT,
            loss_year=2018,
            original_amount=Decimal("100"),
            expiry_year=2023,
        )
        assert record.status_for(2024) == LossStatus.EXPIRED
        assert not record.is_eligible(2024)
