"""
SQLAlchemy repositories against in-memory SQLite.

The services run unchanged over the SQL repositories; each test works in
the ``session`` fixture's transaction, which is rolled back afterwards.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from tax_engines.vat import RefundOption
from tax_kernel.exceptions import (
    CarryForwardNotFoundError,
    DeclarationNotFoundError,
    LossRecordNotFoundError,
    VatTransactionNotFoundError,
)
from tax_modules.contributions import ContributionService, SqlContributionRepository
from tax_modules.declarations import DeclarationService, DeclarationStatus, SqlDeclarationRepository
from tax_modules.declarations.orm import DeclarationModel
from tax_modules.losses import LossLedger, SqlLossRepository
from tax_modules.losses.orm import LossRecordModel
from tax_modules.vat import CarryForwardStatus, SqlVatRepository, VatService, VatTransactionStatus


@pytest.fixture
def sql_loss_ledger(session, test_actor_id, deterministic_clock, config):
    return LossLedger(SqlLossRepository(session, test_actor_id), clock=deterministic_clock, config=config)


@pytest.fixture
def sql_vat_service(session, test_actor_id, catalog, profiles, deterministic_clock, config):
    return VatService(
        SqlVatRepository(session, test_actor_id),
        catalog,
        profiles=profiles,
        clock=deterministic_clock,
        config=config,
    )


@pytest.fixture
def sql_declaration_service(
    session, test_actor_id, sql_loss_ledger, catalog, profiles, deterministic_clock, config
):
    return DeclarationService(
        SqlDeclarationRepository(session, test_actor_id),
        sql_loss_ledger,
        catalog,
        profiles=profiles,
        clock=deterministic_clock,
        config=config,
    )


class TestSqlLossRepository:
    def test_round_trip_with_usage_history(self, session, test_actor_id, sql_loss_ledger, client_id):
        record = sql_loss_ledger.record_loss(client_id, "CIT", 2021, Decimal("30000"))
        sql_loss_ledger.record_loss(client_id, "CIT", 2022, Decimal("50000"))
        declaration_id = uuid4()
        sql_loss_ledger.consume(client_id, "CIT", Decimal("40000"), 2023, declaration_id=declaration_id)
        sql_loss_ledger.reverse_consumption(client_id, "CIT", declaration_id, 2023)

        session.expire_all()
        reloaded = SqlLossRepository(session, test_actor_id).get(record.id)

        assert reloaded.remaining_amount == Decimal("30000")
        assert [u.amount for u in reloaded.usage_history] == [Decimal("30000"), Decimal("-30000")]
        assert reloaded.usage_history[1].is_reversal
        assert sql_loss_ledger.get_available_balance(client_id, "CIT", 2023) == Decimal("80000")

    def test_fifo_order(self, sql_loss_ledger, client_id):
        sql_loss_ledger.record_loss(client_id, "PIT", 2022, Decimal("1"))
        sql_loss_ledger.record_loss(client_id, "PIT", 2020, Decimal("1"))
        years = [r.loss_year for r in sql_loss_ledger.list_records(client_id, "PIT")]
        assert years == [2020, 2022]

    def test_audit_columns(self, session, test_actor_id, sql_loss_ledger, client_id):
        record = sql_loss_ledger.record_loss(client_id, "CIT", 2021, Decimal("100"))
        sql_loss_ledger.consume(client_id, "CIT", Decimal("10"), 2022)
        model = session.get(LossRecordModel, record.id)
        assert model.created_by_id == test_actor_id
        assert model.updated_by_id == test_actor_id

    def test_not_found(self, session, test_actor_id):
        with pytest.raises(LossRecordNotFoundError):
            SqlLossRepository(session, test_actor_id).get(uuid4())


class TestSqlVatRepository:
    def test_settlement_with_carry_forward(self, sql_vat_service, client_id):
        sql_vat_service.record_transaction(
            client_id, "DOMESTIC_PURCHASE", "REDUCED_8", date(2024, 4, 10), net=Decimal("50000")
        )
        sql_vat_service.finalize_settlement(client_id, 2024, 4, RefundOption.OFFSET_NEXT_PERIOD)
        sql_vat_service.record_transaction(
            client_id, "DOMESTIC_SALE", "STANDARD", date(2024, 5, 10), net=Decimal("100000")
        )
        sql_vat_service.record_transaction(
            client_id, "DOMESTIC_PURCHASE", "REDUCED_8", date(2024, 5, 11), net=Decimal("62500")
        )

        settlement = sql_vat_service.finalize_settlement(client_id, 2024, 5)

        assert settlement.vat_due == Decimal("14000")
        stored = sql_vat_service.get_settlement(client_id, 2024, 5)
        assert stored.id == settlement.id
        assert stored.output_vat.rate23 == Decimal("23000")
        assert stored.input_vat.deductible == Decimal("5000")
        assert stored.due_date == date(2024, 6, 25)
        (cf,) = sql_vat_service.list_carry_forwards(client_id)
        assert cf.status == CarryForwardStatus.FULLY_APPLIED
        assert len(cf.applications) == 1

    def test_pair_and_correction(self, sql_vat_service, client_id):
        output, input_ = sql_vat_service.record_intra_eu_acquisition(
            client_id, date(2024, 5, 10), Decimal("10000")
        )
        sql_vat_service.correct_transaction(output.id, Decimal("9000"), "credit note")

        assert sql_vat_service.get_transaction(input_.id).status == VatTransactionStatus.CORRECTED
        transactions = sql_vat_service.list_transactions(client_id, 2024, 5)
        assert len(transactions) == 4
        assert sql_vat_service.calculate_settlement(client_id, 2024, 5).difference == Decimal("0")

    def test_not_found(self, session, test_actor_id):
        repo = SqlVatRepository(session, test_actor_id)
        with pytest.raises(VatTransactionNotFoundError):
            repo.get_transaction(uuid4())
        with pytest.raises(CarryForwardNotFoundError):
            repo.get_carry_forward(uuid4())
        assert repo.find_settlement(uuid4(), 2024, 5) is None


class TestSqlDeclarationRepository:
    def test_lifecycle_with_loss(self, sql_declaration_service, sql_loss_ledger, client_id):
        loss = sql_declaration_service.create(
            client_id, "CIT_STANDARD", 2023, Decimal("100000"), Decimal("180000")
        )
        sql_declaration_service.calculate(loss.id)
        loss = sql_declaration_service.submit(loss.id)

        profit = sql_declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000"),
            apply_loss_carry_forward=True,
        )
        sql_declaration_service.calculate(profit.id)
        profit = sql_declaration_service.submit(profit.id)

        assert profit.status == DeclarationStatus.SUBMITTED
        assert profit.tax_due == Decimal("22800")
        assert sql_loss_ledger.get_record(loss.loss_record_id).remaining_amount == Decimal("0")

    def test_correction_chain(self, session, test_actor_id, sql_declaration_service, client_id):
        decl = sql_declaration_service.create(
            client_id, "PIT_FLAT", 2024, Decimal("100000"), Decimal("0")
        )
        sql_declaration_service.calculate(decl.id)
        sql_declaration_service.submit(decl.id)
        correction = sql_declaration_service.correct(decl.id, "late invoice", costs=Decimal("10000"))

        repo = SqlDeclarationRepository(session, test_actor_id)
        found = repo.find(client_id, "PIT", 2024, None)
        assert [d.correction_number for d in found] == [0, 1]
        assert found[0].status == DeclarationStatus.CORRECTED
        assert found[1].id == correction.id
        model = session.get(DeclarationModel, correction.id)
        assert model.corrects_declaration_id == decl.id

    def test_delete(self, session, test_actor_id, sql_declaration_service, client_id):
        decl = sql_declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("1"), Decimal("0")
        )
        sql_declaration_service.delete(decl.id)
        with pytest.raises(DeclarationNotFoundError):
            SqlDeclarationRepository(session, test_actor_id).get(decl.id)


class TestSqlContributionRepository:
    def test_ytd_from_stored_records(self, session, test_actor_id, catalog, deterministic_clock, client_id):
        service = ContributionService(
            SqlContributionRepository(session, test_actor_id), catalog, clock=deterministic_clock
        )
        person_id = uuid4()
        for month in range(1, 8):
            service.record_employee(client_id, person_id, 2024, month, Decimal("30000"))
        record, _ = service.record_employee(client_id, person_id, 2024, 8, Decimal("30000"))

        assert record.pension_base == Decimal("24720")
        stored = service.list_records(person_id, 2024)
        assert [r.month for r in stored] == list(range(1, 9))
        assert stored[-1].annual_limit_reached
