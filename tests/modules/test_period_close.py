"""
Period close: VAT month close, annual declaration close and readiness
diagnostics.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

from tax_modules.declarations import DeclarationStatus


def _sale(vat_service, client_id, month, net="10000"):
    vat_service.record_transaction(
        client_id, "DOMESTIC_SALE", "STANDARD", date(2024, month, 10), net=Decimal(net)
    )


class TestCloseMonth:
    def test_finalizes_vat(self, period_close_service, vat_service, client_id):
        _sale(vat_service, client_id, 5)
        result = period_close_service.close_month(client_id, 2024, 5)

        assert result.success
        assert result.period_label == "2024-05"
        (phase,) = result.phases
        assert phase.phase_name == "vat_settlement"
        assert not phase.skipped
        assert phase.details["vat_due"] == "2300.00"
        assert result.vat_settlement.vat_due == Decimal("2300.00")
        assert vat_service.get_settlement(client_id, 2024, 5) is not None

    def test_idempotent(self, period_close_service, vat_service, client_id):
        _sale(vat_service, client_id, 5)
        first = period_close_service.close_month(client_id, 2024, 5)
        second = period_close_service.close_month(client_id, 2024, 5)

        assert second.success
        assert second.phases[0].skipped
        assert second.vat_settlement.id == first.vat_settlement.id

    def test_failed_phase_recorded(self, period_close_service, vat_service, profiles, client_id):
        profiles.put(replace(profiles.get_profile(client_id), unpaid_dues=Decimal("1")))
        vat_service.record_transaction(
            client_id, "DOMESTIC_PURCHASE", "STANDARD", date(2024, 5, 10), net=Decimal("1000")
        )
        result = period_close_service.close_month(client_id, 2024, 5, "ACCELERATED_25D")

        assert not result.success
        (failed,) = result.failed_phases
        assert failed.error_code == "REFUND_NOT_ELIGIBLE"
        assert result.vat_settlement is None

    def test_logged(self, period_close_service, client_id, captured_logs):
        period_close_service.close_month(client_id, 2024, 5)
        completed = [r for r in captured_logs() if r["message"] == "period_close_completed"]
        assert completed[0]["scope"] == "month"
        assert completed[0]["period"] == "2024-05"


class TestHealthCheck:
    def test_warns_about_open_earlier_months(self, period_close_service, vat_service, client_id):
        _sale(vat_service, client_id, 3)
        result = period_close_service.health_check(client_id, 2024, 3)

        assert result.can_proceed
        descriptions = [w.description for w in result.warnings]
        assert "Earlier VAT period 2024-01 is not finalised" in descriptions
        assert "Earlier VAT period 2024-02 is not finalised" in descriptions

    def test_empty_month(self, period_close_service, client_id):
        result = period_close_service.health_check(client_id, 2024, 1)
        assert [w.category for w in result.warnings] == ["vat_transactions"]

    def test_already_finalized(self, period_close_service, vat_service, client_id):
        _sale(vat_service, client_id, 1)
        period_close_service.close_month(client_id, 2024, 1)
        result = period_close_service.health_check(client_id, 2024, 1)
        assert [w.category for w in result.warnings] == ["vat_settlement"]


class TestCloseYear:
    def test_calculates_and_submits(self, period_close_service, declaration_service, loss_ledger, client_id):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2023, Decimal("100000"), Decimal("180000")
        )
        result = period_close_service.close_year(decl.id)

        assert result.success
        assert [p.phase_name for p in result.phases] == ["declaration_calculate", "declaration_submit"]
        assert result.declaration.status == DeclarationStatus.SUBMITTED
        assert result.phases[1].details["loss_record_id"] == str(result.declaration.loss_record_id)
        assert loss_ledger.get_available_balance(client_id, "CIT", 2024) == Decimal("80000.00")

    def test_submitted_declaration_skipped(self, period_close_service, declaration_service, client_id):
        decl = declaration_service.create(
            client_id, "CIT_STANDARD", 2024, Decimal("500000"), Decimal("300000")
        )
        period_close_service.close_year(decl.id)
        again = period_close_service.close_year(decl.id)

        assert again.success
        assert all(p.skipped for p in again.phases)

    def test_failed_calculation_stops_submit(self, period_close_service, declaration_service, client_id):
        decl = declaration_service.create(
            client_id, "CIT_SMALL", 2024, Decimal("500000"), Decimal("300000")
        )
        result = period_close_service.close_year(decl.id)

        assert not result.success
        assert len(result.phases) == 1
        assert result.phases[0].error_code == "INVALID_INPUT"
        assert result.declaration.status == DeclarationStatus.DRAFT
