"""
Contribution service: year-to-date pension base tracking across recorded
months.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from tax_kernel.exceptions import ContributionAlreadyRecordedError, ConflictError, InvalidPeriodError
from tax_modules.contributions import ContributorKind


@pytest.fixture
def person_id():
    return uuid4()


def _record_months(service, client_id, person_id, months, gross="30000"):
    return [
        service.record_employee(client_id, person_id, 2024, m, Decimal(gross))
        for m in months
    ]


class TestEmployeeRecording:
    def test_record_summary(self, contribution_service, client_id, person_id, deterministic_clock):
        record, result = contribution_service.record_employee(
            client_id, person_id, 2024, 5, Decimal("8000")
        )
        assert record.kind == ContributorKind.EMPLOYEE
        assert record.pension_base == Decimal("8000.00")
        assert record.total_employee == Decimal("1718.09")
        assert record.total_employer == Decimal("1638.40")
        assert record.total == result.total
        assert record.due_date == date(2024, 6, 20)
        assert record.recorded_at == deterministic_clock.now()

    def test_ytd_accumulates(self, contribution_service, client_id, person_id):
        _record_months(contribution_service, client_id, person_id, [1, 2, 3], gross="10000")
        assert contribution_service.ytd_pension_base(person_id, 2024) == Decimal("30000.00")
        assert contribution_service.ytd_pension_base(person_id, 2024, 3) == Decimal("20000.00")
        assert contribution_service.ytd_pension_base(person_id, 2025) == Decimal("0")

    def test_annual_ceiling_across_months(self, contribution_service, client_id, person_id):
        _record_months(contribution_service, client_id, person_id, range(1, 8))
        assert contribution_service.ytd_pension_base(person_id, 2024) == Decimal("210000.00")

        august, result = contribution_service.record_employee(
            client_id, person_id, 2024, 8, Decimal("30000")
        )
        assert august.pension_base == Decimal("24720.00")
        assert august.annual_limit_reached
        assert result.warnings

        september, _ = contribution_service.record_employee(
            client_id, person_id, 2024, 9, Decimal("30000")
        )
        assert september.pension_base == Decimal("0.00")
        assert contribution_service.ytd_pension_base(person_id, 2024) == Decimal("234720.00")

    def test_ceiling_resets_each_year(self, contribution_service, client_id, person_id):
        _record_months(contribution_service, client_id, person_id, range(1, 10))
        record, _ = contribution_service.record_employee(
            client_id, person_id, 2025, 1, Decimal("30000")
        )
        assert record.pension_base == Decimal("30000.00")
        assert not record.annual_limit_reached

    def test_preview_uses_recorded_months(self, contribution_service, client_id, person_id):
        _record_months(contribution_service, client_id, person_id, range(1, 8))
        preview = contribution_service.calculate_employee(person_id, 2024, 8, Decimal("30000"))
        assert preview.pension_base == Decimal("24720.00")
        assert contribution_service.list_records(person_id, 2024)[-1].month == 7

    def test_people_tracked_separately(self, contribution_service, client_id, person_id):
        _record_months(contribution_service, client_id, person_id, range(1, 9))
        other, _ = contribution_service.record_employee(client_id, uuid4(), 2024, 9, Decimal("30000"))
        assert other.pension_base == Decimal("30000.00")


class TestRecordingOrder:
    def test_duplicate_month(self, contribution_service, client_id, person_id):
        contribution_service.record_employee(client_id, person_id, 2024, 5, Decimal("8000"))
        with pytest.raises(ContributionAlreadyRecordedError) as exc_info:
            contribution_service.record_employee(client_id, person_id, 2024, 5, Decimal("8000"))
        assert isinstance(exc_info.value, ConflictError)
        assert len(contribution_service.list_records(person_id, 2024)) == 1

    def test_earlier_month_refused(self, contribution_service, client_id, person_id):
        contribution_service.record_employee(client_id, person_id, 2024, 5, Decimal("8000"))
        with pytest.raises(InvalidPeriodError):
            contribution_service.record_employee(client_id, person_id, 2024, 4, Decimal("8000"))

    def test_gaps_allowed(self, contribution_service, client_id, person_id):
        contribution_service.record_employee(client_id, person_id, 2024, 2, Decimal("8000"))
        record, _ = contribution_service.record_employee(
            client_id, person_id, 2024, 6, Decimal("8000")
        )
        assert record.month == 6


class TestSelfEmployedRecording:
    def test_record(self, contribution_service, client_id, person_id):
        record, result = contribution_service.record_self_employed(
            client_id, person_id, 2024, 5, scheme="STANDARD"
        )
        assert record.kind == ContributorKind.SELF_EMPLOYED
        assert record.total == Decimal("1771.65")
        assert record.total_employee == record.total
        assert record.total_employer == Decimal("0")
        assert result.pension_base == Decimal("4694.40")

    def test_ytd_drives_ceiling(self, contribution_service, client_id, person_id):
        for month in range(1, 12):
            contribution_service.record_self_employed(
                client_id, person_id, 2024, month, custom_pension_base=Decimal("21000")
            )
        # 11 x 21000 = 231000; 3720 remains under the 234720 limit.
        record, _ = contribution_service.record_self_employed(
            client_id, person_id, 2024, 12, custom_pension_base=Decimal("21000")
        )
        assert record.pension_base == Decimal("3720.00")
        assert record.annual_limit_reached

    def test_preview(self, contribution_service, person_id):
        result = contribution_service.calculate_self_employed(person_id, 2024, 5, scheme="ULGA_NA_START")
        assert result.total == Decimal("286.34")
