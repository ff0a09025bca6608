"""
Integration tests for report submission, admin edits and deletion
"""

from datetime import timedelta

import pytest

from app import db
from models import (User, Vehicle, FleetReport, CommonAdjustment, BalanceTransaction,
                    VehicleTransaction, SystemConfiguration, AdjustmentStatus, ReportStatus, Shift)
from services.report_service import ReportService
from services.ledger_service import LedgerService
from services.adjustment_service import AdjustmentService
from services.settlement_service import SettlementService, SlabResolver
from timezone_utils import get_ist_today
from tests.factories import UserFactory

YESTERDAY_OFFSET = timedelta(days=1)


def _submission(**overrides):
    data = {
        'rent_date': get_ist_today() - YESTERDAY_OFFSET,
        'shift': Shift.MORNING,
        'total_trips': 12,
        'total_earnings': 3000,
        'toll': 50,
        'total_cashcollect': 1000,
        'other_fee': 0,
        'deposit_cutting_amount': 0,
    }
    data.update(overrides)
    return data


@pytest.mark.integration
class TestSubmitReport:

    def test_submission_stores_signed_settlement(self, db_session, driver_user):
        success, error, result = ReportService().submit_report(driver_user.id, _submission())

        assert success is True, error
        assert result['settlement']['rent'] == 535.0
        assert result['settlement']['direction'] == 'company_owes_driver'
        assert result['report']['rent_paid_amount'] == -1515.0
        assert result['report']['status'] == 'pending_verification'

        driver = db.session.get(User, driver_user.id)
        assert driver.total_trip == 12
        assert driver.total_earning == 3000

    def test_duplicate_date_and_shift_is_a_conflict(self, db_session, driver_user):
        service = ReportService()
        service.submit_report(driver_user.id, _submission())

        success, error, details = service.submit_report(driver_user.id, _submission(total_trips=3))

        assert success is False
        assert details['conflict'] is True
        assert FleetReport.query.count() == 1

    def test_second_shift_same_day_is_allowed(self, db_session, driver_user):
        service = ReportService()
        service.submit_report(driver_user.id, _submission())
        success, _, _ = service.submit_report(driver_user.id, _submission(shift=Shift.NIGHT))
        assert success is True
        assert FleetReport.query.count() == 2

    def test_future_date_is_refused(self, db_session, driver_user):
        success, error, _ = ReportService().submit_report(
            driver_user.id, _submission(rent_date=get_ist_today() + timedelta(days=1)))
        assert success is False
        assert "future" in error

    def test_negative_amount_is_refused(self, db_session, driver_user):
        success, error, _ = ReportService().submit_report(driver_user.id, _submission(toll=-5))
        assert success is False
        assert "cannot be negative" in error

    def test_unassigned_shift_defaults_to_morning(self, db_session):
        driver = UserFactory(shift=Shift.NONE)
        success, _, result = ReportService().submit_report(driver.id, _submission(shift=None))
        assert success is True
        assert result['report']['shift'] == 'morning'

    def test_full_day_shift_uses_full_day_slabs(self, db_session, driver_user):
        success, _, result = ReportService().submit_report(
            driver_user.id, _submission(shift=Shift.FULL_DAY, total_trips=22))
        assert success is True
        assert result['settlement']['rent'] == 970.0

    def test_vehicle_actual_rent_overrides_slabs(self, db_session, driver_user):
        vehicle = Vehicle.query.filter_by(vehicle_number=driver_user.vehicle_number).first()
        vehicle.actual_rent = 600
        db.session.commit()

        _, _, result = ReportService().submit_report(driver_user.id, _submission())

        assert result['settlement']['rent'] == 600.0
        assert result['report']['rent_paid_amount'] == -1450.0

    def test_configured_slabs_are_used_after_update(self, db_session, admin_user, driver_user):
        rows = [{'min_trips': 0, 'max_trips': None, 'amount': 500}]
        success, error, _ = SettlementService().update_slabs('rent_slabs', rows, admin_user.id)
        assert success is True, error

        _, _, result = ReportService().submit_report(driver_user.id, _submission())

        assert result['settlement']['rent'] == 500.0

    def test_malformed_stored_slabs_fall_back_to_built_in_tables(self, db_session):
        for key, rows in (('rent_slabs', [{'min_trips': 0, 'max_trips': 'ten', 'amount': 500}]),
                          ('rent_slabs_24hr', [{'min_trips': 0, 'max_trips': 9, 'amount': 500},
                                               {'min_trips': 10, 'max_trips': None, 'amount': 900}])):
            config = SystemConfiguration(key=key, data_type='json', category='slabs')
            config.set_value(rows)
            db.session.add(config)
        db.session.commit()

        resolver = SlabResolver.load()

        assert resolver.resolve_rent(12, Shift.MORNING) == 535.0
        assert resolver.resolve_rent(22, Shift.FULL_DAY) == 970.0

    def test_malformed_slabs_are_refused(self, db_session, admin_user):
        success, error, _ = SettlementService().update_slabs(
            'rent_slabs', [{'min_trips': 5, 'max_trips': 1, 'amount': 10}], admin_user.id)
        assert success is False
        assert 'below min_trips' in error


@pytest.mark.integration
class TestEditReport:

    def test_edit_recomputes_settlement_and_totals(self, db_session, admin_user, driver_user):
        service = ReportService()
        _, _, result = service.submit_report(driver_user.id, _submission())
        report_id = result['report']['id']

        success, error, edited = service.edit_report(report_id, {'total_trips': 4, 'total_cashcollect': 3000},
                                                     admin_user.id)

        assert success is True, error
        # 3000 + 50 - 3000 - 795
        assert edited['report']['rent_paid_amount'] == 745.0
        assert edited['settlement']['direction'] == 'driver_owes_company'
        assert db.session.get(User, driver_user.id).total_trip == 4

    def test_approved_reports_cannot_be_edited(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user)
        LedgerService().approve_report(report.id, admin_user.id)

        success, error, _ = ReportService().edit_report(report.id, {'total_trips': 1}, admin_user.id)

        assert success is False
        assert "reject the report first" in error

    def test_edit_into_existing_slot_is_a_conflict(self, db_session, admin_user, driver_user, make_report):
        yesterday = get_ist_today() - YESTERDAY_OFFSET
        make_report(driver_user, rent_date=yesterday)
        other = make_report(driver_user, rent_date=yesterday - timedelta(days=1))

        success, _, details = ReportService().edit_report(other.id, {'rent_date': yesterday}, admin_user.id)

        assert success is False
        assert details['conflict'] is True


@pytest.mark.integration
class TestDeleteReport:

    def test_delete_unlinks_adjustments_and_reverses_ledgers(self, db_session, admin_user, driver_user,
                                                            make_report, make_adjustment):
        report = make_report(driver_user, deposit_cutting_amount=400, total_trips=9)
        adjustment = make_adjustment(driver_user, amount=250, adjustment_date=report.rent_date)
        LedgerService().approve_report(report.id, admin_user.id)
        report_id = report.id

        success, error, result = ReportService().delete_report(report_id, admin_user.id)

        assert success is True, error
        assert result['adjustments_unlinked'] == [adjustment.id]
        assert db.session.get(FleetReport, report_id) is None

        adjustment = db.session.get(CommonAdjustment, adjustment.id)
        assert adjustment.status == AdjustmentStatus.APPROVED
        assert adjustment.applied_to_report is None

        assert BalanceTransaction.query.count() == 0
        assert VehicleTransaction.query.count() == 0
        assert db.session.get(User, driver_user.id).pending_balance == 0
        assert Vehicle.query.filter_by(vehicle_number=driver_user.vehicle_number).first().total_trips == 0

    def test_unlinked_adjustment_applies_to_a_new_report(self, db_session, admin_user, driver_user,
                                                         make_report, make_adjustment):
        ledger = LedgerService()
        report = make_report(driver_user)
        adjustment = make_adjustment(driver_user, adjustment_date=report.rent_date)
        ledger.approve_report(report.id, admin_user.id)
        ReportService().delete_report(report.id, admin_user.id)

        replacement = make_report(driver_user, rent_date=adjustment.adjustment_date)
        ledger.approve_report(replacement.id, admin_user.id)

        assert db.session.get(CommonAdjustment, adjustment.id).applied_to_report == replacement.id
        assert AdjustmentService().get_stats()['by_status']['applied'] == 1

    def test_delete_pending_report(self, db_session, admin_user, driver_user):
        service = ReportService()
        _, _, result = service.submit_report(driver_user.id, _submission())

        success, _, _ = service.delete_report(result['report']['id'], admin_user.id)

        assert success is True
        driver = db.session.get(User, driver_user.id)
        assert driver.total_trip == 0
        assert driver.total_earning == 0
        assert FleetReport.query.filter_by(status=ReportStatus.PENDING_VERIFICATION).count() == 0
