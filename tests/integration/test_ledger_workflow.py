"""
Integration tests for report verification and the driver ledgers
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from app import db
from models import (User, Vehicle, FleetReport, BalanceTransaction, PenaltyTransaction,
                    VehicleTransaction, ReportStatus, BalanceTransactionType,
                    PenaltyTransactionType, VehicleTransactionType)
from services.ledger_service import LedgerService, deposit_description
from timezone_utils import get_ist_today, week_start_for
from tests.factories import UserFactory, VehicleFactory


def _driver(driver_id):
    return db.session.get(User, driver_id)


def _vehicle(vehicle_number):
    return Vehicle.query.filter_by(vehicle_number=vehicle_number).first()


@pytest.mark.integration
class TestReportVerification:

    def test_approve_records_deposit_and_trips(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user, deposit_cutting_amount=500, total_trips=10)

        success, error, result = LedgerService().approve_report(report.id, admin_user.id)

        assert success is True, error
        assert result['deposit_recorded'] == 500
        assert _driver(driver_user.id).pending_balance == 500
        assert _vehicle(driver_user.vehicle_number).total_trips == 10

        deposit = BalanceTransaction.query.filter_by(user_id=driver_user.id).one()
        assert deposit.type == BalanceTransactionType.DEPOSIT
        assert deposit.fleet_report_id == report.id
        assert deposit.description == deposit_description(report)

        report = db.session.get(FleetReport, report.id)
        assert report.status == ReportStatus.APPROVED
        assert report.rent_verified is True
        assert report.verified_by == admin_user.id

    def test_approve_then_reject_is_net_zero(self, db_session, admin_user, driver_user, make_report):
        service = LedgerService()
        report = make_report(driver_user, deposit_cutting_amount=500, total_trips=10)

        service.approve_report(report.id, admin_user.id)
        success, error, result = service.reject_report(report.id, admin_user.id, reason="Wrong toll")

        assert success is True, error
        assert result['deposits_removed'] == 1
        assert result['amount_removed'] == 500
        assert _driver(driver_user.id).pending_balance == 0
        assert _vehicle(driver_user.vehicle_number).total_trips == 0
        assert BalanceTransaction.query.filter_by(user_id=driver_user.id).count() == 0

        report = db.session.get(FleetReport, report.id)
        assert report.status == ReportStatus.REJECTED
        assert report.rent_verified is False
        assert "Wrong toll" in report.remarks

    def test_approve_without_deposit_writes_no_ledger_row(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user)
        success, _, _ = LedgerService().approve_report(report.id, admin_user.id)
        assert success is True
        assert BalanceTransaction.query.count() == 0

    def test_approve_twice_is_refused(self, db_session, admin_user, driver_user, make_report):
        service = LedgerService()
        report = make_report(driver_user, deposit_cutting_amount=200)
        service.approve_report(report.id, admin_user.id)

        success, error, _ = service.approve_report(report.id, admin_user.id)

        assert success is False
        assert "already approved" in error
        assert _driver(driver_user.id).pending_balance == 200

    def test_reject_pending_report_removes_legacy_deposit_rows(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user, deposit_cutting_amount=300)
        # Row written before deposits were linked to their report
        db.session.add(BalanceTransaction(user_id=driver_user.id, amount=300,
                                          type=BalanceTransactionType.DEPOSIT,
                                          description=deposit_description(report)))
        driver_user.pending_balance = 300
        db.session.commit()

        success, _, result = LedgerService().reject_report(report.id, admin_user.id)

        assert success is True
        assert result['amount_removed'] == 300
        assert _driver(driver_user.id).pending_balance == 0

    def test_rejected_is_terminal(self, db_session, admin_user, driver_user, make_report):
        service = LedgerService()
        report = make_report(driver_user)
        service.reject_report(report.id, admin_user.id)

        assert service.reject_report(report.id, admin_user.id)[0] is False
        assert service.approve_report(report.id, admin_user.id)[0] is False
        assert service.mark_report_leave(report.id, admin_user.id)[0] is False

    def test_mark_leave_has_no_ledger_effect(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user, deposit_cutting_amount=400)

        success, _, data = LedgerService().mark_report_leave(report.id, admin_user.id)

        assert success is True
        assert data['status'] == 'leave'
        assert BalanceTransaction.query.count() == 0
        assert _driver(driver_user.id).pending_balance == 0

    def test_failed_step_leaves_no_partial_ledger_state(self, db_session, admin_user, driver_user, make_report):
        report = make_report(driver_user, deposit_cutting_amount=500)

        with patch('services.ledger_service.apply_adjustments_for_report',
                   side_effect=RuntimeError("adjustment table locked")):
            success, error, _ = LedgerService().approve_report(report.id, admin_user.id)

        assert success is False
        assert "adjustment table locked" in error
        assert BalanceTransaction.query.count() == 0
        assert _driver(driver_user.id).pending_balance == 0
        assert db.session.get(FleetReport, report.id).status == ReportStatus.PENDING_VERIFICATION

    def test_unknown_report(self, db_session, admin_user):
        success, error, _ = LedgerService().approve_report(9999, admin_user.id)
        assert success is False
        assert error == "Report not found"


@pytest.mark.integration
class TestPenaltyLedger:

    def test_penalty_raises_total_and_is_distributed_by_days(self, db_session, admin_user, driver_user, make_report):
        last_monday = week_start_for(get_ist_today()) - timedelta(days=7)
        other_vehicle = VehicleFactory(vehicle_number='KA05ZZ0001').vehicle_number
        make_report(driver_user, rent_date=last_monday, status=ReportStatus.APPROVED)
        make_report(driver_user, rent_date=last_monday + timedelta(days=1), status=ReportStatus.APPROVED)
        make_report(driver_user, rent_date=last_monday + timedelta(days=2), status=ReportStatus.APPROVED,
                    vehicle_number=other_vehicle)
        # Pending reports do not count towards the split
        make_report(driver_user, rent_date=last_monday + timedelta(days=3), vehicle_number=other_vehicle)

        success, error, result = LedgerService().add_penalty_transaction(
            driver_user.id, 300, PenaltyTransactionType.PENALTY, "Traffic fine",
            created_by=admin_user.id, penalty_date=last_monday + timedelta(days=4))

        assert success is True, error
        assert _driver(driver_user.id).total_penalties == 300
        shares = {row['vehicle_number']: row['amount'] for row in result['distribution']}
        assert shares == {driver_user.vehicle_number: 200.0, other_vehicle: 100.0}

        tx_id = result['transaction']['id']
        income = VehicleTransaction.query.filter_by(penalty_transaction_id=tx_id).all()
        assert len(income) == 2
        assert all(row.transaction_type == VehicleTransactionType.INCOME for row in income)
        assert all(f"[PENALTY_TX_ID:{tx_id}]" in row.description for row in income)

    def test_update_backdated_penalty_redistributes_over_its_own_week(self, db_session, admin_user,
                                                                      driver_user, make_report):
        penalty_day = week_start_for(get_ist_today()) - timedelta(days=12)
        make_report(driver_user, rent_date=penalty_day, status=ReportStatus.APPROVED)
        service = LedgerService()
        _, _, result = service.add_penalty_transaction(driver_user.id, 300, PenaltyTransactionType.PENALTY,
                                                       created_by=admin_user.id, penalty_date=penalty_day)
        tx_id = result['transaction']['id']
        assert result['transaction']['penalty_date'] == penalty_day.isoformat()

        success, error, _ = service.update_penalty_transaction(tx_id, 400, updated_by=admin_user.id)

        assert success is True, error
        income = VehicleTransaction.query.filter_by(penalty_transaction_id=tx_id).all()
        assert [(row.vehicle_number, row.amount) for row in income] == [(driver_user.vehicle_number, 400.0)]
        assert income[0].transaction_date == penalty_day
        assert _driver(driver_user.id).total_penalties == 400

    def test_delete_penalty_reverses_total_and_income(self, db_session, admin_user, driver_user, make_report):
        make_report(driver_user, rent_date=get_ist_today() - timedelta(days=1), status=ReportStatus.APPROVED)
        service = LedgerService()
        _, _, result = service.add_penalty_transaction(driver_user.id, 150, PenaltyTransactionType.PENALTY,
                                                       created_by=admin_user.id,
                                                       penalty_date=get_ist_today() - timedelta(days=1))

        success, _, _ = service.delete_penalty_transaction(result['transaction']['id'], admin_user.id)

        assert success is True
        assert _driver(driver_user.id).total_penalties == 0
        assert PenaltyTransaction.query.count() == 0
        assert VehicleTransaction.query.count() == 0

    def test_penalty_without_approved_days_is_not_distributed(self, db_session, admin_user, driver_user):
        success, _, result = LedgerService().add_penalty_transaction(
            driver_user.id, 100, PenaltyTransactionType.PENALTY, created_by=admin_user.id)
        assert success is True
        assert result['distribution'] == []
        assert _driver(driver_user.id).total_penalties == 100

    def test_penalty_paid_never_drives_total_negative(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_penalty_transaction(driver_user.id, 100, PenaltyTransactionType.DUE, created_by=admin_user.id)
        service.add_penalty_transaction(driver_user.id, 250, PenaltyTransactionType.PENALTY_PAID,
                                        created_by=admin_user.id)
        assert _driver(driver_user.id).total_penalties == 0

    def test_update_penalty_moves_total_by_difference(self, db_session, admin_user, driver_user):
        service = LedgerService()
        _, _, result = service.add_penalty_transaction(driver_user.id, 100,
                                                       PenaltyTransactionType.EXTRA_COLLECTION,
                                                       created_by=admin_user.id)

        success, _, _ = service.update_penalty_transaction(result['transaction']['id'], 160,
                                                           updated_by=admin_user.id)

        assert success is True
        assert _driver(driver_user.id).total_penalties == 160

    @pytest.mark.parametrize("amount", [0, -50, "abc"])
    def test_invalid_amounts_are_refused(self, db_session, admin_user, driver_user, amount):
        success, _, _ = LedgerService().add_penalty_transaction(driver_user.id, amount,
                                                                PenaltyTransactionType.PENALTY,
                                                                created_by=admin_user.id)
        assert success is False
        assert PenaltyTransaction.query.count() == 0

    def test_outstanding_balance_combines_both_ledgers(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_balance_transaction(driver_user.id, 1000, BalanceTransactionType.DEPOSIT,
                                        created_by=admin_user.id)
        service.add_penalty_transaction(driver_user.id, 300, PenaltyTransactionType.PENALTY,
                                        created_by=admin_user.id)
        service.add_penalty_transaction(driver_user.id, 100, PenaltyTransactionType.PENALTY_PAID,
                                        created_by=admin_user.id)

        balance = service.get_outstanding_balance(driver_user.id)

        assert balance['source'] == 'ledger'
        assert balance['pending_balance'] == 1000
        assert balance['penalty_debits'] == 300
        assert balance['penalty_credits'] == 100
        assert balance['outstanding_balance'] == 800


@pytest.mark.integration
class TestBalanceLedgerAndRefunds:

    def test_manual_entries_follow_sign_rules(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_balance_transaction(driver_user.id, 1000, BalanceTransactionType.DEPOSIT)
        service.add_balance_transaction(driver_user.id, 200, BalanceTransactionType.BONUS)
        service.add_balance_transaction(driver_user.id, 150, BalanceTransactionType.DUE)
        assert _driver(driver_user.id).pending_balance == 1050

    def test_delete_manual_entry_reverses_it(self, db_session, admin_user, driver_user):
        service = LedgerService()
        _, _, tx = service.add_balance_transaction(driver_user.id, 700, BalanceTransactionType.DEPOSIT)

        success, _, _ = service.delete_balance_transaction(tx['id'], admin_user.id)

        assert success is True
        assert _driver(driver_user.id).pending_balance == 0

    def test_report_deposit_cannot_be_deleted_directly(self, db_session, admin_user, driver_user, make_report):
        service = LedgerService()
        report = make_report(driver_user, deposit_cutting_amount=250)
        service.approve_report(report.id, admin_user.id)
        deposit = BalanceTransaction.query.filter_by(fleet_report_id=report.id).one()

        success, error, _ = service.delete_balance_transaction(deposit.id, admin_user.id)

        assert success is False
        assert "rejecting the report" in error
        assert _driver(driver_user.id).pending_balance == 250

    def test_refund_leaves_exactly_the_threshold(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_balance_transaction(driver_user.id, 3200, BalanceTransactionType.DEPOSIT)

        candidates = service.get_refund_candidates()
        assert [c['user_id'] for c in candidates] == [driver_user.id]
        assert candidates[0]['refundable_amount'] == 700

        success, error, refund = service.process_refund(driver_user.id, admin_user.id)

        assert success is True, error
        assert refund['type'] == 'refund'
        assert refund['amount'] == 700
        assert _driver(driver_user.id).pending_balance == 2500
        assert service.get_refund_candidates(threshold=2600) == []

    def test_refund_below_threshold_is_refused(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_balance_transaction(driver_user.id, 2500, BalanceTransactionType.DEPOSIT)

        success, error, _ = service.process_refund(driver_user.id, admin_user.id)

        assert success is False
        assert "No extra amount" in error
        assert BalanceTransaction.query.filter_by(type=BalanceTransactionType.REFUND).count() == 0


@pytest.mark.integration
class TestReconciliation:

    def test_detects_and_fixes_drift(self, db_session, admin_user, driver_user):
        service = LedgerService()
        service.add_balance_transaction(driver_user.id, 800, BalanceTransactionType.DEPOSIT)
        service.add_penalty_transaction(driver_user.id, 120, PenaltyTransactionType.PENALTY)
        in_sync = UserFactory()

        driver = _driver(driver_user.id)
        driver.pending_balance = 950
        driver.total_penalties = 0
        db.session.commit()

        drift = service.find_balance_drift()
        assert [entry['user_id'] for entry in drift] == [driver_user.id]
        assert drift[0]['ledger_pending_balance'] == 800
        assert drift[0]['ledger_total_penalties'] == 120
        assert in_sync.id not in [entry['user_id'] for entry in drift]

        success, _, fixed = service.reconcile_balances(fix=True, performed_by=admin_user.id)

        assert success is True
        assert len(fixed) == 1
        driver = _driver(driver_user.id)
        assert driver.pending_balance == 800
        assert driver.total_penalties == 120
        assert service.find_balance_drift() == []

    def test_report_only_mode_changes_nothing(self, db_session, driver_user):
        driver = _driver(driver_user.id)
        driver.pending_balance = 42
        db.session.commit()

        _, _, drift = LedgerService().reconcile_balances(fix=False)

        assert len(drift) == 1
        assert _driver(driver_user.id).pending_balance == 42
