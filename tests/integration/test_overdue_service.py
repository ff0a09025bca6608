"""
Integration tests for overdue evaluation, the rent calendar and the weekly audit
"""

from datetime import date, datetime, time, timedelta

import pytest

from app import db
from models import SystemConfiguration, AuditLog, ReportStatus, Shift, AdjustmentStatus
from services.overdue_service import OverdueService, get_non_working_dates
from services.reporting_service import ReportingService
from timezone_utils import get_ist_today
from tests.factories import UserFactory

TODAY = get_ist_today()
EVENING = datetime.combine(TODAY, time(20, 0))


def _days_ago(n):
    return TODAY - timedelta(days=n)


@pytest.fixture
def recent_driver(db_session, make_report):
    """Morning driver who joined three days ago and reported only on the first day"""
    driver = UserFactory(shift=Shift.MORNING, joining_date=_days_ago(3))
    make_report(driver, rent_date=_days_ago(3), status=ReportStatus.APPROVED)
    return driver


def _set_non_working_dates(days):
    config = SystemConfiguration(key='non_working_dates', data_type='json', category='calendar')
    config.set_value([day.isoformat() for day in days])
    db.session.add(config)
    db.session.commit()


@pytest.mark.integration
class TestEvaluateDriver:

    def test_reporting_every_day_is_clear(self, db_session, make_report):
        driver = UserFactory(shift=Shift.MORNING)
        for n in range(0, 31):
            make_report(driver, rent_date=_days_ago(n), status=ReportStatus.APPROVED)

        result = OverdueService().evaluate_driver(driver, now=EVENING)

        assert result['overdue_count'] == 0
        assert result['rejected_count'] == 0
        assert result['window_start'] == _days_ago(30).isoformat()
        assert len(result['days']) == 31

    def test_missing_days_are_counted(self, db_session, recent_driver):
        result = OverdueService().evaluate_driver(recent_driver, now=EVENING)

        # Two missed days plus today, whose morning deadline has passed
        assert result['overdue_count'] == 3
        assert result['window_start'] == _days_ago(3).isoformat()
        assert result['days'][0]['status'] == 'reported'

    def test_today_is_not_due_before_the_deadline(self, db_session, recent_driver):
        morning = datetime.combine(TODAY, time(9, 0))
        assert OverdueService().evaluate_driver(recent_driver, now=morning)['overdue_count'] == 2

    def test_non_working_date_is_not_counted(self, db_session, recent_driver):
        _set_non_working_dates([_days_ago(1), date(2020, 1, 26)])

        assert get_non_working_dates() == {_days_ago(1), date(2020, 1, 26)}
        result = OverdueService().evaluate_driver(recent_driver, now=EVENING)
        assert result['overdue_count'] == 2
        exempt = [day for day in result['days'] if day['status'] == 'exempt']
        assert [day['reason'] for day in exempt] == ['non_working']

    def test_updated_non_working_dates_are_audited_and_applied(self, db_session, admin_user, recent_driver):
        service = OverdueService()
        success, error, stored = service.update_non_working_dates(
            [_days_ago(1).isoformat(), _days_ago(1).isoformat()], admin_user.id)

        assert success is True, error
        assert stored == [_days_ago(1).isoformat()]
        assert service.evaluate_driver(recent_driver, now=EVENING)['overdue_count'] == 2
        audit = AuditLog.query.filter_by(action='update_non_working_dates').one()
        assert audit.entity_type == 'system_configuration'

    @pytest.mark.parametrize('dates', [None, '2024-01-26', ['2024-13-01'], [20240126]])
    def test_invalid_non_working_dates_are_refused(self, db_session, admin_user, dates):
        success, error, _ = OverdueService().update_non_working_dates(dates, admin_user.id)
        assert success is False
        assert 'YYYY-MM-DD' in error
        assert SystemConfiguration.query.filter_by(key='non_working_dates').first() is None

    def test_pending_report_past_deadline_counts(self, db_session, make_report):
        driver = UserFactory(shift=Shift.MORNING, joining_date=_days_ago(1))
        make_report(driver, rent_date=_days_ago(1))
        make_report(driver, rent_date=TODAY, submission_date=datetime.combine(TODAY, time(10, 0)))

        result = OverdueService().evaluate_driver(driver, now=EVENING)

        # Yesterday's report is still unverified; today's was on time but is now past 16:30
        assert result['overdue_count'] == 2

    def test_offline_driver_has_no_overdue_days(self, db_session, recent_driver):
        recent_driver.online = False
        recent_driver.offline_from_date = _days_ago(3)
        db.session.commit()

        assert OverdueService().evaluate_driver(recent_driver, now=EVENING)['overdue_count'] == 0


@pytest.mark.integration
class TestCalendarAndListings:

    def test_calendar_cells_match_evaluation(self, db_session, recent_driver):
        calendar = OverdueService().get_calendar(_days_ago(3), _days_ago(1), [recent_driver.id], now=EVENING)

        assert len(calendar) == 1
        row = calendar[0]
        assert row['user_id'] == recent_driver.id
        assert row['shift'] == 'morning'
        assert row['days'] == {
            _days_ago(3).isoformat(): ['paid'],
            _days_ago(2).isoformat(): ['overdue'],
            _days_ago(1).isoformat(): ['overdue'],
        }

    def test_calendar_marks_days_before_joining(self, db_session):
        driver = UserFactory(shift=Shift.NIGHT, joining_date=TODAY)
        calendar = OverdueService().get_calendar(_days_ago(1), _days_ago(1), [driver.id], now=EVENING)
        assert calendar[0]['days'][_days_ago(1).isoformat()] == ['not_joined']

    def test_overdue_drivers_listing(self, db_session, recent_driver):
        UserFactory(shift=Shift.NIGHT, joining_date=TODAY)

        listing = OverdueService().get_overdue_drivers(now=EVENING)

        assert [entry['user_id'] for entry in listing] == [recent_driver.id]
        assert listing[0]['overdue_count'] == 3


@pytest.mark.integration
class TestWeeklyAudit:

    def test_weekly_audit_figures(self, db_session, make_report, make_adjustment):
        driver = UserFactory()
        monday = date(2024, 3, 11)
        make_report(driver, rent_date=monday, status=ReportStatus.APPROVED,
                    deposit_cutting_amount=100, rent_paid_amount=500)
        make_report(driver, rent_date=monday + timedelta(days=1), status=ReportStatus.APPROVED,
                    deposit_cutting_amount=100, rent_paid_amount=-200)
        make_report(driver, rent_date=monday + timedelta(days=2), rent_paid_amount=300)
        make_adjustment(driver, adjustment_date=monday + timedelta(days=1), amount=150)
        make_adjustment(driver, adjustment_date=monday, amount=999, status=AdjustmentStatus.REJECTED)

        audit = ReportingService().get_weekly_audit(driver.id, week_of=monday + timedelta(days=4))

        assert audit['week_start'] == '2024-03-11'
        assert audit['week_end'] == '2024-03-17'
        assert audit['report_count'] == 3
        assert audit['approved_count'] == 2
        assert audit['weekly_rent'] == 1400
        assert audit['deposit_cutting'] == 200
        assert audit['adjustments'] == 150
        assert audit['final_pay'] == 1450
        assert audit['cash_at_bank'] == 800
        assert audit['difference'] == 650

    def test_weekly_audit_unknown_driver(self, db_session):
        assert ReportingService().get_weekly_audit(99999) is None
