"""
Overdue Service

Day-by-day replay of a driver's recent report history. The classification
functions at module level are shared by the overdue evaluator, the status
gate and the admin calendar so the three can never disagree.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Dict, Any, List, Iterable, Set, Tuple
import logging
from flask import current_app, has_app_context
from models import db, User, FleetReport, SystemConfiguration, ReportStatus, Shift, UserRole
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from timezone_utils import get_ist_time_naive

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
GRACE_PERIOD = timedelta(minutes=30)
MORNING_DEADLINE = time(16, 0)
NEXT_DAY_DEADLINE = time(4, 0)

# Day outcomes
REPORTED = 'reported'
OVERDUE = 'overdue'
EXEMPT = 'exempt'

# Per-report outcomes
PAID = 'paid'
PENDING = 'pending'
LEAVE = 'leave'
REJECTED = 'rejected'
OFFLINE = 'offline'


def _shift_value(shift) -> str:
    if isinstance(shift, Shift):
        return shift.value
    return shift or Shift.NONE.value


def shift_deadline(rent_date: date, shift) -> datetime:
    """Latest on-time submission: morning by 16:30 the same day, others by 04:30 next day."""
    if _shift_value(shift) == Shift.MORNING.value:
        return datetime.combine(rent_date, MORNING_DEADLINE) + GRACE_PERIOD
    return datetime.combine(rent_date + timedelta(days=1), NEXT_DAY_DEADLINE) + GRACE_PERIOD


def exemption_reason(day: date, shift, joining_date: Optional[date], online: bool,
                     offline_from: Optional[date], online_from: Optional[date],
                     now: datetime, non_working_dates: Iterable[date] = ()) -> Optional[str]:
    """Why a day without a report is not overdue, or None when it is."""
    if joining_date and day < joining_date:
        return 'not_joined'
    if offline_from and offline_from <= day:
        if not online:
            return 'offline'
        if online_from and day < online_from:
            return 'offline'
    elif not online and offline_from is None:
        return 'offline'
    if day in non_working_dates:
        return 'non_working'
    if now <= shift_deadline(day, shift):
        return 'not_due'
    return None


def day_status(day: date, shift, joining_date: Optional[date], online: bool,
               offline_from: Optional[date], online_from: Optional[date],
               has_report: bool = False, now: Optional[datetime] = None,
               non_working_dates: Iterable[date] = ()) -> str:
    """
    Classify one calendar day for a driver.

    Returns:
        'reported' when a report exists, otherwise 'exempt' or 'overdue'
    """
    if has_report:
        return REPORTED
    now = now or get_ist_time_naive()
    reason = exemption_reason(day, shift, joining_date, online, offline_from,
                              online_from, now, non_working_dates)
    return EXEMPT if reason else OVERDUE


def classify_report(report: FleetReport, driver_online: bool, now: Optional[datetime] = None,
                    joining_date: Optional[date] = None) -> str:
    """
    Classify a submitted report as paid, pending, overdue, leave, rejected or offline.

    A pending report turns overdue when it was submitted after its shift
    deadline or the deadline has passed without verification.
    """
    if not driver_online:
        return OFFLINE
    if report.remarks and 'leave' in report.remarks.lower():
        return LEAVE

    if report.status == ReportStatus.APPROVED:
        return PAID
    if report.status == ReportStatus.LEAVE:
        return LEAVE
    if report.status == ReportStatus.REJECTED:
        return REJECTED

    now = now or get_ist_time_naive()
    deadline = shift_deadline(report.rent_date, report.shift)
    submitted = report.submission_date or report.created_at
    if submitted and submitted > deadline:
        return OVERDUE
    if joining_date and report.rent_date < joining_date:
        return PENDING
    if now > deadline:
        return OVERDUE
    return PENDING


def get_non_working_dates() -> Set[date]:
    """Dates configured under 'non_working_dates' (ISO strings)."""
    try:
        config = SystemConfiguration.query.filter_by(key='non_working_dates').first()
        values = config.get_value() if config else None
    except Exception as e:
        logger.warning(f"Could not read non-working dates: {str(e)}")
        return set()

    dates = set()
    for value in values or []:
        try:
            dates.add(date.fromisoformat(str(value)))
        except ValueError:
            logger.warning(f"Ignoring invalid non-working date '{value}'")
    return dates


def _window_days() -> int:
    if has_app_context():
        return int(current_app.config.get('OVERDUE_WINDOW_DAYS', DEFAULT_WINDOW_DAYS))
    return DEFAULT_WINDOW_DAYS


class OverdueService:
    """Service class for overdue evaluation and the rent calendar"""

    def __init__(self):
        self.audit_service = AuditService()

    def get_window(self, driver: User, today: date) -> Tuple[date, date]:
        start = today - timedelta(days=_window_days())
        if driver.joining_date and driver.joining_date > start:
            start = driver.joining_date
        return start, today

    def evaluate_driver(self, driver: User, now: Optional[datetime] = None,
                        non_working_dates: Optional[Set[date]] = None) -> Dict[str, Any]:
        """
        Replay every day of the window for one driver.

        Returns:
            dict with overdue_count, rejected_count and the per-day breakdown
        """
        now = now or get_ist_time_naive()
        if non_working_dates is None:
            non_working_dates = get_non_working_dates()
        start, end = self.get_window(driver, now.date())

        reports_by_date: Dict[date, List[FleetReport]] = {}
        reports = FleetReport.query.filter(
            FleetReport.user_id == driver.id,
            FleetReport.rent_date >= start,
            FleetReport.rent_date <= end,
        ).order_by(FleetReport.rent_date, FleetReport.id).all()
        for report in reports:
            reports_by_date.setdefault(report.rent_date, []).append(report)

        overdue_count = 0
        rejected_count = 0
        days = []
        day = start
        while day <= end:
            day_reports = reports_by_date.get(day, [])
            if day_reports:
                outcomes = [classify_report(report, driver.online, now, driver.joining_date)
                            for report in day_reports]
                overdue_count += outcomes.count(OVERDUE)
                rejected_count += outcomes.count(REJECTED)
                days.append({'date': day.isoformat(), 'status': REPORTED,
                             'reports': [{'id': report.id, 'shift': _shift_value(report.shift), 'status': outcome}
                                         for report, outcome in zip(day_reports, outcomes)]})
            else:
                reason = exemption_reason(day, driver.shift, driver.joining_date, driver.online,
                                          driver.offline_from_date, driver.online_from_date,
                                          now, non_working_dates)
                if reason is None:
                    overdue_count += 1
                days.append({'date': day.isoformat(),
                             'status': EXEMPT if reason else OVERDUE,
                             'reason': reason})
            day += timedelta(days=1)

        return {
            'user_id': driver.id,
            'window_start': start.isoformat(),
            'window_end': end.isoformat(),
            'overdue_count': overdue_count,
            'rejected_count': rejected_count,
            'days': days,
        }

    def count_overdue_days(self, driver: User, now: Optional[datetime] = None) -> int:
        return self.evaluate_driver(driver, now)['overdue_count']

    def get_blocking_issues(self, driver: User, now: Optional[datetime] = None) -> Dict[str, int]:
        """Overdue and rejected counts that block a status change."""
        result = self.evaluate_driver(driver, now)
        return {'overdue_count': result['overdue_count'], 'rejected_count': result['rejected_count']}

    def get_calendar(self, start: date, end: date, user_ids: Optional[List[int]] = None,
                     now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Rent calendar for a date range, one row per driver.

        Uses the same day and report classification as the overdue evaluator.
        """
        now = now or get_ist_time_naive()
        non_working_dates = get_non_working_dates()

        query = User.query.filter(User.role == UserRole.DRIVER)
        if user_ids:
            query = query.filter(User.id.in_(user_ids))
        drivers = query.order_by(User.name).all()

        reports = FleetReport.query.filter(
            FleetReport.rent_date >= start,
            FleetReport.rent_date <= end,
            FleetReport.user_id.in_([driver.id for driver in drivers]),
        ).all() if drivers else []
        by_driver_day: Dict[tuple, List[FleetReport]] = {}
        for report in reports:
            by_driver_day.setdefault((report.user_id, report.rent_date), []).append(report)

        calendar = []
        for driver in drivers:
            cells = {}
            day = start
            while day <= end:
                day_reports = by_driver_day.get((driver.id, day), [])
                if day_reports:
                    cells[day.isoformat()] = [classify_report(report, driver.online, now, driver.joining_date)
                                              for report in day_reports]
                else:
                    reason = exemption_reason(day, driver.shift, driver.joining_date, driver.online,
                                              driver.offline_from_date, driver.online_from_date,
                                              now, non_working_dates)
                    cells[day.isoformat()] = [reason or OVERDUE]
                day += timedelta(days=1)
            calendar.append({
                'user_id': driver.id,
                'name': driver.name,
                'vehicle_number': driver.vehicle_number,
                'shift': _shift_value(driver.shift),
                'days': cells,
            })
        return calendar

    def get_overdue_drivers(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Online drivers with at least one overdue or rejected day in their window."""
        now = now or get_ist_time_naive()
        non_working_dates = get_non_working_dates()
        results = []
        for driver in User.query.filter_by(role=UserRole.DRIVER, online=True).order_by(User.name).all():
            evaluation = self.evaluate_driver(driver, now, non_working_dates)
            if evaluation['overdue_count'] or evaluation['rejected_count']:
                results.append({
                    'user_id': driver.id,
                    'name': driver.name,
                    'vehicle_number': driver.vehicle_number,
                    'overdue_count': evaluation['overdue_count'],
                    'rejected_count': evaluation['rejected_count'],
                })
        return results

    @TransactionHelper.with_transaction
    def update_non_working_dates(self, dates, updated_by: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[List[str]]]:
        """Replace the configured non-working dates; returns the stored ISO list."""
        error = "dates must be a list of YYYY-MM-DD strings"
        if not isinstance(dates, list):
            return False, error, None
        try:
            parsed = sorted({date.fromisoformat(value) for value in dates})
        except (TypeError, ValueError):
            return False, error, None

        config = SystemConfiguration.query.filter_by(key='non_working_dates').first()
        if not config:
            config = SystemConfiguration(key='non_working_dates', data_type='json', category='calendar',
                                         description='Days on which no report is expected')
            db.session.add(config)
        previous = config.get_value() or []
        stored = [day.isoformat() for day in parsed]
        config.set_value(stored)
        config.updated_by = updated_by
        db.session.flush()

        self.audit_service.log_action(
            action='update_non_working_dates',
            entity_type='system_configuration',
            entity_id=config.id,
            details={'added': sorted(set(stored) - set(previous)),
                     'removed': sorted(set(previous) - set(stored))},
            user_id=updated_by
        )
        logger.info(f"Non-working dates updated by user {updated_by}: {len(stored)} dates")
        return True, None, stored
