"""
Report Service

Driver fleet report submission, admin edits and deletion. The settlement
is always computed here, never taken from the client.
"""

from datetime import date
from typing import Optional, Dict, Any, List, Tuple
import logging
from sqlalchemy import update
from models import (db, User, FleetReport, BalanceTransaction, VehicleTransaction,
                    ReportStatus, Shift, UserRole)
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .settlement_service import settlement_for_report
from .adjustment_service import unlink_adjustments_for_report
from .ledger_service import remove_report_deposits, increment_vehicle_trips
from timezone_utils import get_ist_time_naive, get_ist_today

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = ('total_earnings', 'toll', 'total_cashcollect', 'other_fee', 'deposit_cutting_amount')
EDITABLE_FIELDS = ('total_trips', 'vehicle_number', 'remarks', 'is_service_day', 'shift', 'rent_date') + NUMERIC_FIELDS


def _bump_driver_totals(user_id: int, trips: int, earnings: float):
    if not trips and not earnings:
        return
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_trip=User.total_trip + trips, total_earning=User.total_earning + earnings)
        .execution_options(synchronize_session='fetch')
    )


def _clean_numbers(data: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    cleaned = {}
    try:
        if 'total_trips' in data:
            cleaned['total_trips'] = int(data.get('total_trips') or 0)
        for field in NUMERIC_FIELDS:
            if field in data:
                cleaned[field] = float(data.get(field) or 0)
    except (TypeError, ValueError):
        return "Trips and amounts must be numeric", {}

    if cleaned.get('total_trips', 0) < 0:
        return "Total trips cannot be negative", {}
    for field in NUMERIC_FIELDS:
        if cleaned.get(field, 0) < 0:
            return f"{field.replace('_', ' ').capitalize()} cannot be negative", {}
    return None, cleaned


class ReportService:
    """Service class for fleet report lifecycle outside verification"""

    def __init__(self):
        self.audit_service = AuditService()

    @TransactionHelper.with_transaction
    def submit_report(self, driver_id: int, data: Dict[str, Any]) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Submit a driver's report for one date and shift.

        Args:
            driver_id: ID of the submitting driver
            data: rent_date, shift, total_trips and the amount fields

        Returns:
            tuple: (success, error_message, report with settlement)
        """
        driver = db.session.get(User, driver_id)
        if not driver or driver.role != UserRole.DRIVER:
            return False, "Driver not found", None

        rent_date = data.get('rent_date')
        if not isinstance(rent_date, date):
            return False, "Rent date is required", None
        if rent_date > get_ist_today():
            return False, "Rent date cannot be in the future", None

        shift = data.get('shift') or driver.shift
        if shift == Shift.NONE:
            shift = Shift.MORNING

        error, numbers = _clean_numbers(data)
        if error:
            return False, error, None

        existing = FleetReport.query.filter_by(user_id=driver.id, rent_date=rent_date, shift=shift).first()
        if existing:
            return False, "A report for this date and shift already exists", {'conflict': True, 'report_id': existing.id}

        now = get_ist_time_naive()
        report = FleetReport(
            user_id=driver.id,
            driver_name=driver.name,
            vehicle_number=data.get('vehicle_number') or driver.vehicle_number,
            shift=shift,
            rent_date=rent_date,
            total_trips=numbers.get('total_trips', 0),
            total_earnings=numbers.get('total_earnings', 0.0),
            toll=numbers.get('toll', 0.0),
            total_cashcollect=numbers.get('total_cashcollect', 0.0),
            other_fee=numbers.get('other_fee', 0.0),
            deposit_cutting_amount=numbers.get('deposit_cutting_amount', 0.0),
            is_service_day=bool(data.get('is_service_day', False)),
            remarks=data.get('remarks'),
            status=ReportStatus.PENDING_VERIFICATION,
            submission_date=now,
            created_at=now,
        )
        settlement = settlement_for_report(report)
        report.rent_paid_amount = settlement.to_signed()

        db.session.add(report)
        db.session.flush()
        _bump_driver_totals(driver.id, report.total_trips, report.total_earnings)

        self.audit_service.log_action(
            action='submit_report',
            entity_type='fleet_report',
            entity_id=report.id,
            details={'rent_date': rent_date.isoformat(), 'shift': shift.value,
                     'rent_paid_amount': report.rent_paid_amount},
            user_id=driver.id
        )
        logger.info(f"Report {report.id} submitted by driver {driver.id} for {rent_date} ({shift.value})")
        return True, None, {'report': report.to_dict(), 'settlement': settlement.to_dict()}

    @TransactionHelper.with_transaction
    def edit_report(self, report_id: int, data: Dict[str, Any],
                    edited_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Admin edit of a report that has not been approved.

        rent_paid_amount is recomputed with the same calculator used at submission.
        """
        report = db.session.get(FleetReport, report_id)
        if not report:
            return False, "Report not found", None
        if report.status == ReportStatus.APPROVED:
            return False, "Approved reports cannot be edited; reject the report first", None

        error, numbers = _clean_numbers(data)
        if error:
            return False, error, None

        new_date = data.get('rent_date') or report.rent_date
        new_shift = data.get('shift') or report.shift
        if (new_date, new_shift) != (report.rent_date, report.shift):
            clash = FleetReport.query.filter(
                FleetReport.user_id == report.user_id,
                FleetReport.rent_date == new_date,
                FleetReport.shift == new_shift,
                FleetReport.id != report.id,
            ).first()
            if clash:
                return False, "A report for this date and shift already exists", {'conflict': True, 'report_id': clash.id}

        old_trips, old_earnings = int(report.total_trips or 0), float(report.total_earnings or 0)
        changes = {}
        for field in EDITABLE_FIELDS:
            if field not in data or data[field] is None:
                continue
            value = numbers.get(field, data[field])
            if getattr(report, field) != value:
                changes[field] = value
                setattr(report, field, value)

        settlement = settlement_for_report(report)
        report.rent_paid_amount = settlement.to_signed()
        _bump_driver_totals(report.user_id, int(report.total_trips or 0) - old_trips,
                            float(report.total_earnings or 0) - old_earnings)

        self.audit_service.log_action(
            action='edit_report',
            entity_type='fleet_report',
            entity_id=report.id,
            details={'changes': changes, 'rent_paid_amount': report.rent_paid_amount},
            user_id=edited_by
        )
        return True, None, {'report': report.to_dict(), 'settlement': settlement.to_dict()}

    @TransactionHelper.with_transaction
    def delete_report(self, report_id: int, deleted_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Delete a report and everything that points at it.

        Applied adjustments go back to 'approved' with their vehicle expense
        backed out, deposit rows are reversed and the trip counters are
        corrected, all before the row itself is removed.
        """
        report = db.session.get(FleetReport, report_id)
        if not report:
            return False, "Report not found", None

        try:
            unlinked = unlink_adjustments_for_report(report)
            removed_count, removed_total = remove_report_deposits(report)

            if report.rent_verified:
                increment_vehicle_trips(report.vehicle_number, -int(report.total_trips or 0))
            _bump_driver_totals(report.user_id, -int(report.total_trips or 0), -float(report.total_earnings or 0))

            # Other rows keep their history without the link
            BalanceTransaction.query.filter_by(fleet_report_id=report.id) \
                .update({'fleet_report_id': None}, synchronize_session=False)
            VehicleTransaction.query.filter_by(fleet_report_id=report.id) \
                .update({'fleet_report_id': None}, synchronize_session=False)

            self.audit_service.log_action(
                action='delete_report',
                entity_type='fleet_report',
                entity_id=report.id,
                details={'driver_id': report.user_id, 'rent_date': report.rent_date.isoformat(),
                         'adjustments_unlinked': [adjustment.id for adjustment in unlinked],
                         'deposit_removed': removed_total},
                user_id=deleted_by
            )
            db.session.delete(report)
            logger.info(f"Report {report_id} deleted by user {deleted_by}, "
                        f"{len(unlinked)} adjustments unlinked, {removed_count} deposit rows removed")
            return True, None, {'adjustments_unlinked': [adjustment.id for adjustment in unlinked],
                                'deposit_removed': removed_total}

        except Exception as e:
            logger.error(f"Error deleting report {report_id}: {str(e)}")
            return False, f"Failed to delete report: {str(e)}", None

    def list_reports(self, user_id: Optional[int] = None, status: Optional[ReportStatus] = None,
                     start_date: Optional[date] = None, end_date: Optional[date] = None,
                     page: int = 1, per_page: int = 50):
        query = FleetReport.query
        if user_id:
            query = query.filter(FleetReport.user_id == user_id)
        if status:
            query = query.filter(FleetReport.status == status)
        if start_date:
            query = query.filter(FleetReport.rent_date >= start_date)
        if end_date:
            query = query.filter(FleetReport.rent_date <= end_date)
        return query.order_by(FleetReport.rent_date.desc(), FleetReport.id.desc()) \
                    .paginate(page=page, per_page=per_page, error_out=False)

    def preview_settlement(self, data: Dict[str, Any], driver: Optional[User] = None) -> Dict[str, Any]:
        """Settlement for unsaved form values, for the submission screen."""
        error, numbers = _clean_numbers(data)
        if error:
            return {'error': error}
        shift = data.get('shift') or (driver.shift if driver else Shift.MORNING)
        draft = FleetReport(
            vehicle_number=data.get('vehicle_number') or (driver.vehicle_number if driver else None),
            shift=shift,
            total_trips=numbers.get('total_trips', 0),
            total_earnings=numbers.get('total_earnings', 0.0),
            toll=numbers.get('toll', 0.0),
            total_cashcollect=numbers.get('total_cashcollect', 0.0),
            other_fee=numbers.get('other_fee', 0.0),
            deposit_cutting_amount=numbers.get('deposit_cutting_amount', 0.0),
        )
        return settlement_for_report(draft).to_dict()
