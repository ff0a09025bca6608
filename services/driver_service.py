"""
Driver Service

Handles driver availability changes (offline, leave, resigning, back
online) and driver listings for the admin API. Status changes away from
active duty are gated on the driver's recent report history.
"""

from typing import Optional, Dict, Any, List, Tuple
import logging
from datetime import date
from models import db, User, UserRole, DriverStatus, Shift
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .overdue_service import OverdueService
from .ledger_service import LedgerService
from timezone_utils import get_ist_today

logger = logging.getLogger(__name__)

class DriverService:
    """Service class for driver status operations"""

    def __init__(self):
        self.audit_service = AuditService()
        self.overdue_service = OverdueService()

    def get_driver(self, driver_id: int) -> Optional[User]:
        driver = db.session.get(User, driver_id)
        if not driver or driver.role != UserRole.DRIVER:
            return None
        return driver

    def check_status_gate(self, driver: User) -> Tuple[bool, Optional[str], Dict[str, int]]:
        """
        Check whether a driver may leave active duty.

        Returns:
            tuple: (allowed, warning message, {'overdue_count', 'rejected_count'})
        """
        issues = self.overdue_service.get_blocking_issues(driver)
        if issues['overdue_count'] or issues['rejected_count']:
            parts = []
            if issues['overdue_count']:
                parts.append(f"{issues['overdue_count']} overdue report(s)")
            if issues['rejected_count']:
                parts.append(f"{issues['rejected_count']} rejected report(s)")
            message = f"{driver.name} has {' and '.join(parts)}. Resolve them before changing status."
            return False, message, issues
        return True, None, issues

    @TransactionHelper.with_transaction
    def take_offline(self, driver_id: int, changed_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Take a driver offline from today.

        Args:
            driver_id: ID of driver
            changed_by: ID of admin making the change

        Returns:
            tuple: (success, error_message, details); details carries the
            blocking counts when the gate refuses
        """
        driver = self.get_driver(driver_id)
        if not driver:
            return False, "Driver not found", None
        if not driver.online:
            return False, "Driver is already offline", None

        allowed, warning, issues = self.check_status_gate(driver)
        if not allowed:
            logger.info(f"Offline refused for driver {driver_id}: {issues}")
            return False, warning, {'blocked': True, **issues}

        driver.online = False
        driver.offline_from_date = get_ist_today()
        driver.driver_status = None

        self.audit_service.log_action(
            action='take_offline',
            entity_type='driver',
            entity_id=driver.id,
            details={'offline_from_date': driver.offline_from_date.isoformat()},
            user_id=changed_by
        )
        logger.info(f"Driver {driver.name} (ID: {driver_id}) taken offline by user {changed_by}")
        return True, None, self.driver_summary(driver)

    @TransactionHelper.with_transaction
    def mark_leave(self, driver_id: int, changed_by: int,
                   return_date: Optional[date] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Put a driver on leave; offline until the optional return date."""
        driver = self.get_driver(driver_id)
        if not driver:
            return False, "Driver not found", None

        today = get_ist_today()
        if return_date and return_date < today:
            return False, "Return date cannot be in the past", None

        allowed, warning, issues = self.check_status_gate(driver)
        if not allowed:
            return False, warning, {'blocked': True, **issues}

        driver.online = False
        driver.offline_from_date = today
        driver.driver_status = DriverStatus.LEAVE
        driver.leave_return_date = return_date

        self.audit_service.log_action(
            action='mark_leave',
            entity_type='driver',
            entity_id=driver.id,
            details={'return_date': return_date.isoformat() if return_date else None},
            user_id=changed_by
        )
        logger.info(f"Driver {driver.name} (ID: {driver_id}) on leave until {return_date}")
        return True, None, self.driver_summary(driver)

    @TransactionHelper.with_transaction
    def mark_resigning(self, driver_id: int, changed_by: int, resigning_date: Optional[date] = None,
                       reason: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Record a driver's notice of resignation. A reason is required."""
        driver = self.get_driver(driver_id)
        if not driver:
            return False, "Driver not found", None
        if not reason or not reason.strip():
            return False, "Resignation reason is required", None

        allowed, warning, issues = self.check_status_gate(driver)
        if not allowed:
            return False, warning, {'blocked': True, **issues}

        driver.driver_status = DriverStatus.RESIGNING
        driver.resigning_date = resigning_date or get_ist_today()
        driver.resignation_reason = reason.strip()

        self.audit_service.log_action(
            action='mark_resigning',
            entity_type='driver',
            entity_id=driver.id,
            details={'resigning_date': driver.resigning_date.isoformat(), 'reason': driver.resignation_reason},
            user_id=changed_by
        )
        return True, None, self.driver_summary(driver)

    @TransactionHelper.with_transaction
    def bring_online(self, driver_id: int, changed_by: int,
                     shift: Optional[Shift] = None,
                     vehicle_number: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Bring a driver back online from today, optionally on a new shift or vehicle."""
        driver = self.get_driver(driver_id)
        if not driver:
            return False, "Driver not found", None
        if driver.online and driver.driver_status is None:
            return False, "Driver is already online", None

        driver.online = True
        driver.online_from_date = get_ist_today()
        driver.driver_status = None
        driver.leave_return_date = None
        if shift:
            driver.shift = shift
        if vehicle_number:
            driver.vehicle_number = vehicle_number

        self.audit_service.log_action(
            action='bring_online',
            entity_type='driver',
            entity_id=driver.id,
            details={'online_from_date': driver.online_from_date.isoformat(),
                     'shift': driver.shift.value if driver.shift else None,
                     'vehicle_number': driver.vehicle_number},
            user_id=changed_by
        )
        return True, None, self.driver_summary(driver)

    def driver_summary(self, driver: User) -> Dict[str, Any]:
        return {
            'id': driver.id,
            'name': driver.name,
            'driver_code': driver.driver_code,
            'vehicle_number': driver.vehicle_number,
            'shift': driver.shift.value if driver.shift else None,
            'online': driver.online,
            'driver_status': driver.driver_status.value if driver.driver_status else None,
            'joining_date': driver.joining_date.isoformat() if driver.joining_date else None,
            'offline_from_date': driver.offline_from_date.isoformat() if driver.offline_from_date else None,
            'online_from_date': driver.online_from_date.isoformat() if driver.online_from_date else None,
            'leave_return_date': driver.leave_return_date.isoformat() if driver.leave_return_date else None,
            'resigning_date': driver.resigning_date.isoformat() if driver.resigning_date else None,
            'pending_balance': driver.pending_balance,
            'total_penalties': driver.total_penalties,
            'total_earning': driver.total_earning,
            'total_trip': driver.total_trip,
        }

    def get_driver_detail(self, driver_id: int) -> Optional[Dict[str, Any]]:
        """Driver summary with outstanding balance and blocking counts."""
        driver = self.get_driver(driver_id)
        if not driver:
            return None
        detail = self.driver_summary(driver)
        detail['balance'] = LedgerService().get_outstanding_balance(driver.id)
        detail['blocking_issues'] = self.overdue_service.get_blocking_issues(driver)
        return detail

    def get_drivers_with_filters(self, online: Optional[bool] = None, shift: Optional[Shift] = None,
                                 search: Optional[str] = None,
                                 page: int = 1, per_page: int = 20) -> Optional[Any]:
        """
        Get paginated list of drivers with filters.

        Args:
            online: filter on online flag
            shift: filter on shift
            search: substring of name, vehicle number or phone
            page: Page number
            per_page: Items per page
        """
        try:
            query = User.query.filter(User.role == UserRole.DRIVER)
            if online is not None:
                query = query.filter(User.online == online)
            if shift:
                query = query.filter(User.shift == shift)
            if search:
                pattern = f"%{search}%"
                query = query.filter(db.or_(User.name.ilike(pattern),
                                            User.vehicle_number.ilike(pattern),
                                            User.phone_number.ilike(pattern)))
            return query.order_by(User.name).paginate(page=page, per_page=per_page, error_out=False)

        except Exception as e:
            logger.error(f"Error getting drivers with filters: {str(e)}")
            return None
