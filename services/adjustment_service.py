"""
Adjustment Service

Ad-hoc per-driver, per-day adjustments (service days, bonuses, expenses)
and their folding into the vehicle's weekly expenses.

An adjustment reaches 'applied' only through report approval, which calls
apply_adjustments_for_report inside its own transaction.
"""

from datetime import date
from typing import Optional, Dict, Any, List, Tuple
import logging
from sqlalchemy import func
from models import (db, User, CommonAdjustment, AdjustmentCategory, AdjustmentStatus,
                    VehiclePerformance, VehicleTransaction, VehicleTransactionType,
                    FleetReport, UserRole)
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from timezone_utils import get_ist_time_naive, week_start_for

logger = logging.getLogger(__name__)

SERVICE_DAY_AMOUNT = 300.0


def _performance_row(vehicle_number: str, day: date) -> VehiclePerformance:
    week_start = week_start_for(day)
    row = VehiclePerformance.query.filter_by(vehicle_number=vehicle_number, week_start=week_start).first()
    if not row:
        row = VehiclePerformance(vehicle_number=vehicle_number, week_start=week_start, other_expenses=0.0)
        db.session.add(row)
        db.session.flush()
    return row


def apply_adjustments_for_report(report: FleetReport, applied_by: Optional[int]) -> List[CommonAdjustment]:
    """
    Fold the driver's approved adjustments for the report date into vehicle expenses.

    Runs inside the caller's transaction; does not commit.

    Returns:
        the adjustments now marked applied
    """
    adjustments = CommonAdjustment.query.filter_by(
        user_id=report.user_id,
        adjustment_date=report.rent_date,
        status=AdjustmentStatus.APPROVED,
    ).order_by(CommonAdjustment.id).all()

    now = get_ist_time_naive()
    for adjustment in adjustments:
        amount = abs(float(adjustment.amount))
        vehicle_number = report.vehicle_number or adjustment.vehicle_number

        if vehicle_number:
            performance = _performance_row(vehicle_number, report.rent_date)
            performance.other_expenses = float(performance.other_expenses or 0) + amount

            db.session.add(VehicleTransaction(
                vehicle_number=vehicle_number,
                transaction_type=VehicleTransactionType.EXPENSE,
                amount=amount,
                description=f"Adjustment ({adjustment.category.value}): {adjustment.description}",
                transaction_date=report.rent_date,
                fleet_report_id=report.id,
                adjustment_id=adjustment.id,
                created_by=applied_by,
            ))
        else:
            logger.warning(f"Adjustment {adjustment.id} applied without a vehicle; no expense booked")

        adjustment.status = AdjustmentStatus.APPLIED
        adjustment.applied_to_report = report.id
        adjustment.applied_at = now

    if adjustments:
        logger.info(f"Applied {len(adjustments)} adjustments to report {report.id}")
    return adjustments


def unlink_adjustments_for_report(report: FleetReport) -> List[CommonAdjustment]:
    """
    Return a report's applied adjustments to 'approved' and back out their expense.

    Runs inside the caller's transaction; does not commit.
    """
    adjustments = CommonAdjustment.query.filter_by(applied_to_report=report.id).all()

    for adjustment in adjustments:
        expense_rows = VehicleTransaction.query.filter_by(
            adjustment_id=adjustment.id,
            fleet_report_id=report.id,
            transaction_type=VehicleTransactionType.EXPENSE,
        ).all()
        for row in expense_rows:
            performance = VehiclePerformance.query.filter_by(
                vehicle_number=row.vehicle_number,
                week_start=week_start_for(row.transaction_date),
            ).first()
            if performance:
                performance.other_expenses = max(0.0, float(performance.other_expenses or 0) - float(row.amount))
            db.session.delete(row)

        adjustment.status = AdjustmentStatus.APPROVED
        adjustment.applied_to_report = None
        adjustment.applied_at = None

    return adjustments


class AdjustmentService:
    """Service class for the adjustment workflow"""

    def __init__(self):
        self.audit_service = AuditService()

    @TransactionHelper.with_transaction
    def create_adjustment(self, user_id: int, category: AdjustmentCategory, adjustment_date: date,
                          description: str, amount: Optional[float] = None,
                          created_by: Optional[int] = None, auto_approve: bool = True,
                          vehicle_number: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Create an adjustment for a driver's day.

        Args:
            user_id: driver ID
            category: AdjustmentCategory
            adjustment_date: day the adjustment belongs to
            description: required free text
            amount: defaults to 300 for service days
            created_by: admin ID
            auto_approve: create as 'approved' rather than 'pending'
            vehicle_number: defaults to the driver's current vehicle

        Returns:
            tuple: (success, error_message, adjustment)
        """
        driver = db.session.get(User, user_id)
        if not driver or driver.role != UserRole.DRIVER:
            return False, "Driver not found", None

        if not description or not description.strip():
            return False, "Description is required", None

        if amount is None:
            if category != AdjustmentCategory.SERVICE_DAY:
                return False, "Amount is required", None
            amount = SERVICE_DAY_AMOUNT
        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return False, "Invalid amount value", None
        if amount == 0:
            return False, "Adjustment amount cannot be zero", None

        now = get_ist_time_naive()
        adjustment = CommonAdjustment(
            user_id=driver.id,
            driver_name=driver.name,
            vehicle_number=vehicle_number or driver.vehicle_number,
            adjustment_date=adjustment_date,
            category=category,
            amount=amount,
            description=description.strip(),
            status=AdjustmentStatus.APPROVED if auto_approve else AdjustmentStatus.PENDING,
            created_by=created_by,
            approved_by=created_by if auto_approve else None,
            approved_at=now if auto_approve else None,
        )
        db.session.add(adjustment)
        db.session.flush()

        self.audit_service.log_action(
            action='create_adjustment',
            entity_type='adjustment',
            entity_id=adjustment.id,
            details={'driver_id': driver.id, 'category': category.value, 'amount': amount,
                     'date': adjustment_date.isoformat(), 'status': adjustment.status.value},
            user_id=created_by
        )
        logger.info(f"Adjustment {adjustment.id} ({category.value} {amount}) created for driver {driver.id}")
        return True, None, adjustment.to_dict()

    @TransactionHelper.with_transaction
    def approve_adjustment(self, adjustment_id: int, approved_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        adjustment = db.session.get(CommonAdjustment, adjustment_id)
        if not adjustment:
            return False, "Adjustment not found", None
        if adjustment.status != AdjustmentStatus.PENDING:
            return False, f"Adjustment is already {adjustment.status.value}", None

        adjustment.status = AdjustmentStatus.APPROVED
        adjustment.approved_by = approved_by
        adjustment.approved_at = get_ist_time_naive()

        self.audit_service.log_action(
            action='approve_adjustment',
            entity_type='adjustment',
            entity_id=adjustment.id,
            user_id=approved_by
        )
        return True, None, adjustment.to_dict()

    @TransactionHelper.with_transaction
    def reject_adjustment(self, adjustment_id: int, rejected_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        adjustment = db.session.get(CommonAdjustment, adjustment_id)
        if not adjustment:
            return False, "Adjustment not found", None
        if adjustment.status != AdjustmentStatus.PENDING:
            return False, f"Adjustment is already {adjustment.status.value}", None

        adjustment.status = AdjustmentStatus.REJECTED
        adjustment.approved_by = rejected_by
        adjustment.approved_at = get_ist_time_naive()

        self.audit_service.log_action(
            action='reject_adjustment',
            entity_type='adjustment',
            entity_id=adjustment.id,
            user_id=rejected_by
        )
        return True, None, adjustment.to_dict()

    @TransactionHelper.with_transaction
    def update_adjustment(self, adjustment_id: int, data: Dict[str, Any],
                          updated_by: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Edit amount, category, date or description of an adjustment not yet applied."""
        adjustment = db.session.get(CommonAdjustment, adjustment_id)
        if not adjustment:
            return False, "Adjustment not found", None
        if adjustment.status == AdjustmentStatus.APPLIED:
            return False, "Applied adjustments cannot be edited", None

        if 'amount' in data and data['amount'] is not None:
            try:
                amount = float(data['amount'])
            except (TypeError, ValueError):
                return False, "Invalid amount value", None
            if amount == 0:
                return False, "Adjustment amount cannot be zero", None
            adjustment.amount = amount
        if data.get('category') is not None:
            adjustment.category = data['category']
        if data.get('adjustment_date') is not None:
            adjustment.adjustment_date = data['adjustment_date']
        if data.get('description'):
            adjustment.description = data['description'].strip()
        if 'vehicle_number' in data:
            adjustment.vehicle_number = data['vehicle_number'] or None

        self.audit_service.log_action(
            action='update_adjustment',
            entity_type='adjustment',
            entity_id=adjustment.id,
            details={key: value for key, value in data.items() if value is not None},
            user_id=updated_by
        )
        return True, None, adjustment.to_dict()

    @TransactionHelper.with_transaction
    def delete_adjustment(self, adjustment_id: int, deleted_by: Optional[int] = None) -> Tuple[bool, Optional[str], None]:
        adjustment = db.session.get(CommonAdjustment, adjustment_id)
        if not adjustment:
            return False, "Adjustment not found", None
        if adjustment.status == AdjustmentStatus.APPLIED:
            return False, "Applied adjustments cannot be deleted", None

        self.audit_service.log_action(
            action='delete_adjustment',
            entity_type='adjustment',
            entity_id=adjustment.id,
            details={'driver_id': adjustment.user_id, 'amount': adjustment.amount},
            user_id=deleted_by
        )
        db.session.delete(adjustment)
        return True, None, None

    def list_adjustments(self, user_id: Optional[int] = None, status: Optional[AdjustmentStatus] = None,
                         start_date: Optional[date] = None, end_date: Optional[date] = None) -> List[Dict[str, Any]]:
        query = CommonAdjustment.query
        if user_id:
            query = query.filter(CommonAdjustment.user_id == user_id)
        if status:
            query = query.filter(CommonAdjustment.status == status)
        if start_date:
            query = query.filter(CommonAdjustment.adjustment_date >= start_date)
        if end_date:
            query = query.filter(CommonAdjustment.adjustment_date <= end_date)
        return [adjustment.to_dict() for adjustment in
                query.order_by(CommonAdjustment.adjustment_date.desc(), CommonAdjustment.id.desc()).all()]

    def get_stats(self, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Counts per status and the total applied amount."""
        query = db.session.query(CommonAdjustment.status, func.count(CommonAdjustment.id))
        if user_id:
            query = query.filter(CommonAdjustment.user_id == user_id)
        counts = {status.value: 0 for status in AdjustmentStatus}
        for status, count in query.group_by(CommonAdjustment.status).all():
            counts[status.value] = count

        applied_query = db.session.query(func.coalesce(func.sum(CommonAdjustment.amount), 0)) \
            .filter(CommonAdjustment.status == AdjustmentStatus.APPLIED)
        if user_id:
            applied_query = applied_query.filter(CommonAdjustment.user_id == user_id)

        return {
            'total': sum(counts.values()),
            'by_status': counts,
            'total_applied_amount': float(applied_query.scalar() or 0),
        }
