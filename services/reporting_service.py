"""
Reporting Service

Read-only summaries: the admin dashboard, the weekly driver audit and
per-vehicle weekly figures.
"""

from typing import Optional, Dict, Any, List
import logging
from datetime import date
from flask import current_app, has_app_context
from sqlalchemy import func
from models import (db, User, Vehicle, FleetReport, CommonAdjustment, VehiclePerformance,
                    VehicleTransaction, ReportStatus, AdjustmentStatus, VehicleTransactionType,
                    UserRole)
from timezone_utils import get_ist_today, get_ist_time_naive, week_bounds

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_RENT_PER_DAY = 700.0


def _rent_per_day() -> float:
    if has_app_context():
        return float(current_app.config.get('WEEKLY_RENT_PER_DAY', DEFAULT_WEEKLY_RENT_PER_DAY))
    return DEFAULT_WEEKLY_RENT_PER_DAY


class ReportingService:
    """Service class for reporting and analytics operations"""

    def get_dashboard_statistics(self) -> Dict[str, Any]:
        """
        Get dashboard statistics for admin overview.

        Returns:
            dict: Dashboard statistics
        """
        try:
            today = get_ist_today()

            total_drivers = User.query.filter_by(role=UserRole.DRIVER).count()
            online_drivers = User.query.filter_by(role=UserRole.DRIVER, online=True).count()
            total_vehicles = Vehicle.query.count()

            pending_reports = FleetReport.query.filter_by(status=ReportStatus.PENDING_VERIFICATION).count()
            todays_reports = FleetReport.query.filter_by(rent_date=today).count()

            pending_adjustments = CommonAdjustment.query.filter_by(status=AdjustmentStatus.PENDING).count()

            balance_total = db.session.query(func.coalesce(func.sum(User.pending_balance), 0)) \
                .filter(User.role == UserRole.DRIVER).scalar()
            penalty_total = db.session.query(func.coalesce(func.sum(User.total_penalties), 0)) \
                .filter(User.role == UserRole.DRIVER).scalar()

            return {
                'total_drivers': total_drivers,
                'online_drivers': online_drivers,
                'total_vehicles': total_vehicles,
                'pending_reports': pending_reports,
                'todays_reports': todays_reports,
                'pending_adjustments': pending_adjustments,
                'total_pending_balance': float(balance_total or 0),
                'total_penalties': float(penalty_total or 0),
                'generated_at': get_ist_time_naive().isoformat()
            }

        except Exception as e:
            logger.error(f"Error generating dashboard statistics: {str(e)}")
            return {
                'total_drivers': 0,
                'online_drivers': 0,
                'total_vehicles': 0,
                'pending_reports': 0,
                'todays_reports': 0,
                'pending_adjustments': 0,
                'error': str(e)
            }

    def get_weekly_audit(self, user_id: int, week_of: Optional[date] = None) -> Optional[Dict[str, Any]]:
        """
        Weekly audit of a driver's reports.

        final_pay = approved days x daily rent + deposit cutting - adjustments,
        compared against the cash the driver actually paid in (positive
        rent_paid_amount).

        Args:
            user_id: driver ID
            week_of: any day in the week (Monday to Sunday); defaults to today

        Returns:
            dict: audit figures, or None when the driver does not exist
        """
        driver = db.session.get(User, user_id)
        if not driver:
            return None

        week_start, week_end = week_bounds(week_of or get_ist_today())

        reports = FleetReport.query.filter(
            FleetReport.user_id == user_id,
            FleetReport.rent_date >= week_start,
            FleetReport.rent_date <= week_end,
        ).order_by(FleetReport.rent_date).all()

        approved = [report for report in reports if report.status == ReportStatus.APPROVED]
        rent_per_day = _rent_per_day()
        weekly_rent = len(approved) * rent_per_day
        deposit_cutting = sum(float(report.deposit_cutting_amount or 0) for report in reports)

        adjustments = CommonAdjustment.query.filter(
            CommonAdjustment.user_id == user_id,
            CommonAdjustment.adjustment_date >= week_start,
            CommonAdjustment.adjustment_date <= week_end,
            CommonAdjustment.status.in_([AdjustmentStatus.APPROVED, AdjustmentStatus.APPLIED]),
        ).all()
        adjustment_total = sum(abs(float(adjustment.amount)) for adjustment in adjustments)

        final_pay = weekly_rent + deposit_cutting - adjustment_total
        cash_at_bank = sum(float(report.rent_paid_amount) for report in reports
                           if report.rent_paid_amount and report.rent_paid_amount > 0)

        return {
            'user_id': user_id,
            'driver_name': driver.name,
            'week_start': week_start.isoformat(),
            'week_end': week_end.isoformat(),
            'report_count': len(reports),
            'approved_count': len(approved),
            'total_earnings': round(sum(float(r.total_earnings or 0) for r in reports), 2),
            'total_cashcollect': round(sum(float(r.total_cashcollect or 0) for r in reports), 2),
            'total_other_fee': round(sum(float(r.other_fee or 0) for r in reports), 2),
            'total_toll': round(sum(float(r.toll or 0) for r in reports), 2),
            'total_trips': sum(int(r.total_trips or 0) for r in reports),
            'rent_per_day': rent_per_day,
            'weekly_rent': round(weekly_rent, 2),
            'deposit_cutting': round(deposit_cutting, 2),
            'adjustments': round(adjustment_total, 2),
            'final_pay': round(final_pay, 2),
            'cash_at_bank': round(cash_at_bank, 2),
            'difference': round(final_pay - cash_at_bank, 2),
        }

    def get_vehicle_week(self, vehicle_number: str, week_of: Optional[date] = None) -> Dict[str, Any]:
        """Income, expenses and trips of one vehicle for a week."""
        week_start, week_end = week_bounds(week_of or get_ist_today())

        performance = VehiclePerformance.query.filter_by(vehicle_number=vehicle_number,
                                                         week_start=week_start).first()
        totals = dict(db.session.query(VehicleTransaction.transaction_type,
                                       func.coalesce(func.sum(VehicleTransaction.amount), 0))
                      .filter(VehicleTransaction.vehicle_number == vehicle_number,
                              VehicleTransaction.transaction_date >= week_start,
                              VehicleTransaction.transaction_date <= week_end)
                      .group_by(VehicleTransaction.transaction_type).all())
        trips = db.session.query(func.coalesce(func.sum(FleetReport.total_trips), 0)).filter(
            FleetReport.vehicle_number == vehicle_number,
            FleetReport.status == ReportStatus.APPROVED,
            FleetReport.rent_date >= week_start,
            FleetReport.rent_date <= week_end,
        ).scalar()

        return {
            'vehicle_number': vehicle_number,
            'week_start': week_start.isoformat(),
            'other_expenses': float(performance.other_expenses) if performance else 0.0,
            'income': float(totals.get(VehicleTransactionType.INCOME, 0)),
            'expense': float(totals.get(VehicleTransactionType.EXPENSE, 0)),
            'approved_trips': int(trips or 0),
        }

    def get_vehicle_transactions(self, vehicle_number: str, limit: int = 100) -> List[Dict[str, Any]]:
        rows = VehicleTransaction.query.filter_by(vehicle_number=vehicle_number) \
            .order_by(VehicleTransaction.transaction_date.desc(), VehicleTransaction.id.desc()) \
            .limit(limit).all()
        return [row.to_dict() for row in rows]
