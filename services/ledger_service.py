"""
Ledger Service

Report verification and the two driver ledgers:

- driver_balance_transactions: deposit ledger behind users.pending_balance
- driver_penalty_transactions: penalty ledger behind users.total_penalties

Every public mutation runs in one transaction. Running balances change
through SQL-side increments so concurrent approvals cannot lose updates.
"""

from datetime import date, timedelta
from typing import Optional, Dict, Any, List, Tuple
import logging
from flask import current_app, has_app_context
from sqlalchemy import update, case, func, or_, and_
from models import (db, User, Vehicle, FleetReport, BalanceTransaction, PenaltyTransaction,
                    VehicleTransaction, ReportStatus, BalanceTransactionType,
                    PenaltyTransactionType, VehicleTransactionType, UserRole)
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from .adjustment_service import apply_adjustments_for_report
from timezone_utils import get_ist_time_naive, get_ist_today, week_start_for

logger = logging.getLogger(__name__)

DEFAULT_REFUND_THRESHOLD = 2500.0

# Effect of a penalty ledger row on users.total_penalties
PENALTY_SIGN = {
    PenaltyTransactionType.PENALTY: 1,
    PenaltyTransactionType.DUE: 1,
    PenaltyTransactionType.EXTRA_COLLECTION: 1,
    PenaltyTransactionType.INSURANCE_CLAIM_CHARGE: 1,
    PenaltyTransactionType.PENALTY_PAID: -1,
    PenaltyTransactionType.BONUS: 0,
    PenaltyTransactionType.REFUND: 0,
}

PENALTY_CREDIT_TYPES = (
    PenaltyTransactionType.PENALTY_PAID,
    PenaltyTransactionType.BONUS,
    PenaltyTransactionType.REFUND,
)
PENALTY_DEBIT_TYPES = (
    PenaltyTransactionType.PENALTY,
    PenaltyTransactionType.DUE,
    PenaltyTransactionType.EXTRA_COLLECTION,
    PenaltyTransactionType.INSURANCE_CLAIM_CHARGE,
)

# Effect of a balance ledger row on users.pending_balance
BALANCE_SIGN = {
    BalanceTransactionType.DEPOSIT: 1,
    BalanceTransactionType.BONUS: 1,
    BalanceTransactionType.REFUND: -1,
    BalanceTransactionType.DUE: -1,
    BalanceTransactionType.PENALTY: -1,
}


def deposit_description(report: FleetReport) -> str:
    shift = report.shift.value if report.shift else 'none'
    return f"Deposit cutting from fleet report {report.rent_date.isoformat()} ({shift})"


def increment_pending_balance(user_id: int, delta: float):
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(pending_balance=User.pending_balance + delta)
        .execution_options(synchronize_session='fetch')
    )


def increment_total_penalties(user_id: int, delta: float):
    """Adjust total_penalties without letting it drop below zero."""
    new_value = User.total_penalties + delta
    db.session.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_penalties=case((new_value < 0, 0.0), else_=new_value))
        .execution_options(synchronize_session='fetch')
    )


def increment_vehicle_trips(vehicle_number: Optional[str], delta: int):
    if not vehicle_number or not delta:
        return
    new_value = Vehicle.total_trips + delta
    db.session.execute(
        update(Vehicle)
        .where(Vehicle.vehicle_number == vehicle_number)
        .values(total_trips=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session='fetch')
    )


def remove_report_deposits(report: FleetReport) -> Tuple[int, float]:
    """
    Delete the deposit rows a report produced and take them off pending_balance.

    Matches rows linked to the report, and unlinked rows whose description
    names the report date.

    Returns:
        (rows removed, total amount removed)
    """
    deposits = BalanceTransaction.query.filter(
        BalanceTransaction.user_id == report.user_id,
        BalanceTransaction.type == BalanceTransactionType.DEPOSIT,
        or_(
            BalanceTransaction.fleet_report_id == report.id,
            and_(BalanceTransaction.fleet_report_id.is_(None),
                 BalanceTransaction.description.contains(report.rent_date.isoformat())),
        )
    ).all()

    removed_total = sum(float(row.amount or 0) for row in deposits)
    for row in deposits:
        db.session.delete(row)
    if removed_total:
        increment_pending_balance(report.user_id, -removed_total)
    return len(deposits), removed_total


def _refund_threshold() -> float:
    if has_app_context():
        return float(current_app.config.get('REFUND_THRESHOLD', DEFAULT_REFUND_THRESHOLD))
    return DEFAULT_REFUND_THRESHOLD


class LedgerService:
    """Service class for report verification and ledger bookkeeping"""

    def __init__(self):
        self.audit_service = AuditService()

    # ------------------------------------------------------------------
    # Report verification
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def approve_report(self, report_id: int, approved_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Approve a pending report.

        Records the deposit cutting, applies the driver's approved
        adjustments for the day, marks the rent verified and credits the
        vehicle with the report's trips.

        Args:
            report_id: ID of report to approve
            approved_by: ID of admin approving

        Returns:
            tuple: (success, error_message, summary)
        """
        report = db.session.get(FleetReport, report_id)
        if not report:
            return False, "Report not found", None

        if report.status != ReportStatus.PENDING_VERIFICATION:
            return False, f"Report is already {report.status.value}", None

        try:
            deposit_amount = float(report.deposit_cutting_amount or 0)
            if deposit_amount > 0:
                db.session.add(BalanceTransaction(
                    user_id=report.user_id,
                    fleet_report_id=report.id,
                    amount=deposit_amount,
                    type=BalanceTransactionType.DEPOSIT,
                    description=deposit_description(report),
                    created_by=approved_by,
                ))
                increment_pending_balance(report.user_id, deposit_amount)

            applied = apply_adjustments_for_report(report, approved_by)

            report.rent_verified = True
            report.status = ReportStatus.APPROVED
            report.verified_by = approved_by
            report.verified_at = get_ist_time_naive()
            increment_vehicle_trips(report.vehicle_number, int(report.total_trips or 0))

            self.audit_service.log_action(
                action='approve_report',
                entity_type='fleet_report',
                entity_id=report.id,
                details={
                    'driver_id': report.user_id,
                    'rent_date': report.rent_date.isoformat(),
                    'deposit': deposit_amount,
                    'adjustments_applied': len(applied),
                },
                user_id=approved_by
            )

            logger.info(f"Report {report.id} approved by user {approved_by} "
                        f"(deposit {deposit_amount}, {len(applied)} adjustments)")
            return True, None, {
                'report': report.to_dict(),
                'deposit_recorded': deposit_amount,
                'adjustments_applied': [adjustment.id for adjustment in applied],
            }

        except Exception as e:
            logger.error(f"Error approving report {report_id}: {str(e)}")
            return False, f"Failed to approve report: {str(e)}", None

    @TransactionHelper.with_transaction
    def reject_report(self, report_id: int, rejected_by: int,
                      reason: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Reject a report and remove the deposit rows it produced.

        Adjustments already applied to the report are left in place.

        Returns:
            tuple: (success, error_message, summary)
        """
        report = db.session.get(FleetReport, report_id)
        if not report:
            return False, "Report not found", None

        if report.status == ReportStatus.REJECTED:
            return False, "Report is already rejected", None

        try:
            date_text = report.rent_date.isoformat()
            removed_count, removed_total = remove_report_deposits(report)

            if report.rent_verified:
                increment_vehicle_trips(report.vehicle_number, -int(report.total_trips or 0))

            report.status = ReportStatus.REJECTED
            report.rent_verified = False
            report.verified_by = rejected_by
            report.verified_at = get_ist_time_naive()
            if reason:
                report.remarks = f"{report.remarks}\n{reason}" if report.remarks else reason

            self.audit_service.log_action(
                action='reject_report',
                entity_type='fleet_report',
                entity_id=report.id,
                details={
                    'driver_id': report.user_id,
                    'rent_date': date_text,
                    'deposits_removed': removed_count,
                    'amount_removed': removed_total,
                    'reason': reason,
                },
                user_id=rejected_by
            )

            logger.info(f"Report {report.id} rejected by user {rejected_by}, "
                        f"{removed_count} deposit rows removed ({removed_total})")
            return True, None, {
                'report': report.to_dict(),
                'deposits_removed': removed_count,
                'amount_removed': removed_total,
            }

        except Exception as e:
            logger.error(f"Error rejecting report {report_id}: {str(e)}")
            return False, f"Failed to reject report: {str(e)}", None

    @TransactionHelper.with_transaction
    def mark_report_leave(self, report_id: int, marked_by: int) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Mark a pending report as a leave day. No ledger effect."""
        report = db.session.get(FleetReport, report_id)
        if not report:
            return False, "Report not found", None

        if report.status != ReportStatus.PENDING_VERIFICATION:
            return False, f"Report is already {report.status.value}", None

        report.status = ReportStatus.LEAVE
        report.verified_by = marked_by
        report.verified_at = get_ist_time_naive()

        self.audit_service.log_action(
            action='mark_report_leave',
            entity_type='fleet_report',
            entity_id=report.id,
            details={'driver_id': report.user_id, 'rent_date': report.rent_date.isoformat()},
            user_id=marked_by
        )
        return True, None, report.to_dict()

    # ------------------------------------------------------------------
    # Penalty ledger
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def add_penalty_transaction(self, user_id: int, amount: float, tx_type: PenaltyTransactionType,
                                description: Optional[str] = None, created_by: Optional[int] = None,
                                penalty_date: Optional[date] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Record a penalty ledger row and update total_penalties.

        A 'penalty' row is also booked as vehicle income across the vehicles
        the driver ran in that week.

        Args:
            user_id: driver ID
            amount: positive amount
            tx_type: PenaltyTransactionType
            description: free text
            created_by: admin ID
            penalty_date: day that selects the week to distribute over (default today)

        Returns:
            tuple: (success, error_message, {'transaction', 'distribution'})
        """
        driver = db.session.get(User, user_id)
        if not driver or driver.role != UserRole.DRIVER:
            return False, "Driver not found", None

        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return False, "Invalid amount value", None
        if amount <= 0:
            return False, "Amount must be greater than zero", None

        penalty_date = penalty_date or get_ist_today()
        try:
            tx = PenaltyTransaction(
                user_id=user_id,
                amount=amount,
                type=tx_type,
                description=description,
                penalty_date=penalty_date,
                created_by=created_by,
            )
            db.session.add(tx)
            db.session.flush()

            increment_total_penalties(user_id, PENALTY_SIGN[tx_type] * amount)

            distribution = []
            if tx_type == PenaltyTransactionType.PENALTY:
                distribution = self._distribute_penalty(tx, driver, penalty_date, created_by)

            self.audit_service.log_action(
                action=f'add_{tx_type.value}',
                entity_type='penalty_transaction',
                entity_id=tx.id,
                details={'driver_id': user_id, 'amount': amount, 'vehicles': len(distribution)},
                user_id=created_by
            )

            logger.info(f"Penalty ledger {tx_type.value} {amount} recorded for driver {user_id}")
            return True, None, {'transaction': tx.to_dict(), 'distribution': distribution}

        except Exception as e:
            logger.error(f"Error adding penalty transaction for driver {user_id}: {str(e)}")
            return False, f"Failed to add transaction: {str(e)}", None

    @TransactionHelper.with_transaction
    def update_penalty_transaction(self, transaction_id: int, amount: float,
                                   description: Optional[str] = None,
                                   updated_by: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """Change a penalty ledger amount; total_penalties moves by the difference."""
        tx = db.session.get(PenaltyTransaction, transaction_id)
        if not tx:
            return False, "Transaction not found", None

        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return False, "Invalid amount value", None
        if amount <= 0:
            return False, "Amount must be greater than zero", None

        difference = amount - float(tx.amount)
        increment_total_penalties(tx.user_id, PENALTY_SIGN[tx.type] * difference)
        tx.amount = amount
        if description is not None:
            tx.description = description

        if tx.type == PenaltyTransactionType.PENALTY:
            self._remove_penalty_distribution(tx.id)
            driver = db.session.get(User, tx.user_id)
            self._distribute_penalty(tx, driver, tx.penalty_date or tx.created_at.date(), updated_by)

        self.audit_service.log_action(
            action='update_penalty_transaction',
            entity_type='penalty_transaction',
            entity_id=tx.id,
            details={'amount': amount, 'difference': difference},
            user_id=updated_by
        )
        return True, None, {'transaction': tx.to_dict()}

    @TransactionHelper.with_transaction
    def delete_penalty_transaction(self, transaction_id: int,
                                   deleted_by: Optional[int] = None) -> Tuple[bool, Optional[str], None]:
        """Delete a penalty ledger row, reversing its total_penalties effect and vehicle income."""
        tx = db.session.get(PenaltyTransaction, transaction_id)
        if not tx:
            return False, "Transaction not found", None

        try:
            increment_total_penalties(tx.user_id, -PENALTY_SIGN[tx.type] * float(tx.amount))
            removed = self._remove_penalty_distribution(tx.id)

            self.audit_service.log_action(
                action='delete_penalty_transaction',
                entity_type='penalty_transaction',
                entity_id=tx.id,
                details={'driver_id': tx.user_id, 'type': tx.type.value,
                         'amount': tx.amount, 'vehicle_rows_removed': removed},
                user_id=deleted_by
            )
            db.session.delete(tx)
            return True, None, None

        except Exception as e:
            logger.error(f"Error deleting penalty transaction {transaction_id}: {str(e)}")
            return False, f"Failed to delete transaction: {str(e)}", None

    def _distribute_penalty(self, tx: PenaltyTransaction, driver: User, penalty_date: date,
                            created_by: Optional[int]) -> List[Dict[str, Any]]:
        """Book a penalty as vehicle income, weighted by approved report days that week."""
        week_start = week_start_for(penalty_date)
        week_end = week_start + timedelta(days=6)

        rows = db.session.query(FleetReport.vehicle_number, func.count(FleetReport.id)).filter(
            FleetReport.user_id == driver.id,
            FleetReport.status == ReportStatus.APPROVED,
            FleetReport.rent_date >= week_start,
            FleetReport.rent_date <= week_end,
            FleetReport.vehicle_number.isnot(None),
            FleetReport.vehicle_number != '',
        ).group_by(FleetReport.vehicle_number).all()

        vehicle_days = {vehicle_number: days for vehicle_number, days in rows}
        total_days = sum(vehicle_days.values())
        if not total_days:
            logger.info(f"No approved reports for driver {driver.id} in week of {week_start}; "
                        f"penalty {tx.id} not distributed")
            return []

        distribution = []
        for vehicle_number, days in sorted(vehicle_days.items()):
            share = round(float(tx.amount) * days / total_days, 2)
            db.session.add(VehicleTransaction(
                vehicle_number=vehicle_number,
                transaction_type=VehicleTransactionType.INCOME,
                amount=share,
                description=(f"Driver Penalty: {driver.name} ({days}/{total_days} days, "
                             f"week of {week_start.isoformat()}) [PENALTY_TX_ID:{tx.id}]"),
                transaction_date=penalty_date,
                penalty_transaction_id=tx.id,
                created_by=created_by,
            ))
            distribution.append({'vehicle_number': vehicle_number, 'days': days, 'amount': share})

        return distribution

    def _remove_penalty_distribution(self, penalty_tx_id: int) -> int:
        return VehicleTransaction.query.filter(
            or_(
                VehicleTransaction.penalty_transaction_id == penalty_tx_id,
                VehicleTransaction.description.contains(f"[PENALTY_TX_ID:{penalty_tx_id}]"),
            )
        ).delete(synchronize_session=False)

    # ------------------------------------------------------------------
    # Balance ledger
    # ------------------------------------------------------------------

    @TransactionHelper.with_transaction
    def add_balance_transaction(self, user_id: int, amount: float, tx_type: BalanceTransactionType,
                                description: Optional[str] = None,
                                created_by: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Record a manual balance ledger entry.

        deposit and bonus raise pending_balance; refund, due and penalty lower it.
        """
        driver = db.session.get(User, user_id)
        if not driver or driver.role != UserRole.DRIVER:
            return False, "Driver not found", None

        try:
            amount = float(amount)
        except (TypeError, ValueError):
            return False, "Invalid amount value", None
        if amount <= 0:
            return False, "Amount must be greater than zero", None

        tx = BalanceTransaction(
            user_id=user_id,
            amount=amount,
            type=tx_type,
            description=description,
            created_by=created_by,
        )
        db.session.add(tx)
        db.session.flush()
        increment_pending_balance(user_id, BALANCE_SIGN[tx_type] * amount)

        self.audit_service.log_action(
            action=f'balance_{tx_type.value}',
            entity_type='balance_transaction',
            entity_id=tx.id,
            details={'driver_id': user_id, 'amount': amount},
            user_id=created_by
        )
        return True, None, tx.to_dict()

    @TransactionHelper.with_transaction
    def delete_balance_transaction(self, transaction_id: int,
                                   deleted_by: Optional[int] = None) -> Tuple[bool, Optional[str], None]:
        tx = db.session.get(BalanceTransaction, transaction_id)
        if not tx:
            return False, "Transaction not found", None
        if tx.fleet_report_id:
            return False, "Deposit rows of a report are removed by rejecting the report", None

        increment_pending_balance(tx.user_id, -BALANCE_SIGN[tx.type] * float(tx.amount))
        self.audit_service.log_action(
            action='delete_balance_transaction',
            entity_type='balance_transaction',
            entity_id=tx.id,
            details={'driver_id': tx.user_id, 'type': tx.type.value, 'amount': tx.amount},
            user_id=deleted_by
        )
        db.session.delete(tx)
        return True, None, None

    def get_refund_candidates(self, threshold: Optional[float] = None) -> List[Dict[str, Any]]:
        """Drivers whose pending balance is at or above the refund threshold."""
        threshold = _refund_threshold() if threshold is None else threshold
        drivers = User.query.filter(
            User.role == UserRole.DRIVER,
            User.pending_balance >= threshold,
        ).order_by(User.pending_balance.desc()).all()

        return [{
            'user_id': driver.id,
            'name': driver.name,
            'vehicle_number': driver.vehicle_number,
            'shift': driver.shift.value if driver.shift else None,
            'online': driver.online,
            'pending_balance': driver.pending_balance,
            'refundable_amount': round(max(0.0, driver.pending_balance - threshold), 2),
        } for driver in drivers]

    @TransactionHelper.with_transaction
    def process_refund(self, user_id: int, processed_by: Optional[int] = None,
                       description: Optional[str] = None) -> Tuple[bool, Optional[str], Optional[Dict[str, Any]]]:
        """
        Refund everything above the threshold, leaving the balance at the threshold.

        Returns:
            tuple: (success, error_message, refund row)
        """
        driver = db.session.get(User, user_id)
        if not driver or driver.role != UserRole.DRIVER:
            return False, "Driver not found", None

        threshold = _refund_threshold()
        extra = round(float(driver.pending_balance or 0) - threshold, 2)
        if extra <= 0:
            return False, "No extra amount available for refund", None

        tx = BalanceTransaction(
            user_id=user_id,
            amount=extra,
            type=BalanceTransactionType.REFUND,
            description=description or f"Refund of extra balance above {threshold:.0f} ({extra:.2f})",
            created_by=processed_by,
        )
        db.session.add(tx)
        db.session.flush()
        increment_pending_balance(user_id, -extra)

        self.audit_service.log_action(
            action='process_refund',
            entity_type='balance_transaction',
            entity_id=tx.id,
            details={'driver_id': user_id, 'amount': extra, 'threshold': threshold},
            user_id=processed_by
        )
        logger.info(f"Refund of {extra} processed for driver {user_id}")
        return True, None, tx.to_dict()

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_outstanding_balance(self, user_id: int) -> Optional[Dict[str, Any]]:
        """
        pending_balance plus penalty credits minus penalty debits.

        Falls back to pending_balance - total_penalties when the ledger
        cannot be read.
        """
        driver = db.session.get(User, user_id)
        if not driver:
            return None

        pending = float(driver.pending_balance or 0)
        try:
            totals = dict(db.session.query(PenaltyTransaction.type, func.coalesce(func.sum(PenaltyTransaction.amount), 0))
                          .filter(PenaltyTransaction.user_id == user_id)
                          .group_by(PenaltyTransaction.type).all())
            credits = sum(float(totals.get(t, 0)) for t in PENALTY_CREDIT_TYPES)
            debits = sum(float(totals.get(t, 0)) for t in PENALTY_DEBIT_TYPES)
            source = 'ledger'
        except Exception as e:
            logger.warning(f"Penalty ledger unavailable for driver {user_id}, using running totals: {str(e)}")
            credits = 0.0
            debits = float(driver.total_penalties or 0)
            source = 'running_totals'

        return {
            'user_id': user_id,
            'pending_balance': pending,
            'penalty_credits': credits,
            'penalty_debits': debits,
            'total_penalties': float(driver.total_penalties or 0),
            'outstanding_balance': round(pending + credits - debits, 2),
            'source': source,
        }

    def compute_ledger_totals(self, user_id: int) -> Dict[str, float]:
        """Running balances as the ledgers say they should be."""
        balance_rows = db.session.query(BalanceTransaction.type, BalanceTransaction.amount) \
            .filter(BalanceTransaction.user_id == user_id).all()
        pending = sum(BALANCE_SIGN[tx_type] * float(amount) for tx_type, amount in balance_rows)

        penalties = 0.0
        penalty_rows = PenaltyTransaction.query.filter_by(user_id=user_id) \
            .order_by(PenaltyTransaction.created_at, PenaltyTransaction.id).all()
        for row in penalty_rows:
            penalties = max(0.0, penalties + PENALTY_SIGN[row.type] * float(row.amount))

        return {'pending_balance': round(pending, 2), 'total_penalties': round(penalties, 2)}

    def find_balance_drift(self, tolerance: float = 0.01) -> List[Dict[str, Any]]:
        """Drivers whose stored running balances disagree with their ledgers."""
        drift = []
        for driver in User.query.filter_by(role=UserRole.DRIVER).order_by(User.id).all():
            expected = self.compute_ledger_totals(driver.id)
            stored_pending = float(driver.pending_balance or 0)
            stored_penalties = float(driver.total_penalties or 0)
            if (abs(stored_pending - expected['pending_balance']) > tolerance or
                    abs(stored_penalties - expected['total_penalties']) > tolerance):
                drift.append({
                    'user_id': driver.id,
                    'name': driver.name,
                    'stored_pending_balance': stored_pending,
                    'ledger_pending_balance': expected['pending_balance'],
                    'stored_total_penalties': stored_penalties,
                    'ledger_total_penalties': expected['total_penalties'],
                })
        return drift

    @TransactionHelper.with_transaction
    def reconcile_balances(self, fix: bool = False,
                           performed_by: Optional[int] = None) -> Tuple[bool, Optional[str], List[Dict[str, Any]]]:
        """
        Compare running balances with the ledgers and optionally overwrite them.

        Returns:
            tuple: (success, error_message, list of drifted drivers)
        """
        drift = self.find_balance_drift()
        if fix:
            for entry in drift:
                db.session.execute(
                    update(User)
                    .where(User.id == entry['user_id'])
                    .values(pending_balance=entry['ledger_pending_balance'],
                            total_penalties=entry['ledger_total_penalties'])
                    .execution_options(synchronize_session='fetch')
                )
            if drift:
                self.audit_service.log_action(
                    action='reconcile_balances',
                    entity_type='driver',
                    details={'fixed': [entry['user_id'] for entry in drift]},
                    user_id=performed_by
                )
            logger.info(f"Reconciliation fixed {len(drift)} drivers")
        else:
            logger.info(f"Reconciliation found {len(drift)} drivers with drift")
        return True, None, drift

    def get_balance_history(self, user_id: int, limit: int = 100) -> Dict[str, List[Dict[str, Any]]]:
        balance = BalanceTransaction.query.filter_by(user_id=user_id) \
            .order_by(BalanceTransaction.created_at.desc()).limit(limit).all()
        penalties = PenaltyTransaction.query.filter_by(user_id=user_id) \
            .order_by(PenaltyTransaction.created_at.desc()).limit(limit).all()
        return {
            'balance_transactions': [tx.to_dict() for tx in balance],
            'penalty_transactions': [tx.to_dict() for tx in penalties],
        }
