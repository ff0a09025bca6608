import json
from app import db
from flask_login import UserMixin
from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.ext.hybrid import hybrid_property
from enum import Enum
import uuid
from timezone_utils import get_ist_time_naive

# Enums for better data integrity
class UserRole(Enum):
    ADMIN = 'admin'
    MANAGER = 'manager'
    HR = 'hr'
    DRIVER = 'driver'

class Shift(Enum):
    MORNING = 'morning'
    NIGHT = 'night'
    FULL_DAY = '24hr'
    NONE = 'none'

class DriverStatus(Enum):
    LEAVE = 'leave'
    RESIGNING = 'resigning'
    GOING_TO_24HR = 'going_to_24hr'

class ReportStatus(Enum):
    PENDING_VERIFICATION = 'pending_verification'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    LEAVE = 'leave'

class BalanceTransactionType(Enum):
    DEPOSIT = 'deposit'
    REFUND = 'refund'
    BONUS = 'bonus'
    DUE = 'due'
    PENALTY = 'penalty'

class PenaltyTransactionType(Enum):
    PENALTY = 'penalty'
    PENALTY_PAID = 'penalty_paid'
    BONUS = 'bonus'
    REFUND = 'refund'
    DUE = 'due'
    EXTRA_COLLECTION = 'extra_collection'
    INSURANCE_CLAIM_CHARGE = 'insurance_claim_charge'

class VehicleTransactionType(Enum):
    INCOME = 'income'
    EXPENSE = 'expense'

class AdjustmentCategory(Enum):
    SERVICE_DAY = 'service_day'
    BONUS = 'bonus'
    PENALTY = 'penalty'
    REFUND = 'refund'
    EXPENSE = 'expense'
    CUSTOM = 'custom'

class AdjustmentStatus(Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    APPLIED = 'applied'


class User(UserMixin, db.Model):
    """Staff and driver accounts. Driver-only columns stay null for staff."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.Enum(UserRole), nullable=False, default=UserRole.DRIVER, index=True)
    is_active_account = db.Column(db.Boolean, default=True, nullable=False)

    name = db.Column(db.String(100), nullable=False)
    driver_code = db.Column(db.String(20), unique=True)
    phone_number = db.Column(db.String(20), index=True)

    # Shift and vehicle assignment
    shift = db.Column(db.Enum(Shift), nullable=False, default=Shift.NONE)
    vehicle_number = db.Column(db.String(20), index=True)

    # Availability
    online = db.Column(db.Boolean, default=True, nullable=False)
    driver_status = db.Column(db.Enum(DriverStatus))
    joining_date = db.Column(db.Date)
    offline_from_date = db.Column(db.Date)
    online_from_date = db.Column(db.Date)
    leave_return_date = db.Column(db.Date)
    resigning_date = db.Column(db.Date)
    resignation_reason = db.Column(db.Text)

    # Running balances, superseded by the ledger tables
    pending_balance = db.Column(db.Float, default=0.0, nullable=False)
    total_penalties = db.Column(db.Float, default=0.0, nullable=False)
    total_earning = db.Column(db.Float, default=0.0, nullable=False)
    total_trip = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    # Relationships
    fleet_reports = db.relationship('FleetReport', backref='driver', lazy=True,
                                    foreign_keys='FleetReport.user_id')

    @property
    def is_active(self):
        return self.is_active_account

    @hybrid_property
    def is_driver(self):
        return self.role == UserRole.DRIVER

    def __repr__(self):
        return f'<User {self.username}>'


class Vehicle(db.Model):
    __tablename__ = 'vehicles'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    total_trips = db.Column(db.Integer, default=0, nullable=False)
    online = db.Column(db.Boolean, default=True, nullable=False)
    deposit = db.Column(db.Float, default=0.0)
    # Optional override of the slab-derived daily rent
    actual_rent = db.Column(db.Float)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    def __repr__(self):
        return f'<Vehicle {self.vehicle_number}>'


class FleetReport(db.Model):
    """One row per driver per shift submission."""
    __tablename__ = 'fleet_reports'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    driver_name = db.Column(db.String(100), nullable=False)
    vehicle_number = db.Column(db.String(20), index=True)
    shift = db.Column(db.Enum(Shift), nullable=False, default=Shift.MORNING)
    rent_date = db.Column(db.Date, nullable=False, index=True)

    total_trips = db.Column(db.Integer, default=0, nullable=False)
    total_earnings = db.Column(db.Float, default=0.0, nullable=False)
    toll = db.Column(db.Float, default=0.0, nullable=False)
    total_cashcollect = db.Column(db.Float, default=0.0, nullable=False)
    other_fee = db.Column(db.Float, default=0.0, nullable=False)
    deposit_cutting_amount = db.Column(db.Float, default=0.0, nullable=False)
    # Negative: company pays driver. Positive: driver pays company.
    rent_paid_amount = db.Column(db.Float, default=0.0, nullable=False)

    status = db.Column(db.Enum(ReportStatus), nullable=False,
                       default=ReportStatus.PENDING_VERIFICATION, index=True)
    rent_verified = db.Column(db.Boolean, default=False, nullable=False)
    is_service_day = db.Column(db.Boolean, default=False, nullable=False)
    remarks = db.Column(db.Text)

    submission_date = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)
    verified_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    verified_at = db.Column(db.DateTime)

    __table_args__ = (
        UniqueConstraint('user_id', 'rent_date', 'shift', name='unique_report_per_shift'),
        Index('idx_report_user_date', 'user_id', 'rent_date'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'driver_name': self.driver_name,
            'vehicle_number': self.vehicle_number,
            'shift': self.shift.value if self.shift else None,
            'rent_date': self.rent_date.isoformat() if self.rent_date else None,
            'total_trips': self.total_trips,
            'total_earnings': self.total_earnings,
            'toll': self.toll,
            'total_cashcollect': self.total_cashcollect,
            'other_fee': self.other_fee,
            'deposit_cutting_amount': self.deposit_cutting_amount,
            'rent_paid_amount': self.rent_paid_amount,
            'status': self.status.value if self.status else None,
            'rent_verified': self.rent_verified,
            'is_service_day': self.is_service_day,
            'remarks': self.remarks,
            'submission_date': self.submission_date.isoformat() if self.submission_date else None,
        }

    def __repr__(self):
        return f'<FleetReport {self.driver_name} {self.rent_date}>'


class BalanceTransaction(db.Model):
    """Deposit ledger. Rows are inserted or deleted, never updated."""
    __tablename__ = 'driver_balance_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    fleet_report_id = db.Column(db.Integer, db.ForeignKey('fleet_reports.id', ondelete='SET NULL'), index=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.Enum(BalanceTransactionType), nullable=False)
    description = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'fleet_report_id': self.fleet_report_id,
            'amount': self.amount,
            'type': self.type.value,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PenaltyTransaction(db.Model):
    """Penalty ledger, the source of truth for users.total_penalties."""
    __tablename__ = 'driver_penalty_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.Enum(PenaltyTransactionType), nullable=False)
    description = db.Column(db.Text)
    # week the row is distributed over; null on rows written before it was tracked
    penalty_date = db.Column(db.Date)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'amount': self.amount,
            'type': self.type.value,
            'description': self.description,
            'penalty_date': self.penalty_date.isoformat() if self.penalty_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class VehicleTransaction(db.Model):
    __tablename__ = 'vehicle_transactions'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_number = db.Column(db.String(20), nullable=False, index=True)
    transaction_type = db.Column(db.Enum(VehicleTransactionType), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text)
    transaction_date = db.Column(db.Date, nullable=False, index=True)

    # Source links so reversals never depend on description matching
    fleet_report_id = db.Column(db.Integer, db.ForeignKey('fleet_reports.id', ondelete='SET NULL'))
    adjustment_id = db.Column(db.Integer, db.ForeignKey('common_adjustments.id', ondelete='SET NULL'))
    penalty_transaction_id = db.Column(db.Integer, db.ForeignKey('driver_penalty_transactions.id', ondelete='SET NULL'))

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'vehicle_number': self.vehicle_number,
            'transaction_type': self.transaction_type.value,
            'amount': self.amount,
            'description': self.description,
            'transaction_date': self.transaction_date.isoformat() if self.transaction_date else None,
        }


class VehiclePerformance(db.Model):
    """Weekly per-vehicle aggregate, keyed by the Monday of the week."""
    __tablename__ = 'vehicle_performance'

    id = db.Column(db.Integer, primary_key=True)
    vehicle_number = db.Column(db.String(20), nullable=False, index=True)
    week_start = db.Column(db.Date, nullable=False)
    other_expenses = db.Column(db.Float, default=0.0, nullable=False)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)

    __table_args__ = (
        UniqueConstraint('vehicle_number', 'week_start', name='unique_vehicle_week'),
    )


class CommonAdjustment(db.Model):
    __tablename__ = 'common_adjustments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    driver_name = db.Column(db.String(100), nullable=False)
    vehicle_number = db.Column(db.String(20))
    adjustment_date = db.Column(db.Date, nullable=False, index=True)
    category = db.Column(db.Enum(AdjustmentCategory), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.Enum(AdjustmentStatus), nullable=False,
                       default=AdjustmentStatus.APPROVED, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    applied_to_report = db.Column(db.Integer, db.ForeignKey('fleet_reports.id'), index=True)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, nullable=False)
    approved_at = db.Column(db.DateTime)
    applied_at = db.Column(db.DateTime)

    __table_args__ = (
        Index('idx_adjustment_user_date_status', 'user_id', 'adjustment_date', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'driver_name': self.driver_name,
            'vehicle_number': self.vehicle_number,
            'adjustment_date': self.adjustment_date.isoformat() if self.adjustment_date else None,
            'category': self.category.value,
            'amount': self.amount,
            'description': self.description,
            'status': self.status.value,
            'applied_to_report': self.applied_to_report,
            'applied_at': self.applied_at.isoformat() if self.applied_at else None,
        }


class SystemConfiguration(db.Model):
    __tablename__ = 'system_configurations'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False, unique=True)
    value = db.Column(db.Text)
    data_type = db.Column(db.String(20), nullable=False, default='json')  # string, integer, float, boolean, json
    category = db.Column(db.String(50), nullable=False, default='business')
    description = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=get_ist_time_naive)
    updated_at = db.Column(db.DateTime, default=get_ist_time_naive, onupdate=get_ist_time_naive)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    def get_value(self):
        if self.value is None:
            return None
        if self.data_type == 'json':
            return json.loads(self.value)
        if self.data_type == 'integer':
            return int(self.value)
        if self.data_type == 'float':
            return float(self.value)
        if self.data_type == 'boolean':
            return self.value.lower() == 'true'
        return self.value

    def set_value(self, value):
        if self.data_type == 'json':
            self.value = json.dumps(value)
        else:
            self.value = str(value)


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50), index=True)
    entity_id = db.Column(db.Integer)
    new_values = db.Column(db.Text)  # JSON

    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=get_ist_time_naive, index=True)

    user = db.relationship('User', backref='audit_logs')

    __table_args__ = (
        Index('idx_audit_date_user', 'created_at', 'user_id'),
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
