"""
Settlement Service

Rent slab resolution and the daily settlement calculation. Everything in
this module except SettlementService is pure and safe to call outside a
request or transaction.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging
from flask import current_app, has_app_context
from models import db, SystemConfiguration, Shift, Vehicle
from .transaction_helper import TransactionHelper
from .audit_service import AuditService
from utils.config_validator import validate_slab_rows

logger = logging.getLogger(__name__)

# (min_trips, max_trips, amount); max_trips None means open-ended
DEFAULT_RENT_SLABS = [
    (12, None, 535.0),
    (11, 11, 585.0),
    (10, 10, 635.0),
    (8, 9, 715.0),
    (5, 7, 745.0),
    (0, 4, 795.0),
]

DEFAULT_RENT_SLABS_24HR = [
    (22, None, 970.0),
    (20, 21, 1170.0),
    (16, 19, 1330.0),
    (11, 15, 1390.0),
    (0, 10, 1530.0),
]

SLAB_CONFIG_KEYS = ('rent_slabs', 'rent_slabs_24hr', 'earnings_slabs')
# tables where more trips must never cost the driver more
RENT_SLAB_KEYS = ('rent_slabs', 'rent_slabs_24hr')


class SlabTable:
    """Ordered threshold table. The highest min_trips not above the trip count wins."""

    def __init__(self, rows):
        self.rows = sorted(
            [(int(lo), None if hi is None else int(hi), float(amount)) for lo, hi, amount in rows],
            key=lambda row: row[0],
            reverse=True,
        )

    @classmethod
    def from_config(cls, rows: List[Dict[str, Any]]) -> 'SlabTable':
        return cls([(row['min_trips'], row.get('max_trips'), row['amount']) for row in rows])

    def to_config(self) -> List[Dict[str, Any]]:
        return [{'min_trips': lo, 'max_trips': hi, 'amount': amount} for lo, hi, amount in self.rows]

    @property
    def ceiling(self) -> float:
        return max(amount for _, _, amount in self.rows) if self.rows else 0.0

    def lookup(self, trips: int) -> float:
        for lo, hi, amount in self.rows:
            if lo <= trips and (hi is None or trips <= hi):
                return amount
        # Negative counts and gaps in configured tables fall back to the dearest slab
        return self.ceiling

    def __len__(self):
        return len(self.rows)


class SlabResolver:
    """Holds the rent and company-earnings tables in force for this process."""

    def __init__(self, rent: Optional[SlabTable] = None,
                 rent_24hr: Optional[SlabTable] = None,
                 earnings: Optional[SlabTable] = None):
        self.rent = rent or SlabTable(DEFAULT_RENT_SLABS)
        self.rent_24hr = rent_24hr or SlabTable(DEFAULT_RENT_SLABS_24HR)
        self.earnings = earnings

    @classmethod
    def load(cls) -> 'SlabResolver':
        """
        Build a resolver from configured slabs, falling back to the built-in
        tables for any key that is missing, unreadable or malformed.
        """
        tables = {}
        for key in SLAB_CONFIG_KEYS:
            try:
                config = SystemConfiguration.query.filter_by(key=key).first()
                rows = config.get_value() if config else None
            except Exception as e:
                logger.warning(f"Could not read slab configuration '{key}': {str(e)}")
                db.session.rollback()
                rows = None

            if rows is None:
                continue

            try:
                is_valid, issues = validate_slab_rows(rows, non_increasing=key in RENT_SLAB_KEYS)
                if is_valid:
                    tables[key] = SlabTable.from_config(rows)
            except (TypeError, ValueError, KeyError) as e:
                is_valid, issues = False, [str(e)]
            if not is_valid:
                logger.warning(f"Ignoring malformed slab configuration '{key}': {'; '.join(issues)}")

        logger.info(f"Slab resolver loaded (configured: {sorted(tables) or 'none'})")
        return cls(
            rent=tables.get('rent_slabs'),
            rent_24hr=tables.get('rent_slabs_24hr'),
            earnings=tables.get('earnings_slabs'),
        )

    def resolve_rent(self, trips, shift) -> float:
        table = self.rent_24hr if _shift_value(shift) == Shift.FULL_DAY.value else self.rent
        return table.lookup(_as_int(trips))

    def resolve_company_earnings(self, trips) -> float:
        if not self.earnings:
            return 0.0
        return self.earnings.lookup(_as_int(trips))


def get_slab_resolver() -> SlabResolver:
    """Resolver cached on the running app, or the built-in tables outside one."""
    if has_app_context():
        resolver = current_app.extensions.get('slab_resolver')
        if resolver is not None:
            return resolver
    return SlabResolver()


def resolve_rent(trips, shift, resolver: Optional[SlabResolver] = None) -> float:
    return (resolver or get_slab_resolver()).resolve_rent(trips, shift)


def _shift_value(shift) -> str:
    if isinstance(shift, Shift):
        return shift.value
    return str(shift or Shift.NONE.value)


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class SettlementDirection(Enum):
    COMPANY_OWES_DRIVER = 'company_owes_driver'
    DRIVER_OWES_COMPANY = 'driver_owes_company'
    SETTLED = 'settled'


@dataclass(frozen=True)
class Settlement:
    """Outcome of one day's settlement between driver and company."""
    rent: float
    gross: float
    due: float
    direction: SettlementDirection
    amount: float

    def to_signed(self) -> float:
        """Stored rent_paid_amount: negative when the company pays the driver."""
        if self.direction == SettlementDirection.COMPANY_OWES_DRIVER:
            return -self.amount
        return self.amount

    @staticmethod
    def direction_of(rent_paid_amount) -> SettlementDirection:
        value = _as_float(rent_paid_amount)
        if value < 0:
            return SettlementDirection.COMPANY_OWES_DRIVER
        if value > 0:
            return SettlementDirection.DRIVER_OWES_COMPANY
        return SettlementDirection.SETTLED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rent': self.rent,
            'gross': self.gross,
            'due': self.due,
            'direction': self.direction.value,
            'amount': self.amount,
            'rent_paid_amount': self.to_signed(),
        }


def compute_settlement(total_trips=0, total_earnings=0, toll=0, total_cashcollect=0,
                       other_fee=0, deposit_cutting_amount=0, shift=Shift.MORNING,
                       rent: Optional[float] = None,
                       resolver: Optional[SlabResolver] = None) -> Settlement:
    """
    Compute the settlement for one report.

    Missing numeric inputs count as zero. When rent is given (a vehicle's
    actual_rent) it replaces the slab lookup.

    Returns:
        Settlement with the unsigned amount and who owes it
    """
    if rent is None:
        rent = resolve_rent(total_trips, shift, resolver)
    rent = _as_float(rent)

    gross = _as_float(total_earnings) + _as_float(toll)
    due = round(gross - _as_float(total_cashcollect) - rent
                - _as_float(other_fee) - _as_float(deposit_cutting_amount), 2)

    if due > 0:
        direction = SettlementDirection.COMPANY_OWES_DRIVER
    elif due < 0:
        direction = SettlementDirection.DRIVER_OWES_COMPANY
    else:
        direction = SettlementDirection.SETTLED

    return Settlement(rent=rent, gross=gross, due=due, direction=direction, amount=abs(due))


def settlement_for_report(report, resolver: Optional[SlabResolver] = None) -> Settlement:
    """Settlement of a FleetReport (or any object with the same fields)."""
    rent = None
    if getattr(report, 'vehicle_number', None):
        vehicle = Vehicle.query.filter_by(vehicle_number=report.vehicle_number).first()
        if vehicle and vehicle.actual_rent:
            rent = vehicle.actual_rent
    return compute_settlement(
        total_trips=report.total_trips,
        total_earnings=report.total_earnings,
        toll=report.toll,
        total_cashcollect=report.total_cashcollect,
        other_fee=report.other_fee,
        deposit_cutting_amount=report.deposit_cutting_amount,
        shift=report.shift,
        rent=rent,
        resolver=resolver,
    )


class SettlementService:
    """Admin maintenance of the configured slab tables"""

    def __init__(self):
        self.audit_service = AuditService()

    @TransactionHelper.with_transaction
    def update_slabs(self, key: str, rows: List[Dict[str, Any]],
                     updated_by: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[SlabResolver]]:
        """
        Store a slab table and refresh the cached resolver.

        Args:
            key: one of rent_slabs, rent_slabs_24hr, earnings_slabs
            rows: list of {min_trips, max_trips, amount}
            updated_by: ID of admin making the change

        Returns:
            tuple: (success, error_message, refreshed resolver)
        """
        if key not in SLAB_CONFIG_KEYS:
            return False, f"Unknown slab table '{key}'", None

        is_valid, issues = validate_slab_rows(rows, non_increasing=key in RENT_SLAB_KEYS)
        if not is_valid:
            return False, "; ".join(issues), None

        try:
            config = SystemConfiguration.query.filter_by(key=key).first()
            if not config:
                config = SystemConfiguration(key=key, data_type='json', category='slabs',
                                             description=f"Configured {key.replace('_', ' ')}")
                db.session.add(config)
            config.set_value(rows)
            config.updated_by = updated_by
            db.session.flush()

            current = get_slab_resolver()
            tables = {
                'rent_slabs': current.rent,
                'rent_slabs_24hr': current.rent_24hr,
                'earnings_slabs': current.earnings,
            }
            tables[key] = SlabTable.from_config(rows)
            resolver = SlabResolver(rent=tables['rent_slabs'],
                                    rent_24hr=tables['rent_slabs_24hr'],
                                    earnings=tables['earnings_slabs'])
            if has_app_context():
                current_app.extensions['slab_resolver'] = resolver

            self.audit_service.log_action(
                action='update_slabs',
                entity_type='system_configuration',
                entity_id=config.id,
                details={'key': key, 'rows': rows},
                user_id=updated_by
            )
            logger.info(f"Slab table {key} updated by user {updated_by}")
            return True, None, resolver

        except Exception as e:
            logger.error(f"Error updating slab table {key}: {str(e)}")
            return False, f"Failed to update slabs: {str(e)}", None
