"""
Audit Service

Audit trail for ledger mutations, report decisions and driver status
changes. Rows are added to the caller's session and committed with the
business change they describe; a rolled-back approval leaves no audit row.
"""

from typing import Optional, Dict, Any, List
import logging
import json
from flask import has_request_context, request
from flask_login import current_user
from app import db
from models import AuditLog

logger = logging.getLogger(__name__)

AUDITED_ENTITIES = (
    'fleet_report',
    'driver',
    'adjustment',
    'penalty_transaction',
    'balance_transaction',
    'system_configuration',
    'user',
)


def _acting_user_id(user_id: Optional[int]) -> Optional[int]:
    if user_id is not None:
        return user_id
    if has_request_context() and current_user.is_authenticated:
        return current_user.id
    return None


def audit_entry_to_dict(entry: AuditLog) -> Dict[str, Any]:
    try:
        details = json.loads(entry.new_values) if entry.new_values else None
    except ValueError:
        details = entry.new_values
    return {
        'id': entry.id,
        'user_id': entry.user_id,
        'username': entry.user.username if entry.user else None,
        'action': entry.action,
        'entity_type': entry.entity_type,
        'entity_id': entry.entity_id,
        'details': details,
        'ip_address': entry.ip_address,
        'created_at': entry.created_at.isoformat() if entry.created_at else None,
    }


class AuditService:
    """Service class for the back-office audit trail"""

    @staticmethod
    def log_action(action: str,
                   entity_type: Optional[str] = None,
                   entity_id: Optional[int] = None,
                   details: Optional[Dict[str, Any]] = None,
                   user_id: Optional[int] = None) -> bool:
        """
        Record who did what to which ledger entity.

        Args:
            action: e.g. 'approve_report', 'take_offline', 'process_refund'
            entity_type: one of AUDITED_ENTITIES
            entity_id: ID of the affected row
            details: amounts, dates and before/after values; dates and
                enums are stored via str()
            user_id: acting admin or driver; defaults to current_user

        Returns:
            bool: False only when the row could not be built
        """
        if entity_type and entity_type not in AUDITED_ENTITIES:
            logger.warning(f"Audit entry for unexpected entity type '{entity_type}' ({action})")

        user_id = _acting_user_id(user_id)
        # CLI runs and reconciliation without an operator have no actor to record
        if user_id is None:
            logger.debug(f"No acting user for {action}; audit row skipped")
            return True

        try:
            entry = AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                new_values=json.dumps(details, default=str) if details else None,
            )
            if has_request_context():
                entry.ip_address = request.remote_addr
                entry.user_agent = (request.headers.get('User-Agent') or '')[:255]

            db.session.add(entry)
            return True

        except (TypeError, ValueError) as e:
            logger.error(f"Could not record audit entry '{action}' for {entity_type}:{entity_id}: {str(e)}")
            return False

    @staticmethod
    def get_entity_history(entity_type: str, entity_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        """Audit entries for one report, driver or ledger row, newest first."""
        entries = AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id) \
                                .order_by(AuditLog.created_at.desc(), AuditLog.id.desc()) \
                                .limit(limit).all()
        return [audit_entry_to_dict(entry) for entry in entries]

    @staticmethod
    def get_recent_activity(limit: int = 20, user_id: Optional[int] = None) -> List[Dict[str, Any]]:
        query = AuditLog.query
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
        return [audit_entry_to_dict(entry) for entry in entries]
