from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from datetime import date
import logging
from models import (Shift, ReportStatus, AdjustmentCategory, AdjustmentStatus,
                    PenaltyTransactionType, BalanceTransactionType)
from forms import (ReportEditForm, AdjustmentForm, PenaltyTransactionForm,
                   BalanceTransactionForm, DriverStatusForm, form_errors)
from auth import admin_required
from services.ledger_service import LedgerService
from services.report_service import ReportService
from services.adjustment_service import AdjustmentService
from services.driver_service import DriverService
from services.overdue_service import OverdueService
from services.reporting_service import ReportingService
from services.settlement_service import SettlementService, SLAB_CONFIG_KEYS, get_slab_resolver
from services.audit_service import AuditService, AUDITED_ENTITIES

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)

ledger_service = LedgerService()
report_service = ReportService()
adjustment_service = AdjustmentService()
driver_service = DriverService()
overdue_service = OverdueService()
reporting_service = ReportingService()
settlement_service = SettlementService()


def _parse_date(value):
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _enum_arg(enum_cls, value):
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _validation_error(form):
    return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': form_errors(form)}), 400


def service_response(result, success_status=200, payload_key='data'):
    """Translate a (success, message, payload) service tuple into a JSON response."""
    success, message, payload = result
    if success:
        body = {'success': True}
        if payload is not None:
            body[payload_key] = payload
        return jsonify(body), success_status

    details = payload if isinstance(payload, dict) else {}
    if details.get('blocked'):
        return jsonify({'success': False, 'error': 'STATUS_CHANGE_BLOCKED', 'message': message,
                        'overdue_count': details['overdue_count'],
                        'rejected_count': details['rejected_count']}), 409
    if details.get('conflict'):
        return jsonify({'success': False, 'error': 'CONFLICT', 'message': message}), 409
    if message and 'not found' in message.lower():
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': message}), 404
    return jsonify({'success': False, 'error': 'OPERATION_FAILED', 'message': message}), 400


# ----------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------

@admin_bp.route('/dashboard')
@login_required
@admin_required
def dashboard():
    return jsonify({'success': True, 'statistics': reporting_service.get_dashboard_statistics()})


# ----------------------------------------------------------------------
# Drivers
# ----------------------------------------------------------------------

@admin_bp.route('/drivers')
@login_required
@admin_required
def drivers():
    online_arg = request.args.get('online')
    online = None if online_arg is None else online_arg.lower() == 'true'
    page = request.args.get('page', 1, type=int)

    drivers_page = driver_service.get_drivers_with_filters(
        online=online,
        shift=_enum_arg(Shift, request.args.get('shift')),
        search=request.args.get('search'),
        page=page,
    )
    if drivers_page is None:
        return jsonify({'success': False, 'error': 'QUERY_FAILED', 'message': 'Could not load drivers'}), 500

    return jsonify({
        'success': True,
        'drivers': [driver_service.driver_summary(driver) for driver in drivers_page.items],
        'page': drivers_page.page,
        'pages': drivers_page.pages,
        'total': drivers_page.total,
    })


@admin_bp.route('/drivers/<int:driver_id>')
@login_required
@admin_required
def driver_detail(driver_id):
    detail = driver_service.get_driver_detail(driver_id)
    if not detail:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': 'Driver not found'}), 404
    return jsonify({'success': True, 'driver': detail})


@admin_bp.route('/drivers/<int:driver_id>/status', methods=['POST'])
@login_required
@admin_required
def change_driver_status(driver_id):
    """Offline, leave, resigning or back online. Refused while reports are overdue or rejected."""
    form = DriverStatusForm()
    if not form.validate():
        return _validation_error(form)

    action = form.action.data
    if action == 'offline':
        result = driver_service.take_offline(driver_id, current_user.id)
    elif action == 'leave':
        result = driver_service.mark_leave(driver_id, current_user.id, return_date=form.return_date.data)
    elif action == 'resigning':
        result = driver_service.mark_resigning(driver_id, current_user.id,
                                               resigning_date=form.resigning_date.data,
                                               reason=form.reason.data)
    else:
        result = driver_service.bring_online(driver_id, current_user.id,
                                             shift=_enum_arg(Shift, form.shift.data),
                                             vehicle_number=form.vehicle_number.data or None)
    return service_response(result, payload_key='driver')


@admin_bp.route('/drivers/<int:driver_id>/overdue')
@login_required
@admin_required
def driver_overdue(driver_id):
    driver = driver_service.get_driver(driver_id)
    if not driver:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': 'Driver not found'}), 404
    return jsonify({'success': True, 'evaluation': overdue_service.evaluate_driver(driver)})


@admin_bp.route('/drivers/<int:driver_id>/balance')
@login_required
@admin_required
def driver_balance(driver_id):
    balance = ledger_service.get_outstanding_balance(driver_id)
    if balance is None:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': 'Driver not found'}), 404
    return jsonify({'success': True, 'balance': balance, **ledger_service.get_balance_history(driver_id)})


@admin_bp.route('/drivers/<int:driver_id>/weekly-audit')
@login_required
@admin_required
def weekly_audit(driver_id):
    audit = reporting_service.get_weekly_audit(driver_id, _parse_date(request.args.get('week_of')))
    if audit is None:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': 'Driver not found'}), 404
    return jsonify({'success': True, 'audit': audit})


# ----------------------------------------------------------------------
# Fleet reports
# ----------------------------------------------------------------------

@admin_bp.route('/reports')
@login_required
@admin_required
def reports():
    reports_page = report_service.list_reports(
        user_id=request.args.get('user_id', type=int),
        status=_enum_arg(ReportStatus, request.args.get('status')),
        start_date=_parse_date(request.args.get('start_date')),
        end_date=_parse_date(request.args.get('end_date')),
        page=request.args.get('page', 1, type=int),
    )
    return jsonify({
        'success': True,
        'reports': [report.to_dict() for report in reports_page.items],
        'page': reports_page.page,
        'pages': reports_page.pages,
        'total': reports_page.total,
    })


@admin_bp.route('/reports/<int:report_id>/approve', methods=['POST'])
@login_required
@admin_required
def approve_report(report_id):
    return service_response(ledger_service.approve_report(report_id, current_user.id), payload_key='result')


@admin_bp.route('/reports/<int:report_id>/reject', methods=['POST'])
@login_required
@admin_required
def reject_report(report_id):
    data = request.get_json(silent=True) or {}
    return service_response(ledger_service.reject_report(report_id, current_user.id, reason=data.get('reason')),
                            payload_key='result')


@admin_bp.route('/reports/<int:report_id>/leave', methods=['POST'])
@login_required
@admin_required
def mark_report_leave(report_id):
    return service_response(ledger_service.mark_report_leave(report_id, current_user.id), payload_key='report')


@admin_bp.route('/reports/<int:report_id>', methods=['PUT'])
@login_required
@admin_required
def edit_report(report_id):
    form = ReportEditForm()
    if not form.validate():
        return _validation_error(form)

    sent = request.get_json(silent=True) or {}
    data = {name: value for name, value in form.data.items() if name in sent}
    if 'shift' in data:
        data['shift'] = _enum_arg(Shift, data['shift'])
    return service_response(report_service.edit_report(report_id, data, current_user.id), payload_key='result')


@admin_bp.route('/reports/<int:report_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_report(report_id):
    return service_response(report_service.delete_report(report_id, current_user.id), payload_key='result')


# ----------------------------------------------------------------------
# Adjustments
# ----------------------------------------------------------------------

@admin_bp.route('/adjustments')
@login_required
@admin_required
def adjustments():
    return jsonify({
        'success': True,
        'adjustments': adjustment_service.list_adjustments(
            user_id=request.args.get('user_id', type=int),
            status=_enum_arg(AdjustmentStatus, request.args.get('status')),
            start_date=_parse_date(request.args.get('start_date')),
            end_date=_parse_date(request.args.get('end_date')),
        )
    })


@admin_bp.route('/adjustments/stats')
@login_required
@admin_required
def adjustment_stats():
    return jsonify({'success': True, 'stats': adjustment_service.get_stats(request.args.get('user_id', type=int))})


@admin_bp.route('/adjustments', methods=['POST'])
@login_required
@admin_required
def create_adjustment():
    form = AdjustmentForm()
    if not form.validate():
        return _validation_error(form)

    data = request.get_json(silent=True) or {}
    result = adjustment_service.create_adjustment(
        user_id=form.user_id.data,
        category=AdjustmentCategory(form.category.data),
        adjustment_date=form.adjustment_date.data,
        description=form.description.data,
        amount=form.amount.data,
        created_by=current_user.id,
        auto_approve=bool(data.get('auto_approve', True)),
        vehicle_number=form.vehicle_number.data or None,
    )
    return service_response(result, success_status=201, payload_key='adjustment')


@admin_bp.route('/adjustments/<int:adjustment_id>', methods=['PUT'])
@login_required
@admin_required
def update_adjustment(adjustment_id):
    data = request.get_json(silent=True) or {}
    changes = {
        'amount': data.get('amount'),
        'description': data.get('description'),
        'category': _enum_arg(AdjustmentCategory, data.get('category')),
        'adjustment_date': _parse_date(data.get('adjustment_date')),
    }
    if 'vehicle_number' in data:
        changes['vehicle_number'] = data['vehicle_number']
    return service_response(adjustment_service.update_adjustment(adjustment_id, changes, current_user.id),
                            payload_key='adjustment')


@admin_bp.route('/adjustments/<int:adjustment_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_adjustment(adjustment_id):
    return service_response(adjustment_service.delete_adjustment(adjustment_id, current_user.id))


@admin_bp.route('/adjustments/<int:adjustment_id>/approve', methods=['POST'])
@login_required
@admin_required
def approve_adjustment(adjustment_id):
    return service_response(adjustment_service.approve_adjustment(adjustment_id, current_user.id),
                            payload_key='adjustment')


@admin_bp.route('/adjustments/<int:adjustment_id>/reject', methods=['POST'])
@login_required
@admin_required
def reject_adjustment(adjustment_id):
    return service_response(adjustment_service.reject_adjustment(adjustment_id, current_user.id),
                            payload_key='adjustment')


# ----------------------------------------------------------------------
# Ledgers
# ----------------------------------------------------------------------

@admin_bp.route('/penalties', methods=['POST'])
@login_required
@admin_required
def add_penalty_transaction():
    form = PenaltyTransactionForm()
    if not form.validate():
        return _validation_error(form)

    result = ledger_service.add_penalty_transaction(
        user_id=form.user_id.data,
        amount=form.amount.data,
        tx_type=PenaltyTransactionType(form.transaction_type.data),
        description=form.description.data or None,
        created_by=current_user.id,
        penalty_date=form.penalty_date.data,
    )
    return service_response(result, success_status=201, payload_key='result')


@admin_bp.route('/penalties/<int:transaction_id>', methods=['PUT'])
@login_required
@admin_required
def update_penalty_transaction(transaction_id):
    data = request.get_json(silent=True) or {}
    return service_response(ledger_service.update_penalty_transaction(
        transaction_id, data.get('amount'), description=data.get('description'), updated_by=current_user.id
    ), payload_key='result')


@admin_bp.route('/penalties/<int:transaction_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_penalty_transaction(transaction_id):
    return service_response(ledger_service.delete_penalty_transaction(transaction_id, current_user.id))


@admin_bp.route('/balance-transactions', methods=['POST'])
@login_required
@admin_required
def add_balance_transaction():
    form = BalanceTransactionForm()
    if not form.validate():
        return _validation_error(form)

    result = ledger_service.add_balance_transaction(
        user_id=form.user_id.data,
        amount=form.amount.data,
        tx_type=BalanceTransactionType(form.transaction_type.data),
        description=form.description.data or None,
        created_by=current_user.id,
    )
    return service_response(result, success_status=201, payload_key='transaction')


@admin_bp.route('/balance-transactions/<int:transaction_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_balance_transaction(transaction_id):
    return service_response(ledger_service.delete_balance_transaction(transaction_id, current_user.id))


@admin_bp.route('/refunds')
@login_required
@admin_required
def refund_candidates():
    return jsonify({'success': True, 'drivers': ledger_service.get_refund_candidates()})


@admin_bp.route('/refunds/<int:driver_id>', methods=['POST'])
@login_required
@admin_required
def process_refund(driver_id):
    data = request.get_json(silent=True) or {}
    return service_response(ledger_service.process_refund(driver_id, current_user.id,
                                                          description=data.get('description')),
                            success_status=201, payload_key='transaction')


@admin_bp.route('/reconciliation')
@login_required
@admin_required
def balance_drift():
    return jsonify({'success': True, 'drift': ledger_service.find_balance_drift()})


@admin_bp.route('/reconciliation', methods=['POST'])
@login_required
@admin_required
def reconcile_balances():
    return service_response(ledger_service.reconcile_balances(fix=True, performed_by=current_user.id),
                            payload_key='fixed')


# ----------------------------------------------------------------------
# Calendar, vehicles and configuration
# ----------------------------------------------------------------------

@admin_bp.route('/calendar')
@login_required
@admin_required
def rent_calendar():
    start = _parse_date(request.args.get('start'))
    end = _parse_date(request.args.get('end'))
    if not start or not end or end < start:
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR',
                        'message': 'Valid start and end dates are required'}), 400
    if (end - start).days > 62:
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR',
                        'message': 'Calendar range is limited to 62 days'}), 400

    user_ids = [int(value) for value in request.args.getlist('user_id') if value.isdigit()]
    return jsonify({'success': True, 'calendar': overdue_service.get_calendar(start, end, user_ids or None)})


@admin_bp.route('/vehicles/<vehicle_number>/week')
@login_required
@admin_required
def vehicle_week(vehicle_number):
    return jsonify({
        'success': True,
        'week': reporting_service.get_vehicle_week(vehicle_number, _parse_date(request.args.get('week_of'))),
        'transactions': reporting_service.get_vehicle_transactions(vehicle_number, limit=50),
    })


@admin_bp.route('/slabs')
@login_required
@admin_required
def slabs():
    resolver = get_slab_resolver()
    return jsonify({
        'success': True,
        'slabs': {
            'rent_slabs': resolver.rent.to_config(),
            'rent_slabs_24hr': resolver.rent_24hr.to_config(),
            'earnings_slabs': resolver.earnings.to_config() if resolver.earnings else [],
        }
    })


@admin_bp.route('/slabs/<key>', methods=['PUT'])
@login_required
@admin_required
def update_slabs(key):
    if key not in SLAB_CONFIG_KEYS:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': f"Unknown slab table '{key}'"}), 404

    data = request.get_json(silent=True) or {}
    success, message, resolver = settlement_service.update_slabs(key, data.get('slabs'), current_user.id)
    if not success:
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': message}), 400
    return jsonify({'success': True, 'message': f'{key} updated'})


@admin_bp.route('/non-working-dates', methods=['PUT'])
@login_required
@admin_required
def update_non_working_dates():
    data = request.get_json(silent=True) or {}
    success, message, dates = overdue_service.update_non_working_dates(data.get('dates'), current_user.id)
    if not success:
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': message}), 400
    return jsonify({'success': True, 'dates': dates})


# ----------------------------------------------------------------------
# Audit trail
# ----------------------------------------------------------------------

@admin_bp.route('/audit')
@login_required
@admin_required
def recent_activity():
    limit = min(request.args.get('limit', 20, type=int), 200)
    return jsonify({'success': True,
                    'entries': AuditService.get_recent_activity(limit, user_id=request.args.get('user_id', type=int))})


@admin_bp.route('/audit/<entity_type>/<int:entity_id>')
@login_required
@admin_required
def entity_history(entity_type, entity_id):
    if entity_type not in AUDITED_ENTITIES:
        return jsonify({'success': False, 'error': 'NOT_FOUND', 'message': f"Unknown entity type '{entity_type}'"}), 404
    return jsonify({'success': True, 'entries': AuditService.get_entity_history(entity_type, entity_id)})
