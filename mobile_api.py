"""
Mobile API Module
Driver-specific endpoints for the driver app
"""

from flask import Blueprint, request, jsonify, g
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

from models import User, UserRole, Shift
from forms import ReportSubmissionForm, form_errors
from services.report_service import ReportService
from services.ledger_service import LedgerService
from services.overdue_service import OverdueService
from services.driver_service import DriverService
from app import csrf

logger = logging.getLogger(__name__)

# Create mobile API blueprint
mobile_api_bp = Blueprint('mobile_api', __name__)

report_service = ReportService()
ledger_service = LedgerService()
overdue_service = OverdueService()
driver_service = DriverService()

def get_current_mobile_user():
    """Get current user from JWT token"""
    return User.query.filter_by(username=get_jwt_identity()).first()

def _driver_or_error():
    user = get_current_mobile_user()
    if not user:
        return None, (jsonify({
            'success': False,
            'error': 'USER_NOT_FOUND',
            'message': 'User not found'
        }), 404)
    if user.role != UserRole.DRIVER:
        return None, (jsonify({
            'success': False,
            'error': 'ACCESS_DENIED',
            'message': 'Access denied - drivers only'
        }), 403)
    g.actor = f"driver:{user.id}"
    return user, None

@mobile_api_bp.route('/api/v1/driver/profile', methods=['GET'])
@jwt_required()
@csrf.exempt
def get_driver_profile():
    """Get driver profile information"""
    user, error = _driver_or_error()
    if error:
        return error

    return jsonify({
        'success': True,
        'profile': driver_service.driver_summary(user)
    })

@mobile_api_bp.route('/api/v1/driver/reports', methods=['POST'])
@jwt_required()
@csrf.exempt
def submit_report():
    """Submit today's (or a past day's) fleet report"""
    user, error = _driver_or_error()
    if error:
        return error

    form = ReportSubmissionForm()
    if not form.validate():
        return jsonify({
            'success': False,
            'error': 'VALIDATION_ERROR',
            'message': form_errors(form)
        }), 400

    data = dict(form.data)
    data['shift'] = Shift(form.shift.data) if form.shift.data else None

    success, message, result = report_service.submit_report(user.id, data)
    if not success:
        status = 409 if result and result.get('conflict') else 400
        return jsonify({
            'success': False,
            'error': 'DUPLICATE_REPORT' if status == 409 else 'SUBMISSION_FAILED',
            'message': message
        }), status

    return jsonify({'success': True, **result}), 201

@mobile_api_bp.route('/api/v1/driver/reports/preview', methods=['POST'])
@jwt_required()
@csrf.exempt
def preview_report():
    """Settlement the report would produce, without saving it"""
    user, error = _driver_or_error()
    if error:
        return error

    data = request.get_json(silent=True) or {}
    if data.get('shift'):
        try:
            data['shift'] = Shift(data['shift'])
        except ValueError:
            return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': 'Invalid shift'}), 400

    settlement = report_service.preview_settlement(data, driver=user)
    if 'error' in settlement:
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': settlement['error']}), 400
    return jsonify({'success': True, 'settlement': settlement})

@mobile_api_bp.route('/api/v1/driver/reports', methods=['GET'])
@jwt_required()
@csrf.exempt
def list_reports():
    user, error = _driver_or_error()
    if error:
        return error

    page = request.args.get('page', 1, type=int)
    reports = report_service.list_reports(user_id=user.id, page=page, per_page=30)
    return jsonify({
        'success': True,
        'reports': [report.to_dict() for report in reports.items],
        'page': reports.page,
        'pages': reports.pages,
    })

@mobile_api_bp.route('/api/v1/driver/balance', methods=['GET'])
@jwt_required()
@csrf.exempt
def get_balance():
    """Outstanding balance with recent ledger rows"""
    user, error = _driver_or_error()
    if error:
        return error

    return jsonify({
        'success': True,
        'balance': ledger_service.get_outstanding_balance(user.id),
        **ledger_service.get_balance_history(user.id, limit=50)
    })

@mobile_api_bp.route('/api/v1/driver/overdue', methods=['GET'])
@jwt_required()
@csrf.exempt
def get_overdue():
    """Day-by-day report status for the last month"""
    user, error = _driver_or_error()
    if error:
        return error

    return jsonify({
        'success': True,
        'evaluation': overdue_service.evaluate_driver(user)
    })
