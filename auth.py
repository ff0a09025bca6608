from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash
from functools import wraps
import logging
from models import User, UserRole, db
from forms import LoginForm, form_errors
from services.audit_service import AuditService

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

STAFF_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


def roles_required(*roles):
    """Restrict a session-authenticated route to the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'success': False, 'error': 'AUTH_REQUIRED',
                                'message': 'Please log in to access this resource.'}), 401
            if current_user.role not in roles:
                return jsonify({'success': False, 'error': 'ACCESS_DENIED',
                                'message': 'You do not have permission to perform this action.'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    """Admin and manager accounts only."""
    return roles_required(*STAFF_ROLES)(f)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Session login for back-office staff"""
    form = LoginForm()
    if not form.validate():
        return jsonify({'success': False, 'error': 'VALIDATION_ERROR', 'message': form_errors(form)}), 400

    user = User.query.filter_by(username=form.username.data.strip()).first()
    if not user or not check_password_hash(user.password_hash, form.password.data):
        logger.warning(f"Failed login attempt for '{form.username.data}' from {request.remote_addr}")
        # Generic message to prevent account enumeration
        return jsonify({'success': False, 'error': 'INVALID_CREDENTIALS',
                        'message': 'Authentication failed. Please check your credentials.'}), 401

    if not user.is_active:
        return jsonify({'success': False, 'error': 'ACCOUNT_DISABLED',
                        'message': 'This account has been disabled.'}), 403

    if user.role not in STAFF_ROLES:
        return jsonify({'success': False, 'error': 'ACCESS_DENIED',
                        'message': 'Drivers sign in through the mobile app.'}), 403

    login_user(user, remember=form.remember_me.data)
    AuditService.log_action('login', entity_type='user', entity_id=user.id, user_id=user.id)
    db.session.commit()

    logger.info(f"User {user.username} logged in")
    return jsonify({
        'success': True,
        'user': {'id': user.id, 'username': user.username, 'name': user.name, 'role': user.role.value},
        'csrf_token': generate_csrf(),
    })


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    AuditService.log_action('logout', entity_type='user', entity_id=current_user.id)
    db.session.commit()
    logout_user()
    return jsonify({'success': True, 'message': 'Logged out'})


@auth_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token for the X-CSRFToken header on state-changing admin requests"""
    return jsonify({'success': True, 'csrf_token': generate_csrf()})


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({
        'success': True,
        'user': {'id': current_user.id, 'username': current_user.username,
                 'name': current_user.name, 'role': current_user.role.value},
    })
