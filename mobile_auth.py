"""
Mobile Authentication Module
JWT-based password authentication for the driver app
"""

from flask import Blueprint, request, jsonify
from flask_jwt_extended import (
    jwt_required, create_access_token,
    create_refresh_token, get_jwt_identity, get_jwt
)
from werkzeug.security import check_password_hash
import logging
from datetime import timedelta

from models import User, UserRole
from app import csrf, jwt

logger = logging.getLogger(__name__)

# Create mobile auth blueprint
mobile_auth_bp = Blueprint('mobile_auth', __name__)

# JWT token blacklist for logout functionality
blacklisted_tokens = set()

def get_client_ip():
    """Get real client IP address with proxy support"""
    forwarded_for = request.environ.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.remote_addr or '127.0.0.1'

def _token_claims(user):
    return {'role': user.role.value, 'user_id': user.id}

@mobile_auth_bp.route('/api/v1/auth/login', methods=['POST'])
@csrf.exempt
def mobile_login():
    """Exchange driver credentials for access and refresh tokens"""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({
            'success': False,
            'error': 'INVALID_REQUEST',
            'message': 'Request body is required'
        }), 400

    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({
            'success': False,
            'error': 'CREDENTIALS_REQUIRED',
            'message': 'Username and password are required'
        }), 400

    user = User.query.filter_by(username=username).first()
    if not user or not check_password_hash(user.password_hash, password):
        logger.warning(f"MOBILE_LOGIN_FAILED: User: {username} IP: {get_client_ip()}")
        return jsonify({
            'success': False,
            'error': 'INVALID_CREDENTIALS',
            'message': 'Authentication failed. Please check your credentials.'
        }), 401

    if not user.is_active or user.role != UserRole.DRIVER:
        return jsonify({
            'success': False,
            'error': 'ACCESS_DENIED',
            'message': 'Only active driver accounts can use the mobile app'
        }), 403

    access_token = create_access_token(identity=user.username, additional_claims=_token_claims(user))
    refresh_token = create_refresh_token(
        identity=user.username,
        additional_claims=_token_claims(user),
        expires_delta=timedelta(days=30)
    )

    logger.info(f"MOBILE_LOGIN_SUCCESS: User: {user.username} IP: {get_client_ip()}")

    return jsonify({
        'success': True,
        'message': 'Authentication successful',
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': {
            'id': user.id,
            'username': user.username,
            'name': user.name,
            'vehicle_number': user.vehicle_number,
            'shift': user.shift.value if user.shift else None,
        }
    })

@mobile_auth_bp.route('/api/v1/auth/refresh', methods=['POST'])
@jwt_required(refresh=True)
@csrf.exempt
def mobile_refresh_token():
    """Refresh JWT access token using refresh token"""
    user = User.query.filter_by(username=get_jwt_identity()).first()
    if not user or not user.is_active:
        return jsonify({
            'success': False,
            'error': 'USER_INACTIVE',
            'message': 'User account is not active'
        }), 401

    new_access_token = create_access_token(identity=user.username, additional_claims=_token_claims(user))
    logger.info(f"MOBILE_TOKEN_REFRESH: User: {user.username}")

    return jsonify({
        'success': True,
        'access_token': new_access_token,
    })

@mobile_auth_bp.route('/api/v1/auth/logout', methods=['POST'])
@jwt_required()
@csrf.exempt
def mobile_logout():
    """Logout and blacklist JWT token"""
    blacklisted_tokens.add(get_jwt()['jti'])
    logger.info(f"MOBILE_LOGOUT: User: {get_jwt_identity()}")

    return jsonify({
        'success': True,
        'message': 'Successfully logged out'
    })

@jwt.token_in_blocklist_loader
def check_if_token_revoked(jwt_header, jwt_payload):
    """Check if JWT token is in blacklist"""
    return jwt_payload['jti'] in blacklisted_tokens

@jwt.unauthorized_loader
def missing_token(reason):
    return jsonify({
        'success': False,
        'error': 'AUTH_REQUIRED',
        'message': reason
    }), 401

@jwt.invalid_token_loader
def invalid_token(reason):
    return jsonify({
        'success': False,
        'error': 'INVALID_TOKEN',
        'message': reason
    }), 401
