import os
import logging
from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_compress import Compress
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_login import LoginManager
from datetime import datetime, timedelta

from utils.logging_config import setup_logging, log_request_start, log_request_end
from utils.config_validator import require_valid_config

logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
login_manager = LoginManager()
csrf = CSRFProtect()
jwt = JWTManager()
compress = Compress()

def create_app(test_config=None):
    # Create the app
    app = Flask(__name__)
    # Enforce SESSION_SECRET requirement
    app.secret_key = os.environ.get("SESSION_SECRET")
    if not app.secret_key:
        raise RuntimeError("SESSION_SECRET environment variable is required but not set")
    # x_for=1, x_proto=1, x_host=1: trust one proxy hop
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    setup_logging(app)

    production_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in production_origins if origin.strip()]

    # Fallback to localhost for development only if no production origins set
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    CORS(app, origins=allowed_origins,
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    app.config['COMPRESS_MIMETYPES'] = ['application/json', 'text/plain']
    app.config['COMPRESS_LEVEL'] = 6
    app.config['COMPRESS_MIN_SIZE'] = 500
    compress.init_app(app)

    # Configure the database - use PostgreSQL in production, SQLite for development
    database_url = os.environ.get("DATABASE_URL") or "sqlite:///fleet_backoffice.db"

    if database_url.startswith(("postgresql://", "postgres://")):
        # Ensure psycopg2 driver is specified
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)

        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "sslmode": os.environ.get("DATABASE_SSLMODE", "require"),
                "connect_timeout": 10,
                "application_name": "fleet_backoffice",
            }
        }
    else:
        app.config["SQLALCHEMY_DATABASE_URI"] = database_url
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
        }

    # Business settings that are not stored in the database
    require_valid_config()
    app.config['OVERDUE_WINDOW_DAYS'] = int(os.environ.get('OVERDUE_WINDOW_DAYS', 30))
    app.config['REFUND_THRESHOLD'] = float(os.environ.get('REFUND_THRESHOLD', 2500))
    app.config['WEEKLY_RENT_PER_DAY'] = float(os.environ.get('WEEKLY_RENT_PER_DAY', 700))

    app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET_KEY') or app.secret_key
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=12)
    app.config['JWT_ALGORITHM'] = 'HS256'

    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)
    jwt.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        from models import User
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({
            'success': False,
            'error': 'AUTH_REQUIRED',
            'message': 'Please log in to access this resource.'
        }), 401

    # Error handlers
    @app.errorhandler(CSRFError)
    def csrf_error(error):
        return jsonify({
            'success': False,
            'error': 'CSRF_FAILED',
            'message': error.description
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'error': 'NOT_FOUND',
            'message': 'Resource not found'
        }), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({
            'success': False,
            'error': 'INTERNAL_ERROR',
            'message': 'Internal server error'
        }), 500

    # Register blueprints
    from auth import auth_bp
    from mobile_auth import mobile_auth_bp
    from mobile_api import mobile_api_bp
    from admin_routes import admin_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(mobile_auth_bp)  # /api/v1/auth/*
    app.register_blueprint(mobile_api_bp)   # /api/v1/driver/*
    app.register_blueprint(admin_bp, url_prefix='/admin/api')

    app.before_request(log_request_start)
    app.after_request(log_request_end)

    with app.app_context():
        import models  # noqa: F401
        db.create_all()

        # Slab tables are read once per application start
        from services.settlement_service import SlabResolver
        app.extensions['slab_resolver'] = SlabResolver.load()

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat()}, 200

    logger.info(f"Application created with database {app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0]}")
    return app
