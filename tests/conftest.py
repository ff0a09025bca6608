"""
Pytest configuration and fixtures for the fleet back-office
"""

import os

import pytest

# Set test environment before importing app
os.environ.update({
    'FLASK_ENV': 'testing',
    'TESTING': 'true',
    'SESSION_SECRET': 'test_secret_key_for_testing_only_0123456789',
    'JWT_SECRET_KEY': 'test_jwt_secret_for_testing_only',
    'DATABASE_URL': 'sqlite:///:memory:',
    'DISABLE_FILE_LOGGING': 'true',
    'LOG_LEVEL': 'WARNING',
})

from flask_jwt_extended import create_access_token

from app import create_app, db
from tests.factories import (UserFactory, AdminUserFactory, VehicleFactory,
                             FleetReportFactory, AdjustmentFactory)


@pytest.fixture(scope='function')
def app():
    """Create application for testing"""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'WTF_CSRF_ENABLED': False,  # Disable CSRF for testing
    })

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Database session for testing"""
    yield db.session
    db.session.rollback()


# Fixtures for test data
@pytest.fixture
def admin_user(db_session):
    """Create admin user"""
    return AdminUserFactory()


@pytest.fixture
def driver_user(db_session):
    """Driver on the morning shift with a vehicle"""
    driver = UserFactory()
    VehicleFactory(vehicle_number=driver.vehicle_number)
    return driver


@pytest.fixture
def admin_client(client, admin_user):
    """Client with authenticated admin"""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(admin_user.id)
        sess['_fresh'] = True
    return client


@pytest.fixture
def driver_headers(app, driver_user):
    """Bearer token headers for the driver app"""
    token = create_access_token(identity=driver_user.username,
                                additional_claims={'role': 'driver', 'user_id': driver_user.id})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def make_report():
    """Factory for fleet reports of a given driver"""
    def _make(driver, **kwargs):
        return FleetReportFactory(driver=driver, **kwargs)
    return _make


@pytest.fixture
def make_adjustment():
    """Factory for adjustments of a given driver"""
    def _make(driver, **kwargs):
        return AdjustmentFactory(driver=driver, **kwargs)
    return _make
