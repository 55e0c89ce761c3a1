import os
import base64

import pyotp
import pytest

os.environ.setdefault('SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ.pop('FLASK_ENV', None)

from portal_auth import create_app, db
from portal_auth.models import User, Role
from portal_auth.models.user import SYSTEM_ADMIN, CUSTOMER_ADMIN, PROVIDER_GROUP_ADMIN, BASIC_USER
from helpers import PASSWORD

MFA_KEY = base64.b64encode(b'k' * 32).decode()


# ==================== Pytest Markers ====================
def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests (no database)")
    config.addinivalue_line("markers", "integration: Integration tests (database, API)")


@pytest.fixture()
def make_app(tmp_path):
    """Build an app with test defaults plus any overrides, schema created."""
    created = []

    def _make(**overrides):
        config = {
            'TESTING': True,
            'AUDIT_LOG_FILE': str(tmp_path / 'audit.log'),
            'MFA_ENCRYPTION_KEY': MFA_KEY,
            'RATE_LIMIT_LOGIN': 1000,
            'RATE_LIMIT_MFA': 1000,
            'REQUIRE_PASSWORD_CHANGE_ON_LOGIN': False,
        }
        config.update(overrides)
        app = create_app(config)
        ctx = app.app_context()
        ctx.push()
        db.create_all()
        created.append(ctx)
        return app

    yield _make

    for ctx in reversed(created):
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture()
def app(make_app):
    return make_app()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(make_app):
    """Create a user, in the most recently built app, with the given roles and
    optional enrolled TOTP secret."""

    def _make(username, roles=(BASIC_USER,), two_factor_secret=None, **fields):
        user = User(username=username, email=f'{username}@example.com', name=username.title(), **fields)
        user.set_password(PASSWORD)
        user.roles = [Role.get_or_create(name) for name in roles]
        if two_factor_secret:
            user.two_factor_secret = two_factor_secret
            user.two_factor_enabled = True
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def alice(app, make_user):
    return make_user('alice', roles=(BASIC_USER,))


@pytest.fixture()
def bob_secret():
    return pyotp.random_base32()


@pytest.fixture()
def bob(app, make_user, bob_secret):
    return make_user('bob', roles=(PROVIDER_GROUP_ADMIN,), two_factor_secret=bob_secret)


@pytest.fixture()
def carol(app, make_user):
    return make_user('carol', roles=(CUSTOMER_ADMIN,))


@pytest.fixture()
def admin(app, make_user):
    return make_user('admin', roles=(SYSTEM_ADMIN,))

