"""Shared helpers for the auth test-suite."""
import time

import pyotp

from portal_auth.models import AuthSession
from portal_auth.utils.auth import AUTH_COOKIE
from portal_auth.utils.verification_channel import VERIFY_COOKIE

PASSWORD = 'correct horse battery staple'


def login(client, username, password=PASSWORD, **extra):
    return client.post('/auth/login', json={'username': username, 'password': password, **extra})


def totp_code(secret, offset=0):
    """The code for the time step `offset` steps away from the current one."""
    totp = pyotp.TOTP(secret)
    return totp.at(int(time.time()) + offset * totp.interval)


def cookie_value(client, name):
    cookie = client.get_cookie(name)
    return cookie.value if cookie else None


def has_auth_cookie(client):
    return cookie_value(client, AUTH_COOKIE) is not None


def has_pending(client):
    return cookie_value(client, VERIFY_COOKIE) is not None


def session_count(user_id):
    return AuthSession.query.filter_by(user_id=user_id).count()


def wrong_code(secret):
    """A six-digit code outside the accepted window for this secret."""
    totp = pyotp.TOTP(secret)
    return next(c for c in ('000000', '111111', '222222', '333333') if not totp.verify(c, valid_window=1))
