"""
Signed cookie tokens and the authenticated-request decorator.

Both cookies the login flow issues are HS256 JWTs signed with SESSION_SECRETS.
The first secret signs; every configured secret is tried when reading so keys
can be rotated without logging everybody out.
"""
import time
import jwt
from functools import wraps
from flask import request, jsonify, g, current_app

AUTH_COOKIE = 'portal_session'
AUTH_AUDIENCE = 'portal-auth'

# Endpoints reachable while a re-verification is outstanding
_REVERIFY_ALLOWLIST = {
    'auth.reverify',
    'auth.logout',
    'auth.session_status',
}


def sign_token(payload: dict, audience: str, expires_in: int = None) -> str:
    """Sign a payload for one audience, optionally with an expiry in seconds."""
    secrets_list = current_app.config['SESSION_SECRETS']
    claims = dict(payload)
    claims['aud'] = audience
    claims['iat'] = int(time.time())
    if expires_in is not None:
        claims['exp'] = int(time.time()) + int(expires_in)
    return jwt.encode(claims, secrets_list[0], algorithm='HS256')


def read_token(token: str, audience: str):
    """Decode and validate a signed token. Returns None if tampered, expired or foreign."""
    if not token:
        return None
    for secret in current_app.config['SESSION_SECRETS']:
        try:
            return jwt.decode(token, secret, algorithms=['HS256'], audience=audience)
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidSignatureError:
            continue
        except jwt.InvalidTokenError:
            return None
    return None


def _set_cookie(response, name, value, expires=None, max_age=None):
    response.set_cookie(
        name,
        value,
        expires=expires,
        max_age=max_age,
        path='/',
        httponly=True,
        secure=current_app.config.get('COOKIE_SECURE', False),
        samesite='Lax',
    )


class AuthCookie:
    """The authenticated-session cookie: session id, verified marker, remember flag."""

    def __init__(self, session_id, verified_time, remember=False, expires=None):
        self.session_id = session_id
        self.verified_time = verified_time
        self.remember = remember
        self.expires = expires

    @classmethod
    def from_request(cls, req=None):
        req = req or request
        payload = read_token(req.cookies.get(AUTH_COOKIE), AUTH_AUDIENCE)
        if not payload or not payload.get('sid'):
            return None
        return cls(
            session_id=payload['sid'],
            verified_time=payload.get('vt'),
            remember=bool(payload.get('rem')),
        )

    def apply(self, response):
        token = sign_token(
            {'sid': self.session_id, 'vt': self.verified_time, 'rem': self.remember},
            AUTH_AUDIENCE,
        )
        # Persistent only when "remember me" was requested
        _set_cookie(response, AUTH_COOKIE, token, expires=self.expires if self.remember else None)
        return response

    @staticmethod
    def clear(response):
        response.delete_cookie(AUTH_COOKIE, path='/')
        return response


def login_required(f):
    """Decorator to require a live authenticated session.

    Also checks:
    - The session row still exists and has not expired
    - The user account is still active (administrative deactivation)
    - The browser does not owe a fresh two-factor verification
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        from portal_auth import db
        from portal_auth.models import AuthSession, User
        from portal_auth.services.reverify import requires_reverification
        from portal_auth.utils.verification_channel import VerificationChannel

        cookie = AuthCookie.from_request()
        if not cookie:
            return jsonify({'error': 'not_authenticated', 'message': 'Authentication required'}), 401

        session = AuthSession.find_active(cookie.session_id)
        if not session:
            return AuthCookie.clear(jsonify({'error': 'session_expired', 'message': 'Session expired'})), 401

        user = db.session.get(User, session.user_id)
        if not user or not user.active:
            AuthSession.delete_for_user(session.user_id)
            db.session.commit()
            return AuthCookie.clear(jsonify({'error': 'not_authenticated', 'message': 'Account is deactivated'})), 401

        g.user_id = user.id
        g.session_id = session.id
        g.auth_cookie = cookie

        channel = VerificationChannel.from_request()
        g.reverify_required = requires_reverification(
            now=time.time(),
            verified_time=cookie.verified_time,
            two_factor_enabled=user.two_factor_enabled,
            has_pending=channel.get() is not None,
            window_seconds=current_app.config['REVERIFY_AFTER_SECONDS'],
        )
        if g.reverify_required and request.endpoint not in _REVERIFY_ALLOWLIST:
            return jsonify({
                'error': 'reverify_required',
                'reverify_required': True,
                'message': 'Two-factor verification required',
                'next': '/auth/2fa/reverify',
            }), 403

        return f(*args, **kwargs)
    return wrapper
