"""
Database-backed rate limits for the login and two-factor endpoints.

Attempts are counted per client address and, where the request names one,
per account or pending login, so spreading guesses over many addresses does
not buy an attacker more tries at one account.
"""
from datetime import timedelta
from functools import wraps
from flask import request, jsonify, current_app
from portal_auth.utils.clock import utcnow


def client_key(req):
    return [f'ip:{req.remote_addr or "unknown"}']


def login_keys(req):
    keys = client_key(req)
    data = req.get_json(silent=True) or {}
    username = data.get('username')
    if isinstance(username, str) and username.strip():
        keys.append(f'user:{username.strip().lower()[:150]}')
    return keys


def pending_login_keys(req):
    from portal_auth.utils.verification_channel import VerificationChannel
    keys = client_key(req)
    pending = VerificationChannel.from_request(req).get()
    if pending is not None:
        keys.append(f'pending:{pending.pending_session_id}')
    return keys


class DBRateLimiter:
    """Sliding-window limiter persisted in rate_limit_entries.

    limit_setting names the config key holding the allowed attempts per window.
    """

    def __init__(self, endpoint_name, limit_setting, window_seconds, key_func=client_key):
        self.endpoint_name = endpoint_name
        self.limit_setting = limit_setting
        self.window_seconds = window_seconds
        self.key_func = key_func

    @property
    def limit(self):
        return int(current_app.config[self.limit_setting])

    def is_limited(self, key, now=None):
        from portal_auth.models.rate_limit_entry import RateLimitEntry
        since = (now or utcnow()) - timedelta(seconds=self.window_seconds)
        return RateLimitEntry.count_since(self.endpoint_name, key, since) >= self.limit

    def record(self, keys):
        from portal_auth import db
        from portal_auth.models.rate_limit_entry import RateLimitEntry
        now = utcnow()
        for key in keys:
            db.session.add(RateLimitEntry(key=key, endpoint=self.endpoint_name, timestamp=now))
        db.session.commit()

    def allow(self, req):
        """Record an attempt unless one of the request's keys is already over the limit."""
        keys = self.key_func(req)
        if any(self.is_limited(key) for key in keys):
            return False
        self.record(keys)
        return True


login_limiter = DBRateLimiter('login', 'RATE_LIMIT_LOGIN', window_seconds=60, key_func=login_keys)

mfa_verify_limiter = DBRateLimiter('mfa_verify', 'RATE_LIMIT_MFA', window_seconds=600,
                                   key_func=pending_login_keys)


def rate_limit(limiter):
    """Reject the request with 429 once the limiter's window is exhausted."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if not limiter.allow(request):
                response = jsonify({'error': 'rate_limited', 'message': 'Too many attempts. Try again later.'})
                response.headers['Retry-After'] = str(limiter.window_seconds)
                return response, 429
            return f(*args, **kwargs)
        return wrapper
    return decorator
