"""
Credential verification: username/password check, lockout, and the
existing-session confirmation checkpoint. Never creates a session.
"""
import logging
from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash
from portal_auth import db
from portal_auth.models import User, AuthSession
from portal_auth.services.errors import InvalidCredentials
from portal_auth.services.login_flow import LoginFlow
from portal_auth.services.outcomes import ExistingSessionsWarning, VerifiedCredentials
from portal_auth.utils.audit_logger import audit_log

logger = logging.getLogger(__name__)

_dummy_hash = None


def _burn_password_check(password):
    """Spend the same hashing work for unknown users as for real ones."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = generate_password_hash('not-a-real-password')
    check_password_hash(_dummy_hash, password or '')


def _fail(username, reason, user=None):
    audit_log('LOGIN_FAILURE', 'user',
              resource_id=str(user.id) if user else None,
              details={'username': username, 'reason': reason},
              user_id=str(user.id) if user else 'anonymous',
              status='FAILURE')
    raise InvalidCredentials()


def verify_credentials(username, password, confirm_logout_others=False):
    """
    Check a username/password pair.

    Returns ExistingSessionsWarning when the account already has live sessions
    and the caller has not confirmed, otherwise VerifiedCredentials carrying a
    LoginFlow in the CREDENTIALS_VERIFIED state. Raises InvalidCredentials for
    every kind of rejection.
    """
    config = current_app.config
    username = (username or '').strip().lower()
    user = User.find_by_username(username)

    if not user or not user.active or not user.password_hash:
        _burn_password_check(password)
        _fail(username, 'INVALID_CREDENTIALS')

    lockout_enabled = config['LOCKOUT_ENABLED']
    if lockout_enabled and user.is_locked():
        _burn_password_check(password)
        _fail(username, 'LOCKED', user)

    if not user.check_password(password):
        if lockout_enabled:
            user.register_failed_login(
                threshold=config['LOCKOUT_THRESHOLD'],
                cooldown_seconds=config['LOCKOUT_BASE_COOLDOWN_SEC'],
            )
            db.session.commit()
            if user.is_locked():
                audit_log('LOGIN_LOCKED', 'user', resource_id=str(user.id),
                          details={'failed_login_count': user.failed_login_count},
                          user_id=str(user.id), status='FAILURE')
        _fail(username, 'INVALID_CREDENTIALS', user)

    if user.failed_login_count or user.locked_until:
        user.clear_failed_logins()
        db.session.commit()

    active_count = AuthSession.count_active(user.id)
    if active_count > 0 and not confirm_logout_others:
        audit_log('EXISTING_SESSIONS_WARNING', 'user', resource_id=str(user.id),
                  details={'active_sessions': active_count},
                  user_id=str(user.id), status='INFO')
        return ExistingSessionsWarning(active_count)

    return VerifiedCredentials(
        user_id=user.id,
        existing_sessions=active_count,
        flow=LoginFlow().credentials_verified(user.id),
    )
