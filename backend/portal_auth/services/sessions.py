"""
Session issuer and committer.

issue_session() creates the session row and decides between committing right
away and parking the login behind a two-factor step. commit_session() is the
only place an authenticated cookie is produced, and it only produces one for a
session row that exists.
"""
import time
import logging
from urllib.parse import urlencode
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from portal_auth import db
from portal_auth.models import User, AuthSession
from portal_auth.services.errors import InvalidUser, SessionExpired
from portal_auth.services.outcomes import SessionCommitted, TwoFactorPending
from portal_auth.utils.audit_logger import audit_log
from portal_auth.utils.auth import AuthCookie
from portal_auth.utils.redirects import safe_redirect, is_safe_redirect
from portal_auth.utils.verification_channel import PendingVerification

logger = logging.getLogger(__name__)

CHANGE_PASSWORD_URL = '/change-password'
TWO_FACTOR_URL = '/auth/2fa'
TWO_FACTOR_SETUP_URL = '/auth/2fa/setup'


def _enforcement_applies(user):
    """Accounts without 2FA are sent to enrollment when enforcement is on.
    System admins are let through so emergency access is never locked out."""
    return (
        current_app.config.get('MFA_ENFORCEMENT', False)
        and not user.two_factor_enabled
        and not user.is_system_admin()
    )


def _two_factor_url(base, user_id, redirect_to, remember):
    params = {'user_id': user_id}
    if redirect_to and is_safe_redirect(redirect_to):
        params['redirect_to'] = redirect_to
    if remember:
        params['remember'] = 'true'
    return f'{base}?{urlencode(params)}'


def issue_session(verified, channel, remember=False, redirect_to=None, logout_others=False):
    """
    Create a session for verified credentials.

    Returns SessionCommitted when no second factor is needed, otherwise
    TwoFactorPending after storing a PendingVerification in the channel.
    """
    user = db.session.get(User, verified.user_id)
    if not user:
        raise InvalidUser()

    session = AuthSession.create_for_user(
        user.id, lifetime_days=current_app.config['SESSION_EXPIRATION_DAYS'])
    db.session.flush()

    audit_log('LOGIN_SUCCESS', 'session', resource_id=session.id,
              details={'username': user.username, 'remember': bool(remember)},
              user_id=str(user.id))

    setup = _enforcement_applies(user)
    if user.two_factor_enabled or setup:
        # The row must survive this request; sibling invalidation waits for the commit
        db.session.commit()
        verified.flow.defer_to_two_factor()
        channel.set(PendingVerification(
            pending_session_id=session.id,
            remember=bool(remember),
            logout_others=bool(logout_others),
        ))
        if setup:
            audit_log('MFA_ENFORCE_BLOCK', 'user', resource_id=str(user.id),
                      details={'reason': 'MFA_REQUIRED_FOR_NON_SYSTEM_ADMIN'},
                      user_id=str(user.id), status='INFO')
        base = TWO_FACTOR_SETUP_URL if setup else TWO_FACTOR_URL
        return TwoFactorPending(
            user_id=user.id,
            next_url=_two_factor_url(base, user.id, redirect_to, remember),
            setup=setup,
        )

    # Channel slot is single-use; a stale pending login from this browser is dropped
    if channel.get() is not None:
        channel.clear()

    return commit_session(verified.flow, session, user, remember=remember,
                          redirect_to=redirect_to, logout_others=logout_others)


def _password_change_required(user):
    if user.must_change_password:
        return True
    config = current_app.config
    if config.get('REQUIRE_PASSWORD_CHANGE_ON_LOGIN') and user.password_expired(config['PASSWORD_MAX_AGE_DAYS']):
        user.must_change_password = True
        return True
    return False


def _logout_siblings(user, session):
    """Delete the user's other sessions inside a savepoint. Failure is logged, never fatal."""
    try:
        with db.session.begin_nested():
            deleted = AuthSession.delete_for_user(user.id, exclude_id=session.id)
    except SQLAlchemyError:
        logger.exception('Failed to sign out other sessions for user_id=%s', user.id)
        return 0
    if deleted:
        audit_log('LOGOUT_OTHERS_ON_LOGIN', 'session', resource_id=session.id,
                  details={'deleted_count': deleted}, user_id=str(user.id))
    return deleted


def commit_session(flow, session, user, remember=False, redirect_to=None, logout_others=False):
    """
    Commit a login: invalidate siblings if asked, then build the authenticated
    cookie and the post-login destination.
    """
    if AuthSession.find_active(session.id) is None:
        raise SessionExpired()

    deleted = _logout_siblings(user, session) if logout_others else 0
    forced = _password_change_required(user)
    flow.commit(two_factor_required=user.two_factor_enabled or _enforcement_applies(user),
                forced_password_change=forced)
    db.session.commit()

    if forced:
        destination = CHANGE_PASSWORD_URL
    else:
        destination = safe_redirect(redirect_to, default=user.dashboard_url())

    cookie = AuthCookie(
        session_id=session.id,
        verified_time=time.time(),
        remember=bool(remember),
        expires=session.expiration_date,
    )

    audit_log('SESSION_COMMIT', 'session', resource_id=session.id,
              details={'remember': bool(remember), 'forced_password_change': forced,
                       'state': flow.state.value},
              user_id=str(user.id))

    return SessionCommitted(
        session_id=session.id,
        user_id=user.id,
        redirect_to=destination,
        forced_password_change=forced,
        cookie=cookie,
        sessions_logged_out=deleted,
    )


def resolve_pending(channel, user_id=None):
    """
    Load the pending verification and the session row it points at.

    Raises SessionExpired when the channel is empty, when the row is gone or
    expired (the dangling reference is dropped), or when it belongs to a
    different user than the one the caller is acting for.
    """
    pending = channel.get()
    if pending is None:
        raise SessionExpired()

    session = AuthSession.find_active(pending.pending_session_id)
    if session is None:
        channel.clear()
        raise SessionExpired()

    if user_id is not None and session.user_id != int(user_id):
        raise SessionExpired()

    return pending, session


def logout(cookie, channel):
    """Delete the current session row. Returns the user id it belonged to, if any."""
    channel.clear()
    if cookie is None:
        return None
    session = db.session.get(AuthSession, cookie.session_id)
    user_id = session.user_id if session else None
    if session:
        db.session.delete(session)
        db.session.commit()
    audit_log('LOGOUT', 'session', resource_id=cookie.session_id,
              user_id=str(user_id) if user_id else 'anonymous')
    return user_id
