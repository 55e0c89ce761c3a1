"""
Periodic two-factor re-verification.
"""
import time
from portal_auth import db
from portal_auth.models import User, AuthSession
from portal_auth.services.errors import InvalidUser, SessionExpired, TwoFactorNotEnabled
from portal_auth.services.verification import check_second_factor
from portal_auth.utils.audit_logger import audit_log
from portal_auth.utils.auth import AuthCookie

REVERIFY_AFTER_SECONDS = 2 * 60 * 60


def requires_reverification(now, verified_time, two_factor_enabled, has_pending=False,
                            window_seconds=REVERIFY_AFTER_SECONDS):
    """
    Decide whether an authenticated browser must present a fresh second factor.

    A browser with an outstanding pending verification always must. Accounts
    without two-factor never do. Otherwise a missing marker, or one at least
    window_seconds old, requires it.
    """
    if has_pending:
        return True
    if not two_factor_enabled:
        return False
    if verified_time is None:
        return True
    return now - verified_time >= window_seconds


def reverify(user_id, cookie, channel, code=None, recovery_code=None):
    """
    Refresh the verified marker of the current session.
    Returns the AuthCookie to write back.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise InvalidUser()

    session = AuthSession.find_active(cookie.session_id)
    if session is None or session.user_id != user.id:
        raise SessionExpired()

    if not user.two_factor_enabled:
        # Nothing to prove; only a stale pending login can have brought us here
        method = None
    else:
        method = check_second_factor(user, code=code, recovery_code=recovery_code)

    if channel.get() is not None:
        channel.clear()

    audit_log('MFA_REVERIFY_SUCCESS', 'session', resource_id=session.id,
              details={'method': method}, user_id=str(user.id))

    return AuthCookie(
        session_id=session.id,
        verified_time=time.time(),
        remember=cookie.remember,
        expires=session.expiration_date,
    )
