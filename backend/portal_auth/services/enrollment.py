"""
Two-factor enrollment.

A login parked behind a pending verification enrolls in three steps:

1. begin_enrollment() hands out a fresh secret and QR code. Nothing is stored.
2. complete_enrollment() proves a code against that secret, persists it, and
   either commits the session right away or, when recovery codes were issued,
   returns them and waits for the user to acknowledge them.
3. acknowledge_enrollment() commits the session once the codes were seen.

A user who is already signed in uses start_enrollment() and
enable_two_factor() instead. A system admin can swap their own secret with
reset_two_factor() followed by enable_two_factor().
"""
import time
import logging
from flask import current_app
from portal_auth import db
from portal_auth.models import User, AuthSession, RecoveryCode
from portal_auth.services.errors import (
    InvalidCode, InvalidUser, SessionExpired, TwoFactorAlreadyEnabled, TwoFactorNotEnabled,
)
from portal_auth.services.login_flow import LoginFlow
from portal_auth.services.outcomes import CodesIssued, EnrollmentCompleted, TwoFactorEnabled
from portal_auth.services.recovery import issue_for_enrollment
from portal_auth.services.sessions import commit_session, resolve_pending
from portal_auth.services.verification import check_second_factor
from portal_auth.utils import totp
from portal_auth.utils.audit_logger import audit_log
from portal_auth.utils.auth import AuthCookie
from portal_auth.utils.verification_channel import PendingVerification

logger = logging.getLogger(__name__)


def _load_user(user_id):
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if not user or not user.active:
        raise InvalidUser()
    return user


def _new_secret(user, source):
    audit_log('MFA_ENROLL_START', 'user', resource_id=str(user.id),
              details={'source': source}, user_id=str(user.id), status='INFO')
    return totp.generate_secret(user.display_identifier, current_app.config['TOTP_ISSUER'])


def _prove_secret(user, secret, code):
    """Time step the code matched under the candidate secret; raises InvalidCode."""
    step = totp.match_step(secret, code)
    if step is None:
        audit_log('MFA_ENROLL_FAILED', 'user', resource_id=str(user.id),
                  user_id=str(user.id), status='FAILURE')
        raise InvalidCode()
    return step


def _activate(user, secret, step, source):
    """Persist the proven secret and issue recovery codes. Commits."""
    user.two_factor_secret = secret
    user.two_factor_enabled = True
    user.totp_last_used_step = step
    db.session.flush()

    recovery = issue_for_enrollment(user)
    db.session.commit()

    audit_log('MFA_ENROLL_SUCCESS', 'user', resource_id=str(user.id),
              details={'recovery_codes': type(recovery).__name__, 'source': source},
              user_id=str(user.id))
    return recovery


def _clear_two_factor(user):
    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.totp_last_used_step = None
    RecoveryCode.query.filter_by(user_id=user.id).delete()


def begin_enrollment(user_id, channel):
    """Return an EnrollmentSecret for the user finishing a pending login."""
    user = _load_user(user_id)
    resolve_pending(channel, user.id)
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()
    return _new_secret(user, 'login')


def complete_enrollment(user_id, secret, code, channel, redirect_to=None):
    """
    Persist a proven secret and move the pending login forward.

    The pending verification is checked before anything is written, so a
    browser without one cannot enable two-factor on somebody's account.
    """
    user = _load_user(user_id)
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()

    step = _prove_secret(user, secret, code)
    pending, session = resolve_pending(channel, user.id)
    recovery = _activate(user, secret, step, 'login')

    if isinstance(recovery, CodesIssued):
        channel.set(PendingVerification(
            pending_session_id=session.id,
            remember=pending.remember,
            requested_at=pending.requested_at,
            logout_others=pending.logout_others,
            verified_at=time.time(),
        ))
        return EnrollmentCompleted(user_id=user.id, recovery=recovery,
                                   pending_session_id=session.id)

    flow = LoginFlow.resume_pending(user.id).two_factor_passed()
    channel.clear()
    committed = commit_session(
        flow, session, user,
        remember=pending.remember,
        redirect_to=redirect_to,
        logout_others=pending.logout_others,
    )
    return EnrollmentCompleted(user_id=user.id, recovery=recovery, committed=committed)


def acknowledge_enrollment(pending_session_id, channel, redirect_to=None):
    """Commit the session held back while recovery codes were displayed."""
    pending, session = resolve_pending(channel)
    if pending.pending_session_id != pending_session_id or pending.verified_at is None:
        raise SessionExpired()

    user = db.session.get(User, session.user_id)
    if not user or not user.two_factor_enabled:
        raise SessionExpired()

    flow = LoginFlow.resume_pending(user.id).two_factor_passed()
    channel.clear()

    audit_log('MFA_RECOVERY_ACK', 'user', resource_id=str(user.id), user_id=str(user.id))

    return commit_session(
        flow, session, user,
        remember=pending.remember,
        redirect_to=redirect_to,
        logout_others=pending.logout_others,
    )


def disable_two_factor(user_id, session_id, code=None, recovery_code=None):
    """
    Turn two-factor off after proving a current factor. Clears the secret and
    recovery codes and signs out every other session of the account.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise InvalidUser()
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()

    check_second_factor(user, code=code, recovery_code=recovery_code)

    _clear_two_factor(user)
    deleted = AuthSession.delete_for_user(user.id, exclude_id=session_id)
    db.session.commit()

    audit_log('MFA_DISABLED', 'user', resource_id=str(user.id),
              details={'sessions_deleted': deleted}, user_id=str(user.id))
    return deleted


def start_enrollment(user_id):
    """Fresh secret for a signed-in user turning two-factor on. Nothing is stored."""
    user = _load_user(user_id)
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()
    return _new_secret(user, 'profile')


def enable_two_factor(user_id, cookie, secret, code):
    """
    Turn two-factor on for the signed-in user once a code proves the secret.

    Recovery codes are issued as at login enrollment and appear only in the
    returned outcome. The session's verified marker is refreshed.
    """
    user = _load_user(user_id)
    if user.two_factor_enabled:
        raise TwoFactorAlreadyEnabled()

    session = AuthSession.find_active(cookie.session_id)
    if session is None or session.user_id != user.id:
        raise SessionExpired()

    step = _prove_secret(user, secret, code)
    recovery = _activate(user, secret, step, 'profile')

    return TwoFactorEnabled(
        user_id=user.id,
        recovery=recovery,
        cookie=AuthCookie(
            session_id=session.id,
            verified_time=time.time(),
            remember=cookie.remember,
            expires=session.expiration_date,
        ),
    )


def reset_two_factor(user_id, code):
    """
    System-admin self-reset: after a valid current code, drop the old secret
    and recovery codes and hand out a new secret. enable_two_factor() finishes
    the reset. Other users go through disable_two_factor().
    """
    user = _load_user(user_id)
    if not user.is_system_admin():
        raise InvalidUser()
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()

    check_second_factor(user, code=code)

    _clear_two_factor(user)
    db.session.commit()

    audit_log('MFA_RESET', 'user', resource_id=str(user.id),
              details={'self_service': True}, user_id=str(user.id))
    return _new_secret(user, 'reset')
