"""
Two-factor verification of a pending login.

The session being completed is always taken from the verification channel,
never from the request body.
"""
import logging
from sqlalchemy import or_
from portal_auth import db
from portal_auth.models import User
from portal_auth.services.errors import InvalidCode, SessionExpired, TwoFactorNotEnabled
from portal_auth.services.login_flow import LoginFlow
from portal_auth.services.recovery import consume_recovery_code
from portal_auth.services.sessions import commit_session, resolve_pending
from portal_auth.utils import totp
from portal_auth.utils.audit_logger import audit_log

logger = logging.getLogger(__name__)


def claim_totp_step(user, step):
    """
    Record a TOTP step as used. A conditional UPDATE, so a code (or an older
    one) that was already accepted cannot be accepted again.
    """
    updated = User.query.filter(
        User.id == user.id,
        or_(User.totp_last_used_step.is_(None), User.totp_last_used_step < step),
    ).update({'totp_last_used_step': step}, synchronize_session=False)
    db.session.commit()
    if updated == 1:
        user.totp_last_used_step = step
        return True
    return False


def _stored_secret(user):
    try:
        return user.two_factor_secret
    except ValueError:
        logger.exception('Unable to decrypt TOTP secret for user_id=%s', user.id)
        return None


def check_second_factor(user, code=None, recovery_code=None):
    """
    Validate a TOTP code or a recovery code for an enrolled user.
    Returns the method used ('totp' or 'recovery'); raises InvalidCode.
    """
    if code:
        step = totp.match_step(_stored_secret(user), code)
        if step is not None and claim_totp_step(user, step):
            return 'totp'
        audit_log('MFA_VERIFY_FAILED', 'user', resource_id=str(user.id),
                  details={'method': 'totp', 'replayed': step is not None},
                  user_id=str(user.id), status='FAILURE')
        raise InvalidCode()

    if recovery_code:
        if consume_recovery_code(user, recovery_code):
            return 'recovery'
        raise InvalidCode('Invalid or already used recovery code')

    raise InvalidCode()


def verify_pending(channel, code=None, recovery_code=None, redirect_to=None):
    """
    Complete a login parked behind two-factor.

    On success the channel is emptied and the pending session is committed.
    On a bad code the channel is left as it was so the user can retry.
    """
    pending, session = resolve_pending(channel)

    user = db.session.get(User, session.user_id)
    if not user or not user.active:
        channel.clear()
        raise SessionExpired()
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()

    flow = LoginFlow.resume_pending(user.id)
    method = check_second_factor(user, code=code, recovery_code=recovery_code)
    flow.two_factor_passed()
    channel.clear()

    audit_log('MFA_VERIFY_SUCCESS', 'user', resource_id=str(user.id),
              details={'method': method}, user_id=str(user.id))

    return commit_session(
        flow, session, user,
        remember=pending.remember,
        redirect_to=redirect_to,
        logout_others=pending.logout_others,
    )
