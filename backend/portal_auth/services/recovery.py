"""
Recovery code issuer.

Privileged accounts (system-admin, customer-admin) get a batch of one-time
codes when they enroll. Plaintext leaves the server exactly once, in the
issuing response; only keyed digests are stored.
"""
import logging
import secrets
from flask import current_app
from portal_auth import db
from portal_auth.models import User, RecoveryCode
from portal_auth.services.errors import InvalidUser, TwoFactorNotEnabled
from portal_auth.services.outcomes import CodesIssued, CodesSkipped, CodesFailed
from portal_auth.utils.audit_logger import audit_log
from portal_auth.utils.encryption import keyed_digest

logger = logging.getLogger(__name__)

# No 0/O/1/I to keep codes readable when written down
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 10


def generate_recovery_codes(count):
    return [
        ''.join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        for _ in range(count)
    ]


def normalize(code):
    """Codes are matched case-insensitively, ignoring spaces and dashes."""
    return ''.join(ch for ch in str(code or '').upper() if ch not in ' -')


def issue_recovery_codes(user_id, audit_context=None):
    """
    Replace a user's recovery codes with a fresh batch and return the plaintext.

    Returns an empty list for users without a privileged role. The caller
    commits.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise InvalidUser()
    if not user.has_privileged_role():
        return []

    codes = generate_recovery_codes(current_app.config['RECOVERY_CODES_COUNT'])
    RecoveryCode.replace_for_user(user.id, [keyed_digest(normalize(c)) for c in codes])

    details = {'count': len(codes)}
    if audit_context:
        details.update(audit_context)
    audit_log('MFA_RECOVERY_ISSUE', 'user', resource_id=str(user.id),
              details=details, user_id=str(user.id))
    return codes


def issue_for_enrollment(user):
    """Issue codes as part of enrollment; never lets an issuer failure abort it."""
    try:
        with db.session.begin_nested():
            codes = issue_recovery_codes(user.id, audit_context={'source': 'enrollment'})
    except Exception:
        logger.exception('Recovery code issuance failed for user_id=%s', user.id)
        return CodesFailed()
    if not codes:
        return CodesSkipped()
    return CodesIssued(codes)


def consume_recovery_code(user, code):
    """Mark a recovery code used. True only for the first successful use."""
    normalized = normalize(code)
    used = bool(normalized) and RecoveryCode.consume(user.id, keyed_digest(normalized))
    db.session.commit()

    if used:
        audit_log('MFA_RECOVERY_USE', 'user', resource_id=str(user.id),
                  details={'remaining': RecoveryCode.remaining(user.id)},
                  user_id=str(user.id))
    else:
        audit_log('MFA_RECOVERY_USE_FAILED', 'user', resource_id=str(user.id),
                  user_id=str(user.id), status='FAILURE')
    return used


def regenerate_recovery_codes(user_id):
    """Issue a replacement batch for an authenticated privileged user."""
    user = db.session.get(User, user_id)
    if not user:
        raise InvalidUser()
    if not user.has_privileged_role():
        raise InvalidUser('Recovery codes are only available to administrators')
    if not user.two_factor_enabled:
        raise TwoFactorNotEnabled()
    codes = issue_recovery_codes(user.id, audit_context={'source': 'regenerate'})
    db.session.commit()
    return codes
