"""
Authentication API routes: login, two-factor enrollment and verification,
re-verification, recovery codes and logout.
"""
import logging
from flask import Blueprint, request, jsonify, g
from portal_auth import db
from portal_auth.models import User
from portal_auth.services import (
    AuthFlowError,
    verify_credentials, issue_session, logout as end_session,
    begin_enrollment, complete_enrollment, acknowledge_enrollment, disable_two_factor,
    verify_pending, reverify as refresh_verification, regenerate_recovery_codes,
    start_enrollment, enable_two_factor, reset_two_factor,
)
from portal_auth.services.outcomes import (
    CodesFailed, CodesIssued, ExistingSessionsWarning, TwoFactorPending,
)
from portal_auth.utils.auth import AuthCookie, login_required
from portal_auth.utils.rate_limiter import rate_limit, login_limiter, mfa_verify_limiter
from portal_auth.utils.validators import (
    validate_login, validate_code_submission, validate_enrollment, validate_acknowledgment,
)
from portal_auth.utils.verification_channel import VerificationChannel

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


@auth_bp.before_request
def load_verification_channel():
    g.verify_channel = VerificationChannel.from_request()


def _channel():
    return g.verify_channel


def _respond(payload, status=200, cookie=None):
    response = jsonify(payload)
    response.status_code = status
    if cookie is not None:
        cookie.apply(response)
    _channel().apply(response)
    return response


def _committed(committed, **extra):
    payload = {
        'status': 'password_change_required' if committed.forced_password_change else 'authenticated',
        'user_id': committed.user_id,
        'redirect_to': committed.redirect_to,
        'sessions_logged_out': committed.sessions_logged_out,
    }
    payload.update(extra)
    return _respond(payload, cookie=committed.cookie)


def _enrollment_secret(enrollment):
    return {
        'secret': enrollment.secret,
        'provisioning_uri': enrollment.provisioning_uri,
        'qr_code_svg': enrollment.qr_code_svg,
    }


@auth_bp.errorhandler(AuthFlowError)
def handle_auth_error(error):
    db.session.rollback()
    return _respond(error.to_dict(), error.status)


# ---------- Login ----------

@auth_bp.route('/login', methods=['POST'])
@rate_limit(login_limiter)
def login():
    """Username/password login. Commits, warns about other sessions, or defers to 2FA."""
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_login(data)
    if errors:
        return jsonify({'error': errors}), 400

    result = verify_credentials(
        data['username'], data['password'],
        confirm_logout_others=data.get('confirm_logout_others', False),
    )
    if isinstance(result, ExistingSessionsWarning):
        return _respond({
            'status': 'confirm_logout_others',
            'existing_sessions': result.count,
            'message': result.message,
        })

    # Past the checkpoint either nothing else is live or the user agreed to sign it out
    outcome = issue_session(
        result, _channel(),
        remember=data.get('remember', False),
        redirect_to=data.get('redirect_to'),
        logout_others=True,
    )
    if isinstance(outcome, TwoFactorPending):
        return _respond({
            'status': 'two_factor_setup_required' if outcome.setup else 'two_factor_required',
            'user_id': outcome.user_id,
            'next': outcome.next_url,
        })
    return _committed(outcome)


# ---------- Enrollment ----------

@auth_bp.route('/2fa/setup', methods=['GET'])
def setup_two_factor():
    """Start enrollment for the browser holding a pending login."""
    enrollment = begin_enrollment(request.args.get('user_id'), _channel())
    return _respond(_enrollment_secret(enrollment))


@auth_bp.route('/2fa/setup', methods=['POST'])
@rate_limit(mfa_verify_limiter)
def complete_two_factor_setup():
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_enrollment(data)
    if errors:
        return jsonify({'error': errors}), 400

    result = complete_enrollment(
        data['user_id'], data['secret'], str(data['code']).strip(), _channel(),
        redirect_to=data.get('redirect_to'),
    )

    if result.ack_required:
        # Plaintext codes appear in this response and nowhere else
        return _respond({
            'status': 'recovery_codes_issued',
            'user_id': result.user_id,
            'recovery_codes': result.recovery.codes,
            'ack_required': True,
            'pending_session_id': result.pending_session_id,
        })

    recovery_status = 'failed' if isinstance(result.recovery, CodesFailed) else 'skipped'
    return _committed(result.committed, recovery_codes_status=recovery_status)


@auth_bp.route('/2fa/setup/ack', methods=['POST'])
def acknowledge_recovery_codes():
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_acknowledgment(data)
    if errors:
        return jsonify({'error': errors}), 400

    committed = acknowledge_enrollment(
        data['pending_session_id'], _channel(), redirect_to=data.get('redirect_to'),
    )
    return _committed(committed)


@auth_bp.route('/2fa/enroll', methods=['GET'])
@login_required
def start_profile_enrollment():
    """Start enrollment for the signed-in user."""
    return _respond(_enrollment_secret(start_enrollment(g.user_id)))


@auth_bp.route('/2fa/enroll', methods=['POST'])
@login_required
@rate_limit(mfa_verify_limiter)
def finish_profile_enrollment():
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_enrollment(data, require_user_id=False)
    if errors:
        return jsonify({'error': errors}), 400

    result = enable_two_factor(g.user_id, g.auth_cookie, data['secret'], str(data['code']).strip())

    payload = {'status': 'two_factor_enabled', 'user_id': result.user_id}
    if isinstance(result.recovery, CodesIssued):
        # Plaintext codes appear in this response and nowhere else
        payload['recovery_codes'] = result.recovery.codes
        payload['recovery_codes_status'] = 'issued'
    else:
        payload['recovery_codes_status'] = 'failed' if isinstance(result.recovery, CodesFailed) else 'skipped'
    return _respond(payload, cookie=result.cookie)


@auth_bp.route('/2fa/reset', methods=['POST'])
@login_required
@rate_limit(mfa_verify_limiter)
def reset():
    """System-admin self-reset. Returns the replacement secret to confirm via /2fa/enroll."""
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    if not data.get('code'):
        return jsonify({'error': ['A verification code is required']}), 400
    errors = validate_code_submission({'code': data['code']})
    if errors:
        return jsonify({'error': errors}), 400

    enrollment = reset_two_factor(g.user_id, str(data['code']).strip())
    return _respond({'status': 'two_factor_reset', **_enrollment_secret(enrollment)})


# ---------- Verification ----------

@auth_bp.route('/2fa', methods=['POST'])
@rate_limit(mfa_verify_limiter)
def verify_two_factor():
    """Verify a TOTP or recovery code for the pending login."""
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_code_submission(data)
    if errors:
        return jsonify({'error': errors}), 400

    committed = verify_pending(
        _channel(),
        code=data.get('code'),
        recovery_code=data.get('recovery_code'),
        redirect_to=data.get('redirect_to'),
    )
    return _committed(committed)


@auth_bp.route('/2fa/reverify', methods=['POST'])
@login_required
@rate_limit(mfa_verify_limiter)
def reverify():
    """Refresh the verified marker of the current session."""
    data = request.get_json(silent=True) or {}
    if data.get('code') or data.get('recovery_code'):
        errors = validate_code_submission(data)
        if errors:
            return jsonify({'error': errors}), 400

    cookie = refresh_verification(
        g.user_id, g.auth_cookie, _channel(),
        code=data.get('code'),
        recovery_code=data.get('recovery_code'),
    )
    return _respond({'status': 'verified'}, cookie=cookie)


@auth_bp.route('/2fa/disable', methods=['POST'])
@login_required
@rate_limit(mfa_verify_limiter)
def disable():
    data = request.get_json()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    errors = validate_code_submission(data)
    if errors:
        return jsonify({'error': errors}), 400

    deleted = disable_two_factor(
        g.user_id, g.session_id,
        code=data.get('code'),
        recovery_code=data.get('recovery_code'),
    )
    return _respond({'status': 'two_factor_disabled', 'sessions_logged_out': deleted})


# ---------- Recovery codes ----------

@auth_bp.route('/recovery-codes', methods=['POST'])
@login_required
def regenerate_codes():
    """Replace the caller's recovery codes. The new batch is shown once."""
    codes = regenerate_recovery_codes(g.user_id)
    return _respond({'status': 'recovery_codes_issued', 'recovery_codes': codes})


# ---------- Session ----------

@auth_bp.route('/session', methods=['GET'])
@login_required
def session_status():
    user = db.session.get(User, g.user_id)
    return _respond({
        'user_id': g.user_id,
        'session_id': g.session_id,
        'reverify_required': g.reverify_required,
        'user': user.to_dict(),
    })


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    end_session(g.auth_cookie, _channel())
    response = _respond({'status': 'logged_out'})
    return AuthCookie.clear(response)
