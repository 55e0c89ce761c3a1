"""
Input validation for the authentication endpoints.
Each validator returns a list of error strings (empty = valid).
"""
import re

_CODE_RE = re.compile(r'^\d{6}$')
_BASE32_RE = re.compile(r'^[A-Z2-7]{16,64}=*$')
_RECOVERY_RE = re.compile(r'^[A-Za-z0-9\- ]{8,24}$')


def validate_login(data: dict) -> list:
    errors = []

    username = data.get('username')
    if username is not None and not isinstance(username, str):
        errors.append('Username must be a string')
    elif not username or not username.strip():
        errors.append('Username is required')
    elif len(username) > 150:
        errors.append('Username must be 150 characters or fewer')

    password = data.get('password')
    if password is not None and not isinstance(password, str):
        errors.append('Password must be a string')
    elif not password:
        errors.append('Password is required')
    elif len(password) > 1024:
        errors.append('Password is too long')

    for flag in ('remember', 'confirm_logout_others'):
        if flag in data and not isinstance(data[flag], bool):
            errors.append(f'{flag} must be a boolean')

    redirect_to = data.get('redirect_to')
    if redirect_to is not None and not isinstance(redirect_to, str):
        errors.append('redirect_to must be a string')

    return errors


def validate_code_submission(data: dict) -> list:
    """A TOTP code or a recovery code must be supplied."""
    errors = []
    code = data.get('code')
    recovery_code = data.get('recovery_code')

    if not code and not recovery_code:
        errors.append('A verification code or recovery code is required')
        return errors

    if code and not _CODE_RE.match(str(code).strip()):
        errors.append('Verification code must be 6 digits')
    if recovery_code and not _RECOVERY_RE.match(str(recovery_code).strip()):
        errors.append('Recovery code is malformed')
    return errors


def validate_enrollment(data: dict, require_user_id=True) -> list:
    errors = []

    if require_user_id:
        try:
            int(data.get('user_id'))
        except (TypeError, ValueError):
            errors.append('user_id must be an integer')

    secret = data.get('secret')
    if not secret or not _BASE32_RE.match(str(secret)):
        errors.append('secret must be a base32 string')

    code = data.get('code')
    if not code or not _CODE_RE.match(str(code).strip()):
        errors.append('Verification code must be 6 digits')

    return errors


def validate_acknowledgment(data: dict) -> list:
    errors = []
    pending_session_id = data.get('pending_session_id')
    if not pending_session_id or not isinstance(pending_session_id, str):
        errors.append('pending_session_id is required')
    if data.get('acknowledged') is not True:
        errors.append('Recovery codes must be acknowledged')
    return errors
