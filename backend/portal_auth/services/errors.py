"""
Error taxonomy of the login flow.

Every AuthFlowError carries a stable machine code and an HTTP status; the auth
blueprint renders them as JSON so none escape a request uncaught.
"""


class AuthFlowError(Exception):
    code = 'auth_error'
    status = 400
    message = 'Authentication failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


class InvalidCredentials(AuthFlowError):
    """Unknown user, wrong password, inactive or locked account. Deliberately one message."""
    code = 'invalid_credentials'
    status = 401
    message = 'Invalid username or password'


class InvalidUser(AuthFlowError):
    code = 'invalid_user'
    status = 400
    message = 'Invalid user'


class InvalidCode(AuthFlowError):
    code = 'invalid_code'
    status = 400
    message = 'Invalid verification code'


class SessionExpired(AuthFlowError):
    """Pending verification missing, forged, or pointing at a session row that is gone."""
    code = 'session_expired'
    status = 401
    message = 'Session expired. Please log in again.'


class TwoFactorAlreadyEnabled(AuthFlowError):
    code = 'two_factor_already_enabled'
    status = 409
    message = 'Two-factor authentication is already enabled'


class TwoFactorNotEnabled(AuthFlowError):
    code = 'two_factor_not_enabled'
    status = 409
    message = 'Two-factor authentication is not configured'


class InvalidTransition(AuthFlowError):
    """A login step was attempted from a state that does not allow it."""
    code = 'invalid_transition'
    status = 500
    message = 'Login flow is in an unexpected state'
