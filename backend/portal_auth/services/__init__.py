from .errors import (
    AuthFlowError, InvalidCredentials, InvalidUser, InvalidCode, SessionExpired,
    TwoFactorAlreadyEnabled, TwoFactorNotEnabled, InvalidTransition,
)
from .login_flow import LoginFlow, LoginState
from .credentials import verify_credentials
from .sessions import issue_session, commit_session, resolve_pending, logout
from .recovery import issue_recovery_codes, consume_recovery_code, regenerate_recovery_codes
from .verification import check_second_factor, verify_pending
from .enrollment import (
    begin_enrollment, complete_enrollment, acknowledge_enrollment, disable_two_factor,
    start_enrollment, enable_two_factor, reset_two_factor,
)
from .reverify import requires_reverification, reverify
