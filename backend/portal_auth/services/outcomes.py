"""
Non-error results handed back to the blueprint.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from portal_auth.services.login_flow import LoginFlow
from portal_auth.utils.auth import AuthCookie


@dataclass(frozen=True)
class ExistingSessionsWarning:
    """Confirmation checkpoint: the user already has live sessions elsewhere."""
    count: int

    @property
    def message(self):
        if self.count == 1:
            return ('There is already an active session for this account. '
                    'Logging in here will sign out the other session.')
        return (f'There are {self.count} active sessions for this account. '
                'Logging in here will sign out all other sessions.')


@dataclass
class VerifiedCredentials:
    user_id: int
    existing_sessions: int
    flow: LoginFlow


@dataclass(frozen=True)
class TwoFactorPending:
    user_id: int
    next_url: str
    setup: bool = False


@dataclass(frozen=True)
class SessionCommitted:
    session_id: str
    user_id: int
    redirect_to: str
    forced_password_change: bool
    cookie: AuthCookie
    sessions_logged_out: int = 0


@dataclass(frozen=True)
class CodesIssued:
    codes: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CodesSkipped:
    pass


@dataclass(frozen=True)
class CodesFailed:
    reason: str = 'issuance_error'


@dataclass(frozen=True)
class EnrollmentCompleted:
    user_id: int
    recovery: object
    committed: Optional[SessionCommitted] = None
    pending_session_id: Optional[str] = None

    @property
    def ack_required(self):
        return self.committed is None


@dataclass(frozen=True)
class TwoFactorEnabled:
    """Two-factor switched on from an already signed-in session."""
    user_id: int
    recovery: object
    cookie: AuthCookie
