"""
The login state machine.

    ANONYMOUS -> CREDENTIALS_VERIFIED -> PENDING_TWO_FA -> TWO_FA_VERIFIED
                         |                                     |
                         +------> COMMITTED / FORCED_PASSWORD_CHANGE <+

A commit straight from CREDENTIALS_VERIFIED is only allowed when the user has
no second factor to present, so nothing reaches COMMITTED without either a
verified two-factor step or two-factor being off for the account.
"""
import enum

from portal_auth.services.errors import InvalidTransition


class LoginState(enum.Enum):
    ANONYMOUS = 'anonymous'
    CREDENTIALS_VERIFIED = 'credentials_verified'
    PENDING_TWO_FA = 'pending_two_fa'
    TWO_FA_VERIFIED = 'two_fa_verified'
    FORCED_PASSWORD_CHANGE = 'forced_password_change'
    COMMITTED = 'committed'


TERMINAL_STATES = frozenset({LoginState.COMMITTED, LoginState.FORCED_PASSWORD_CHANGE})

TRANSITIONS = {
    LoginState.ANONYMOUS: {LoginState.CREDENTIALS_VERIFIED},
    LoginState.CREDENTIALS_VERIFIED: {
        LoginState.PENDING_TWO_FA,
        LoginState.COMMITTED,
        LoginState.FORCED_PASSWORD_CHANGE,
    },
    LoginState.PENDING_TWO_FA: {LoginState.TWO_FA_VERIFIED},
    LoginState.TWO_FA_VERIFIED: {LoginState.COMMITTED, LoginState.FORCED_PASSWORD_CHANGE},
    LoginState.COMMITTED: set(),
    LoginState.FORCED_PASSWORD_CHANGE: set(),
}


class LoginFlow:
    """Tracks one browser's progress through a login attempt."""

    def __init__(self, user_id=None, state=LoginState.ANONYMOUS):
        self.user_id = user_id
        self.state = state
        self.history = [state]

    @classmethod
    def resume_pending(cls, user_id):
        """Rebuild the flow for a browser holding a pending verification."""
        return cls(user_id=user_id, state=LoginState.PENDING_TWO_FA)

    def _move(self, target):
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f'Cannot move login flow from {self.state.value} to {target.value}'
            )
        self.state = target
        self.history.append(target)

    def credentials_verified(self, user_id):
        self._move(LoginState.CREDENTIALS_VERIFIED)
        self.user_id = user_id
        return self

    def defer_to_two_factor(self):
        self._move(LoginState.PENDING_TWO_FA)
        return self

    def two_factor_passed(self):
        self._move(LoginState.TWO_FA_VERIFIED)
        return self

    def can_commit(self, two_factor_required):
        if self.state == LoginState.TWO_FA_VERIFIED:
            return True
        return self.state == LoginState.CREDENTIALS_VERIFIED and not two_factor_required

    def commit(self, two_factor_required, forced_password_change=False):
        if not self.can_commit(two_factor_required):
            raise InvalidTransition(
                f'Cannot commit a session from {self.state.value}'
                + (' without two-factor verification' if two_factor_required else '')
            )
        target = LoginState.FORCED_PASSWORD_CHANGE if forced_password_change else LoginState.COMMITTED
        self._move(target)
        return target

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    def __repr__(self):
        return f'<LoginFlow user={self.user_id} state={self.state.value}>'
