"""
Ephemeral verification channel: a signed, single-slot cookie that links a
created-but-uncommitted session to the browser finishing two-factor login.

The session issuer is the only producer and the two-factor enrollment and
verification steps are the only consumers. Writing always replaces the slot,
so a browser never holds more than one pending verification.
"""
import time
from dataclasses import dataclass
from typing import Optional
from flask import request, current_app
from portal_auth.utils.auth import sign_token, read_token, _set_cookie

VERIFY_COOKIE = 'portal_verify'
VERIFY_AUDIENCE = 'portal-verify'


@dataclass(frozen=True)
class PendingVerification:
    pending_session_id: str
    remember: bool = False
    requested_at: float = 0.0
    logout_others: bool = False
    # Set once an enrollment code has been proven; gates the acknowledgment step
    verified_at: Optional[float] = None

    def to_claims(self):
        return {
            'psid': self.pending_session_id,
            'rem': self.remember,
            'req': self.requested_at,
            'lo': self.logout_others,
            'va': self.verified_at,
        }

    @classmethod
    def from_claims(cls, claims):
        if not claims.get('psid'):
            return None
        return cls(
            pending_session_id=claims['psid'],
            remember=bool(claims.get('rem')),
            requested_at=claims.get('req') or 0.0,
            logout_others=bool(claims.get('lo')),
            verified_at=claims.get('va'),
        )


class VerificationChannel:
    """Request-scoped view of the verification cookie.

    get/set/clear only change the in-memory slot; apply(response) emits the
    matching Set-Cookie header.
    """

    _UNCHANGED = object()

    def __init__(self, pending=None):
        self._pending = pending
        self._outgoing = self._UNCHANGED

    @classmethod
    def from_request(cls, req=None):
        req = req or request
        claims = read_token(req.cookies.get(VERIFY_COOKIE), VERIFY_AUDIENCE)
        return cls(PendingVerification.from_claims(claims) if claims else None)

    def get(self) -> Optional[PendingVerification]:
        return self._pending

    def set(self, pending: PendingVerification):
        if not pending.requested_at:
            pending = PendingVerification(
                pending_session_id=pending.pending_session_id,
                remember=pending.remember,
                requested_at=time.time(),
                logout_others=pending.logout_others,
                verified_at=pending.verified_at,
            )
        self._pending = pending
        self._outgoing = pending

    def clear(self):
        self._pending = None
        self._outgoing = None

    @property
    def changed(self):
        return self._outgoing is not self._UNCHANGED

    def apply(self, response):
        if not self.changed:
            return response
        if self._outgoing is None:
            response.delete_cookie(VERIFY_COOKIE, path='/')
            return response
        max_age = current_app.config['VERIFY_COOKIE_MAX_AGE']
        token = sign_token(self._outgoing.to_claims(), VERIFY_AUDIENCE, expires_in=max_age)
        _set_cookie(response, VERIFY_COOKIE, token, max_age=max_age)
        return response
