import time

import pytest

from portal_auth import db
from portal_auth.models import AuthSession
from portal_auth.services.reverify import requires_reverification, REVERIFY_AFTER_SECONDS
from portal_auth.utils.auth import AUTH_COOKIE, AUTH_AUDIENCE, sign_token
from portal_auth.utils.verification_channel import (
    VERIFY_COOKIE, VERIFY_AUDIENCE, PendingVerification,
)

from helpers import login, totp_code, wrong_code

NOW = 1_700_000_000.0
TWO_HOURS = 2 * 60 * 60


@pytest.mark.unit
class TestRequiresReverification:
    def test_window_is_two_hours(self):
        assert REVERIFY_AFTER_SECONDS == TWO_HOURS

    def test_fresh_marker_passes(self):
        assert requires_reverification(NOW, NOW - 60, True) is False

    def test_just_inside_window_passes(self):
        assert requires_reverification(NOW, NOW - TWO_HOURS + 1, True) is False

    def test_exactly_at_boundary_requires_reverification(self):
        assert requires_reverification(NOW, NOW - TWO_HOURS, True) is True

    def test_past_window_requires_reverification(self):
        assert requires_reverification(NOW, NOW - TWO_HOURS - 1, True) is True

    def test_two_factor_disabled_never_requires(self):
        assert requires_reverification(NOW, NOW - 10 * TWO_HOURS, False) is False
        assert requires_reverification(NOW, None, False) is False

    def test_missing_marker_requires_reverification(self):
        assert requires_reverification(NOW, None, True) is True

    def test_pending_verification_forces_it_regardless_of_timer(self):
        assert requires_reverification(NOW, NOW, True, has_pending=True) is True
        assert requires_reverification(NOW, NOW, False, has_pending=True) is True

    def test_same_inputs_give_same_answer(self):
        args = (NOW, NOW - TWO_HOURS + 30, True)
        assert requires_reverification(*args) == requires_reverification(*args)

    def test_custom_window(self):
        assert requires_reverification(NOW, NOW - 61, True, window_seconds=60) is True


def _stale_cookie(client, session_id, age_seconds):
    token = sign_token({'sid': session_id, 'vt': time.time() - age_seconds, 'rem': False}, AUTH_AUDIENCE)
    client.set_cookie(AUTH_COOKIE, token)


@pytest.mark.integration
class TestReverifyEndpoint:
    def _logged_in(self, client, bob, bob_secret):
        login(client, 'bob')
        client.post('/auth/2fa', json={'code': totp_code(bob_secret)})
        return AuthSession.query.filter_by(user_id=bob.id).one().id

    def test_fresh_session_is_not_challenged(self, client, bob, bob_secret):
        self._logged_in(client, bob, bob_secret)
        body = client.get('/auth/session').get_json()
        assert body['reverify_required'] is False

    def test_stale_marker_blocks_protected_endpoints(self, client, bob, bob_secret):
        session_id = self._logged_in(client, bob, bob_secret)
        _stale_cookie(client, session_id, TWO_HOURS + 5)

        blocked = client.post('/auth/2fa/disable', json={'code': totp_code(bob_secret, offset=1)})
        assert blocked.status_code == 403
        assert blocked.get_json()['reverify_required'] is True

        # Allow-listed endpoints still answer
        status = client.get('/auth/session')
        assert status.status_code == 200
        assert status.get_json()['reverify_required'] is True

    def test_reverify_refreshes_marker(self, client, bob, bob_secret):
        session_id = self._logged_in(client, bob, bob_secret)
        _stale_cookie(client, session_id, TWO_HOURS + 5)

        bad = client.post('/auth/2fa/reverify', json={'code': wrong_code(bob_secret)})
        assert bad.status_code == 400

        ok = client.post('/auth/2fa/reverify', json={'code': totp_code(bob_secret, offset=1)})
        assert ok.status_code == 200
        assert client.get('/auth/session').get_json()['reverify_required'] is False

    def test_outstanding_pending_forces_reverification(self, app, client, alice):
        login(client, 'alice')
        assert client.get('/auth/session').get_json()['reverify_required'] is False

        stray = AuthSession.create_for_user(alice.id)
        db.session.commit()
        pending = PendingVerification(pending_session_id=stray.id, requested_at=time.time())
        token = sign_token(pending.to_claims(), VERIFY_AUDIENCE, expires_in=600)
        client.set_cookie(VERIFY_COOKIE, token)

        assert client.get('/auth/session').get_json()['reverify_required'] is True
        assert client.post('/auth/recovery-codes', json={}).status_code == 403

        # Re-verifying drops the stray pending login
        assert client.post('/auth/2fa/reverify', json={}).status_code == 200
        assert client.get('/auth/session').get_json()['reverify_required'] is False
