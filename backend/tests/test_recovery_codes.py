import pyotp
import pytest

from portal_auth.models import RecoveryCode
from portal_auth.models.user import SYSTEM_ADMIN
from portal_auth.services.errors import InvalidUser, TwoFactorNotEnabled
from portal_auth.services.recovery import (
    CODE_ALPHABET, CODE_LENGTH, consume_recovery_code, issue_recovery_codes, normalize,
    regenerate_recovery_codes,
)

from helpers import login, totp_code

pytestmark = pytest.mark.integration


def test_non_privileged_role_gets_nothing(alice):
    assert issue_recovery_codes(alice.id) == []
    assert RecoveryCode.query.count() == 0


def test_provider_group_admin_is_not_privileged(bob):
    assert issue_recovery_codes(bob.id) == []


def test_privileged_role_gets_a_full_batch(carol):
    codes = issue_recovery_codes(carol.id)
    assert len(codes) == 10
    for code in codes:
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)
    assert RecoveryCode.remaining(carol.id) == 10


def test_batch_size_is_configurable(make_app, make_user):
    make_app(RECOVERY_CODES_COUNT=4)
    user = make_user('root', roles=(SYSTEM_ADMIN,))
    assert len(issue_recovery_codes(user.id)) == 4


def test_unknown_user_is_invalid(app):
    with pytest.raises(InvalidUser):
        issue_recovery_codes(424242)


def test_each_code_works_exactly_once(carol):
    code = issue_recovery_codes(carol.id)[0]
    assert consume_recovery_code(carol, code) is True
    assert consume_recovery_code(carol, code) is False
    assert RecoveryCode.remaining(carol.id) == 9


def test_codes_are_matched_loosely(carol):
    code = issue_recovery_codes(carol.id)[0]
    spaced = f'{code[:5].lower()}-{code[5:]}'
    assert normalize(spaced) == code
    assert consume_recovery_code(carol, spaced) is True


def test_another_users_code_is_rejected(carol, admin):
    code = issue_recovery_codes(carol.id)[0]
    assert consume_recovery_code(admin, code) is False
    assert RecoveryCode.remaining(carol.id) == 10


def test_reissue_replaces_previous_batch(carol):
    old = issue_recovery_codes(carol.id)
    issue_recovery_codes(carol.id)
    assert RecoveryCode.remaining(carol.id) == 10
    assert consume_recovery_code(carol, old[0]) is False


class TestRegenerateEndpoint:
    def test_requires_authentication(self, client):
        assert client.post('/auth/recovery-codes', json={}).status_code == 401

    def test_requires_two_factor(self, carol):
        with pytest.raises(TwoFactorNotEnabled):
            regenerate_recovery_codes(carol.id)

    def test_basic_user_is_refused(self, client, make_user):
        secret = pyotp.random_base32()
        make_user('paul', two_factor_secret=secret)
        login(client, 'paul')
        client.post('/auth/2fa', json={'code': totp_code(secret)})

        resp = client.post('/auth/recovery-codes', json={})
        assert resp.status_code == 400
        assert resp.get_json()['error'] == 'invalid_user'

    def test_privileged_user_gets_new_codes(self, client, make_user):
        secret = pyotp.random_base32()
        user = make_user('root', roles=(SYSTEM_ADMIN,), two_factor_secret=secret)
        login(client, 'root')
        client.post('/auth/2fa', json={'code': totp_code(secret)})

        resp = client.post('/auth/recovery-codes', json={})
        assert resp.status_code == 200
        codes = resp.get_json()['recovery_codes']
        assert len(codes) == 10
        assert RecoveryCode.remaining(user.id) == 10
