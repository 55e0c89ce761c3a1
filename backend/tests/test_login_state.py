import pytest

from portal_auth.services.errors import InvalidTransition
from portal_auth.services.login_flow import LoginFlow, LoginState

pytestmark = pytest.mark.unit


def test_password_only_path_commits_from_credentials_verified():
    flow = LoginFlow().credentials_verified(user_id=7)
    assert flow.commit(two_factor_required=False) is LoginState.COMMITTED
    assert flow.history == [LoginState.ANONYMOUS, LoginState.CREDENTIALS_VERIFIED, LoginState.COMMITTED]
    assert flow.is_terminal


def test_two_factor_path_passes_through_every_state():
    flow = LoginFlow().credentials_verified(user_id=7).defer_to_two_factor().two_factor_passed()
    assert flow.commit(two_factor_required=True) is LoginState.COMMITTED
    assert flow.history == [
        LoginState.ANONYMOUS,
        LoginState.CREDENTIALS_VERIFIED,
        LoginState.PENDING_TWO_FA,
        LoginState.TWO_FA_VERIFIED,
        LoginState.COMMITTED,
    ]


def test_commit_is_refused_without_verification_when_two_factor_is_on():
    flow = LoginFlow().credentials_verified(user_id=7)
    with pytest.raises(InvalidTransition):
        flow.commit(two_factor_required=True)
    assert flow.state is LoginState.CREDENTIALS_VERIFIED


def test_commit_is_refused_while_pending():
    flow = LoginFlow.resume_pending(user_id=7)
    assert not flow.can_commit(two_factor_required=True)
    assert not flow.can_commit(two_factor_required=False)
    with pytest.raises(InvalidTransition):
        flow.commit(two_factor_required=False)


def test_forced_password_change_is_a_terminal_outcome():
    flow = LoginFlow.resume_pending(user_id=7).two_factor_passed()
    assert flow.commit(two_factor_required=True, forced_password_change=True) is LoginState.FORCED_PASSWORD_CHANGE
    assert flow.is_terminal
    with pytest.raises(InvalidTransition):
        flow.commit(two_factor_required=True)


@pytest.mark.parametrize('step', ['defer_to_two_factor', 'two_factor_passed'])
def test_anonymous_cannot_skip_credentials(step):
    with pytest.raises(InvalidTransition):
        getattr(LoginFlow(), step)()


def test_invalid_transition_is_a_server_error():
    assert InvalidTransition.status == 500
    assert InvalidTransition().to_dict()['error'] == 'invalid_transition'
