import pytest

from portal_auth.utils.redirects import is_safe_redirect, safe_redirect

pytestmark = pytest.mark.unit


@pytest.mark.parametrize('target', [
    '/',
    '/customer',
    '/provider/letters?id=4#top',
])
def test_relative_paths_are_safe(target):
    assert is_safe_redirect(target)


@pytest.mark.parametrize('target', [
    None,
    '',
    'customer',
    'https://evil.example/',
    'http:/evil.example',
    '//evil.example/path',
    '/\\evil.example',
    'javascript:alert(1)',
    '/ok\r\nSet-Cookie: x=1',
    42,
])
def test_external_or_malformed_targets_are_rejected(target):
    assert not is_safe_redirect(target)


def test_safe_redirect_falls_back_to_default():
    assert safe_redirect('https://evil.example', default='/customer') == '/customer'
    assert safe_redirect(None) == '/'
    assert safe_redirect('/reports') == '/reports'
