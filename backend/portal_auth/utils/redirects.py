"""
Post-login redirect target validation.
"""
from urllib.parse import urlsplit

DEFAULT_REDIRECT = '/'


def is_safe_redirect(target) -> bool:
    """True only for same-origin relative paths such as '/customer?tab=1'."""
    if not target or not isinstance(target, str):
        return False
    target = target.strip()
    # Protocol-relative ('//evil') and backslash tricks ('/\\evil') leave the origin
    if not target.startswith('/') or target.startswith('//') or '\\' in target:
        return False
    if any(ord(ch) < 32 for ch in target):
        return False
    parts = urlsplit(target)
    return not parts.scheme and not parts.netloc


def safe_redirect(target, default=DEFAULT_REDIRECT) -> str:
    return target.strip() if is_safe_redirect(target) else default
