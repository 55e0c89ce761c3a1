from .encryption import encrypt_secret, decrypt_secret, keyed_digest
from .audit_logger import audit_log
from .auth import AuthCookie, login_required
from .redirects import safe_redirect
from .validators import validate_login, validate_code_submission, validate_enrollment, validate_acknowledgment
from .rate_limiter import rate_limit, login_limiter, mfa_verify_limiter
