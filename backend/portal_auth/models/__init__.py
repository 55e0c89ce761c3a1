from .user import User, Role, user_roles, PRIVILEGED_ROLES
from .session import AuthSession
from .recovery_code import RecoveryCode
from .rate_limit_entry import RateLimitEntry
