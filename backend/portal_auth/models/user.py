"""
User and role models (the credential store consulted by the login flow).
"""
import logging
from datetime import timedelta
from werkzeug.security import generate_password_hash, check_password_hash
from portal_auth import db
from portal_auth.utils.clock import utcnow
from portal_auth.utils.encryption import encrypt_secret, decrypt_secret

logger = logging.getLogger(__name__)

SYSTEM_ADMIN = 'system-admin'
CUSTOMER_ADMIN = 'customer-admin'
PROVIDER_GROUP_ADMIN = 'provider-group-admin'
BASIC_USER = 'basic-user'

# Roles that receive one-time recovery codes at enrollment
PRIVILEGED_ROLES = frozenset({SYSTEM_ADMIN, CUSTOMER_ADMIN})

# Landing page per role, checked in order
ROLE_DASHBOARDS = [
    (SYSTEM_ADMIN, '/admin/dashboard'),
    (CUSTOMER_ADMIN, '/customer'),
    (PROVIDER_GROUP_ADMIN, '/provider'),
]

user_roles = db.Table(
    'user_roles',
    db.Column('user_id', db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
    db.Column('role_id', db.Integer, db.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
)


class Role(db.Model):
    __tablename__ = 'roles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    @classmethod
    def get_or_create(cls, name, description=None):
        role = cls.query.filter_by(name=name).first()
        if not role:
            role = cls(name=name, description=description)
            db.session.add(role)
        return role

    def __repr__(self):
        return f'<Role {self.name}>'


class User(db.Model):
    """
    Portal account. Identity and role membership are provisioned elsewhere;
    the login flow only touches the two-factor, forced-password-change and
    lockout columns.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    password_changed_at = db.Column(db.DateTime, nullable=True)
    active = db.Column(db.Boolean, default=True, nullable=False)

    # Two-factor state
    two_factor_enabled = db.Column(db.Boolean, default=False, nullable=False)
    _two_factor_secret_encrypted = db.Column('two_factor_secret', db.Text, nullable=True)
    totp_last_used_step = db.Column(db.BigInteger, nullable=True)

    must_change_password = db.Column(db.Boolean, default=False, nullable=False)

    # Lockout tracking
    failed_login_count = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    roles = db.relationship('Role', secondary=user_roles, lazy='selectin', backref='users')

    @property
    def two_factor_secret(self) -> str:
        if not self._two_factor_secret_encrypted:
            return None
        return decrypt_secret(self._two_factor_secret_encrypted)

    @two_factor_secret.setter
    def two_factor_secret(self, value: str):
        self._two_factor_secret_encrypted = encrypt_secret(value) if value else None

    @property
    def display_identifier(self) -> str:
        return self.email or self.username

    @property
    def role_names(self) -> set:
        return {role.name for role in self.roles}

    def has_privileged_role(self):
        return bool(self.role_names & PRIVILEGED_ROLES)

    def is_system_admin(self):
        return SYSTEM_ADMIN in self.role_names

    def dashboard_url(self):
        """Role-derived landing page used when no redirect target was requested."""
        names = self.role_names
        for role_name, url in ROLE_DASHBOARDS:
            if role_name in names:
                return url
        return '/'

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)
        self.password_changed_at = utcnow()

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def password_expired(self, max_age_days: int) -> bool:
        if not self.password_changed_at:
            return True
        return utcnow() - self.password_changed_at > timedelta(days=max_age_days)

    def is_locked(self, now=None) -> bool:
        now = now or utcnow()
        return self.locked_until is not None and self.locked_until > now

    def register_failed_login(self, threshold: int, cooldown_seconds: int):
        """Count a bad password; lock the account once the threshold is reached."""
        now = utcnow()
        if self.locked_until is not None and self.locked_until <= now:
            # Cooldown served, start a fresh count
            self.failed_login_count = 0
            self.locked_until = None
        self.failed_login_count = (self.failed_login_count or 0) + 1
        if self.failed_login_count >= threshold:
            self.locked_until = now + timedelta(seconds=cooldown_seconds)
            logger.info('Account locked user_id=%s failures=%s', self.id, self.failed_login_count)

    def clear_failed_logins(self):
        self.failed_login_count = 0
        self.locked_until = None

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'roles': sorted(self.role_names),
            'two_factor_enabled': self.two_factor_enabled,
            'must_change_password': self.must_change_password,
        }

    @staticmethod
    def find_by_username(username: str):
        if not username:
            return None
        return User.query.filter_by(username=username.strip().lower()).first()

    def __repr__(self):
        return f'<User {self.id}>'
