import os
import logging
from datetime import timedelta
from flask import Flask, request, redirect, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from dotenv import load_dotenv

load_dotenv()

db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)


def _env_flag(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name, default):
    raw = os.getenv(name)
    return int(raw) if raw else default


def create_app(config_overrides=None):
    app = Flask(__name__)

    is_production = os.getenv('FLASK_ENV') == 'production'

    # Require SECRET_KEY, no insecure fallback
    secret_key = os.getenv('SECRET_KEY')
    if not secret_key:
        raise RuntimeError('SECRET_KEY environment variable is required')
    app.config['SECRET_KEY'] = secret_key

    # Database configuration
    database_url = os.getenv('DATABASE_URL')
    if not database_url:
        raise RuntimeError('DATABASE_URL environment variable is required')

    if is_production and not database_url.startswith('postgresql'):
        raise RuntimeError(
            'Production deployments require PostgreSQL. '
            'DATABASE_URL must start with postgresql://'
        )

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    if not database_url.startswith('sqlite'):
        app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
            'pool_pre_ping': True,
            'pool_recycle': 300,
        }

    # Request size limit (64 KB is plenty for credential payloads)
    app.config['MAX_CONTENT_LENGTH'] = 64 * 1024

    # Cookie signing; comma-separated list, first entry signs, the rest verify
    session_secret = os.getenv('SESSION_SECRET') or secret_key
    secrets_list = [s.strip() for s in session_secret.split(',') if s.strip()]
    if is_production and any(len(s) < 32 for s in secrets_list):
        raise RuntimeError('SESSION_SECRET entries must be at least 32 characters in production')
    app.config['SESSION_SECRETS'] = secrets_list
    app.config['COOKIE_SECURE'] = is_production

    # Authentication policy
    app.config.update(
        MFA_ENCRYPTION_KEY=os.getenv('MFA_ENCRYPTION_KEY'),
        MFA_ENCRYPTION_KEY_PREV=os.getenv('MFA_ENCRYPTION_KEY_PREV'),
        SESSION_EXPIRATION_DAYS=_env_int('SESSION_EXPIRATION_DAYS', 30),
        VERIFY_COOKIE_MAX_AGE=_env_int('VERIFY_COOKIE_MAX_AGE', 600),
        REVERIFY_AFTER_SECONDS=_env_int('REVERIFY_AFTER_SECONDS', 2 * 60 * 60),
        MFA_ENFORCEMENT=_env_flag('MFA_ENFORCEMENT', False),
        REQUIRE_PASSWORD_CHANGE_ON_LOGIN=_env_flag('REQUIRE_PASSWORD_CHANGE_ON_LOGIN', is_production),
        PASSWORD_MAX_AGE_DAYS=_env_int('PASSWORD_MAX_AGE_DAYS', 60),
        LOCKOUT_ENABLED=_env_flag('LOCKOUT_ENABLED', True),
        LOCKOUT_THRESHOLD=_env_int('LOCKOUT_THRESHOLD', 5),
        LOCKOUT_BASE_COOLDOWN_SEC=_env_int('LOCKOUT_BASE_COOLDOWN_SEC', 300),
        RATE_LIMIT_LOGIN=_env_int('RATE_LIMIT_LOGIN', 5),
        RATE_LIMIT_MFA=_env_int('RATE_LIMIT_MFA', 5),
        TOTP_ISSUER=os.getenv('TOTP_ISSUER', 'InterEx'),
        RECOVERY_CODES_COUNT=_env_int('RECOVERY_CODES_COUNT', 10),
        AUDIT_LOG_FILE=os.getenv('AUDIT_LOG_FILE', 'logs/audit.log'),
    )

    if config_overrides:
        app.config.update(config_overrides)

    if not app.config['MFA_ENCRYPTION_KEY']:
        if is_production:
            raise RuntimeError('MFA_ENCRYPTION_KEY environment variable is required in production')
        logger.warning('MFA_ENCRYPTION_KEY not set; TOTP secrets will be stored unencrypted')

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # CORS: restricted origins, credentials allowed for the cookies
    allowed_origins = os.getenv('ALLOWED_ORIGINS', '')
    if allowed_origins:
        origins_list = [o.strip() for o in allowed_origins.split(',') if o.strip()]
    elif is_production:
        raise RuntimeError(
            'ALLOWED_ORIGINS environment variable is required in production'
        )
    else:
        # Development: allow localhost variants
        origins_list = [
            'http://localhost:*',
            'http://127.0.0.1:*',
        ]

    CORS(app, resources={r"/auth/*": {"origins": origins_list}}, supports_credentials=True)

    # Redirect HTTP to HTTPS in production
    if is_production:
        @app.before_request
        def enforce_https():
            if not request.is_secure and request.headers.get('X-Forwarded-Proto', 'http') != 'https':
                url = request.url.replace('http://', 'https://', 1)
                return redirect(url, code=301)

    # Security headers
    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'none'; frame-ancestors 'none'"
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Referrer-Policy'] = 'no-referrer'
        if is_production or request.is_secure:
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    # Validate Content-Type on POST requests (CSRF-like protection for API)
    @app.before_request
    def validate_content_type():
        if request.method in ('POST', 'PUT') and request.path != '/health':
            content_type = request.content_type or ''
            if 'application/json' not in content_type:
                return jsonify({'error': 'Content-Type must be application/json'}), 415

    # Setup audit logging
    from portal_auth.utils.audit_logger import setup_audit_logging
    setup_audit_logging(app)

    # Register blueprints
    from portal_auth.routes.auth import auth_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # CLI cleanup commands
    @app.cli.command('cleanup-expired-sessions')
    def cleanup_expired_sessions():
        """Remove session rows past their expiration date."""
        from portal_auth.models.session import AuthSession
        count = AuthSession.cleanup_expired()
        print(f'Removed {count} expired session(s).')

    @app.cli.command('cleanup-rate-limits')
    def cleanup_rate_limits():
        """Remove rate limit entries older than 10 minutes."""
        from portal_auth.models.rate_limit_entry import RateLimitEntry
        from portal_auth.utils.clock import utcnow
        count = RateLimitEntry.purge_before(utcnow() - timedelta(seconds=600))
        print(f'Removed {count} old rate limit entry/entries.')

    return app
