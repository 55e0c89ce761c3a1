"""
Security audit trail for the authentication flow.
Every login, two-factor and session-commit decision is written as a JSON event.
Audit writes are fire-and-forget: a failing sink never blocks authentication.
"""
import os
import logging
import structlog
from flask import request, g, has_request_context, current_app

logger = logging.getLogger(__name__)

# Never allowed into the trail, whatever a caller puts in details
SENSITIVE_KEYS = frozenset({'password', 'code', 'recovery_code', 'recovery_codes', 'secret', 'token'})


def scrub_sensitive(_, __, event_dict):
    """structlog processor dropping credential material from event details."""
    details = event_dict.get('details')
    if isinstance(details, dict):
        event_dict['details'] = {k: v for k, v in details.items() if k not in SENSITIVE_KEYS}
    return event_dict


def setup_audit_logging(app):
    """Route the 'audit' logger to AUDIT_LOG_FILE as one JSON object per line."""
    log_file = app.config.get('AUDIT_LOG_FILE', 'logs/audit.log')
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            scrub_sensitive,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    audit_logger = logging.getLogger('audit')
    audit_logger.setLevel(logging.INFO)

    # One handler per target file, even when several apps are created
    target = os.path.abspath(log_file)
    if not any(getattr(h, 'baseFilename', None) == target for h in audit_logger.handlers):
        handler = logging.FileHandler(log_file)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter('%(message)s'))
        audit_logger.addHandler(handler)

    app.extensions['audit_logger'] = structlog.get_logger('audit')


def get_audit_logger():
    return current_app.extensions.get('audit_logger') or structlog.get_logger('audit')


def _request_context():
    if not has_request_context():
        return {'client_ip': 'unknown', 'user_agent': 'unknown', 'session_id': None}
    return {
        'client_ip': request.remote_addr or 'unknown',
        'user_agent': request.headers.get('User-Agent', 'unknown'),
        'session_id': g.get('session_id'),
    }


def audit_log(action: str, resource_type: str, resource_id: str = None,
              details: dict = None, user_id: str = None, status: str = 'SUCCESS'):
    """
    Record an audit event.

    Args:
        action: What happened (LOGIN_SUCCESS, MFA_VERIFY_FAILED, SESSION_COMMIT, ...)
        resource_type: Type of resource affected (user, session)
        resource_id: ID of the specific resource (optional)
        details: Additional structured details (optional; credential fields are dropped)
        user_id: Acting user (optional, falls back to g.user_id)
        status: SUCCESS, FAILURE or INFO
    """
    try:
        if user_id is None:
            user_id = str(g.get('user_id', 'anonymous')) if has_request_context() else 'system'

        get_audit_logger().bind(**_request_context()).info(
            'audit_event',
            action=action,
            status=status,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            details=details or {},
        )
    except Exception:
        logger.warning('Audit write failed for action=%s', action, exc_info=True)
