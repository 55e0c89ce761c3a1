"""
Durable login sessions, one row per logged-in browser.
"""
import secrets
from datetime import timedelta
from portal_auth import db
from portal_auth.utils.clock import utcnow


class AuthSession(db.Model):
    """A session row; the authenticated cookie only carries its id."""
    __tablename__ = 'sessions'

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    expiration_date = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', backref=db.backref('sessions', lazy='dynamic', passive_deletes=True))

    @classmethod
    def create_for_user(cls, user_id, lifetime_days=30):
        """Add a new session row to the current transaction (caller commits)."""
        session = cls(
            id=secrets.token_hex(16),
            user_id=user_id,
            expiration_date=utcnow() + timedelta(days=lifetime_days),
        )
        db.session.add(session)
        return session

    @classmethod
    def find_active(cls, session_id):
        """Return the session if it exists and has not expired."""
        if not session_id:
            return None
        return cls.query.filter(
            cls.id == session_id,
            cls.expiration_date > utcnow(),
        ).first()

    @classmethod
    def count_active(cls, user_id):
        return cls.query.filter(
            cls.user_id == user_id,
            cls.expiration_date > utcnow(),
        ).count()

    @classmethod
    def delete_for_user(cls, user_id, exclude_id=None):
        """Delete a user's sessions, optionally keeping one. Returns the count."""
        query = cls.query.filter(cls.user_id == user_id)
        if exclude_id:
            query = query.filter(cls.id != exclude_id)
        return query.delete(synchronize_session=False)

    @staticmethod
    def cleanup_expired():
        """Delete session rows that have already expired."""
        count = AuthSession.query.filter(
            AuthSession.expiration_date < utcnow()
        ).delete()
        db.session.commit()
        return count

    @property
    def is_expired(self):
        return utcnow() >= self.expiration_date

    def __repr__(self):
        return f'<AuthSession user={self.user_id}>'
