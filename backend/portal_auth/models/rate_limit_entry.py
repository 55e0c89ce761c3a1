"""
Attempt log behind the authentication rate limits.
"""
from portal_auth import db
from portal_auth.utils.clock import utcnow


class RateLimitEntry(db.Model):
    """One row per attempt against a limited endpoint, keyed by client or account."""
    __tablename__ = 'rate_limit_entries'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), nullable=False, index=True)
    endpoint = db.Column(db.String(64), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_rate_limit_key_endpoint_ts', 'key', 'endpoint', 'timestamp'),
    )

    @classmethod
    def count_since(cls, endpoint, key, since):
        return cls.query.filter(
            cls.endpoint == endpoint,
            cls.key == key,
            cls.timestamp > since,
        ).count()

    @classmethod
    def purge_before(cls, cutoff):
        """Delete attempts older than cutoff. Returns the number removed."""
        count = cls.query.filter(cls.timestamp < cutoff).delete(synchronize_session=False)
        db.session.commit()
        return count

    def __repr__(self):
        return f'<RateLimitEntry {self.endpoint} {self.key}>'
