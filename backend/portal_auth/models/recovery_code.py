"""
One-time MFA recovery codes. Only HMAC digests are stored.
"""
from portal_auth import db
from portal_auth.utils.clock import utcnow


class RecoveryCode(db.Model):
    __tablename__ = 'recovery_codes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    code_hash = db.Column(db.String(64), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    used_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index('ix_recovery_codes_user_used', 'user_id', 'used_at'),
    )

    @classmethod
    def replace_for_user(cls, user_id, code_hashes):
        """Drop every existing code for the user and add the new digests."""
        cls.query.filter_by(user_id=user_id).delete()
        for code_hash in code_hashes:
            db.session.add(cls(user_id=user_id, code_hash=code_hash))

    @classmethod
    def consume(cls, user_id, code_hash):
        """
        Mark a matching unused code as used in a single conditional UPDATE.
        Returns True only for the request that flipped used_at.
        """
        updated = cls.query.filter(
            cls.user_id == user_id,
            cls.code_hash == code_hash,
            cls.used_at.is_(None),
        ).update({'used_at': utcnow()}, synchronize_session=False)
        return updated == 1

    @classmethod
    def remaining(cls, user_id):
        return cls.query.filter(cls.user_id == user_id, cls.used_at.is_(None)).count()

    def __repr__(self):
        return f'<RecoveryCode user={self.user_id} used={self.used_at is not None}>'
