"""Email verification code model."""

import secrets
from datetime import datetime, timedelta

from . import db


def generate_code() -> str:
    """Return a random six digit code."""

    return str(100000 + secrets.randbelow(900000))


class VerificationCode(db.Model):
    """A short-lived code confirming ownership of an email address.

    Several rows may exist per email; only the newest unused one is
    considered when verifying. Used and expired rows are kept for audit.
    """

    __tablename__ = "email_verifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = db.Column(db.String(255), nullable=False, index=True)
    code = db.Column(db.String(6), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(
        db.Boolean,
        nullable=False,
        default=False,
        server_default=db.false(),
    )
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship("User", back_populates="verification_codes")

    @classmethod
    def issue(cls, user, ttl_seconds: int, now=None) -> "VerificationCode":
        """Build a fresh code for ``user``; the caller adds and commits it."""

        now = now or datetime.utcnow()
        return cls(
            user_id=user.id,
            email=user.email,
            code=generate_code(),
            expires_at=now + timedelta(seconds=ttl_seconds),
            created_at=now,
        )

    @classmethod
    def latest_active(cls, email: str):
        """Return the newest unused code for ``email``, expired or not."""

        return (
            cls.query.filter_by(email=email, used=False)
            .order_by(cls.created_at.desc(), cls.id.desc())
            .first()
        )

    def is_expired(self, now=None) -> bool:
        now = now or datetime.utcnow()
        return now > self.expires_at

    def matches(self, candidate) -> bool:
        return secrets.compare_digest(str(self.code), str(candidate or "").strip())

    def __repr__(self) -> str:
        return f"<VerificationCode id={self.id} email={self.email} used={self.used}>"
