"""User model definition."""

from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from . import db


USER_ROLES = ("admin", "writer", "client")
DEFAULT_ROLE = "client"
# Roles a visitor may pick when signing up.
SELF_SERVICE_ROLES = ("writer", "client")


class User(db.Model):
    """Represents a platform account: an admin, a writer or a client."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=DEFAULT_ROLE)
    country = db.Column(db.String(80), nullable=True)
    approved = db.Column(
        db.Boolean,
        nullable=False,
        default=False,
        server_default=db.false(),
    )
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    verification_codes = db.relationship(
        "VerificationCode",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def set_password(self, password: str) -> None:
        """Hash and store the password."""

        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        """Verify a password against the stored hash."""

        return check_password_hash(self.password_hash, password)

    def approve(self) -> None:
        self.approved = True

    def to_dict(self) -> dict:
        """Serialize the user without the password hash."""

        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "country": self.country,
            "approved": bool(self.approved),
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<User {self.email} role={self.role}>"
