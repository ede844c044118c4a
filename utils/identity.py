"""Bearer credential to principal resolution."""

from __future__ import annotations

from dataclasses import dataclass

from flask_jwt_extended import create_access_token, get_jwt_identity, verify_jwt_in_request
from werkzeug.exceptions import Forbidden, Unauthorized

from models import db
from models.user import User

from .request_validation import to_int


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    id: int
    role: str
    email: str
    name: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_writer(self) -> bool:
        return self.role == "writer"

    @property
    def is_client(self) -> bool:
        return self.role == "client"

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(id=user.id, role=user.role, email=user.email, name=user.name)


def issue_token(user: User) -> str:
    """Mint an access token naming the user id, with role and email as claims."""

    return create_access_token(
        identity=str(user.id),
        additional_claims={"role": user.role, "email": user.email},
    )


def current_principal(optional: bool = False) -> Principal | None:
    """Resolve the request's bearer credential into a Principal.

    The role comes from the stored user, not from the token claims, so a
    demoted or deleted account loses access immediately. With ``optional``
    an absent credential yields None; a present but invalid one still fails.
    """

    verify_jwt_in_request(optional=optional)
    user_id = to_int(get_jwt_identity())
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None:
        return None
    return Principal.from_user(user)


def require_principal() -> Principal:
    principal = current_principal()
    if principal is None:
        raise Unauthorized("Unauthorized")
    return principal


def require_role(*roles: str) -> Principal:
    principal = require_principal()
    if principal.role not in roles:
        if roles == ("admin",):
            raise Forbidden("Admin privileges required.")
        raise Forbidden("{} privileges required.".format(" or ".join(r.capitalize() for r in roles)))
    return principal
