"""Authentication blueprint: registration, email verification and login."""

from __future__ import annotations

from http import HTTPStatus

from email_validator import EmailNotValidError, EmailUndeliverableError, validate_email
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound, Unauthorized

from models import db
from models.user import DEFAULT_ROLE, SELF_SERVICE_ROLES, User
from models.verification_code import VerificationCode
from services.mailer import send_verification_email
from utils.identity import issue_token
from utils.request_validation import parse_json_request, to_text

auth_bp = Blueprint("auth", __name__)


def _normalize_email(raw_email: object) -> str:
    """Normalize an email string by stripping whitespace and lowering case."""
    return to_text(raw_email, "email").lower()


def _extract_role(raw_role: object) -> str:
    """Return a role open to sign-up, falling back to client for anything else.

    Admin accounts are only created by ``scripts/seed_admin.py``.
    """
    role = raw_role.strip().lower() if isinstance(raw_role, str) else ""
    return role if role in SELF_SERVICE_ROLES else DEFAULT_ROLE


def _password(payload: dict) -> str:
    """Passwords are taken as given, never stripped."""
    password = payload.get("password")
    if password is None:
        return ""
    if not isinstance(password, str):
        raise BadRequest("password must be a string")
    return password


def _check_email(email: str) -> None:
    try:
        validate_email(
            email,
            check_deliverability=current_app.config.get("EMAIL_CHECK_DELIVERABILITY", True),
        )
    except EmailUndeliverableError:
        raise BadRequest("Email domain is invalid or has no MX records")
    except EmailNotValidError:
        raise BadRequest("Invalid email format")


def _find_user(email: str) -> User | None:
    return User.query.filter(func.lower(User.email) == email).first()


def _issue_and_send_code(user: User, payload: dict) -> dict:
    """Create a verification code for ``user``, mail it and annotate ``payload``."""

    code = VerificationCode.issue(user, current_app.config["VERIFICATION_CODE_TTL"])
    db.session.add(code)
    db.session.commit()

    result = send_verification_email(
        current_app.extensions["mailer"],
        user.email,
        code.code,
        current_app.config.get("APP_ORIGIN", ""),
    )
    if not result.ok:
        payload["note"] = "email_send_failed"
    return payload


@auth_bp.route("/register", methods=["POST"])
def register() -> tuple:
    """Register an unapproved account and email it a verification code."""
    payload = parse_json_request(request)
    name = to_text(payload.get("name"), "name")
    email = _normalize_email(payload.get("email"))
    password = _password(payload)
    country = to_text(payload.get("country"), "country")

    if not name or not email or not password or not country:
        raise BadRequest("Missing required fields")
    _check_email(email)

    if _find_user(email) is not None:
        raise Conflict("Email already registered")

    user = User(
        name=name,
        email=email,
        role=_extract_role(payload.get("role")),
        country=country,
        approved=False,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("Registered user %s as %s", user.id, user.role)

    body = _issue_and_send_code(
        user,
        {
            "message": "Registered. Check your email for a verification code.",
            "user": user.to_dict(),
        },
    )
    return jsonify(body), HTTPStatus.CREATED


@auth_bp.route("/resend-verification", methods=["POST"])
def resend_verification() -> tuple:
    """Issue a fresh verification code for an unverified account."""
    payload = parse_json_request(request)
    email = _normalize_email(payload.get("email"))
    if not email:
        raise BadRequest("Missing email")

    user = _find_user(email)
    if user is None:
        raise NotFound("Email not found")
    if user.approved:
        raise BadRequest("Email already verified")

    body = _issue_and_send_code(user, {"message": "Verification code resent"})
    return jsonify(body), HTTPStatus.OK


@auth_bp.route("/verify-email", methods=["POST"])
def verify_email() -> tuple:
    """Redeem the newest unused code for an email and approve its account."""
    payload = parse_json_request(request)
    email = _normalize_email(payload.get("email"))
    code = str(payload.get("code") or "").strip()
    if not email or not code:
        raise BadRequest("Missing email or code")

    verification = VerificationCode.latest_active(email)
    if verification is None:
        raise BadRequest("No active verification found")
    if verification.is_expired():
        raise BadRequest("Code expired")
    if not verification.matches(code):
        raise BadRequest("Invalid code")

    # Consume the code only if nobody else did in the meantime.
    consumed = VerificationCode.query.filter_by(id=verification.id, used=False).update(
        {"used": True}, synchronize_session=False
    )
    if consumed != 1:
        db.session.rollback()
        raise BadRequest("No active verification found")
    User.query.filter_by(id=verification.user_id).update(
        {"approved": True}, synchronize_session=False
    )
    db.session.commit()

    return jsonify({"message": "Email verified. You may now log in."}), HTTPStatus.OK


@auth_bp.route("/login", methods=["POST"])
def login() -> tuple:
    """Authenticate an approved user and return a JWT access token."""
    payload = parse_json_request(request)
    email = _normalize_email(payload.get("email"))
    password = _password(payload)

    if not email or not password:
        raise BadRequest("Missing credentials")

    user = _find_user(email)
    if user is None:
        raise Unauthorized("Invalid account")
    if not user.approved:
        raise Forbidden("Email not verified")
    if not user.check_password(password):
        raise Unauthorized("Invalid account")

    return (
        jsonify({"access_token": issue_token(user), "user": user.to_dict()}),
        HTTPStatus.OK,
    )
