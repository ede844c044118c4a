"""Shared pytest fixtures for the application tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import create_app  # noqa: E402
from config import Config  # noqa: E402
from models import db  # noqa: E402
from models.order import Order  # noqa: E402
from models.user import User  # noqa: E402
from utils.identity import issue_token  # noqa: E402


class _BaseTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    JWT_SECRET_KEY = SECRET_KEY
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    RATE_LIMIT = "10000 per minute"
    EMAIL_CHECK_DELIVERABILITY = False
    SMTP_HOST = None
    MPESA_CONSUMER_KEY = None
    PAYMENT_SIMULATION_DELAY = None
    PREVIEW_WORKERS = 1


def build_app(tmp_path: Path, **overrides) -> Flask:
    """Build an application with the test config plus ``overrides``."""

    upload_dir = tmp_path / "uploads"

    class TestConfig(_BaseTestConfig):
        UPLOAD_DIR = str(upload_dir)
        PREVIEW_DIR = None

    for key, value in overrides.items():
        setattr(TestConfig, key, value)

    return create_app(TestConfig)


@pytest.fixture()
def app(tmp_path) -> Flask:
    """Create a Flask application instance for tests."""

    application = build_app(tmp_path)

    with application.app_context():
        db.create_all()

    yield application

    application.extensions["previews"].shutdown(wait=True)
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    """Return a test client for the Flask app."""

    return app.test_client()


def create_user(
    email: str,
    role: str = "client",
    *,
    password: str = "Secret123",
    name: str | None = None,
    approved: bool = True,
) -> User:
    """Persist a user; call inside an application context."""

    user = User(
        name=name or email.split("@")[0].title(),
        email=email,
        role=role,
        country="Kenya",
        approved=approved,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def create_order(client_id: int, **fields) -> Order:
    """Persist an order; call inside an application context."""

    fields.setdefault("title", "Essay on rivers")
    fields.setdefault("description", "Three pages, APA")
    order = Order(client_id=client_id, **fields)
    db.session.add(order)
    db.session.commit()
    return order


def auth_header(user: User) -> dict:
    return {"Authorization": f"Bearer {issue_token(user)}"}


@pytest.fixture()
def accounts(app: Flask) -> dict:
    """One admin, two writers and two clients, with ids and auth headers."""

    people = {
        "admin": ("admin@example.com", "admin"),
        "writer": ("writer@example.com", "writer"),
        "writer2": ("writer2@example.com", "writer"),
        "client": ("client@example.com", "client"),
        "client2": ("client2@example.com", "client"),
    }
    result = {}
    with app.app_context():
        for key, (email, role) in people.items():
            user = create_user(email, role)
            result[key] = {"id": user.id, "headers": auth_header(user), "email": email}
    return result
