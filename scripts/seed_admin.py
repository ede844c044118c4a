"""Seed an approved administrator account.

Credentials come from ``ADMIN_EMAIL`` / ``ADMIN_PASSWORD`` when set.
"""

import os

from app import create_app
from models import db
from models.user import User

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@prowriters.local").strip().lower()
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "AdminPass123")
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")


def main() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
        admin = User.query.filter_by(email=ADMIN_EMAIL).first()
        if admin is None:
            admin = User(name=ADMIN_NAME, email=ADMIN_EMAIL, country="Kenya")
            db.session.add(admin)
            action = "created"
        else:
            action = "updated"
        admin.role = "admin"
        admin.approve()
        admin.set_password(ADMIN_PASSWORD)
        db.session.commit()
        app.logger.info("Admin user %s: %s", action, ADMIN_EMAIL)
        print(f"Admin user {action}: {ADMIN_EMAIL}")


if __name__ == "__main__":
    main()
