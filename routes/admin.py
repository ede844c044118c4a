"""Admin account management."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import jwt_required
from werkzeug.exceptions import NotFound

from models import db
from models.user import User
from models.verification_code import VerificationCode
from utils.identity import require_role

admin_bp = Blueprint("admin", __name__)


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@admin_bp.route("/pending-users", methods=["GET"])
@jwt_required()
def list_pending_users():
    """Accounts still waiting for email verification or approval."""

    require_role("admin")
    users = User.query.filter_by(approved=False).order_by(User.id.desc()).all()
    return jsonify([user.to_dict() for user in users])


@admin_bp.route("/users", methods=["GET"])
@jwt_required()
def list_users():
    require_role("admin")
    users = User.query.filter_by(approved=True).order_by(User.id.asc()).all()
    return jsonify([user.to_dict() for user in users])


@admin_bp.route("/users/<int:user_id>/approve", methods=["POST"])
@jwt_required()
def approve_user(user_id: int):
    """Approve an account and retire its outstanding verification codes."""

    admin = require_role("admin")
    user = _get_user_or_404(user_id)
    if user.approved:
        return jsonify({"message": "User already approved"})

    user.approve()
    VerificationCode.query.filter_by(user_id=user.id, used=False).update(
        {"used": True}, synchronize_session=False
    )
    db.session.commit()
    current_app.logger.info("User %s approved by admin %s", user.id, admin.id)
    return jsonify({"message": "User approved successfully"})


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@jwt_required()
def delete_user(user_id: int):
    """Delete an account; its verification codes go with it."""

    admin = require_role("admin")
    user = _get_user_or_404(user_id)
    db.session.delete(user)
    db.session.commit()
    current_app.logger.info("User %s deleted by admin %s", user_id, admin.id)
    return jsonify({"message": "User deleted successfully"})
