"""Orders blueprint: creation, assignment, status workflow and delivery."""

from __future__ import annotations

import os
from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import BadRequest, Forbidden, HTTPException

from models import db
from models.order import STATUS_PENDING, Order
from services import orders as lifecycle
from storage import LocalStorage, build_unique_filename
from utils.identity import Principal, require_principal, require_role
from utils.request_validation import parse_json_request, parse_payload, to_amount, to_int, to_text

orders_bp = Blueprint("orders", __name__)

MAX_UPLOAD_SIZE_DEFAULT = 20 * 1024 * 1024  # 20 MB
EDITABLE_FIELDS = ("title", "description", "client_id", "amount", "submission_date", "expected_ready")
TEXT_FIELDS = ("title", "description", "submission_date", "expected_ready")


def _uploads() -> LocalStorage:
    return LocalStorage(current_app.config["UPLOAD_DIR"])


def _uploaded_file(field: str) -> FileStorage | None:
    file = request.files.get(field)
    if not isinstance(file, FileStorage) or not (file.filename or "").strip():
        return None

    max_size = int(current_app.config.get("MAX_UPLOAD_SIZE", MAX_UPLOAD_SIZE_DEFAULT))
    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    if size > max_size:
        raise BadRequest(f"File exceeds the maximum upload size of {max_size // (1024 * 1024)}MB.")
    return file


def _store(file: FileStorage) -> str:
    """Save an upload under a unique name and return its public reference."""

    stored_name = _uploads().save(file, build_unique_filename(file.filename or "upload"))
    return f"/uploads/{stored_name}"


def _can_view(principal: Principal, order: Order) -> bool:
    return principal.is_admin or principal.id in {order.client_id, order.writer_id}


@orders_bp.route("", methods=["POST"])
@jwt_required()
def create_order():
    """Create an order; the brief is a description, a ``guide`` file, or both."""

    principal = require_principal()
    payload = parse_payload(request)
    guide = _uploaded_file("guide")

    raw_client_id = payload.get("client_id")
    client_id = to_int(raw_client_id)
    if raw_client_id not in (None, "") and client_id is None:
        raise BadRequest("client_id is invalid")

    guide_path = _store(guide) if guide is not None else None
    try:
        order = lifecycle.create_order(
            principal,
            title=payload.get("title"),
            description=payload.get("description"),
            client_id=client_id,
            guide_path=guide_path,
            submission_date=payload.get("submission_date"),
            expected_ready=payload.get("expected_ready"),
        )
    except HTTPException:
        if guide_path:
            _uploads().path_for(guide_path).unlink(missing_ok=True)
        raise
    return (
        jsonify({"message": "Order submitted successfully", "order": order.to_dict()}),
        HTTPStatus.CREATED,
    )


@orders_bp.route("", methods=["GET"])
@jwt_required()
def list_orders():
    """All orders with client and writer names, newest first."""

    require_role("admin")
    orders = Order.query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify([order.to_dict(include_names=True) for order in orders])


@orders_bp.route("/mine", methods=["GET"])
@jwt_required()
def list_my_orders():
    principal = require_principal()
    query = Order.query
    if principal.is_writer:
        query = query.filter(Order.writer_id == principal.id)
    else:
        query = query.filter(Order.client_id == principal.id)
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    return jsonify([order.to_dict() for order in orders])


@orders_bp.route("/unassigned", methods=["GET"])
@jwt_required()
def list_unassigned_orders():
    require_role("writer", "admin")
    orders = (
        Order.query.filter(Order.writer_id.is_(None), Order.status == STATUS_PENDING)
        .order_by(Order.created_at.asc(), Order.id.asc())
        .all()
    )
    return jsonify([order.to_dict() for order in orders])


@orders_bp.route("/assigned/<int:writer_id>", methods=["GET"])
@jwt_required()
def list_assigned_orders(writer_id: int):
    principal = require_role("writer", "admin")
    if principal.is_writer and principal.id != writer_id:
        raise Forbidden("Writers can only list their own orders.")
    orders = (
        Order.query.filter_by(writer_id=writer_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return jsonify([order.to_dict() for order in orders])


@orders_bp.route("/<int:order_id>", methods=["GET"])
@jwt_required()
def get_order(order_id: int):
    principal = require_principal()
    order = lifecycle.get_order_or_404(order_id)
    if not _can_view(principal, order):
        raise Forbidden("Access denied")
    return jsonify(order.to_dict(include_names=True))


@orders_bp.route("/<int:order_id>/assign", methods=["POST"])
@jwt_required()
def assign_order(order_id: int):
    """Admin assigns a pending order to a writer."""

    require_role("admin")
    payload = parse_json_request(request)
    writer_id = to_int(payload.get("writerId", payload.get("writer_id")))
    if writer_id is None:
        raise BadRequest("Missing or invalid writer ID")

    order = lifecycle.assign_order(order_id, writer_id)
    return jsonify({"message": "Order assigned successfully", "order": order.to_dict()})


@orders_bp.route("/<int:order_id>/claim", methods=["POST"])
@jwt_required()
def claim_order(order_id: int):
    """A writer takes a pending, unassigned order for themselves."""

    principal = require_principal()
    order = lifecycle.claim_order(order_id, principal)
    return jsonify({"message": "Order claimed successfully", "order": order.to_dict()})


@orders_bp.route("/<int:order_id>/status", methods=["POST"])
@jwt_required()
def update_status(order_id: int):
    principal = require_role("writer", "admin")
    payload = parse_json_request(request)
    status = payload.get("status")
    if not status:
        raise BadRequest("Missing status")

    order = lifecycle.update_status(principal, order_id, status)
    return jsonify({"message": "Status updated successfully", "order": order.to_dict()})


@orders_bp.route("/<int:order_id>/submit", methods=["POST"])
@jwt_required()
def submit_work(order_id: int):
    """Writer uploads the finished work; a PDF preview is prepared in the background."""

    principal = require_role("writer", "admin")
    lifecycle.check_submitter(principal, lifecycle.get_order_or_404(order_id))
    file = _uploaded_file("file")
    if file is None:
        raise BadRequest("No file uploaded")

    order = lifecycle.submit_work(principal, order_id, _store(file))
    current_app.extensions["previews"].schedule(order.id, order.submission_filename)
    return jsonify(
        {
            "message": "Work submitted successfully",
            "filePath": order.submission_file,
            "order": order.to_dict(),
        }
    )


@orders_bp.route("/<int:order_id>/deliver", methods=["POST"])
@jwt_required()
def deliver_order(order_id: int):
    require_role("admin")
    order = lifecycle.deliver_order(order_id)
    return jsonify({"message": "Work delivered to client successfully", "order": order.to_dict()})


@orders_bp.route("/<int:order_id>/payment-status", methods=["GET"])
@jwt_required()
def payment_status(order_id: int):
    principal = require_principal()
    order = lifecycle.get_order_or_404(order_id)
    if not _can_view(principal, order):
        raise Forbidden("Access denied")
    return jsonify(order.payment_summary())


@orders_bp.route("/<int:order_id>", methods=["PUT"])
@jwt_required()
def edit_order(order_id: int):
    """Admin edit of descriptive fields.

    Writer, status and payment columns only change through their own endpoints.
    """

    require_role("admin")
    order = lifecycle.get_order_or_404(order_id)
    payload = parse_json_request(request)

    updates = {key: payload[key] for key in EDITABLE_FIELDS if key in payload}
    if not updates:
        raise BadRequest("No valid fields to update")
    for key in TEXT_FIELDS:
        if key in updates:
            updates[key] = to_text(updates[key], key)
    if "title" in updates and not updates["title"]:
        raise BadRequest("title must not be empty")
    if "client_id" in updates:
        updates["client_id"] = to_int(updates["client_id"])
        if updates["client_id"] is None:
            raise BadRequest("client_id is invalid")
    if "amount" in updates:
        updates["amount"] = to_amount(updates["amount"])

    for key, value in updates.items():
        setattr(order, key, value)
    db.session.commit()
    return jsonify({"message": "Order updated", "order": order.to_dict()})


@orders_bp.route("/<int:order_id>", methods=["DELETE"])
@jwt_required()
def delete_order(order_id: int):
    admin = require_role("admin")
    order = lifecycle.get_order_or_404(order_id)
    db.session.delete(order)
    db.session.commit()
    current_app.extensions["previews"].discard(order_id)
    current_app.logger.info("Order %s deleted by admin %s", order_id, admin.id)
    return jsonify({"message": "Order deleted successfully"})
