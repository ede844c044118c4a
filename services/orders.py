"""Order lifecycle transitions.

Every transition that other requests may race with is written as a single
conditional UPDATE so the check and the write happen in one statement:

* claim / assign only touch an order that is still unassigned and pending,
  and only when the writer holds no other order in progress (backed by the
  ``uq_orders_active_writer`` partial unique index);
* payment updates are targeted at the payment columns of one order and never
  move a paid order backwards.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased
from werkzeug.exceptions import BadRequest, Conflict, Forbidden, NotFound

from models import db
from models.order import (
    ORDER_STATUSES,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    STATUS_DELIVERED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_SUBMITTED,
    Order,
)
from models.user import User
from utils.identity import Principal
from utils.request_validation import to_text

logger = logging.getLogger(__name__)


def get_order_or_404(order_id: int | None) -> Order:
    order = db.session.get(Order, order_id) if order_id is not None else None
    if order is None:
        raise NotFound("Order not found")
    return order


def _reload(order_id: int) -> Order:
    return db.session.get(Order, order_id, populate_existing=True)


def _writer_has_active_order(writer_id: int) -> bool:
    query = select(Order.id).where(
        Order.writer_id == writer_id, Order.status == STATUS_IN_PROGRESS
    )
    return db.session.execute(query.limit(1)).first() is not None


def create_order(
    principal: Principal,
    *,
    title: str | None,
    description: str | None,
    client_id: int | None,
    guide_path: str | None = None,
    submission_date: str | None = None,
    expected_ready: str | None = None,
) -> Order:
    """Create an order in ``Pending Assignment``, unassigned and unpaid."""

    title = to_text(title, "title")
    description = to_text(description, "description")
    submission_date = to_text(submission_date, "submission_date")
    expected_ready = to_text(expected_ready, "expected_ready")

    if principal.is_client:
        if client_id is not None and client_id != principal.id:
            raise Forbidden("Clients can only create orders for themselves.")
        client_id = principal.id
    elif not principal.is_admin:
        raise Forbidden("Only clients or admins can create orders.")

    if not title or client_id is None or (not description and not guide_path):
        raise BadRequest(
            "Missing required fields: title, client_id and (description or guide file)"
        )
    client = db.session.get(User, client_id)
    if client is None or client.role != "client":
        raise BadRequest("client_id does not reference a client account")

    order = Order(
        title=title,
        description=description,
        client_id=client_id,
        client_guide=guide_path,
        submission_date=submission_date or None,
        expected_ready=expected_ready or None,
    )
    db.session.add(order)
    db.session.commit()
    logger.info("Order %s created for client %s", order.id, client_id)
    return order


def _take_order(order_id: int, writer_id: int, busy_message: str) -> Order:
    """Atomically hand a pending, unassigned order to a writer."""

    active = aliased(Order)
    writer_busy = (
        select(active.id)
        .where(active.writer_id == writer_id, active.status == STATUS_IN_PROGRESS)
        .exists()
    )
    statement = (
        update(Order)
        .where(
            Order.id == order_id,
            Order.writer_id.is_(None),
            Order.status == STATUS_PENDING,
            ~writer_busy,
        )
        .values(writer_id=writer_id, status=STATUS_IN_PROGRESS)
        .execution_options(synchronize_session=False)
    )

    try:
        taken = db.session.execute(statement).rowcount == 1
        db.session.commit()
    except IntegrityError:
        # Another transaction gave this writer an active order first.
        db.session.rollback()
        raise Conflict(busy_message)

    if taken:
        logger.info("Order %s taken by writer %s", order_id, writer_id)
        return _reload(order_id)

    if _writer_has_active_order(writer_id):
        raise Conflict(busy_message)
    order = _reload(order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.writer_id:
        raise Conflict("Order already assigned")
    raise Conflict("Order not available for assignment")


def assign_order(order_id: int, writer_id: int) -> Order:
    """Admin allocation of an order to a specific writer."""

    writer = db.session.get(User, writer_id)
    if writer is None or writer.role != "writer":
        raise NotFound("Writer not found")
    return _take_order(order_id, writer_id, "Writer already has an active order")


def claim_order(order_id: int, principal: Principal) -> Order:
    """Writer self-service acquisition of an unassigned order."""

    if not principal.is_writer:
        raise Forbidden("Writer privileges required")
    return _take_order(order_id, principal.id, "You already have an active order")


def update_status(principal: Principal, order_id: int, status: str | None) -> Order:
    """Overwrite an order's status.

    Any known status may follow any other; no transition graph is enforced.
    Moving an order back to ``Pending Assignment`` releases its writer.
    """

    if status not in ORDER_STATUSES:
        raise BadRequest("status must be one of: {}".format(", ".join(ORDER_STATUSES)))
    order = get_order_or_404(order_id)
    if not principal.is_admin and not (principal.is_writer and order.writer_id == principal.id):
        raise Forbidden("Only the assigned writer or an admin can update this order.")

    values = {"status": status}
    if status == STATUS_PENDING:
        values["writer_id"] = None
    statement = (
        update(Order)
        .where(Order.id == order_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        db.session.execute(statement)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Writer already has an active order")

    logger.info("Order %s status set to %r by user %s", order_id, status, principal.id)
    return _reload(order_id)


def check_submitter(principal: Principal, order: Order) -> None:
    if not principal.is_admin and not (principal.is_writer and order.writer_id == principal.id):
        raise Forbidden("Only the assigned writer can submit work for this order.")


def submit_work(principal: Principal, order_id: int, stored_path: str | None) -> Order:
    """Record the writer's delivered file and mark the order ``Submitted``."""

    order = get_order_or_404(order_id)
    check_submitter(principal, order)
    if not stored_path:
        raise BadRequest("No file uploaded")

    order.submission_file = stored_path
    order.status = STATUS_SUBMITTED
    db.session.commit()
    logger.info("Work submitted for order %s: %s", order.id, stored_path)
    return order


def deliver_order(order_id: int) -> Order:
    """Release the submitted work to the client; payment is not required."""

    order = get_order_or_404(order_id)
    order.status = STATUS_DELIVERED
    db.session.commit()
    logger.info("Order %s delivered to client", order_id)
    return order


def begin_payment(order_id: int, reference: str, amount: float) -> Order:
    """Mark an order's payment pending under a new gateway reference."""

    get_order_or_404(order_id)
    statement = (
        update(Order)
        .where(Order.id == order_id, Order.payment_status != PAYMENT_PAID)
        .values(payment_status=PAYMENT_PENDING, payment_ref=reference, amount=amount)
        .execution_options(synchronize_session=False)
    )
    if db.session.execute(statement).rowcount != 1:
        db.session.rollback()
        raise Conflict("Order already paid")
    db.session.commit()
    return _reload(order_id)


def confirm_payment(order_id: int, reference: str, deliver: bool = True) -> Order:
    """Record a confirmed payment. Repeated confirmations leave the order as is.

    With ``deliver`` the order is also moved to ``Delivered to Client``.
    """

    values = {"payment_status": PAYMENT_PAID, "payment_ref": reference}
    if deliver:
        values["status"] = STATUS_DELIVERED
    statement = (
        update(Order)
        .where(Order.id == order_id, Order.payment_status != PAYMENT_PAID)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    changed = db.session.execute(statement).rowcount == 1
    db.session.commit()

    order = _reload(order_id)
    if order is None:
        raise NotFound("Order not found")
    if changed:
        logger.info("Order %s marked paid (%s)", order_id, reference)
    else:
        logger.info("Order %s already paid; ignoring confirmation %s", order_id, reference)
    return order
