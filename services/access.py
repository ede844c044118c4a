"""Document access decisions for order submissions."""

from __future__ import annotations

import enum

from models.order import Order
from utils.identity import Principal


class Access(enum.Enum):
    """Outcome of an access decision, most restrictive first."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    PREVIEW = "preview"
    FULL = "full"

    @property
    def allowed(self) -> bool:
        return self in (Access.PREVIEW, Access.FULL)


def decide_access(principal: Principal | None, order: Order) -> Access:
    """Decide how much of an order's submitted file the principal may see.

    Depends only on the principal's role and id and on the order's client,
    writer, payment status and submission presence. Rules, first match wins:

    0. anonymous                    -> FORBIDDEN
    1. no submission file           -> NOT_FOUND
    2. admin                        -> FULL
    3. the order's writer           -> FULL
    4. the order's client, paid     -> FULL
    5. the order's client, unpaid   -> PREVIEW
    6. anyone else                  -> FORBIDDEN
    """

    if principal is None:
        return Access.FORBIDDEN
    if not order.submission_file:
        return Access.NOT_FOUND
    if principal.is_admin:
        return Access.FULL
    if order.writer_id is not None and principal.id == order.writer_id:
        return Access.FULL
    if order.client_id is not None and principal.id == order.client_id:
        return Access.FULL if order.is_paid else Access.PREVIEW
    return Access.FORBIDDEN


def can_read_guide(principal: Principal | None, order: Order) -> bool:
    """Client guides are visible to admins and the order's participants."""

    if principal is None or not order.client_guide:
        return False
    if principal.is_admin:
        return True
    return principal.id in {order.client_id, order.writer_id}
