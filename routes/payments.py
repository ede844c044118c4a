"""Payment endpoints: STK push initiation and the provider callback."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from werkzeug.exceptions import BadRequest, Forbidden

from services import orders as lifecycle
from services.payments import new_reference, parse_callback
from utils.identity import require_principal
from utils.request_validation import parse_json_request, to_amount, to_int

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/initiate", methods=["POST"])
@jwt_required()
def initiate_payment():
    """Start a payment for an order and return its reference right away.

    Confirmation arrives later through the callback (or the simulator's timer).
    """

    principal = require_principal()
    payload = parse_json_request(request)
    order_id = to_int(payload.get("orderId"))
    phone = str(payload.get("phoneNumber") or "").strip()
    if order_id is None or not phone:
        raise BadRequest("Missing orderId or phoneNumber")

    order = lifecycle.get_order_or_404(order_id)
    # Without an explicit amount the order's stored price is charged.
    amount = to_amount(payload["amount"] if "amount" in payload else order.amount)
    if not principal.is_admin and principal.id != order.client_id:
        raise Forbidden("Only the order's client can pay for it.")

    gateway = current_app.extensions["payment_gateway"]
    reference = new_reference(gateway.prefix)
    lifecycle.begin_payment(order_id, reference, amount)
    details = gateway.initiate(order_id, phone, amount, reference)

    message = "Simulated payment initiated" if gateway.simulated else "STK push initiated"
    return jsonify({"message": message, "payment_ref": reference, **details})


@payments_bp.route("/callback", methods=["POST"])
def payment_callback():
    """Webhook for the payment provider confirming (or failing) a payment."""

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise BadRequest("Request JSON payload must be an object.")

    result = parse_callback(body, request.args.get("orderId"))
    if "Body" in body:
        if not result.confirmed:
            current_app.logger.info(
                "M-Pesa callback not confirming: result=%s order=%s ref=%s",
                result.result_code,
                result.order_id,
                result.reference,
            )
            return jsonify({"message": "Callback processed"})
    elif not result.confirmed:
        raise BadRequest("Missing orderId or payment_ref")

    order = lifecycle.confirm_payment(
        result.order_id,
        result.reference,
        deliver=current_app.config.get("PAYMENT_CONFIRMATION_DELIVERS", True),
    )
    return jsonify({"message": "Payment confirmed", "order": order.payment_summary()})
