"""Payment gateways: M-Pesa Daraja STK push, or a simulator when no credentials are set."""

from __future__ import annotations

import base64
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from datetime import datetime

import httpx
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import BadGateway, HTTPException, InternalServerError

from models import db
from utils.request_validation import to_int

from .orders import confirm_payment

logger = logging.getLogger(__name__)

MPESA_HOSTS = {
    "production": "https://api.safaricom.co.ke",
    "sandbox": "https://sandbox.safaricom.co.ke",
}


class GatewayError(BadGateway):
    """The payment provider could not take the payment."""

    retryable = False


class GatewayUnavailable(GatewayError):
    """The provider was unreachable or timed out; the same request may be retried."""

    retryable = True


class GatewayRejected(GatewayError):
    """The provider answered and declined the request."""


def new_reference(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(1_000_000)}"


class SimulatedGateway:
    """Accepts every payment and confirms it after ``delay`` seconds.

    A ``delay`` of None never confirms on its own; the callback endpoint can
    still confirm the payment.
    """

    prefix = "SIM"
    simulated = True

    def __init__(self, app: Flask, delay: float | None = 4.0):
        self.app = app
        self.delay = delay
        self._timers: set[threading.Timer] = set()
        self._lock = threading.Lock()

    def pending(self) -> list[threading.Timer]:
        """Timers whose confirmation has not finished yet."""

        with self._lock:
            return list(self._timers)

    def initiate(self, order_id: int, phone: str, amount: float, reference: str) -> dict:
        if self.delay is not None:
            timer = threading.Timer(self.delay, self._confirm, args=(order_id, reference))
            timer.daemon = True
            with self._lock:
                self._timers.add(timer)
            timer.start()
        logger.info("Simulated payment %s started for order %s", reference, order_id)
        return {"simulate": True}

    def _confirm(self, order_id: int, reference: str) -> None:
        with self.app.app_context():
            try:
                confirm_payment(
                    order_id,
                    reference,
                    deliver=self.app.config.get("PAYMENT_CONFIRMATION_DELIVERS", True),
                )
            except (HTTPException, SQLAlchemyError):
                logger.exception("Simulated payment confirmation failed for order %s", order_id)
            finally:
                db.session.remove()
                with self._lock:
                    # Runs on the timer's own thread.
                    self._timers.discard(threading.current_thread())


class MpesaGateway:
    """Daraja STK push client."""

    prefix = "MPESA"
    simulated = False

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str | None,
        shortcode: str | None,
        passkey: str | None,
        callback_url: str | None,
        environment: str = "sandbox",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = MPESA_HOSTS.get(environment, MPESA_HOSTS["sandbox"])
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return all([self.consumer_secret, self.shortcode, self.passkey, self.callback_url])

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        if response.status_code >= 500:
            raise GatewayUnavailable(f"M-Pesa responded with HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            raise GatewayRejected("M-Pesa returned a non-JSON response")
        if not isinstance(data, dict):
            raise GatewayRejected("M-Pesa returned an unexpected response")
        return data

    def _access_token(self, client: httpx.Client) -> str:
        response = client.get(
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret or ""),
        )
        token = self._json(response).get("access_token")
        if not token:
            raise GatewayRejected("No access_token in M-Pesa response")
        return token

    def _stk_payload(self, order_id: int, phone: str, amount: float) -> dict:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        password = base64.b64encode(
            f"{self.shortcode}{self.passkey}{timestamp}".encode()
        ).decode()
        return {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": max(1, round(amount)),
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": f"{self.callback_url.rstrip('/')}/api/payments/callback?orderId={order_id}",
            "AccountReference": str(order_id),
            "TransactionDesc": f"Payment for order {order_id}",
        }

    def initiate(self, order_id: int, phone: str, amount: float, reference: str) -> dict:
        if not self.configured:
            raise InternalServerError("MPesa credentials not fully configured on server")

        try:
            with self._client() as client:
                token = self._access_token(client)
                response = client.post(
                    "/mpesa/stkpush/v1/processrequest",
                    json=self._stk_payload(order_id, phone, amount),
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as exc:
            logger.error("STK push for order %s failed: %s", order_id, exc)
            raise GatewayUnavailable(f"Failed to reach M-Pesa: {exc}")

        data = self._json(response)
        if response.status_code >= 400 or str(data.get("ResponseCode")) != "0":
            message = (
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or f"HTTP {response.status_code}"
            )
            logger.warning("STK push for order %s rejected: %s", order_id, message)
            raise GatewayRejected(f"M-Pesa rejected the payment request: {message}")

        logger.info("STK push %s accepted for order %s", reference, order_id)
        return {"daraja": data}


def build_gateway(app: Flask):
    config = app.config
    if not config.get("MPESA_CONSUMER_KEY"):
        return SimulatedGateway(app, delay=config.get("PAYMENT_SIMULATION_DELAY"))
    return MpesaGateway(
        consumer_key=config["MPESA_CONSUMER_KEY"],
        consumer_secret=config.get("MPESA_CONSUMER_SECRET"),
        shortcode=config.get("MPESA_SHORTCODE"),
        passkey=config.get("MPESA_PASSKEY"),
        callback_url=config.get("MPESA_CALLBACK_URL"),
        environment=config.get("MPESA_ENV", "sandbox"),
        timeout=float(config.get("PAYMENT_GATEWAY_TIMEOUT") or 15),
    )


@dataclass
class CallbackResult:
    order_id: int | None
    reference: str | None
    confirmed: bool
    result_code: int | None = None


def _metadata_value(callback: dict, key: str):
    parameters = (callback.get("ResultParameters") or {}).get("ResultParameter")
    items = (callback.get("CallbackMetadata") or {}).get("Item")
    for entry in (parameters if isinstance(parameters, list) else []):
        if isinstance(entry, dict) and entry.get("Key") == key:
            return entry.get("Value")
    for entry in (items if isinstance(items, list) else []):
        if isinstance(entry, dict) and entry.get("Name") == key:
            return entry.get("Value")
    return None


def parse_callback(body: dict, query_order_id: object = None) -> CallbackResult:
    """Read a Daraja ``Body.stkCallback`` or a generic ``{orderId, payment_ref}`` body."""

    stk = (body.get("Body") or {}).get("stkCallback") if isinstance(body.get("Body"), dict) else None
    if isinstance(stk, dict):
        result_code = to_int(stk.get("ResultCode"))
        order_id = to_int(query_order_id)
        if order_id is None:
            order_id = to_int(_metadata_value(stk, "AccountReference"))
        checkout_id = str(stk.get("CheckoutRequestID") or "") or f"MPESA-CB-{int(time.time() * 1000)}"
        return CallbackResult(
            order_id=order_id,
            reference=checkout_id,
            confirmed=result_code == 0 and order_id is not None,
            result_code=result_code,
        )

    reference = body.get("payment_ref")
    order_id = to_int(body.get("orderId"))
    return CallbackResult(
        order_id=order_id,
        reference=str(reference) if reference else None,
        confirmed=order_id is not None and bool(reference),
    )
