"""Utilities for validating incoming Flask requests."""

from __future__ import annotations

import math
from typing import Iterable

from flask import Request
from werkzeug.exceptions import BadRequest


def parse_json_request(
    req: Request,
    *,
    required_keys: Iterable[str] | None = None,
    allow_empty: bool = False,
) -> dict:
    """Return the parsed JSON body or raise a 400 error."""

    if not req.is_json:
        raise BadRequest("Request content type must be application/json.")

    data = req.get_json(silent=False)
    if data is None:
        raise BadRequest("Request JSON body is required.")

    if not isinstance(data, dict):
        raise BadRequest("Request JSON payload must be an object.")

    if not data and not allow_empty:
        raise BadRequest("Request JSON body must not be empty.")

    if required_keys:
        missing = [key for key in required_keys if not data.get(key)]
        if missing:
            raise BadRequest(
                "Missing required fields: {}.".format(
                    ", ".join(sorted(missing))
                )
            )

    return data


def parse_payload(req: Request) -> dict:
    """Return the JSON body, or the form fields of a multipart/urlencoded request."""

    if req.is_json:
        return parse_json_request(req, allow_empty=True)
    return req.form.to_dict()


def to_int(value: object) -> int | None:
    """Coerce an identifier from a path, query or body into an int.

    Numeric strings and floats are truncated; anything else yields None.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def to_amount(value: object) -> float:
    try:
        amount = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return amount if math.isfinite(amount) else 0.0


def to_text(value: object, field: str) -> str:
    """Return a stripped string field; a missing value counts as empty.

    Numbers, lists and objects are a 400 rather than being coerced.
    """

    if value is None:
        return ""
    if not isinstance(value, str):
        raise BadRequest(f"{field} must be a string")
    return value.strip()
