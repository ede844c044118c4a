"""Submission metadata, restricted previews and the legacy ``/uploads`` path.

Every byte-serving route asks ``decide_access`` afresh, against the order as
currently stored.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import PurePosixPath

from flask import Blueprint, current_app, jsonify, render_template_string, request, send_file, url_for
from werkzeug.exceptions import BadRequest, Forbidden, NotFound

from models import db
from models.order import Order
from services.access import Access, can_read_guide, decide_access
from storage import LocalStorage
from utils.identity import Principal, current_principal

documents_bp = Blueprint("documents", __name__)
uploads_bp = Blueprint("uploads", __name__)

RESTRICTED_HEADERS = {
    "Content-Disposition": "inline",
    "X-Content-Type-Options": "nosniff",
    "Cache-Control": "no-store",
}

PREVIEW_PAGE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width,initial-scale=1">
  <title>Preview - Order {{ order_id }}</title>
  <style>
    html,body{height:100%;margin:0;background:#222}
    .holder{position:relative;height:100%;}
    iframe{width:100%;height:100%;border:0;display:block}
    .watermark{
      position:absolute;left:0;top:0;right:0;bottom:0;pointer-events:none;
      display:flex;align-items:center;justify-content:center;opacity:0.15;
      font-size:32px;color:#fff;transform:rotate(-25deg);white-space:nowrap;
    }
    .notice{position:absolute;left:12px;top:12px;color:#fff;background:rgba(0,0,0,0.4);padding:6px 10px;border-radius:6px;font-size:13px}
  </style>
</head>
<body>
  <div class="holder">
    {% if restricted %}<div class="notice">Preview only - downloading disabled until payment</div>{% endif %}
    <iframe src="{{ stream_url }}" sandbox="allow-same-origin allow-scripts"></iframe>
    <div class="watermark">{{ watermark }}</div>
  </div>
  <script>
    document.addEventListener('keydown', (e) => {
      if ((e.ctrlKey || e.metaKey) && ['s','p','u'].includes(e.key.toLowerCase())) e.preventDefault();
    });
    document.addEventListener('contextmenu', (e) => e.preventDefault());
  </script>
</body>
</html>
"""


def _uploads() -> LocalStorage:
    return LocalStorage(current_app.config["UPLOAD_DIR"])


def _require_viewer() -> Principal:
    principal = current_principal(optional=True)
    if principal is None:
        raise Forbidden("Access denied")
    return principal


def _get_submitted_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or not order.submission_file:
        raise NotFound("Submission not found")
    return order


def _raw_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return request.args.get(current_app.config.get("JWT_QUERY_STRING_NAME", "userToken"))


def _send_original(order: Order):
    uploads = _uploads()
    if not uploads.exists(order.submission_file):
        raise NotFound("File not found")
    return send_file(uploads.path_for(order.submission_file), download_name=order.submission_filename)


def _send_restricted(order: Order):
    """Inline, uncacheable preview: the generated PDF, else the original bytes."""

    previews = current_app.extensions["previews"]
    if previews.has_preview(order.id):
        response = send_file(
            previews.preview_path(order.id), mimetype="application/pdf", conditional=False
        )
    else:
        uploads = _uploads()
        if not uploads.exists(order.submission_file):
            raise NotFound("File not found")
        response = send_file(
            uploads.open(order.submission_file),
            mimetype="application/octet-stream",
            conditional=False,
        )
        response.headers["Accept-Ranges"] = "none"
    response.headers.update(RESTRICTED_HEADERS)
    return response


@documents_bp.route("/submission/<int:order_id>", methods=["GET"])
def submission_info(order_id: int):
    """Where to download the submitted work, for callers allowed the full file."""

    principal = _require_viewer()
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")

    decision = decide_access(principal, order)
    if decision is Access.NOT_FOUND:
        raise NotFound("No submission available")
    if decision is Access.PREVIEW:
        raise Forbidden("Download blocked until payment is completed")
    if decision is not Access.FULL:
        raise Forbidden("Access denied")

    return jsonify(
        {
            "submission_file": order.submission_file,
            "url": f"/uploads/{order.submission_filename}",
            "requesterId": principal.id,
        }
    )


@documents_bp.route("/preview/<int:order_id>", methods=["GET"])
def preview(order_id: int):
    """Stream the submission: in full, or as a restricted inline preview."""

    principal = _require_viewer()
    order = _get_submitted_order(order_id)

    decision = decide_access(principal, order)
    if decision is Access.FULL:
        return _send_original(order)
    if decision is Access.PREVIEW:
        current_app.logger.info("Restricted preview of order %s for user %s", order.id, principal.id)
        return _send_restricted(order)
    raise Forbidden("Access denied")


@documents_bp.route("/preview-view/<int:order_id>", methods=["GET"])
def preview_view(order_id: int):
    """HTML page embedding the preview stream under a watermark.

    The watermark and disabled shortcuts only deter casual copying; access is
    enforced by the stream endpoint itself.
    """

    principal = _require_viewer()
    order = _get_submitted_order(order_id)

    decision = decide_access(principal, order)
    if not decision.allowed:
        raise Forbidden("Access denied")

    token = _raw_token()
    query = {"userToken": token} if token else {}
    stream_url = url_for("documents.preview", order_id=order.id, **query)
    watermark = "{} | Order {} | {}".format(
        principal.email or principal.name or "user",
        order.id,
        datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    )
    html = render_template_string(
        PREVIEW_PAGE,
        order_id=order.id,
        stream_url=stream_url,
        watermark=watermark,
        restricted=decision is Access.PREVIEW,
    )
    return html, 200, {"Content-Type": "text/html; charset=utf-8", "Cache-Control": "no-store"}


@uploads_bp.route("/uploads/<path:filename>", methods=["GET"])
def legacy_file(filename: str):
    """Serve a stored file by name.

    Submissions are served only when ``decide_access`` grants the full file,
    the same outcome ``/api/preview`` reaches for that order and caller.
    """

    name = PurePosixPath(filename).name
    if not name:
        raise BadRequest("Invalid filename")
    reference = f"/uploads/{name}"
    principal = current_principal(optional=True)
    uploads = _uploads()

    order = Order.query.filter_by(submission_file=reference).first()
    if order is not None:
        if decide_access(principal, order) is not Access.FULL:
            raise Forbidden("Direct download blocked. Payment required.")
        return _send_original(order)

    guide_order = Order.query.filter_by(client_guide=reference).first()
    if guide_order is None or not uploads.exists(name):
        raise NotFound("Not found")
    if not can_read_guide(principal, guide_order):
        raise Forbidden("Access denied")
    return send_file(uploads.path_for(name), download_name=name)
