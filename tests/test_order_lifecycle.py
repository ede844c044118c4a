"""Tests for order creation, assignment, status updates, submission and delivery."""

from __future__ import annotations

from io import BytesIO

import pytest
from flask.testing import FlaskClient

from conftest import auth_header, build_app, create_order, create_user
from models import db
from models.order import (
    STATUS_DELIVERED,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_SUBMITTED,
    Order,
)


def _order(app, order_id: int) -> Order:
    with app.app_context():
        order = db.session.get(Order, order_id)
        db.session.expunge(order)
        return order


def _new_order(app, client_id: int, **fields) -> int:
    with app.app_context():
        return create_order(client_id, **fields).id


def test_client_creates_order_for_themselves(client: FlaskClient, accounts):
    response = client.post(
        "/api/orders",
        json={"title": "Lab report", "description": "Chemistry, 5 pages", "expected_ready": "2026-11-01"},
        headers=accounts["client"]["headers"],
    )

    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["client_id"] == accounts["client"]["id"]
    assert order["writer_id"] is None
    assert order["status"] == STATUS_PENDING
    assert order["payment_status"] == "unpaid"
    assert order["expected_ready"] == "2026-11-01"


def test_create_order_with_guide_only(client: FlaskClient, app, accounts, tmp_path):
    response = client.post(
        "/api/orders",
        data={"title": "Thesis chapter", "guide": (BytesIO(b"rubric"), "rubric.docx")},
        content_type="multipart/form-data",
        headers=accounts["client"]["headers"],
    )

    assert response.status_code == 201
    guide = response.get_json()["order"]["client_guide"]
    assert guide.startswith("/uploads/") and guide.endswith(".docx")
    assert (tmp_path / "uploads" / guide.rsplit("/", 1)[1]).read_bytes() == b"rubric"


@pytest.mark.parametrize(
    "payload",
    [
        {"description": "no title"},
        {"title": "no brief"},
        {"title": "   ", "description": "blank title"},
        {"title": 5, "description": "numeric title"},
        {"title": "Essay", "description": {"pages": 3}},
        {"title": ["Essay"], "description": "list title"},
        {"title": "Essay", "description": "d", "expected_ready": 20261101},
    ],
)
def test_create_order_validation(client: FlaskClient, accounts, payload):
    response = client.post("/api/orders", json=payload, headers=accounts["client"]["headers"])

    assert response.status_code == 400


def test_admin_must_name_a_client(client: FlaskClient, accounts):
    headers = accounts["admin"]["headers"]
    body = {"title": "T", "description": "D"}

    missing = client.post("/api/orders", json=body, headers=headers)
    writer = client.post(
        "/api/orders", json={**body, "client_id": accounts["writer"]["id"]}, headers=headers
    )
    created = client.post(
        "/api/orders", json={**body, "client_id": accounts["client2"]["id"]}, headers=headers
    )

    assert missing.status_code == 400
    assert writer.status_code == 400
    assert created.status_code == 201
    assert created.get_json()["order"]["client_id"] == accounts["client2"]["id"]


def test_client_cannot_create_for_someone_else(client: FlaskClient, accounts):
    response = client.post(
        "/api/orders",
        json={"title": "T", "description": "D", "client_id": accounts["client2"]["id"]},
        headers=accounts["client"]["headers"],
    )

    assert response.status_code == 403


def test_writer_cannot_create_orders(client: FlaskClient, accounts):
    response = client.post(
        "/api/orders", json={"title": "T", "description": "D"}, headers=accounts["writer"]["headers"]
    )

    assert response.status_code == 403


def test_rejected_create_discards_guide(client: FlaskClient, accounts, tmp_path):
    response = client.post(
        "/api/orders",
        data={"title": "", "guide": (BytesIO(b"rubric"), "rubric.pdf")},
        content_type="multipart/form-data",
        headers=accounts["client"]["headers"],
    )

    assert response.status_code == 400
    assert not [p for p in (tmp_path / "uploads").iterdir() if p.is_file()]


def test_admin_assigns_order(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(
        f"/api/orders/{order_id}/assign",
        json={"writerId": accounts["writer"]["id"]},
        headers=accounts["admin"]["headers"],
    )

    assert response.status_code == 200
    order = _order(app, order_id)
    assert order.writer_id == accounts["writer"]["id"]
    assert order.status == STATUS_IN_PROGRESS


def test_assign_rejects_busy_writer(client: FlaskClient, app, accounts):
    first = _new_order(app, accounts["client"]["id"])
    second = _new_order(app, accounts["client"]["id"])
    headers = accounts["admin"]["headers"]
    body = {"writerId": accounts["writer"]["id"]}

    assert client.post(f"/api/orders/{first}/assign", json=body, headers=headers).status_code == 200
    response = client.post(f"/api/orders/{second}/assign", json=body, headers=headers)

    assert response.status_code == 409
    assert response.get_json()["detail"] == "Writer already has an active order"
    assert _order(app, second).writer_id is None


@pytest.mark.parametrize(
    "body, status_code",
    [({"note": "x"}, 400), ({"writerId": "abc"}, 400), ({"writerId": 9999}, 404)],
)
def test_assign_validation(client: FlaskClient, app, accounts, body, status_code):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(
        f"/api/orders/{order_id}/assign", json=body, headers=accounts["admin"]["headers"]
    )

    assert response.status_code == status_code


def test_assign_to_non_writer_is_not_found(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(
        f"/api/orders/{order_id}/assign",
        json={"writerId": accounts["client2"]["id"]},
        headers=accounts["admin"]["headers"],
    )

    assert response.status_code == 404
    assert response.get_json()["detail"] == "Writer not found"


def test_assign_unknown_order_is_not_found(client: FlaskClient, accounts):
    response = client.post(
        "/api/orders/4242/assign",
        json={"writerId": accounts["writer"]["id"]},
        headers=accounts["admin"]["headers"],
    )

    assert response.status_code == 404


def test_writer_claims_order(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    assert response.status_code == 200
    assert response.get_json()["order"]["writer_id"] == accounts["writer"]["id"]
    assert response.get_json()["order"]["status"] == STATUS_IN_PROGRESS


def test_claim_already_assigned_conflicts(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    response = client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer2"]["headers"])

    assert response.status_code == 409
    assert response.get_json()["detail"] == "Order already assigned"
    assert _order(app, order_id).writer_id == accounts["writer"]["id"]


def test_claim_while_busy_conflicts(client: FlaskClient, app, accounts):
    first = _new_order(app, accounts["client"]["id"])
    second = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{first}/claim", headers=headers)

    response = client.post(f"/api/orders/{second}/claim", headers=headers)

    assert response.status_code == 409
    assert response.get_json()["detail"] == "You already have an active order"


def test_claim_requires_writer_role(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(f"/api/orders/{order_id}/claim", headers=accounts["client"]["headers"])

    assert response.status_code == 403


def test_claim_of_non_pending_order_conflicts(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"], status=STATUS_DELIVERED)

    response = client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    assert response.status_code == 409
    assert response.get_json()["detail"] == "Order not available for assignment"


def test_writer_can_claim_again_after_submitting(client: FlaskClient, app, accounts):
    first = _new_order(app, accounts["client"]["id"])
    second = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{first}/claim", headers=headers)
    client.post(f"/api/orders/{first}/status", json={"status": STATUS_SUBMITTED}, headers=headers)

    response = client.post(f"/api/orders/{second}/claim", headers=headers)

    assert response.status_code == 200


def test_status_update_is_permissive(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{order_id}/claim", headers=headers)

    delivered = client.post(
        f"/api/orders/{order_id}/status", json={"status": STATUS_DELIVERED}, headers=headers
    )
    back = client.post(
        f"/api/orders/{order_id}/status", json={"status": STATUS_IN_PROGRESS}, headers=headers
    )

    assert delivered.status_code == 200
    assert back.status_code == 200
    assert _order(app, order_id).status == STATUS_IN_PROGRESS


def test_status_back_to_pending_releases_writer(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    response = client.post(
        f"/api/orders/{order_id}/status",
        json={"status": STATUS_PENDING},
        headers=accounts["admin"]["headers"],
    )

    assert response.status_code == 200
    order = _order(app, order_id)
    assert order.writer_id is None
    assert order.status == STATUS_PENDING


def test_status_reactivation_respects_single_active_order(client: FlaskClient, app, accounts):
    first = _new_order(app, accounts["client"]["id"])
    second = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{first}/claim", headers=headers)
    client.post(f"/api/orders/{first}/status", json={"status": STATUS_SUBMITTED}, headers=headers)
    client.post(f"/api/orders/{second}/claim", headers=headers)

    response = client.post(
        f"/api/orders/{first}/status", json={"status": STATUS_IN_PROGRESS}, headers=headers
    )

    assert response.status_code == 409
    assert _order(app, first).status == STATUS_SUBMITTED


@pytest.mark.parametrize("status", ["", "Archived"])
def test_status_update_rejects_unknown_values(client: FlaskClient, app, accounts, status):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.post(
        f"/api/orders/{order_id}/status", json={"status": status}, headers=accounts["admin"]["headers"]
    )

    assert response.status_code == 400


def test_status_update_by_other_writer_forbidden(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    response = client.post(
        f"/api/orders/{order_id}/status",
        json={"status": STATUS_SUBMITTED},
        headers=accounts["writer2"]["headers"],
    )

    assert response.status_code == 403


def test_submit_work_records_file_and_schedules_preview(client: FlaskClient, app, accounts, tmp_path):
    order_id = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{order_id}/claim", headers=headers)

    response = client.post(
        f"/api/orders/{order_id}/submit",
        data={"file": (BytesIO(b"%PDF-1.4 final"), "final.pdf")},
        content_type="multipart/form-data",
        headers=headers,
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["filePath"].startswith("/uploads/")
    assert data["order"]["status"] == STATUS_SUBMITTED

    app.extensions["previews"].shutdown(wait=True)
    assert (tmp_path / "uploads" / "previews" / f"{order_id}.pdf").read_bytes() == b"%PDF-1.4 final"


def test_submit_by_unassigned_writer_stores_nothing(client: FlaskClient, app, accounts, tmp_path):
    order_id = _new_order(app, accounts["client"]["id"])
    client.post(f"/api/orders/{order_id}/claim", headers=accounts["writer"]["headers"])

    response = client.post(
        f"/api/orders/{order_id}/submit",
        data={"file": (BytesIO(b"sneaky"), "final.pdf")},
        content_type="multipart/form-data",
        headers=accounts["writer2"]["headers"],
    )

    assert response.status_code == 403
    assert not [p for p in (tmp_path / "uploads").iterdir() if p.is_file()]


def test_submit_without_file_is_bad_request(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    headers = accounts["writer"]["headers"]
    client.post(f"/api/orders/{order_id}/claim", headers=headers)

    response = client.post(
        f"/api/orders/{order_id}/submit", data={}, content_type="multipart/form-data", headers=headers
    )

    assert response.status_code == 400


def test_submit_rejects_oversized_upload(tmp_path):
    app = build_app(tmp_path, MAX_UPLOAD_SIZE=10)
    with app.app_context():
        db.create_all()
        client_user = create_user("c@example.com", "client")
        writer = create_user("w@example.com", "writer")
        order = create_order(client_user.id, writer_id=writer.id, status=STATUS_IN_PROGRESS)
        order_id = order.id
        headers = auth_header(writer)

    response = app.test_client().post(
        f"/api/orders/{order_id}/submit",
        data={"file": (BytesIO(b"x" * 11), "big.pdf")},
        content_type="multipart/form-data",
        headers=headers,
    )

    assert response.status_code == 400
    app.extensions["previews"].shutdown(wait=True)


def test_admin_delivers_order(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"], status=STATUS_SUBMITTED)

    forbidden = client.post(f"/api/orders/{order_id}/deliver", headers=accounts["writer"]["headers"])
    response = client.post(f"/api/orders/{order_id}/deliver", headers=accounts["admin"]["headers"])

    assert forbidden.status_code == 403
    assert response.status_code == 200
    order = _order(app, order_id)
    assert order.status == STATUS_DELIVERED
    assert order.payment_status == "unpaid"


def test_listings_by_role(client: FlaskClient, app, accounts):
    mine = _new_order(app, accounts["client"]["id"], title="Mine")
    _new_order(app, accounts["client2"]["id"], title="Theirs")
    client.post(f"/api/orders/{mine}/claim", headers=accounts["writer"]["headers"])

    all_orders = client.get("/api/orders", headers=accounts["admin"]["headers"]).get_json()
    client_orders = client.get("/api/orders/mine", headers=accounts["client"]["headers"]).get_json()
    writer_orders = client.get("/api/orders/mine", headers=accounts["writer"]["headers"]).get_json()
    unassigned = client.get("/api/orders/unassigned", headers=accounts["writer2"]["headers"]).get_json()

    assert {o["title"] for o in all_orders} == {"Mine", "Theirs"}
    assert all("client_name" in o for o in all_orders)
    assert [o["id"] for o in client_orders] == [mine]
    assert [o["id"] for o in writer_orders] == [mine]
    assert [o["title"] for o in unassigned] == ["Theirs"]
    assert client.get("/api/orders", headers=accounts["client"]["headers"]).status_code == 403


def test_assigned_listing_is_limited_to_own_writer(client: FlaskClient, app, accounts):
    writer_id = accounts["writer"]["id"]

    own = client.get(f"/api/orders/assigned/{writer_id}", headers=accounts["writer"]["headers"])
    other = client.get(f"/api/orders/assigned/{writer_id}", headers=accounts["writer2"]["headers"])

    assert own.status_code == 200
    assert other.status_code == 403


def test_order_detail_visible_to_participants_only(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    assert client.get(f"/api/orders/{order_id}", headers=accounts["client"]["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=accounts["client2"]["headers"]).status_code == 403
    assert client.get(f"/api/orders/{order_id}", headers=accounts["admin"]["headers"]).status_code == 200
    assert client.get("/api/orders/999", headers=accounts["admin"]["headers"]).status_code == 404


def test_admin_edits_descriptive_fields_only(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])
    headers = accounts["admin"]["headers"]

    response = client.put(
        f"/api/orders/{order_id}",
        json={"title": "Renamed", "amount": "1500", "status": STATUS_DELIVERED},
        headers=headers,
    )
    nothing = client.put(f"/api/orders/{order_id}", json={"status": STATUS_DELIVERED}, headers=headers)

    assert response.status_code == 200
    order = _order(app, order_id)
    assert order.title == "Renamed"
    assert float(order.amount) == 1500.0
    assert order.status == STATUS_PENDING
    assert nothing.status_code == 400


def test_admin_edit_rejects_non_string_text(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.put(
        f"/api/orders/{order_id}", json={"title": 5}, headers=accounts["admin"]["headers"]
    )

    assert response.status_code == 400
    assert _order(app, order_id).title == "Essay on rivers"


def test_admin_deletes_order(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"])

    response = client.delete(f"/api/orders/{order_id}", headers=accounts["admin"]["headers"])

    assert response.status_code == 200
    with app.app_context():
        assert db.session.get(Order, order_id) is None


def test_payment_status_endpoint(client: FlaskClient, app, accounts):
    order_id = _new_order(app, accounts["client"]["id"], amount=250)

    response = client.get(f"/api/orders/{order_id}/payment-status", headers=accounts["client"]["headers"])

    assert response.status_code == 200
    assert response.get_json()["payment_status"] == "unpaid"
    assert response.get_json()["amount"] == 250.0
