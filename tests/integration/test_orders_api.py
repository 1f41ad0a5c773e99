from uuid import UUID

from fastapi.testclient import TestClient

from localmart.main import app
from localmart.services import orders_service


def _order_payload(customer_id: str = "cust-1", **overrides) -> dict:
    payload = {
        "customer_id": customer_id,
        "shop_id": "shop-1",
        "items": [
            {"product_id": "rice-5kg", "product_name": "Rice 5kg", "quantity": 2, "price": 450},
            {"product_id": "dal-1kg", "quantity": 1, "price": 120},
        ],
        "delivery_address": "12 MG Road, Bengaluru",
    }
    payload.update(overrides)
    return payload


def _create_order(client, **overrides):
    return client.post("/api/v1/orders", json=_order_payload(**overrides))


def _advance(client, order: dict, *statuses: str) -> dict:
    for target in statuses:
        response = client.post(
            f"/api/v1/orders/{order['id']}/status",
            json={"status": target, "expected_version": order["version"]},
        )
        assert response.status_code == 200, response.json()
        order = response.json()["order"]
    return order


def test_place_get_list_and_events(client):
    create_response = _create_order(client)
    assert create_response.status_code == 201
    body = create_response.json()
    assert body["success"] is True
    order = body["order"]
    UUID(order["id"])
    assert order["status"] == "PENDING_APPROVAL"
    assert order["total_amount"] == 1020
    assert order["version"] == 0
    assert len(order["items"]) == 2

    get_response = client.get(f"/api/v1/orders/{order['id']}")
    assert get_response.status_code == 200
    assert get_response.json()["order"]["id"] == order["id"]

    _create_order(client, customer_id="cust-2")
    list_response = client.get("/api/v1/orders", params={"customer_id": "cust-1"})
    assert list_response.status_code == 200
    assert [row["id"] for row in list_response.json()["orders"]] == [order["id"]]

    events_response = client.get(f"/api/v1/orders/{order['id']}/events")
    assert [event["type"] for event in events_response.json()["events"]] == ["PLACED"]


def test_place_order_rejects_empty_items_with_envelope(client):
    response = _create_order(client, items=[])

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["message"].startswith("items")


def test_place_order_replays_with_idempotency_key(client):
    headers = {"Idempotency-Key": "checkout-1"}
    first = client.post("/api/v1/orders", json=_order_payload(), headers=headers)
    second = client.post("/api/v1/orders", json=_order_payload(), headers=headers)

    assert first.status_code == 201
    assert second.status_code == 201
    assert second.json()["order"]["id"] == first.json()["order"]["id"]
    assert len(client.get("/api/v1/orders").json()["orders"]) == 1


def test_place_order_idempotency_key_reused_with_other_payload(client):
    headers = {"Idempotency-Key": "checkout-2"}
    client.post("/api/v1/orders", json=_order_payload(), headers=headers)

    response = client.post(
        "/api/v1/orders", json=_order_payload(notes="ring the bell"), headers=headers
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "IDEMPOTENCY_CONFLICT"


def test_blank_idempotency_key_is_rejected(client):
    response = client.post("/api/v1/orders", json=_order_payload(), headers={"Idempotency-Key": " "})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_lifecycle_through_api(client):
    order = _create_order(client).json()["order"]

    order = _advance(client, order, "APPROVED", "PAYMENT_PENDING", "PAID", "PREPARING")

    assert order["status"] == "PREPARING"
    assert order["version"] == 4


def test_skipping_a_state_is_rejected(client):
    order = _create_order(client).json()["order"]

    response = client.post(
        f"/api/v1/orders/{order['id']}/status",
        json={"status": "PAID", "expected_version": 0},
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": {
            "code": "INVALID_STATE_TRANSITION",
            "message": "Invalid state transition: PENDING_APPROVAL -> PAID",
        },
    }


def test_stale_expected_version_conflicts(client):
    order = _create_order(client).json()["order"]
    _advance(client, order, "APPROVED")

    response = client.post(
        f"/api/v1/orders/{order['id']}/status",
        json={"status": "PAYMENT_PENDING", "expected_version": 0},
    )

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONCURRENT_MODIFICATION"


def test_cancel_requires_reason_and_cancellable_state(client):
    order = _create_order(client).json()["order"]

    refused = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "changed mind"})
    assert refused.status_code == 400
    assert refused.json()["error"]["code"] == "INVALID_STATE_TRANSITION"

    order = _advance(client, order, "APPROVED")
    missing_reason = client.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": " "})
    assert missing_reason.status_code == 400
    assert missing_reason.json()["error"]["code"] == "VALIDATION_ERROR"

    cancelled = client.post(
        f"/api/v1/orders/{order['id']}/cancel",
        json={"reason": "changed mind", "cancelled_by": "cust-1"},
    )
    assert cancelled.status_code == 200
    body = cancelled.json()["order"]
    assert body["status"] == "CANCELLED"
    assert body["cancellation_reason"] == "changed mind"

    events = client.get(f"/api/v1/orders/{order['id']}/events").json()["events"]
    assert [event["type"] for event in events] == ["PLACED", "APPROVED", "CANCELLED"]


def test_item_approval_endpoints(client):
    order = _create_order(client).json()["order"]
    first_item = order["items"][0]

    rejected = client.post(
        f"/api/v1/orders/{order['id']}/items/{first_item['id']}/approval",
        json={"approval_status": "REJECTED", "rejection_reason": "out of stock"},
    )
    assert rejected.status_code == 200
    items = {item["id"]: item for item in rejected.json()["order"]["items"]}
    assert items[first_item["id"]]["approval_status"] == "REJECTED"

    approved = client.post(
        f"/api/v1/orders/{order['id']}/items/approval", json={"approval_status": "APPROVED"}
    )
    assert approved.status_code == 200
    assert {item["approval_status"] for item in approved.json()["order"]["items"]} == {"APPROVED"}


def test_unknown_order_returns_not_found_envelope(client):
    response = client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_malformed_order_id_is_a_validation_error(client):
    response = client.get("/api/v1/orders/not-a-uuid")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_error_counters_are_recorded(client):
    client.get("/api/v1/orders/00000000-0000-0000-0000-000000000000")

    counters = client.get("/metrics").json()["counters"]
    assert counters["errors_not_found_total"] == 1


def test_unexpected_errors_render_internal_error_envelope(client, monkeypatch):
    def _explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(orders_service, "list_orders", _explode)

    with TestClient(app, raise_server_exceptions=False) as raw_client:
        response = raw_client.get("/api/v1/orders")

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
    }
