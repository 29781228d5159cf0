"""End-to-end diner and staff flow over HTTP."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from qrdine.models import Coupon, CouponType

API = "/api/v1"


def _scan(client, dining_table, restaurant):
    response = client.post(f"{API}/scan/validate", json={
        "qr_code": dining_table.qr_code,
        "table_id": dining_table.id,
        "restaurant_id": restaurant.id,
    })
    assert response.status_code == 200
    return response.json()["data"]


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_dine_order_pay_and_leave(client, dining_table, restaurant, menu_item, events):
    scan = _scan(client, dining_table, restaurant)
    session_id = scan["session_id"]
    assert scan["is_new_session"] is True

    menu = client.get(f"{API}/menu/{restaurant.id}").json()["data"]
    assert menu["categories"][0]["items"][0]["id"] == menu_item.id

    # two phones add the same dish
    for _ in range(2):
        response = client.post(f"{API}/cart", json={
            "session_id": session_id, "menu_item_id": menu_item.id, "quantity": 1,
        })
        assert response.status_code == 200
    cart = client.get(f"{API}/cart", params={"session_id": session_id}).json()["data"]
    assert [i["quantity"] for i in cart["items"]] == [2]
    assert cart["total_amount"] == 400.0

    response = client.post(f"{API}/orders", json={"session_id": session_id})
    assert response.status_code == 201
    order = response.json()["data"]
    assert order["total_amount"] == 400.0
    assert order["status"] == "PLACED"
    assert client.get(f"{API}/cart", params={"session_id": session_id}).json()["data"]["items"] == []

    for status in ("preparing", "ready", "served"):
        response = client.put(f"{API}/orders/{order['id']}/status", json={"status": status})
        assert response.status_code == 200
    assert response.json()["data"]["status"] == "SERVED"

    response = client.post(f"{API}/sessions/{session_id}/request-bill")
    assert response.json()["data"]["is_ready_for_billing"] is True

    response = client.post(f"{API}/payments", json={"session_id": session_id, "amount": 400, "method": "cash"})
    assert response.status_code == 201
    payment = response.json()["data"]
    assert payment["status"] == "PENDING"

    response = client.post(f"{API}/payments/{payment['id']}/confirm")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "PAID"

    bill = client.get(f"{API}/sessions/{session_id}/bill").json()["data"]
    assert bill["subtotal"] == 400.0
    assert bill["tax_amount"] == 72.0
    assert bill["service_charge"] == 20.0
    assert bill["final_amount"] == 492.0

    summary = client.get(f"{API}/sessions/{session_id}").json()["data"]
    assert summary["status"] == "COMPLETED"
    assert summary["payment_status"] == "PAID"
    assert summary["balance_due"] == 0.0
    assert summary["bill"]["bill_number"] == bill["bill_number"]

    tables = client.get(f"{API}/restaurants/{restaurant.id}/tables").json()["data"]["items"]
    assert tables[0]["status"] == "available"

    response = client.post(f"{API}/feedback", json={"session_id": session_id, "rating": 5, "comments": "Great"})
    assert response.status_code == 201

    assert events.rooms_for("order_status_changed")[0] == f"restaurant:{restaurant.id}"
    assert f"session:{session_id}" in events.rooms_for("payment_status_changed")


def test_coupon_through_api(client, db_session, dining_table, restaurant, menu_item):
    now = datetime.now(timezone.utc)
    db_session.add(Coupon(
        restaurant_id=restaurant.id,
        code="FLAT50",
        name="Fifty off",
        type=CouponType.FIXED,
        value=Decimal("50"),
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=1),
    ))
    db_session.commit()

    session_id = _scan(client, dining_table, restaurant)["session_id"]
    client.post(f"{API}/orders", json={
        "session_id": session_id, "items": [{"menu_item_id": menu_item.id, "quantity": 2}],
    })
    preview = client.post(f"{API}/sessions/{session_id}/coupon", json={"code": "flat50"}).json()["data"]
    assert preview["discount_amount"] == 50.0
    assert preview["final_amount"] == 442.0

    payment = client.post(f"{API}/payments", json={
        "session_id": session_id, "amount": "400.00", "method": "UPI",
    }).json()["data"]
    client.post(f"{API}/payments/{payment['id']}/confirm", json={"transaction_id": "upi-123"})

    bill = client.get(f"{API}/sessions/{session_id}/bill").json()["data"]
    assert bill["final_amount"] == 442.0
    payments = client.get(f"{API}/sessions/{session_id}/payments").json()["data"]
    assert payments["items"][0]["transaction_id"] == "upi-123"


class TestErrorEnvelopes:
    def test_invalid_qr_code(self, client, dining_table, restaurant):
        response = client.post(f"{API}/scan/validate", json={
            "qr_code": "forged", "table_id": dining_table.id, "restaurant_id": restaurant.id,
        })
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "table_not_found"
        assert body["message"]

    def test_closed_restaurant(self, client, db_session, dining_table, restaurant):
        restaurant.is_active = False
        db_session.commit()
        response = client.post(f"{API}/scan/validate", json={
            "qr_code": dining_table.qr_code, "table_id": dining_table.id, "restaurant_id": restaurant.id,
        })
        assert response.status_code == 403
        assert response.json()["error"] == "restaurant_closed"

    def test_request_body_validation(self, client, active_session, menu_item):
        response = client.post(f"{API}/cart", json={
            "session_id": active_session, "menu_item_id": menu_item.id, "quantity": 0,
        })
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["details"]["errors"]

    @pytest.mark.parametrize("body", [
        {"quantity": [2]},
        {"quantity": {"n": 2}},
        {"quantity": 100},
        {"special_instructions": ["no onions"]},
    ])
    def test_malformed_cart_fields_are_rejected(self, client, active_session, menu_item, body):
        response = client.post(f"{API}/cart", json={
            "session_id": active_session, "menu_item_id": menu_item.id, **body,
        })
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_malformed_order_item_is_rejected(self, client, active_session, menu_item):
        response = client.post(f"{API}/orders", json={
            "session_id": active_session,
            "items": [{"menu_item_id": menu_item.id, "quantity": {"n": 1}}],
        })
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_empty_order(self, client, active_session):
        response = client.post(f"{API}/orders", json={"session_id": active_session})
        assert response.status_code == 422
        assert response.json()["error"] == "empty_order"

    def test_overpayment(self, client, active_session):
        response = client.post(f"{API}/payments", json={
            "session_id": active_session, "amount": 10, "method": "CARD",
        })
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_amount"

    def test_invalid_transition(self, client, active_session, menu_item):
        order = client.post(f"{API}/orders", json={
            "session_id": active_session, "items": [{"menu_item_id": menu_item.id, "quantity": 1}],
        }).json()["data"]
        response = client.put(f"{API}/orders/{order['id']}/status", json={"status": "SERVED"})
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"
        assert response.json()["details"] == {"order_id": order["id"], "from": "PLACED", "to": "SERVED"}

    def test_cancel_without_reason(self, client, active_session):
        response = client.post(f"{API}/sessions/{active_session}/cancel", json={})
        assert response.status_code == 422
        assert response.json()["error"] == "reason_required"

    def test_bill_not_issued(self, client, active_session):
        response = client.get(f"{API}/sessions/{active_session}/bill")
        assert response.status_code == 404
        assert response.json()["error"] == "bill_not_found"

    def test_unknown_session(self, client):
        response = client.get(f"{API}/sessions/9999")
        assert response.status_code == 404
        assert response.json()["error"] == "session_not_found"
