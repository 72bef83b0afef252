# Overview: Pytest coverage for the HTTP surface: outlet access, error shapes and workflow endpoints.

"""
API Tests

SECURITY TESTS: every workflow endpoint requires a known bearer token and an
outlet the caller is granted. Error bodies share one shape:
{"error", "code", "details", "retryable"}.
"""

import pytest

from tests.conftest import TOKEN_A, TOKEN_B


def _assert_error(response, status, code):
    assert response.status_code == status, response.get_json()
    body = response.get_json()
    assert body["code"] == code
    assert set(body) >= {"error", "code", "details", "retryable"}
    return body


class TestOutletAccess:

    def test_health_is_public(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"

    def test_missing_token(self, client, grants, outlet_a):
        response = client.get("/api/inventory/stock", headers={"X-Outlet-Id": str(outlet_a.id)})
        _assert_error(response, 401, "UNAUTHORIZED")

    def test_unknown_token(self, client, grants, outlet_a):
        response = client.get(
            "/api/inventory/stock",
            headers={"Authorization": "Bearer nope", "X-Outlet-Id": str(outlet_a.id)},
        )
        _assert_error(response, 401, "UNAUTHORIZED")

    def test_missing_outlet(self, client, grants):
        response = client.get("/api/inventory/stock", headers={"Authorization": f"Bearer {TOKEN_A}"})
        _assert_error(response, 401, "UNAUTHORIZED")

    def test_outlet_not_granted(self, client, grants, outlet_b):
        response = client.get(
            "/api/inventory/stock",
            headers={"Authorization": f"Bearer {TOKEN_A}", "X-Outlet-Id": str(outlet_b.id)},
        )
        body = _assert_error(response, 403, "FORBIDDEN")
        assert body["details"]["outlet_id"] == outlet_b.id

    def test_outlet_from_query_string(self, client, grants, outlet_a):
        response = client.get(
            f"/api/inventory/stock?outlet_id={outlet_a.id}",
            headers={"Authorization": f"Bearer {TOKEN_A}"},
        )
        assert response.status_code == 200

    def test_foreign_product_not_visible(self, client, grants, outlet_b, product_a, stock_in, outlet_a):
        stock_in(outlet_a, product_a, 3)
        response = client.get(
            f"/api/inventory/stock/{product_a.id}",
            headers={"Authorization": f"Bearer {TOKEN_B}", "X-Outlet-Id": str(outlet_b.id)},
        )
        _assert_error(response, 404, "NOT_FOUND")


class TestInventoryEndpoints:

    def test_manual_adjustment_idempotency(self, client, auth_headers, product_a):
        headers = {**auth_headers, "Idempotency-Key": "count-2026-10-17"}
        body = {"product_id": product_a.id, "delta": 12, "note": "Opening stock"}

        first = client.post("/api/inventory/adjustments", json=body, headers=headers)
        second = client.post("/api/inventory/adjustments", json=body, headers=headers)

        assert first.status_code == 201
        assert first.get_json()["stock_item"]["quantity"] == 12
        assert second.status_code == 200
        assert second.get_json()["duplicate"] is True
        assert second.get_json()["stock_item"]["quantity"] == 12

    def test_adjustment_requires_key(self, client, auth_headers, product_a):
        response = client.post(
            "/api/inventory/adjustments", json={"product_id": product_a.id, "delta": 1}, headers=auth_headers,
        )
        _assert_error(response, 400, "VALIDATION_ERROR")

    def test_reconcile_endpoint(self, client, auth_headers, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 9)
        response = client.get(f"/api/inventory/stock/{product_a.id}/reconcile", headers=auth_headers)
        assert response.status_code == 200
        assert response.get_json()["drift"] == 0


class TestSaleEndpoints:

    def test_create_and_void(self, client, auth_headers, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 5)

        created = client.post("/api/transactions/", json={
            "items": [{"product_id": product_a.id, "quantity": 2}],
            "payment_method": "Cash",
        }, headers=auth_headers)

        assert created.status_code == 201
        data = created.get_json()
        assert data["invoice_number"].startswith("INV-")
        assert data["transaction"]["cashier_id"] == "cashier-a"
        assert len(data["transaction"]["items"]) == 1

        voided = client.post(
            f"/api/transactions/{data['transaction_id']}/void", json={"reason": "Test"}, headers=auth_headers,
        )
        assert voided.status_code == 200
        assert voided.get_json()["transaction"]["status"] == "void"

        again = client.post(f"/api/transactions/{data['transaction_id']}/void", headers=auth_headers)
        _assert_error(again, 409, "ALREADY_PROCESSED")

    def test_insufficient_stock_shape(self, client, auth_headers, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 1)

        response = client.post("/api/transactions/", json={
            "items": [{"product_id": product_a.id, "quantity": 4}],
            "payment_method": "Cash",
        }, headers=auth_headers)

        body = _assert_error(response, 400, "INSUFFICIENT_STOCK")
        assert body["retryable"] is False
        assert body["details"]["lines"] == [{
            "product_id": product_a.id,
            "variant_id": None,
            "product_name": product_a.name,
            "requested": 4,
            "available": 1,
        }]

    def test_empty_cart(self, client, auth_headers):
        response = client.post("/api/transactions/", json={"items": [], "payment_method": "Cash"},
                               headers=auth_headers)
        _assert_error(response, 400, "VALIDATION_ERROR")

    def test_unknown_transaction(self, client, auth_headers):
        response = client.get("/api/transactions/424242", headers=auth_headers)
        _assert_error(response, 404, "NOT_FOUND")


class TestPurchaseOrderEndpoints:

    def test_full_lifecycle(self, client, auth_headers, supplier_a, product_a, product_b):
        created = client.post("/api/purchase-orders/", json={
            "supplier_id": supplier_a.id,
            "expected_date": "2026-10-20T08:00:00Z",
            "items": [
                {"product_id": product_a.id, "quantity": 10, "cost_price": 500},
                {"product_id": product_b.id, "quantity": 4, "cost_price": 1200},
            ],
        }, headers=auth_headers)
        assert created.status_code == 201
        po = created.get_json()["purchase_order"]
        assert po["total_amount"] == 9800
        assert po["expected_date"] == "2026-10-20T08:00:00Z"

        early = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=auth_headers)
        _assert_error(early, 409, "INVALID_TRANSITION")

        assert client.post(f"/api/purchase-orders/{po['id']}/mark-ordered", headers=auth_headers).status_code == 200
        received = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=auth_headers)
        assert received.status_code == 200
        assert received.get_json()["purchase_order"]["status"] == "received"

        replay = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=auth_headers)
        _assert_error(replay, 409, "ALREADY_PROCESSED")

        stock = client.get(f"/api/inventory/stock/{product_a.id}", headers=auth_headers)
        assert stock.get_json()["stock_item"]["quantity"] == 10

    def test_bad_date(self, client, auth_headers, supplier_a, product_a):
        response = client.post("/api/purchase-orders/", json={
            "supplier_id": supplier_a.id,
            "order_date": "yesterday",
            "items": [{"product_id": product_a.id, "quantity": 1, "cost_price": 1}],
        }, headers=auth_headers)
        _assert_error(response, 400, "VALIDATION_ERROR")


class TestOpnameEndpoints:

    def test_count_and_finalize(self, client, auth_headers, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 20)

        created = client.post("/api/inventory/opname/", json={"product_ids": [product_a.id]}, headers=auth_headers)
        assert created.status_code == 201
        session = created.get_json()["session"]
        item = session["items"][0]
        assert item["system_stock"] == 20

        counted = client.put(f"/api/inventory/opname/{session['id']}", json={
            "items": [{"item_id": item["id"], "actual_stock": 17}],
        }, headers=auth_headers)
        assert counted.status_code == 200

        finalized = client.post(f"/api/inventory/opname/{session['id']}/finalize", headers=auth_headers)
        assert finalized.status_code == 200
        assert finalized.get_json()["adjustments_count"] == 1

        again = client.post(f"/api/inventory/opname/{session['id']}/finalize", headers=auth_headers)
        _assert_error(again, 409, "ALREADY_FINALIZED")


class TestLoyaltyEndpoints:

    def test_points_actions(self, client, auth_headers):
        created = client.post("/api/loyalty/customers", json={"name": "Maya"}, headers=auth_headers)
        assert created.status_code == 201
        customer_id = created.get_json()["customer"]["id"]

        added = client.post(f"/api/loyalty/customers/{customer_id}/points",
                            json={"action": "add", "points": 40}, headers=auth_headers)
        assert added.get_json()["new_points"] == 40

        redeemed = client.post(f"/api/loyalty/customers/{customer_id}/points",
                               json={"action": "redeem", "points": 15}, headers=auth_headers)
        body = redeemed.get_json()
        assert body["previous_points"] == 40
        assert body["points_change"] == -15
        assert body["new_points"] == 25

        too_much = client.post(f"/api/loyalty/customers/{customer_id}/points",
                               json={"action": "redeem", "points": 999}, headers=auth_headers)
        _assert_error(too_much, 400, "VALIDATION_ERROR")

        history = client.get(f"/api/loyalty/customers/{customer_id}/points", headers=auth_headers)
        assert [p["type"] for p in history.get_json()["points"]] == ["redeem", "adjust"]

    @pytest.mark.parametrize("action", ["", "double"])
    def test_unknown_action(self, client, auth_headers, action):
        created = client.post("/api/loyalty/customers", json={"name": "Nina"}, headers=auth_headers)
        customer_id = created.get_json()["customer"]["id"]
        response = client.post(f"/api/loyalty/customers/{customer_id}/points",
                               json={"action": action, "points": 1}, headers=auth_headers)
        _assert_error(response, 400, "VALIDATION_ERROR")

    def test_settings_round_trip(self, client, auth_headers):
        updated = client.put("/api/loyalty/settings", json={"amount_per_point": 500}, headers=auth_headers)
        assert updated.status_code == 200
        settings = client.get("/api/loyalty/settings", headers=auth_headers).get_json()["settings"]
        assert settings["amount_per_point"] == 500
        assert settings["points_per_amount"] == 1


class TestAuditEndpoint:

    def test_lists_outlet_events(self, client, auth_headers, outlet_a, product_a, stock_in):
        stock_in(outlet_a, product_a, 5)
        client.post("/api/transactions/", json={
            "items": [{"product_id": product_a.id, "quantity": 1}],
            "payment_method": "Cash",
        }, headers=auth_headers)

        response = client.get("/api/audit-events?event_type=sale.created", headers=auth_headers)

        assert response.status_code == 200
        items = response.get_json()["items"]
        assert len(items) == 1
        assert items[0]["actor_id"] == "cashier-a"
