"""Integration tests for the order endpoints via TestClient."""

from conftest import make_product, product_stock


def _place_order(client, user, product_id, quantity=1, **extra):
    response = client.post(
        "/api/orders",
        json={"items": [{"product_id": product_id, "quantity": quantity, **extra}]},
        headers=user["headers"],
    )
    return response


def test_create_order_ignores_client_price(client, customer):
    tee = make_product("Basic Tee", price=150.0, stock=5)

    response = _place_order(client, customer, tee, quantity=2, price=1.0)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["total_price"] == 300.0
    assert body["order_id"]
    assert product_stock(tee) == 3


def test_create_order_requires_token(client):
    tee = make_product("Basic Tee")

    response = client.post("/api/orders", json={"items": [{"product_id": tee, "quantity": 1}]})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_create_order_rejects_bad_token(client):
    response = client.get("/api/orders/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


def test_create_order_validation_errors(client, customer):
    response = client.post("/api/orders", json={"items": []}, headers=customer["headers"])

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errors"]

    response = client.post(
        "/api/orders", json={"items": [{"product_id": "x", "quantity": 0}]}, headers=customer["headers"]
    )
    assert response.status_code == 400


def test_insufficient_stock_returns_400(client, customer):
    tee = make_product("Basic Tee", stock=5)

    assert _place_order(client, customer, tee, quantity=3).status_code == 201
    response = _place_order(client, customer, tee, quantity=3)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert product_stock(tee) == 2


def test_other_users_order_is_not_found(client, customer, other_customer, admin):
    tee = make_product("Basic Tee", stock=5)
    order_id = _place_order(client, customer, tee).json()["order_id"]

    assert client.get(f"/api/orders/{order_id}", headers=customer["headers"]).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=other_customer["headers"]).status_code == 404

    response = client.get(f"/api/orders/{order_id}", headers=admin["headers"])
    assert response.status_code == 200
    assert response.json()["order"]["user_id"] == customer["id"]


def test_my_orders_lists_only_own(client, customer, other_customer):
    tee = make_product("Basic Tee", stock=10)
    _place_order(client, customer, tee)
    _place_order(client, customer, tee)
    _place_order(client, other_customer, tee)

    response = client.get("/api/orders/me", headers=customer["headers"])

    assert response.status_code == 200
    body = response.json()
    assert len(body["orders"]) == 2
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 2, "pages": 1}
    assert all(o["user_id"] == customer["id"] for o in body["orders"])


def test_all_orders_is_admin_only(client, customer, admin):
    tee = make_product("Basic Tee", stock=10)
    order_id = _place_order(client, customer, tee).json()["order_id"]
    client.put(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=admin["headers"])
    _place_order(client, customer, tee)

    assert client.get("/api/orders", headers=customer["headers"]).status_code == 403

    response = client.get("/api/orders", params={"status": "processing"}, headers=admin["headers"])
    assert response.status_code == 200
    assert [o["id"] for o in response.json()["orders"]] == [order_id]
    assert response.json()["orders"][0]["user"] == {"username": "alice", "email": "alice@example.com"}


def test_cancel_flow(client, customer):
    tee = make_product("Basic Tee", stock=5)
    order_id = _place_order(client, customer, tee, quantity=4).json()["order_id"]

    response = client.post(f"/api/orders/{order_id}/cancel", headers=customer["headers"])

    assert response.status_code == 200
    assert response.json()["order"]["status"] == "cancelled"
    assert product_stock(tee) == 5

    again = client.post(f"/api/orders/{order_id}/cancel", headers=customer["headers"])
    assert again.status_code == 400
    assert product_stock(tee) == 5


def test_cancel_shipped_order_fails(client, customer, admin):
    tee = make_product("Basic Tee", stock=5)
    order_id = _place_order(client, customer, tee, quantity=2).json()["order_id"]
    for status in ("processing", "shipped"):
        response = client.put(f"/api/orders/{order_id}/status", json={"status": status}, headers=admin["headers"])
        assert response.status_code == 200

    response = client.post(f"/api/orders/{order_id}/cancel", headers=customer["headers"])

    assert response.status_code == 400
    assert product_stock(tee) == 3


def test_cancel_someone_elses_order_is_forbidden(client, customer, other_customer):
    tee = make_product("Basic Tee", stock=5)
    order_id = _place_order(client, customer, tee).json()["order_id"]

    response = client.post(f"/api/orders/{order_id}/cancel", headers=other_customer["headers"])

    assert response.status_code == 403


def test_status_update_rules(client, customer, admin):
    tee = make_product("Basic Tee", stock=5)
    order_id = _place_order(client, customer, tee).json()["order_id"]

    forbidden = client.put(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=customer["headers"])
    assert forbidden.status_code == 403

    invalid = client.put(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=admin["headers"])
    assert invalid.status_code == 400
    assert "pending" in invalid.json()["message"]

    unknown = client.put(f"/api/orders/{order_id}/status", json={"status": "lost"}, headers=admin["headers"])
    assert unknown.status_code == 400

    missing = client.put(
        "/api/orders/65a1b2c3d4e5f60718293a4b/status", json={"status": "processing"}, headers=admin["headers"]
    )
    assert missing.status_code == 404
