import pytest

import orders
from schemas import Product
from tests.conftest import ADDRESS, headers_for


@pytest.mark.parametrize("subtotal,method,fee", [
    (2000, "prepaid", 0),
    (2000, "cod", 50),
    (1000, "prepaid", 50),
    (1500, "prepaid", 50),
    (1501, "prepaid", 0),
])
def test_shipping_fee(subtotal, method, fee):
    assert orders.shipping_fee_for(subtotal, method) == fee


def test_totals_skip_unpriced_lines():
    lines = [
        {"unit_price": 400, "quantity": 2},
        {"unit_price": 0, "quantity": 1},
        {"unit_price": -5, "quantity": 1},
        {"unit_price": float("nan"), "quantity": 1},
        {"unit_price": "300", "quantity": 1},
        {"unit_price": 100, "quantity": 0},
        {"quantity": 3},
    ]
    assert orders.compute_totals(lines, "prepaid") == {"subtotal": 800, "shipping_fee": 50, "total": 850}


@pytest.mark.parametrize("current,new,allowed", [
    ("pending", "confirmed", True),
    ("pending", "shipped", True),
    ("shipped", "delivered", True),
    ("processing", "cancelled", True),
    ("delivered", "pending", False),
    ("delivered", "cancelled", False),
    ("shipped", "processing", False),
    ("pending", "pending", False),
    ("pending", "refunded", False),
    ("cancelled", "confirmed", False),
])
def test_can_advance(current, new, allowed):
    assert orders.can_advance(current, new) is allowed


def test_order_number_format():
    number = orders.generate_order_number()
    prefix, millis, suffix = number.split("-")
    assert prefix == "ORD" and millis.isdigit() and len(suffix) == 9 and suffix.isupper()


def test_place_order_prepaid(client, place_order, user_headers):
    order = place_order(user_headers)
    assert order["subtotal"] == 1000
    assert order["shipping_fee"] == 50
    assert order["total"] == 1050
    assert order["status"] == "pending"
    assert order["payment_status"] == "paid"
    assert order["items"][0]["product_id"] == "p1"
    assert order["items_count"] == 2
    assert "checkout_key" not in order
    assert client.get("/api/cart", headers=user_headers).json()["data"]["cart"] == []


def test_place_order_cod_pays_shipping_over_threshold(place_order, user_headers):
    order = place_order(user_headers, [{"product_id": "p1", "size": "M", "color": "Black",
                                        "quantity": 4, "unit_price": 500}], payment_method="cod")
    assert order["subtotal"] == 2000
    assert order["shipping_fee"] == 50
    assert order["payment_status"] == "pending"


def test_order_lines_are_snapshots(client, mongo, place_order, user_headers):
    product_id = str(mongo["product"].insert_one(
        Product(name="Linen Shirt", price=700, images=["shirt.jpg"]).model_dump()).inserted_id)
    order = place_order(user_headers, [{"product_id": product_id, "size": "L", "color": "White",
                                        "quantity": 1, "unit_price": 700}])
    mongo["product"].update_one({}, {"$set": {"name": "Renamed", "price": 9000}})
    stored = client.get(f"/api/orders/{order['id']}", headers=user_headers).json()["data"]["order"]
    assert stored["items"][0]["product_name"] == "Linen Shirt"
    assert stored["items"][0]["image"] == "shirt.jpg"
    assert stored["items"][0]["unit_price"] == 700


def test_empty_cart_is_rejected(client, user_headers):
    address = client.post("/api/addresses", json=ADDRESS, headers=user_headers).json()["data"]["address"]
    resp = client.post("/api/orders", json={"address_id": address["id"], "payment_method": "cod"},
                       headers=user_headers)
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "data": None, "message": "Cart is empty"}


def test_cart_with_only_bad_lines_is_rejected(client, mongo, user_headers):
    mongo["cartline"].insert_one({"user_id": "user-1", "product_id": "p1", "size": "M", "color": "Red",
                                  "quantity": 1, "unit_price": 0})
    address = client.post("/api/addresses", json=ADDRESS, headers=user_headers).json()["data"]["address"]
    resp = client.post("/api/orders", json={"address_id": address["id"], "payment_method": "prepaid"},
                       headers=user_headers)
    assert resp.status_code == 400


def test_someone_elses_address_is_not_found(client, user_headers):
    other = headers_for("user-2")
    address = client.post("/api/addresses", json=ADDRESS, headers=other).json()["data"]["address"]
    client.post("/api/cart", json={"product_id": "p1", "size": "M", "color": "Black", "unit_price": 100},
                headers=user_headers)
    resp = client.post("/api/orders", json={"address_id": address["id"], "payment_method": "cod"},
                       headers=user_headers)
    assert resp.status_code == 404


def test_idempotency_key_replays_the_same_order(client, mongo, user_headers):
    client.post("/api/cart", json={"product_id": "p1", "size": "M", "color": "Black", "unit_price": 100},
                headers=user_headers)
    address = client.post("/api/addresses", json=ADDRESS, headers=user_headers).json()["data"]["address"]
    body = {"address_id": address["id"], "payment_method": "cod"}
    headers = dict(user_headers, **{"Idempotency-Key": "checkout-42"})
    first = client.post("/api/orders", json=body, headers=headers).json()["data"]
    second = client.post("/api/orders", json=body, headers=headers).json()["data"]
    assert first["created"] is True
    assert second["created"] is False
    assert first["order"]["id"] == second["order"]["id"]
    assert mongo["order"].count_documents({}) == 1


def test_same_cart_cannot_be_ordered_twice(mongo, user_headers, client):
    client.post("/api/cart", json={"product_id": "p1", "size": "M", "color": "Black", "unit_price": 100},
                headers=user_headers)
    address = client.post("/api/addresses", json=ADDRESS, headers=user_headers).json()["data"]["address"]
    snapshot = list(mongo["cartline"].find({"user_id": "user-1"}))

    first, created = orders.place_order("user-1", address["id"], "cod")
    assert created
    # A second request that read the cart before the first one cleared it.
    mongo["cartline"].insert_many(snapshot)
    second, created_again = orders.place_order("user-1", address["id"], "cod")
    assert created_again is False
    assert second["_id"] == first["_id"]
    assert mongo["order"].count_documents({}) == 1
    assert mongo["cartline"].count_documents({"user_id": "user-1"}) == 0


def test_replay_clears_cart_left_behind_by_interrupted_checkout(client, mongo, user_headers):
    client.post("/api/cart", json={"product_id": "p1", "size": "M", "color": "Black", "unit_price": 100},
                headers=user_headers)
    address = client.post("/api/addresses", json=ADDRESS, headers=user_headers).json()["data"]["address"]
    snapshot = list(mongo["cartline"].find({"user_id": "user-1"}))
    orders.place_order("user-1", address["id"], "cod", idempotency_key="retry-1")
    # The first request died after inserting the order, before the cart was emptied.
    mongo["cartline"].insert_many(snapshot)
    mongo["cartline"].insert_one({"user_id": "user-1", "product_id": "p2", "size": "S", "color": "Red",
                                  "quantity": 1, "unit_price": 200})

    order, created = orders.place_order("user-1", address["id"], "cod", idempotency_key="retry-1")
    assert created is False
    assert order["cart_line_ids"] == [str(l["_id"]) for l in snapshot]
    assert [l["product_id"] for l in mongo["cartline"].find({"user_id": "user-1"})] == ["p2"]


def test_orders_are_listed_per_user(client, place_order, user_headers):
    place_order(user_headers)
    assert len(client.get("/api/orders", headers=user_headers).json()["data"]["orders"]) == 1
    assert client.get("/api/orders", headers=headers_for("user-2")).json()["data"]["orders"] == []


def test_other_users_order_is_not_found(client, place_order, user_headers):
    order = place_order(user_headers)
    resp = client.get(f"/api/orders/{order['id']}", headers=headers_for("user-2"))
    assert resp.status_code == 404


# ------------------------- admin -------------------------

def test_admin_can_skip_ahead_to_shipped(client, place_order, user_headers, admin_headers):
    order = place_order(user_headers)
    resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["order"]["status"] == "shipped"


def test_delivered_cannot_go_back_to_pending(client, delivered_order, admin_headers):
    resp = client.put(f"/api/admin/orders/{delivered_order['id']}/status", json={"status": "pending"},
                      headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["success"] is False


def test_refunded_is_not_an_admin_status_move(client, delivered_order, admin_headers):
    resp = client.put(f"/api/admin/orders/{delivered_order['id']}/status", json={"status": "refunded"},
                      headers=admin_headers)
    assert resp.status_code == 409


def test_unknown_status_is_a_validation_error(client, place_order, user_headers, admin_headers):
    order = place_order(user_headers)
    resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "lost"}, headers=admin_headers)
    assert resp.status_code == 400


def test_customer_cannot_change_status(client, place_order, user_headers):
    order = place_order(user_headers)
    resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "confirmed"},
                      headers=user_headers)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Admin only"


def test_payment_status_has_no_transition_table(client, place_order, user_headers, admin_headers):
    order = place_order(user_headers)
    for value in ("refunded", "pending", "paid"):
        resp = client.put(f"/api/admin/orders/{order['id']}/payment", json={"payment_status": value},
                          headers=admin_headers)
        assert resp.json()["data"]["order"]["payment_status"] == value


def test_admin_order_listing_joins_address_and_user(client, mongo, place_order, user_headers, admin_headers):
    mongo["profile"].insert_one({"user_id": "user-1", "full_name": "Asha Rao", "email": "asha@example.com"})
    place_order(user_headers)
    listed = client.get("/api/admin/orders", headers=admin_headers).json()["data"]["orders"]
    assert listed[0]["address"]["city"] == "Bengaluru"
    assert listed[0]["user"] == {"id": "user-1", "name": "Asha Rao", "email": "asha@example.com", "phone": "N/A"}


def test_admin_stats(client, place_order, user_headers, admin_headers):
    place_order(user_headers)
    stats = client.get("/api/admin/stats", headers=admin_headers).json()["data"]["stats"]
    assert stats["total_orders"] == 1
    assert stats["total_revenue"] == 1050
    assert stats["pending_orders"] == 1
