import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("JWT_SECRET", "test-secret")

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
from main import app
from schemas import Profile


def make_token(user_id: str, minutes: int = 30) -> str:
    payload = {"sub": user_id, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)}
    return jwt.encode(payload, auth.JWT_SECRET, algorithm=auth.JWT_ALGO)


def headers_for(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


@pytest.fixture(autouse=True)
def mongo():
    db = mongomock.MongoClient()["storefront_test"]
    database.use_database(db)
    database.ensure_indexes()
    yield db
    database.use_database(None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def user_headers():
    return headers_for("user-1")


@pytest.fixture
def admin_headers(mongo):
    mongo["profile"].insert_one(Profile(user_id="admin-1", full_name="Store Admin", role="admin").model_dump())
    return headers_for("admin-1")


@pytest.fixture
def place_order(client):
    """Fill a user's cart, save an address and check out; returns the order view."""
    def _place(headers, lines=None, payment_method="prepaid"):
        lines = lines or [{"product_id": "p1", "size": "M", "color": "Black", "quantity": 2, "unit_price": 500}]
        for line in lines:
            assert client.post("/api/cart", json=line, headers=headers).status_code == 200
        address = client.post("/api/addresses", json=ADDRESS, headers=headers).json()["data"]["address"]
        resp = client.post("/api/orders", json={"address_id": address["id"], "payment_method": payment_method},
                           headers=headers)
        assert resp.status_code == 200, resp.json()
        return resp.json()["data"]["order"]
    return _place


@pytest.fixture
def delivered_order(client, place_order, user_headers, admin_headers):
    order = place_order(user_headers)
    resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "delivered"}, headers=admin_headers)
    assert resp.status_code == 200
    return resp.json()["data"]["order"]
