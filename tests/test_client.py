import json

import pytest

from client import ApiError, StorefrontSession
from guest_store import CART_KEY, GuestStore, LocalStorage
from tests.conftest import ADDRESS, make_token

SHIRT = {"product_id": "p1", "size": "M", "color": "Black", "quantity": 1, "unit_price": 500}


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "browser.json"))


@pytest.fixture
def session(client, storage):
    return StorefrontSession("http://testserver", GuestStore(storage), http=client)


def test_guest_login_and_cod_checkout(client, session, storage):
    session.add_to_cart(SHIRT)
    session.toggle_wishlist("p7")
    assert session.cart == [SHIRT]

    merged = session.login(make_token("user-1"))
    assert merged == {"lines": 1, "skipped": 0, "wishlist": 1}
    assert [(l["product_id"], l["size"], l["color"], l["quantity"]) for l in session.cart] == [("p1", "M", "Black", 1)]
    assert session.wishlist == ["p7"]
    assert GuestStore(storage).lines() == []

    headers = {"Authorization": f"Bearer {session.token}"}
    address = client.post("/api/addresses", json=ADDRESS, headers=headers).json()["data"]["address"]
    order = session.checkout(address["id"], "cod")
    assert order["subtotal"] == 500
    assert order["shipping_fee"] == 50
    assert order["total"] == 550
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert session.cart == []


def test_login_again_does_not_double_quantities(session):
    session.add_to_cart(dict(SHIRT, quantity=2))
    token = make_token("user-1")
    session.login(token)
    session.logout()
    session.login(token)
    assert session.cart[0]["quantity"] == 2


def test_signed_in_mutations_refetch_server_cart(session):
    session.login(make_token("user-1"))
    session.add_to_cart(SHIRT)
    session.add_to_cart(SHIRT)
    assert session.cart[0]["quantity"] == 2
    session.update_quantity(("p1", "M", "Black"), 5)
    assert session.cart[0]["quantity"] == 5
    session.update_quantity(("p1", "M", "Black"), 0)
    assert session.cart == []


def test_signed_in_wishlist_toggle(session):
    session.login(make_token("user-1"))
    assert session.toggle_wishlist("p3") is True
    assert session.toggle_wishlist("p3") is False
    assert session.wishlist == []


def test_api_errors_surface_the_envelope_message(session):
    session.login(make_token("user-1"))
    with pytest.raises(ApiError) as exc:
        session.checkout("000000000000000000000000", "cod")
    assert exc.value.status_code == 404
    assert exc.value.message == "Address not found"


def test_guest_cannot_check_out(session):
    with pytest.raises(ApiError) as exc:
        session.checkout("anything", "prepaid")
    assert exc.value.status_code == 401


def test_unpriced_guest_line_does_not_block_login(client, storage):
    storage.set_item(CART_KEY, json.dumps([
        {"product_id": "p0", "size": "M", "color": "Black", "quantity": 1},
        SHIRT,
    ]))
    session = StorefrontSession("http://testserver", GuestStore(storage), http=client)
    token = make_token("user-1")

    assert session.login(token) == {"lines": 1, "skipped": 1, "wishlist": 0}
    assert [l["product_id"] for l in session.cart] == ["p1"]
    assert GuestStore(storage).lines() == []

    session.logout()
    session.login(token)
    assert session.cart[0]["quantity"] == 1


def test_failed_login_stays_signed_out_with_guest_cart(session, storage):
    session.add_to_cart(SHIRT)
    with pytest.raises(ApiError) as exc:
        session.login("not-a-jwt")
    assert exc.value.status_code == 401
    assert session.logged_in is False
    assert session.cart == [SHIRT]
    assert GuestStore(storage).lines() == [SHIRT]
