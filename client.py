"""
Client-side storefront session.

Holds the visitor's cart and wishlist. While signed out everything lives in the
GuestStore; once signed in the server is authoritative and every mutation is
followed by a re-fetch that replaces local state. login() is the single place
guest state is reconciled into the account.

`http` is anything with a requests-style request(method, url, json=, headers=)
method: a requests.Session in production, FastAPI's TestClient in tests.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from guest_store import GuestStore, LineKey, key_of
from reconciler import LineRejected, reconcile_guest_session

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StorefrontSession:
    def __init__(self, base_url: str, store: GuestStore, http=None):
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.http = http or requests.Session()
        self.token: Optional[str] = None
        self.cart: List[Dict[str, Any]] = store.lines()
        self.wishlist: List[str] = store.wishlist()

    @property
    def logged_in(self) -> bool:
        return self.token is not None

    def _request(self, method: str, path: str, json: Any = None, headers: Optional[Dict[str, str]] = None) -> Any:
        all_headers = dict(headers or {})
        if self.token:
            all_headers["Authorization"] = f"Bearer {self.token}"
        resp = self.http.request(method, self.base_url + path, json=json, headers=all_headers)
        try:
            body = resp.json()
        except ValueError:
            raise ApiError(resp.status_code, resp.text[:200] or "Invalid response")
        if resp.status_code >= 400 or not body.get("success"):
            raise ApiError(resp.status_code, body.get("message") or "Request failed")
        return body.get("data")

    # ------------------------- sync -------------------------

    def refresh_cart(self) -> List[Dict[str, Any]]:
        self.cart = self._request("GET", "/api/cart")["cart"]
        return self.cart

    def refresh_wishlist(self) -> List[str]:
        self.wishlist = self._request("GET", "/api/wishlist")["product_ids"]
        return self.wishlist

    def _server_line_id(self, key: LineKey) -> Optional[str]:
        for line in self.cart:
            if key_of(line) == key:
                return line["id"]
        return None

    # ------------------------- cart -------------------------

    def add_to_cart(self, line: Dict[str, Any]) -> None:
        if not self.logged_in:
            self.store.add_line(line)
            self.cart = self.store.lines()
            return
        self._request("POST", "/api/cart", json={k: v for k, v in line.items() if v is not None})
        self.refresh_cart()

    def update_quantity(self, key: LineKey, quantity: Any) -> None:
        if not self.logged_in:
            self.store.update_quantity(key, quantity)
            self.cart = self.store.lines()
            return
        line_id = self._server_line_id(key)
        if line_id:
            self._request("PUT", f"/api/cart/{line_id}", json={"quantity": quantity})
        self.refresh_cart()

    def remove_line(self, key: LineKey) -> None:
        if not self.logged_in:
            self.store.remove_line(key)
            self.cart = self.store.lines()
            return
        line_id = self._server_line_id(key)
        if line_id:
            self._request("DELETE", f"/api/cart/{line_id}")
        self.refresh_cart()

    # ------------------------- wishlist -------------------------

    def toggle_wishlist(self, product_id: str) -> bool:
        if not self.logged_in:
            present = self.store.toggle_wishlist(product_id)
            self.wishlist = self.store.wishlist()
            return present
        if product_id in self.wishlist:
            self._request("DELETE", f"/api/wishlist/{product_id}")
        else:
            self._request("POST", "/api/wishlist", json={"product_id": product_id})
        return product_id in self.refresh_wishlist()

    # ------------------------- session -------------------------

    def _merge_line(self, line: Dict[str, Any]) -> None:
        try:
            self._request("POST", "/api/cart", json={k: v for k, v in line.items() if v is not None})
        except ApiError as e:
            # 401/403 mean the session itself is bad, not the line.
            if 400 <= e.status_code < 500 and e.status_code not in (401, 403):
                raise LineRejected(e.message)
            raise

    def login(self, token: str) -> Dict[str, int]:
        self.token = token
        try:
            merged = reconcile_guest_session(
                self.store,
                add_line=self._merge_line,
                add_wishlist=lambda ids: self._request("POST", "/api/cart/merge", json={"items": [], "wishlist": ids}),
            )
        except Exception:
            self.logout()
            raise
        self.refresh_cart()
        self.refresh_wishlist()
        return merged

    def logout(self) -> None:
        self.token = None
        self.cart = self.store.lines()
        self.wishlist = self.store.wishlist()

    def checkout(self, address_id: str, payment_method: str, idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        if not self.logged_in:
            raise ApiError(401, "Sign in to check out")
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        data = self._request("POST", "/api/orders",
                             json={"address_id": address_id, "payment_method": payment_method}, headers=headers)
        self.store.clear_cart()
        self.refresh_cart()
        logger.info("Placed order %s", data["order"]["order_number"])
        return data["order"]
