"""
Guest cart and wishlist kept on the visitor's machine before login.

LocalStorage is a tiny string key/value file standing in for browser local
storage. GuestStore writes through to it on every mutation; a failed write is
logged and the in-memory state stays authoritative until the process ends.
"""
import json
import logging
import math
import os
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CART_KEY = "storefront_cart"
WISHLIST_KEY = "storefront_wishlist"

LineKey = Tuple[str, str, str]


class GuestStoreError(ValueError):
    pass


class LocalStorage:
    def __init__(self, path: str):
        self.path = path

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, self.path)


def _quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise GuestStoreError("Quantity must be a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise GuestStoreError("Quantity must be a whole number")


def _check_price(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GuestStoreError("Price must be a positive number")
    if not math.isfinite(value) or value <= 0:
        raise GuestStoreError("Price must be a positive number")


def key_of(line: Dict[str, Any]) -> LineKey:
    parts = tuple(line.get(field) for field in ("product_id", "size", "color"))
    if any(p is None or str(p) == "" for p in parts):
        raise GuestStoreError("Cart line needs a product, size and color")
    return (str(parts[0]), str(parts[1]), str(parts[2]))


class GuestStore:
    def __init__(self, storage):
        self.storage = storage
        self._cart: List[Dict[str, Any]] = self._clean_lines(self._load(CART_KEY))
        self._wishlist: List[str] = [str(p) for p in self._load(WISHLIST_KEY)]

    def _load(self, key: str) -> list:
        try:
            raw = self.storage.get_item(key)
            value = json.loads(raw) if raw else []
        except (OSError, ValueError) as e:
            logger.warning("Could not read guest %s, starting empty: %s", key, e)
            return []
        return value if isinstance(value, list) else []

    @staticmethod
    def _clean_lines(raw: list) -> List[Dict[str, Any]]:
        lines = []
        for line in raw:
            try:
                key_of(line)
                qty = _quantity(line.get("quantity"))
            except (AttributeError, GuestStoreError):
                qty = 0
            if qty <= 0:
                logger.warning("Dropping unreadable guest cart line: %r", line)
                continue
            lines.append(dict(line, quantity=qty))
        return lines

    def _persist(self, key: str, value: list) -> None:
        try:
            self.storage.set_item(key, json.dumps(value))
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Guest %s not saved, it will be lost on reload: %s", key, e)

    # ---- reads ----

    def lines(self) -> List[Dict[str, Any]]:
        return [dict(l) for l in self._cart]

    def wishlist(self) -> List[str]:
        return list(self._wishlist)

    def find(self, key: LineKey) -> Optional[Dict[str, Any]]:
        for line in self._cart:
            if key_of(line) == key:
                return dict(line)
        return None

    # ---- cart mutations ----

    def add_line(self, line: Dict[str, Any]) -> Dict[str, Any]:
        qty = _quantity(line.get("quantity", 1))
        if qty <= 0:
            raise GuestStoreError("Quantity must be positive")
        key = key_of(line)
        _check_price(line.get("unit_price"))
        for existing in self._cart:
            if key_of(existing) == key:
                existing["quantity"] += qty
                self._persist(CART_KEY, self._cart)
                return dict(existing)
        new_line = dict(line, quantity=qty)
        self._cart.append(new_line)
        self._persist(CART_KEY, self._cart)
        return dict(new_line)

    def update_quantity(self, key: LineKey, quantity: Any) -> None:
        qty = _quantity(quantity)
        if qty <= 0:
            self.remove_line(key)
            return
        for existing in self._cart:
            if key_of(existing) == key:
                existing["quantity"] = qty
                self._persist(CART_KEY, self._cart)
                return

    def remove_line(self, key: LineKey) -> None:
        kept = [l for l in self._cart if key_of(l) != key]
        if len(kept) != len(self._cart):
            self._cart = kept
            self._persist(CART_KEY, self._cart)

    def clear_cart(self) -> None:
        self._cart = []
        self._persist(CART_KEY, self._cart)

    def restore_lines(self, lines: List[Dict[str, Any]]) -> None:
        """Put back lines that could not be handed to the server."""
        for line in lines:
            key = key_of(line)
            existing = next((l for l in self._cart if key_of(l) == key), None)
            if existing is None:
                self._cart.append(dict(line))
            else:
                existing["quantity"] += line["quantity"]
        self._persist(CART_KEY, self._cart)

    # ---- wishlist ----

    def toggle_wishlist(self, product_id: str) -> bool:
        pid = str(product_id)
        if pid in self._wishlist:
            self._wishlist.remove(pid)
            present = False
        else:
            self._wishlist.append(pid)
            present = True
        self._persist(WISHLIST_KEY, self._wishlist)
        return present

    def add_wishlist(self, product_ids: List[str]) -> None:
        for pid in product_ids:
            if str(pid) not in self._wishlist:
                self._wishlist.append(str(pid))
        self._persist(WISHLIST_KEY, self._wishlist)

    def clear_wishlist(self) -> None:
        self._wishlist = []
        self._persist(WISHLIST_KEY, self._wishlist)
