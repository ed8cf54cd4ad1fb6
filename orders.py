"""
Checkout and the order lifecycle.

An order and its lines are written as one document, so an order can never
exist without its lines. Line items are copies of the cart at checkout time;
later product edits do not reach them.

Status moves forward along pending -> confirmed -> processing -> shipped ->
delivered (steps may be skipped). Any pre-delivered order can be cancelled.
"refunded" is only reached through an approved return, see return_requests.py.
"""
import hashlib
import logging
import math
import os
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from errors import InvalidInput, InvalidTransition, NotFound
from schemas import Order, OrderLine

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = int(os.getenv("FREE_SHIPPING_THRESHOLD", "1500"))
FLAT_SHIPPING_FEE = int(os.getenv("FLAT_SHIPPING_FEE", "50"))

FORWARD_PATH = ["pending", "confirmed", "processing", "shipped", "delivered"]
PAYMENT_STATUSES = {"pending", "paid", "refunded"}

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


# ------------------------- Pricing -------------------------

def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def billable_lines(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop lines whose price or quantity is missing, zero, negative or NaN."""
    return [l for l in lines if _is_positive_number(l.get("unit_price")) and _is_positive_number(l.get("quantity"))]


def shipping_fee_for(subtotal: int, payment_method: str) -> int:
    # Cash on delivery always pays the courier fee, free-shipping threshold or not.
    if payment_method == "cod":
        return FLAT_SHIPPING_FEE
    return 0 if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE


def compute_totals(lines: List[Dict[str, Any]], payment_method: str) -> Dict[str, int]:
    subtotal = int(sum(l["unit_price"] * l["quantity"] for l in billable_lines(lines)))
    shipping = shipping_fee_for(subtotal, payment_method)
    return {"subtotal": subtotal, "shipping_fee": shipping, "total": subtotal + shipping}


def generate_order_number() -> str:
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def checkout_key_for(user_id: str, lines: List[Dict[str, Any]]) -> str:
    """Same user + same cart rows and quantities -> same key, so a double submit collides."""
    parts = sorted(f"{l['_id']}:{l['quantity']}" for l in lines)
    digest = hashlib.sha256("|".join([user_id] + parts).encode()).hexdigest()
    return f"cart:{digest}"


# ------------------------- Checkout -------------------------

def _product_snapshot(product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    oids = [oid for oid in (database.to_object_id(p) for p in product_ids) if oid is not None]
    if not oids:
        return {}
    return {str(p["_id"]): p for p in database.get_db()["product"].find({"_id": {"$in": oids}})}


def _order_lines(lines: List[Dict[str, Any]]) -> List[OrderLine]:
    products = _product_snapshot([l["product_id"] for l in lines])
    items = []
    for l in lines:
        product = products.get(l["product_id"], {})
        images = product.get("images") or [None]
        items.append(OrderLine(
            id=str(ObjectId()),
            product_id=l["product_id"],
            product_name=l.get("product_name") or product.get("name"),
            quantity=int(l["quantity"]),
            unit_price=int(l["unit_price"]),
            size=l["size"],
            color=l["color"],
            image=l.get("image") or images[0],
        ))
    return items


def _consume_cart(user_id: str, line_ids: List[Any]) -> None:
    oids = [oid for oid in (database.to_object_id(i) for i in line_ids) if oid is not None]
    if oids:
        database.get_db()["cartline"].delete_many({"_id": {"$in": oids}, "user_id": user_id})


def _replayed(user_id: str, existing: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    # The first request may have stopped between the insert and the cart cleanup.
    _consume_cart(user_id, existing.get("cart_line_ids", []))
    return existing, False


def place_order(user_id: str, address_id: str, payment_method: str,
                idempotency_key: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
    """Turn the user's cart into an order. Returns (order, created)."""
    col = database.get_db()["order"]

    if idempotency_key:
        checkout_key = f"{user_id}:{idempotency_key}"
        existing = col.find_one({"checkout_key": checkout_key, "user_id": user_id})
        if existing:
            logger.info("Replayed checkout %s for user %s", existing["order_number"], user_id)
            return _replayed(user_id, existing)

    if payment_method not in ("prepaid", "cod"):
        raise InvalidInput("payment_method must be prepaid or cod")

    address_oid = database.to_object_id(address_id)
    if address_oid is None or not database.get_db()["address"].find_one({"_id": address_oid, "user_id": user_id}):
        raise NotFound("Address not found")

    snapshot = database.get_documents("cartline", {"user_id": user_id})
    lines = billable_lines(snapshot)
    if len(lines) != len(snapshot):
        logger.warning("Dropped %d unpriced cart lines for user %s", len(snapshot) - len(lines), user_id)
    if not lines:
        raise InvalidInput("Cart is empty")

    if not idempotency_key:
        checkout_key = checkout_key_for(user_id, snapshot)

    totals = compute_totals(lines, payment_method)
    items = _order_lines(lines)

    order_id = None
    for _ in range(3):
        order = Order(
            order_number=generate_order_number(),
            user_id=user_id,
            address_id=address_id,
            items=items,
            items_count=sum(i.quantity for i in items),
            payment_method=payment_method,
            payment_status="paid" if payment_method == "prepaid" else "pending",
            status="pending",
            checkout_key=checkout_key,
            cart_line_ids=[str(l["_id"]) for l in snapshot],
            **totals,
        )
        try:
            order_id = database.create_document("order", order)
            break
        except DuplicateKeyError:
            existing = col.find_one({"checkout_key": checkout_key})
            if existing:
                logger.info("Duplicate checkout for user %s resolved to %s", user_id, existing["order_number"])
                return _replayed(user_id, existing)
            logger.warning("Order number collision, regenerating")
    if order_id is None:
        raise InvalidTransition("Could not allocate an order number, please retry")

    _consume_cart(user_id, order.cart_line_ids)
    created = col.find_one({"_id": ObjectId(order_id)})
    logger.info("Order %s placed by %s: total=%d (%s)", created["order_number"], user_id, created["total"], payment_method)
    return created, True


# ------------------------- Reads -------------------------

def list_orders(user_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("order", {"user_id": user_id}, sort=[("created_at", -1)])


def get_order(user_id: str, order_id: str) -> Dict[str, Any]:
    oid = database.to_object_id(order_id)
    order = database.get_db()["order"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not order:
        raise NotFound("Order not found")
    return order


def _address_view(address: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not address:
        return None
    return {k: address.get(k) or "" for k in
            ("name", "phone", "street", "apartment", "city", "state", "postal_code", "country")}


def _user_view(profile: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not profile:
        return None
    return {
        "id": profile["user_id"],
        "name": profile.get("full_name") or "N/A",
        "email": profile.get("email") or "N/A",
        "phone": profile.get("phone") or "N/A",
    }


def list_all_orders(status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    """Every order with its address and customer attached."""
    filt = {"status": status} if status else {}
    orders = database.get_documents("order", filt, limit=limit, sort=[("created_at", -1)])

    address_ids = {oid for oid in (database.to_object_id(o.get("address_id")) for o in orders) if oid}
    user_ids = {o["user_id"] for o in orders}
    addresses = {str(a["_id"]): a for a in database.get_documents("address", {"_id": {"$in": list(address_ids)}})}
    profiles = {p["user_id"]: p for p in database.get_documents("profile", {"user_id": {"$in": list(user_ids)}})}

    out = []
    for o in orders:
        view = database.serialize_doc(o)
        view["address"] = _address_view(addresses.get(o.get("address_id")))
        view["user"] = _user_view(profiles.get(o["user_id"]))
        out.append(view)
    return out


def order_stats() -> Dict[str, Any]:
    db = database.get_db()
    totals = [o.get("total", 0) for o in db["order"].find({}, {"total": 1})]
    return {
        "total_orders": len(totals),
        "total_revenue": sum(totals),
        "pending_orders": db["order"].count_documents({"status": "pending"}),
        "total_products": db["product"].count_documents({}),
        "total_users": db["profile"].count_documents({}),
    }


# ------------------------- Admin transitions -------------------------

def can_advance(current: str, new: str) -> bool:
    if new == "cancelled":
        return current in FORWARD_PATH[:-1]
    if current in FORWARD_PATH and new in FORWARD_PATH:
        return FORWARD_PATH.index(new) > FORWARD_PATH.index(current)
    return False


def _find_order(order_id: str) -> Dict[str, Any]:
    oid = database.to_object_id(order_id)
    order = database.get_db()["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFound("Order not found")
    return order


def advance_status(order_id: str, new_status: str) -> Dict[str, Any]:
    order = _find_order(order_id)
    current = order["status"]
    if not can_advance(current, new_status):
        raise InvalidTransition(f"Cannot move order from {current} to {new_status}")
    updated = database.get_db()["order"].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": {"status": new_status, "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidTransition("Order status changed in the meantime, reload and retry")
    logger.info("Order %s: %s -> %s", order["order_number"], current, new_status)
    return updated


def set_payment_status(order_id: str, payment_status: str) -> Dict[str, Any]:
    if payment_status not in PAYMENT_STATUSES:
        raise InvalidInput("Invalid payment status")
    order = _find_order(order_id)
    updated = database.get_db()["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {"payment_status": payment_status, "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s payment -> %s", order["order_number"], payment_status)
    return updated
