"""
Server-held cart lines and wishlist entries, one set per user.

Every query filters on the verified user id so a caller can only reach
their own rows.
"""
import logging
from typing import Any, Dict, Iterable, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database
from errors import NotFound
from schemas import CartLine, CartLineIn, Wishlist

logger = logging.getLogger(__name__)


def line_key(user_id: str, product_id: str, size: str, color: str) -> Dict[str, Any]:
    return {"user_id": user_id, "product_id": product_id, "size": size, "color": color}


def fetch_cart(user_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("cartline", {"user_id": user_id}, sort=[("created_at", 1)])


def cart_summary(user_id: str) -> Dict[str, Any]:
    lines = [database.serialize_doc(l) for l in fetch_cart(user_id)]
    subtotal = sum(l["unit_price"] * l["quantity"] for l in lines)
    return {"cart": lines, "subtotal": subtotal, "count": sum(l["quantity"] for l in lines)}


def add_line(user_id: str, item: CartLineIn) -> Dict[str, Any]:
    """Add to the user's cart; same (product, size, color) increments the existing line."""
    col = database.get_db()["cartline"]
    key = line_key(user_id, item.product_id, item.size, item.color)
    merged = col.find_one_and_update(
        key,
        {"$inc": {"quantity": item.quantity}, "$set": {"updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    if merged:
        return merged
    line = CartLine(user_id=user_id, **item.model_dump(include={
        "product_id", "size", "color", "quantity", "unit_price", "product_name", "image"}))
    try:
        database.create_document("cartline", line)
    except DuplicateKeyError:
        # Another request inserted the same line between our lookup and insert.
        return col.find_one_and_update(
            key,
            {"$inc": {"quantity": item.quantity}, "$set": {"updated_at": database.now()}},
            return_document=ReturnDocument.AFTER,
        )
    return col.find_one(key)


def set_quantity(user_id: str, line_id: str, quantity: int) -> None:
    """Set an exact quantity; anything at or below zero removes the line."""
    if quantity <= 0:
        remove_line(user_id, line_id)
        return
    oid = database.to_object_id(line_id)
    if oid is None:
        raise NotFound("Cart item not found")
    res = database.get_db()["cartline"].update_one(
        {"_id": oid, "user_id": user_id},
        {"$set": {"quantity": quantity, "updated_at": database.now()}},
    )
    if res.matched_count == 0:
        raise NotFound("Cart item not found")


def remove_line(user_id: str, line_id: str) -> None:
    oid = database.to_object_id(line_id)
    if oid is None:
        return
    database.get_db()["cartline"].delete_one({"_id": oid, "user_id": user_id})


def clear_cart(user_id: str) -> int:
    return database.get_db()["cartline"].delete_many({"user_id": user_id}).deleted_count


# ------------------------- Wishlist -------------------------

def fetch_wishlist(user_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("wishlist", {"user_id": user_id}, sort=[("created_at", 1)])


def add_to_wishlist(user_id: str, product_id: str) -> bool:
    """Returns False when the product was already listed."""
    col = database.get_db()["wishlist"]
    if col.find_one({"user_id": user_id, "product_id": product_id}):
        return False
    try:
        database.create_document("wishlist", Wishlist(user_id=user_id, product_id=product_id))
    except DuplicateKeyError:
        return False
    return True


def add_many_to_wishlist(user_id: str, product_ids: Iterable[str]) -> int:
    return sum(1 for pid in dict.fromkeys(product_ids) if add_to_wishlist(user_id, pid))


def remove_from_wishlist(user_id: str, product_id: str) -> bool:
    res = database.get_db()["wishlist"].delete_one({"user_id": user_id, "product_id": product_id})
    return res.deleted_count > 0
