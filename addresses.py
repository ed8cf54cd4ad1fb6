"""Saved shipping addresses. At most one default per owner."""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

import database
from errors import NotFound
from schemas import Address, AddressIn

logger = logging.getLogger(__name__)


def _clear_default(user_id: str, keep: Optional[ObjectId] = None) -> int:
    filt: Dict[str, Any] = {"user_id": user_id, "is_default": True}
    if keep is not None:
        filt["_id"] = {"$ne": keep}
    return database.get_db()["address"].update_many(
        filt, {"$set": {"is_default": False, "updated_at": database.now()}}
    ).modified_count


def list_addresses(user_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("address", {"user_id": user_id}, sort=[("is_default", -1), ("created_at", 1)])


def get_address(user_id: str, address_id: str) -> Dict[str, Any]:
    oid = database.to_object_id(address_id)
    address = database.get_db()["address"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not address:
        raise NotFound("Address not found")
    return address


def create_address(user_id: str, payload: AddressIn) -> Dict[str, Any]:
    if payload.is_default:
        _clear_default(user_id)
    address_id = database.create_document("address", Address(user_id=user_id, **payload.model_dump()))
    return database.get_db()["address"].find_one({"_id": ObjectId(address_id)})


def update_address(user_id: str, address_id: str, payload: AddressIn) -> Dict[str, Any]:
    existing = get_address(user_id, address_id)
    if payload.is_default:
        cleared = _clear_default(user_id, keep=existing["_id"])
        logger.debug("Cleared %d previous default addresses for %s", cleared, user_id)
    return database.get_db()["address"].find_one_and_update(
        {"_id": existing["_id"], "user_id": user_id},
        {"$set": {**payload.model_dump(), "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )


def delete_address(user_id: str, address_id: str) -> None:
    oid = database.to_object_id(address_id)
    res = database.get_db()["address"].delete_one({"_id": oid, "user_id": user_id}) if oid else None
    if res is None or res.deleted_count == 0:
        raise NotFound("Address not found")
