"""
Customer profiles and the admin user directory.

A profile is keyed by the identity provider's subject id. It is created on the
first profile update; until then reads fall back to what the token says. The
role is only ever changed through set_role, never through a profile update.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

import database
from errors import NotFound
from schemas import ProfileIn

logger = logging.getLogger(__name__)


def profile_view(user_id: str, profile: Optional[Dict[str, Any]], email: Optional[str] = None) -> Dict[str, Any]:
    profile = profile or {}
    created = profile.get("created_at")
    return {
        "id": user_id,
        "name": profile.get("full_name") or "",
        "phone": profile.get("phone") or "",
        "email": profile.get("email") or email or "",
        "role": profile.get("role") or "customer",
        "created_at": created.isoformat() if created else None,
    }


def get_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    profile = database.get_db()["profile"].find_one({"user_id": user["id"]})
    return profile_view(user["id"], profile, user.get("email"))


def update_profile(user: Dict[str, Any], payload: ProfileIn) -> Dict[str, Any]:
    stamp = database.now()
    changes = payload.model_dump(exclude_unset=True)
    changes["updated_at"] = stamp
    profile = database.get_db()["profile"].find_one_and_update(
        {"user_id": user["id"]},
        {"$set": changes, "$setOnInsert": {"role": "customer", "email": user.get("email"), "created_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Profile updated for %s", user["id"])
    return profile_view(user["id"], profile, user.get("email"))


def list_users(limit: int = 100) -> List[Dict[str, Any]]:
    """Every profile, newest first, with how many orders each has placed."""
    orders = database.get_db()["order"]
    users = []
    for p in database.get_documents("profile", {}, limit=limit, sort=[("created_at", -1)]):
        view = database.serialize_doc(p)
        view["name"] = p.get("full_name") or "N/A"
        view["email"] = p.get("email") or "N/A"
        view["phone"] = p.get("phone") or "N/A"
        view["order_count"] = orders.count_documents({"user_id": p["user_id"]})
        users.append(view)
    return users


def set_role(user_id: str, role: str) -> Dict[str, Any]:
    profile = database.get_db()["profile"].find_one_and_update(
        {"user_id": user_id},
        {"$set": {"role": role, "updated_at": database.now()}},
        return_document=ReturnDocument.AFTER,
    )
    if profile is None:
        raise NotFound("User not found")
    logger.info("User %s role -> %s", user_id, role)
    return profile
